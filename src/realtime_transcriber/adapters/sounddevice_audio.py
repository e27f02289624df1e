import asyncio
import logging
from collections.abc import AsyncIterator

import janus
import numpy as np
import sounddevice as sd

logger = logging.getLogger(__name__)


class MicrophoneSource:
    """Captures mono 16-bit PCM from an input device in fixed-duration chunks."""

    def __init__(
        self,
        device: str | int | None = None,
        sample_rate: int = 16000,
        chunk_duration_ms: int = 250,
        max_pending_chunks: int = 40,
    ) -> None:
        self._device = device
        self._sample_rate = sample_rate
        self._chunk_duration_ms = chunk_duration_ms
        self._chunk_frames = int(sample_rate * chunk_duration_ms / 1000)
        self._max_pending_chunks = max_pending_chunks
        self._stream: sd.InputStream | None = None
        self._queue: janus.Queue[bytes] | None = None
        self._dropped_chunks = 0

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def dropped_chunks(self) -> int:
        return self._dropped_chunks

    async def start(self) -> None:
        self._queue = janus.Queue(maxsize=self._max_pending_chunks)

        def on_audio(indata: np.ndarray, frames: int, time_info, status) -> None:
            if status:
                logger.warning("Microphone status: %s", status)
            samples = np.clip(indata[:, 0], -1.0, 1.0)
            pcm = (samples * 32767).astype(np.int16).tobytes()
            try:
                self._queue.sync_q.put_nowait(pcm)
            except janus.SyncQueueFull:
                self._dropped_chunks += 1

        device = self._resolve_device()
        self._stream = sd.InputStream(
            device=device,
            samplerate=self._sample_rate,
            channels=1,
            dtype="float32",
            blocksize=self._chunk_frames,
            callback=on_audio,
        )
        self._stream.start()
        logger.info(
            "Microphone started (device=%s, rate=%d, chunk=%dms)",
            device, self._sample_rate, self._chunk_duration_ms,
        )

    async def stop(self) -> None:
        if self._stream:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        if self._queue:
            self._queue.close()
            await self._queue.wait_closed()
            self._queue = None
        if self._dropped_chunks:
            logger.warning("Dropped %d microphone chunks", self._dropped_chunks)

    async def read_chunks(self) -> AsyncIterator[bytes]:
        if not self._queue:
            return
        queue = self._queue
        while True:
            try:
                chunk = await asyncio.wait_for(queue.async_q.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except janus.AsyncQueueShutDown:
                break
            yield chunk

    def _resolve_device(self) -> str | int | None:
        if self._device is None or self._device == "":
            return None
        if isinstance(self._device, int):
            return self._device
        try:
            return int(self._device)
        except ValueError:
            pass
        for index, info in enumerate(sd.query_devices()):
            if self._device.lower() in info["name"].lower() and info["max_input_channels"] > 0:
                logger.info("Resolved device '%s' -> %d (%s)", self._device, index, info["name"])
                return index
        logger.warning("No input device matches '%s', using the default", self._device)
        return None
