import asyncio
import logging
import wave
from collections.abc import AsyncIterator
from pathlib import Path

from realtime_transcriber.domain.errors import ConfigurationError

logger = logging.getLogger(__name__)


class WavFileSource:
    """Replays a 16-bit mono WAV file in chunks, paced like a live capture."""

    def __init__(
        self,
        path: str | Path,
        chunk_duration_ms: int = 250,
        send_interval_ms: int = 300,
    ) -> None:
        self._path = Path(path)
        self._chunk_duration_ms = chunk_duration_ms
        self._send_interval = send_interval_ms / 1000
        self._sample_rate = 0
        self._wav: wave.Wave_read | None = None

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def path(self) -> Path:
        return self._path

    async def start(self) -> None:
        try:
            wav = wave.open(str(self._path), "rb")
        except (OSError, EOFError, wave.Error) as exc:
            raise ConfigurationError(f"Cannot read WAV file {self._path}: {exc}") from exc

        if wav.getsampwidth() != 2 or wav.getnchannels() != 1:
            wav.close()
            raise ConfigurationError(
                f"{self._path} must be 16-bit mono PCM "
                f"(got {wav.getsampwidth() * 8}-bit, {wav.getnchannels()} channels)"
            )
        self._wav = wav
        self._sample_rate = wav.getframerate()
        logger.info(
            "Streaming %s (rate=%d, %.1fs)",
            self._path.name, self._sample_rate, wav.getnframes() / self._sample_rate,
        )

    async def stop(self) -> None:
        if self._wav:
            self._wav.close()
            self._wav = None

    async def read_chunks(self) -> AsyncIterator[bytes]:
        if not self._wav:
            return
        frames_per_chunk = max(1, int(self._sample_rate * self._chunk_duration_ms / 1000))
        while self._wav:
            chunk = self._wav.readframes(frames_per_chunk)
            if not chunk:
                break
            yield chunk
            if self._send_interval > 0:
                await asyncio.sleep(self._send_interval)
