import asyncio
import io
import json
import os
import wave
from pathlib import Path

import numpy as np
import pytest

from realtime_transcriber.domain.connection import ConnectionParams
from realtime_transcriber.domain.errors import TransportError
from realtime_transcriber.ports.transport import CloseFrame, ConnectionTarget


SAMPLE_RATE = 16000
SESSION_ID = "a7a9b8a3-3c1e-4c66-9a52-2d5a4e3f9b10"
EXPIRES_AT = "2024-01-01T12:30:00.123456"


def session_begins_message(
    session_id: str = SESSION_ID, expires_at: str = EXPIRES_AT
) -> str:
    return json.dumps(
        {"message_type": "SessionBegins", "session_id": session_id, "expires_at": expires_at}
    )


def partial_message(text: str, **extra) -> str:
    return json.dumps({"message_type": "PartialTranscript", "text": text, **extra})


def final_message(text: str, **extra) -> str:
    return json.dumps({"message_type": "FinalTranscript", "text": text, **extra})


def terminated_message() -> str:
    return json.dumps({"message_type": "SessionTerminated"})


def error_message(error: str, **extra) -> str:
    return json.dumps({"error": error, **extra})


def generate_silence(duration_ms: int = 100, sample_rate: int = SAMPLE_RATE) -> bytes:
    num_samples = int(sample_rate * duration_ms / 1000)
    return np.zeros(num_samples, dtype=np.int16).tobytes()


def generate_sine_wave(
    frequency: float = 440.0,
    duration_ms: int = 100,
    amplitude: float = 0.8,
    sample_rate: int = SAMPLE_RATE,
) -> bytes:
    num_samples = int(sample_rate * duration_ms / 1000)
    t = np.arange(num_samples) / sample_rate
    signal = np.sin(2 * np.pi * frequency * t) * amplitude
    return (signal * 32767).astype(np.int16).tobytes()


def pcm_to_wav_bytes(
    pcm_data: bytes, sample_rate: int = SAMPLE_RATE, channels: int = 1, sample_width: int = 2
) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm_data)
    return buffer.getvalue()


class FakeTransport:
    """Scripted stand-in for the websocket.

    Inbound frames are replayed in order. Frames in ``terminate_replies`` are
    queued once the client asks for termination. A local ``close`` answers with
    a close frame carrying the same code, the way a well-behaved server does.
    """

    def __init__(
        self,
        frames: list | None = None,
        echo_close: bool = True,
        terminate_replies: list | None = None,
    ) -> None:
        self._inbound: asyncio.Queue = asyncio.Queue()
        for frame in frames or []:
            self._inbound.put_nowait(frame)
        self._readable = True
        self._echo_close = echo_close
        self.terminate_replies = list(terminate_replies or [])
        self._close_echoed = False
        self._writers = 0
        self.sent: list[str | bytes] = []
        self.close_calls: list[tuple[int, str]] = []
        self.interleaved = False
        self.send_delay = 0.0
        self.fail_sends = False

    @property
    def is_open(self) -> bool:
        return self._readable

    @property
    def sent_text(self) -> list[str]:
        return [frame for frame in self.sent if isinstance(frame, str)]

    @property
    def sent_audio(self) -> list[bytes]:
        return [frame for frame in self.sent if isinstance(frame, bytes)]

    def feed(self, *frames) -> None:
        for frame in frames:
            self._inbound.put_nowait(frame)

    async def receive(self):
        frame = await self._inbound.get()
        if isinstance(frame, Exception):
            self._readable = False
            raise frame
        if isinstance(frame, CloseFrame):
            self._readable = False
        return frame

    async def send(self, data: str | bytes) -> None:
        if self.fail_sends:
            raise TransportError("connection reset")
        self._writers += 1
        if self._writers > 1:
            self.interleaved = True
        try:
            await asyncio.sleep(self.send_delay)
            self.sent.append(data)
            if isinstance(data, str) and "terminate_session" in data:
                self.feed(*self.terminate_replies)
                self.terminate_replies = []
        finally:
            self._writers -= 1

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls.append((code, reason))
        if self._echo_close and not self._close_echoed:
            self._close_echoed = True
            self.feed(CloseFrame(code, reason))


class FakeTransportFactory:
    def __init__(self, transport: FakeTransport) -> None:
        self.transport = transport
        self.targets: list[ConnectionTarget] = []

    async def __call__(self, target: ConnectionTarget) -> FakeTransport:
        self.targets.append(target)
        return self.transport


class EventRecorder:
    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []

    def recorder(self, name: str):
        def record(payload) -> None:
            self.events.append((name, payload))

        return record

    def of(self, name: str) -> list:
        return [payload for event, payload in self.events if event == name]


async def drain(conduit) -> list:
    return [item async for item in conduit]


@pytest.fixture(autouse=True)
def isolate_config_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("REALTIME_TRANSCRIBER_"):
            monkeypatch.delenv(name)


@pytest.fixture
def api_key_params():
    return ConnectionParams(api_key="secret-key", sample_rate=SAMPLE_RATE)


@pytest.fixture
def token_params():
    return ConnectionParams(token="temp-token", sample_rate=SAMPLE_RATE)


@pytest.fixture
def fake_transport():
    return FakeTransport([session_begins_message()])


@pytest.fixture
def wav_file(tmp_path: Path) -> Path:
    path = tmp_path / "speech.wav"
    path.write_bytes(pcm_to_wav_bytes(generate_sine_wave(duration_ms=1000)))
    return path
