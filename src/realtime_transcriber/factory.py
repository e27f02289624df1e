import logging
from pathlib import Path

from realtime_transcriber.config import TranscriberConfig
from realtime_transcriber.domain.conduit import OverflowPolicy
from realtime_transcriber.domain.connection import ConnectionParams
from realtime_transcriber.domain.session import RealtimeTranscriber
from realtime_transcriber.ports.audio import AudioSourcePort

logger = logging.getLogger(__name__)


def create_connection_params(config: TranscriberConfig, sample_rate: int | None = None) -> ConnectionParams:
    # An explicit token wins; the API key is dropped so only one credential is sent.
    token = config.token or None
    api_key = None if token else (config.resolve_api_key() or None)
    return ConnectionParams(
        api_key=api_key,
        token=token,
        sample_rate=sample_rate if sample_rate is not None else config.sample_rate,
        word_boost=tuple(config.word_boost),
        encoding=config.encoding,
        endpoint=config.endpoint,
    )


def create_transcriber(config: TranscriberConfig, sample_rate: int | None = None) -> RealtimeTranscriber:
    from realtime_transcriber.adapters.websocket_transport import connect_websocket

    return RealtimeTranscriber(
        create_connection_params(config, sample_rate),
        transport_factory=connect_websocket,
        conduit_maxsize=config.conduit_maxsize,
        overflow=OverflowPolicy(config.overflow_policy),
    )


def create_file_source(config: TranscriberConfig, path: str | Path) -> AudioSourcePort:
    from realtime_transcriber.adapters.wav_file_source import WavFileSource

    return WavFileSource(
        path,
        chunk_duration_ms=config.chunk_duration_ms,
        send_interval_ms=config.send_interval_ms,
    )


def create_microphone_source(config: TranscriberConfig) -> AudioSourcePort:
    from realtime_transcriber.adapters.sounddevice_audio import MicrophoneSource

    return MicrophoneSource(
        device=config.capture_device or None,
        sample_rate=config.sample_rate,
        chunk_duration_ms=config.chunk_duration_ms,
    )
