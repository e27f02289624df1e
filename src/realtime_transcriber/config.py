from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from realtime_transcriber.domain.connection import DEFAULT_ENDPOINT


class TranscriberConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="REALTIME_TRANSCRIBER_")

    api_key: str = ""
    api_key_file: str = ""
    token: str = ""
    endpoint: str = DEFAULT_ENDPOINT

    sample_rate: int = 16000
    word_boost: list[str] = []
    encoding: Literal["pcm_s16le", "pcm_mulaw"] | None = None

    chunk_duration_ms: int = 250
    send_interval_ms: int = 300
    capture_device: str = ""

    conduit_maxsize: int = 0
    overflow_policy: Literal["block", "drop-oldest", "fail"] = "block"

    log_file: str = ""

    def read_secret(self, path: str) -> str:
        if not path:
            return ""
        try:
            with open(path) as f:
                return f.read().strip()
        except FileNotFoundError:
            return ""

    def resolve_api_key(self) -> str:
        return self.api_key or self.read_secret(self.api_key_file)
