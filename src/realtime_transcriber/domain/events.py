from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


@dataclass(frozen=True)
class SessionBegins:
    session_id: UUID
    expires_at: datetime


class TranscriptKind(Enum):
    PARTIAL = "PartialTranscript"
    FINAL = "FinalTranscript"


@dataclass(frozen=True)
class Transcript:
    kind: TranscriptKind
    text: str
    audio_start: int | None = None
    audio_end: int | None = None
    confidence: float | None = None
    created: datetime | None = None

    @property
    def is_partial(self) -> bool:
        return self.kind is TranscriptKind.PARTIAL

    @property
    def is_final(self) -> bool:
        return self.kind is TranscriptKind.FINAL


@dataclass(frozen=True)
class ErrorNotification:
    message: str


@dataclass(frozen=True)
class ClosureInfo:
    code: int
    reason: str = ""


@dataclass
class SessionStats:
    audio_chunks_sent: int = 0
    audio_bytes_sent: int = 0
    messages_received: int = 0
    partial_transcripts: int = 0
    final_transcripts: int = 0
    errors_received: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)
