import json
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from realtime_transcriber.domain.errors import ProtocolViolation
from realtime_transcriber.domain.events import SessionBegins, Transcript, TranscriptKind

MESSAGE_TYPE_FIELD = "message_type"
ERROR_FIELD = "error"


class MessageType(str, Enum):
    SESSION_BEGINS = "SessionBegins"
    PARTIAL_TRANSCRIPT = "PartialTranscript"
    FINAL_TRANSCRIPT = "FinalTranscript"
    SESSION_TERMINATED = "SessionTerminated"


TRANSCRIPT_KINDS: dict[str, TranscriptKind] = {
    MessageType.PARTIAL_TRANSCRIPT.value: TranscriptKind.PARTIAL,
    MessageType.FINAL_TRANSCRIPT.value: TranscriptKind.FINAL,
}


def decode_message(raw: str | bytes) -> dict[str, Any]:
    try:
        message = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolViolation(f"Real-time service sent a malformed message: {exc}") from exc
    if not isinstance(message, dict):
        raise ProtocolViolation("Real-time service sent an unexpected message.")
    return message


def message_type(message: dict[str, Any]) -> str | None:
    value = message.get(MESSAGE_TYPE_FIELD)
    return value if isinstance(value, str) else None


def error_indicator(message: dict[str, Any]) -> str | None:
    if ERROR_FIELD not in message:
        return None
    error = message[ERROR_FIELD]
    return error if isinstance(error, str) else json.dumps(error)


def decode_session_begins(message: dict[str, Any]) -> SessionBegins:
    try:
        return SessionBegins(
            session_id=UUID(str(message["session_id"])),
            expires_at=_parse_timestamp(message["expires_at"]),
        )
    except (KeyError, ValueError, TypeError) as exc:
        raise ProtocolViolation(f"Malformed SessionBegins message: {exc}") from exc


def decode_transcript(message: dict[str, Any], kind: TranscriptKind) -> Transcript:
    try:
        created = message.get("created")
        return Transcript(
            kind=kind,
            text=message.get("text") or "",
            audio_start=message.get("audio_start"),
            audio_end=message.get("audio_end"),
            confidence=message.get("confidence"),
            created=_parse_timestamp(created) if created else None,
        )
    except (ValueError, TypeError) as exc:
        raise ProtocolViolation(f"Malformed {kind.value} message: {exc}") from exc


def encode_terminate_session() -> str:
    return json.dumps({"terminate_session": True})


def encode_audio(audio: bytes | bytearray | memoryview) -> bytes:
    # One contiguous binary frame per call, payload passed through untouched.
    return audio if isinstance(audio, bytes) else bytes(audio)


def encode_word_boost(words: tuple[str, ...] | list[str]) -> str:
    return json.dumps(list(words), separators=(",", ":"))


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, str) and value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)
