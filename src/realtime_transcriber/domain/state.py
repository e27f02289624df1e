from enum import Enum, auto

from realtime_transcriber.domain.errors import InvalidStateError


class SessionState(Enum):
    UNCONNECTED = auto()
    CONNECTING = auto()
    ACTIVE = auto()
    CLOSING = auto()
    CLOSED = auto()


VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.UNCONNECTED: {SessionState.CONNECTING, SessionState.CLOSED},
    SessionState.CONNECTING: {SessionState.ACTIVE, SessionState.UNCONNECTED, SessionState.CLOSED},
    SessionState.ACTIVE: {SessionState.CLOSING, SessionState.CLOSED},
    SessionState.CLOSING: {SessionState.CLOSED},
    SessionState.CLOSED: set(),
}


def validate_transition(current: SessionState, target: SessionState) -> None:
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidStateError(f"Cannot transition from {current.name} to {target.name}")
