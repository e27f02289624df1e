import inspect
import logging
from collections.abc import Awaitable, Callable
from enum import Enum, auto
from typing import Any

from realtime_transcriber.domain.conduit import Conduit, OverflowPolicy
from realtime_transcriber.domain.errors import InvalidStateError
from realtime_transcriber.domain.events import (
    ClosureInfo,
    ErrorNotification,
    SessionBegins,
    SessionStats,
    Transcript,
)

logger = logging.getLogger(__name__)

Observer = Callable[[Any], Awaitable[None] | None]


class EventKind(Enum):
    SESSION_BEGINS = auto()
    PARTIAL_TRANSCRIPT = auto()
    FINAL_TRANSCRIPT = auto()
    TRANSCRIPT = auto()
    ERROR = auto()
    CLOSED = auto()


class Dispatcher:
    """Fans each classified message out to observers and conduits.

    Observers and conduits are independent delivery paths: each preserves
    arrival order on its own, with no ordering promised between the two.
    For transcripts the typed conduit and typed observers always see an item
    before the unified ones.
    """

    def __init__(self, stats: SessionStats | None = None) -> None:
        self.stats = stats or SessionStats()
        self._observers: dict[EventKind, list[Observer]] = {kind: [] for kind in EventKind}
        self._partial: Conduit[Transcript] | None = None
        self._final: Conduit[Transcript] | None = None
        self._transcripts: Conduit[Transcript] | None = None
        self._closed_dispatched = False

    def subscribe(self, kind: EventKind, callback: Observer) -> Observer:
        self._observers[kind].append(callback)
        return callback

    def unsubscribe(self, kind: EventKind, callback: Observer) -> None:
        try:
            self._observers[kind].remove(callback)
        except ValueError:
            pass

    def observers(self, kind: EventKind) -> list[Observer]:
        return list(self._observers[kind])

    def open_conduits(
        self,
        maxsize: int = 0,
        overflow: OverflowPolicy = OverflowPolicy.BLOCK,
    ) -> None:
        self._partial = Conduit("partial", maxsize, overflow)
        self._final = Conduit("final", maxsize, overflow)
        self._transcripts = Conduit("transcripts", maxsize, overflow)
        self._closed_dispatched = False

    def complete_conduits(self) -> None:
        for conduit in (self._partial, self._final, self._transcripts):
            if conduit is not None:
                conduit.complete()

    @property
    def partial(self) -> Conduit[Transcript]:
        return self._require(self._partial)

    @property
    def final(self) -> Conduit[Transcript]:
        return self._require(self._final)

    @property
    def transcripts(self) -> Conduit[Transcript]:
        return self._require(self._transcripts)

    @property
    def closed_dispatched(self) -> bool:
        return self._closed_dispatched

    async def dispatch_session_begins(self, info: SessionBegins) -> None:
        logger.info("Session begins: id=%s expires_at=%s", info.session_id, info.expires_at)
        await self._notify(EventKind.SESSION_BEGINS, info)

    async def dispatch_transcript(self, transcript: Transcript) -> None:
        if transcript.is_partial:
            typed_conduit, typed_kind = self.partial, EventKind.PARTIAL_TRANSCRIPT
            self.stats.partial_transcripts += 1
        else:
            typed_conduit, typed_kind = self.final, EventKind.FINAL_TRANSCRIPT
            self.stats.final_transcripts += 1

        await typed_conduit.publish(transcript)
        await self._notify(typed_kind, transcript)
        await self.transcripts.publish(transcript)
        await self._notify(EventKind.TRANSCRIPT, transcript)

    async def dispatch_error(self, notification: ErrorNotification) -> None:
        logger.warning("Error: %s", notification.message)
        self.stats.errors_received += 1
        await self._notify(EventKind.ERROR, notification)

    async def dispatch_closed(self, info: ClosureInfo) -> bool:
        if self._closed_dispatched:
            logger.debug("Ignoring duplicate closure (code=%d)", info.code)
            return False
        self._closed_dispatched = True
        logger.info("Closed: code=%d reason=%r", info.code, info.reason)
        await self._notify(EventKind.CLOSED, info)
        return True

    async def _notify(self, kind: EventKind, payload: Any) -> None:
        for callback in list(self._observers[kind]):
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("%s observer %r raised", kind.name, callback)

    @staticmethod
    def _require(conduit: Conduit[Transcript] | None) -> Conduit[Transcript]:
        if conduit is None:
            raise InvalidStateError("Transcript conduits are available only after connect()")
        return conduit
