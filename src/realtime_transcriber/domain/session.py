import asyncio
import logging
from types import TracebackType

from realtime_transcriber.domain import codec
from realtime_transcriber.domain.conduit import Conduit, OverflowPolicy
from realtime_transcriber.domain.connection import (
    ConnectionParams,
    build_connection_target,
    perform_handshake,
)
from realtime_transcriber.domain.dispatcher import Dispatcher, EventKind, Observer
from realtime_transcriber.domain.errors import (
    ConduitOverflowError,
    HandshakeError,
    InvalidStateError,
    ProtocolViolation,
    TranscriberError,
    TransportError,
)
from realtime_transcriber.domain.events import ClosureInfo, SessionBegins, SessionStats, Transcript
from realtime_transcriber.domain.listener import ListenerLoop
from realtime_transcriber.domain.state import SessionState, validate_transition
from realtime_transcriber.ports.transport import (
    ABNORMAL_CLOSURE,
    NORMAL_CLOSURE,
    PROTOCOL_ERROR,
    TransportFactory,
    TransportPort,
)

logger = logging.getLogger(__name__)


class RealtimeTranscriber:
    """One real-time transcription session over a single transport.

    ``connect`` performs the handshake and starts the listener task. Audio goes
    out through ``send_audio``; results come back through observers registered
    with ``on`` and through the partial, final and unified conduits. ``close``
    shuts down gracefully by default, waiting for the service to acknowledge
    termination so no transcript is lost. Used as an async context manager the
    session connects on entry and closes abruptly on exit.
    """

    def __init__(
        self,
        params: ConnectionParams,
        transport_factory: TransportFactory,
        conduit_maxsize: int = 0,
        overflow: OverflowPolicy = OverflowPolicy.BLOCK,
    ) -> None:
        self._params = params
        self._target = build_connection_target(params)
        self._transport_factory = transport_factory
        self._conduit_maxsize = conduit_maxsize
        self._overflow = overflow

        self._state = SessionState.UNCONNECTED
        self._transport: TransportPort | None = None
        self._dispatcher = Dispatcher()
        self._write_lock = asyncio.Lock()
        self._session_begins: SessionBegins | None = None
        self._listener_task: asyncio.Task | None = None
        self._shutdown_task: asyncio.Task | None = None
        self._terminated: asyncio.Future | None = None
        self._fault: TranscriberError | None = None

    @property
    def params(self) -> ConnectionParams:
        return self._params

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session_begins(self) -> SessionBegins | None:
        return self._session_begins

    @property
    def fault(self) -> TranscriberError | None:
        return self._fault

    @property
    def stats(self) -> SessionStats:
        return self._dispatcher.stats

    @property
    def listener_task(self) -> asyncio.Task | None:
        return self._listener_task

    def on(self, kind: EventKind, callback: Observer) -> Observer:
        return self._dispatcher.subscribe(kind, callback)

    def off(self, kind: EventKind, callback: Observer) -> None:
        self._dispatcher.unsubscribe(kind, callback)

    def partial_transcripts(self) -> Conduit[Transcript]:
        return self._dispatcher.partial

    def final_transcripts(self) -> Conduit[Transcript]:
        return self._dispatcher.final

    def transcripts(self) -> Conduit[Transcript]:
        return self._dispatcher.transcripts

    def _transition_to(self, target: SessionState) -> None:
        validate_transition(self._state, target)
        logger.info("State: %s -> %s", self._state.name, target.name)
        self._state = target

    def _mark_closed(self) -> None:
        if self._state is not SessionState.CLOSED:
            self._transition_to(SessionState.CLOSED)

    async def connect(self) -> SessionBegins:
        if self._state is not SessionState.UNCONNECTED:
            raise InvalidStateError(f"Cannot connect in state {self._state.name}")

        self._transition_to(SessionState.CONNECTING)
        logger.info("Connecting to %s", self._params.endpoint)
        try:
            self._transport = await self._transport_factory(self._target)
            info = await perform_handshake(self._transport, self._dispatcher)
        except HandshakeError:
            await self._release_transport()
            self._mark_closed()
            raise
        except ProtocolViolation as exc:
            await self._release_transport(PROTOCOL_ERROR, "unexpected message")
            await self._dispatcher.dispatch_closed(ClosureInfo(PROTOCOL_ERROR, str(exc)))
            self._mark_closed()
            raise
        except (asyncio.CancelledError, Exception):
            await self._release_transport()
            self._transport = None
            self._transition_to(SessionState.UNCONNECTED)
            raise

        self._session_begins = info
        self._transition_to(SessionState.ACTIVE)
        self._dispatcher.open_conduits(self._conduit_maxsize, self._overflow)
        await self._dispatcher.dispatch_session_begins(info)

        if self._state is SessionState.ACTIVE:
            listener = ListenerLoop(self._transport, self._dispatcher, self._resolve_termination)
            self._listener_task = asyncio.create_task(
                self._listen(listener), name=f"realtime-listener-{info.session_id}"
            )
        return info

    async def send_audio(self, audio: bytes | bytearray | memoryview) -> None:
        self._raise_fault()
        if self._state is not SessionState.ACTIVE:
            raise InvalidStateError(f"Cannot send audio in state {self._state.name}")

        payload = codec.encode_audio(audio)
        if not payload:
            logger.debug("Skipping empty audio chunk")
            return

        await self._send(payload)
        self.stats.audio_chunks_sent += 1
        self.stats.audio_bytes_sent += len(payload)

    async def close(self, wait_for_termination: bool = True) -> None:
        await self._close(wait_for_termination, raise_fault=True)

    async def wait_closed(self) -> None:
        if self._listener_task is not None:
            await asyncio.wait({self._listener_task})
        self._raise_fault()

    async def __aenter__(self) -> "RealtimeTranscriber":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self._close(wait_for_termination=False, raise_fault=exc is None)

    async def _close(self, wait_for_termination: bool, raise_fault: bool) -> None:
        if self._shutdown_task is None:
            if self._state is SessionState.UNCONNECTED:
                self._transition_to(SessionState.CLOSED)
                return
            if self._state is SessionState.CONNECTING:
                raise InvalidStateError("Cannot close while connecting; cancel connect() instead")
            if self._state is SessionState.ACTIVE:
                self._transition_to(SessionState.CLOSING)
                if wait_for_termination:
                    self._terminated = asyncio.get_running_loop().create_future()
                self._shutdown_task = asyncio.create_task(self._shutdown(wait_for_termination))
        elif not wait_for_termination:
            self._release_termination_wait()

        if self._shutdown_task is not None:
            await asyncio.shield(self._shutdown_task)
        if raise_fault:
            self._raise_fault()

    async def _shutdown(self, wait_for_termination: bool) -> None:
        try:
            await self._send(codec.encode_terminate_session(), allow_closing=True)
        except (TransportError, InvalidStateError) as exc:
            logger.warning("Could not request session termination: %s", exc)
            self._release_termination_wait()

        if wait_for_termination and self._listener_task is not None:
            logger.info("Waiting for session termination")
            await asyncio.wait(
                {self._terminated, self._listener_task},
                return_when=asyncio.FIRST_COMPLETED,
            )

        await self._release_transport(NORMAL_CLOSURE)
        # Releases a listener blocked on a full conduit.
        self._dispatcher.complete_conduits()
        if self._listener_task is not None:
            await asyncio.wait({self._listener_task})

        await self._dispatcher.dispatch_closed(ClosureInfo(NORMAL_CLOSURE, ""))
        self._mark_closed()

    async def _send(self, data: str | bytes, allow_closing: bool = False) -> None:
        async with self._write_lock:
            writable = self._state is SessionState.ACTIVE or (
                allow_closing and self._state is SessionState.CLOSING
            )
            if not writable or self._transport is None:
                raise InvalidStateError(f"Cannot send in state {self._state.name}")
            await self._transport.send(data)

    async def _listen(self, listener: ListenerLoop) -> None:
        try:
            closure = await listener.run()
        except asyncio.CancelledError:
            if self._state is SessionState.ACTIVE:
                await self._fail(
                    TransportError("Listener loop was cancelled before the connection closed"),
                    ClosureInfo(ABNORMAL_CLOSURE, "listener cancelled"),
                )
            raise
        except ProtocolViolation as exc:
            await self._fail(exc, ClosureInfo(PROTOCOL_ERROR, str(exc)), close_code=PROTOCOL_ERROR)
        except TransportError as exc:
            if self._state is SessionState.ACTIVE:
                await self._fail(exc, ClosureInfo(ABNORMAL_CLOSURE, str(exc)))
            else:
                logger.warning("Connection lost while closing: %s", exc)
        except ConduitOverflowError as exc:
            await self._fail(exc, ClosureInfo(ABNORMAL_CLOSURE, str(exc)))
        else:
            self._mark_closed()
            self._dispatcher.complete_conduits()
            await self._dispatcher.dispatch_closed(closure)
        finally:
            self._dispatcher.complete_conduits()
            self._release_termination_wait()

    async def _fail(
        self,
        fault: TranscriberError,
        closure: ClosureInfo,
        close_code: int = NORMAL_CLOSURE,
    ) -> None:
        logger.error("Listener loop failed: %s", fault)
        self._fault = fault
        if self._state is SessionState.ACTIVE:
            # Same teardown as an abrupt close.
            await self._send_terminate_quietly()
        await self._release_transport(close_code, "listener failed")
        self._mark_closed()
        self._dispatcher.complete_conduits()
        await self._dispatcher.dispatch_closed(closure)

    async def _send_terminate_quietly(self) -> None:
        try:
            await self._send(codec.encode_terminate_session())
        except (TransportError, InvalidStateError) as exc:
            logger.debug("terminate_session not sent: %s", exc)

    def _resolve_termination(self) -> None:
        if self._terminated is None:
            logger.debug("SessionTerminated received without a pending graceful close")
        self._release_termination_wait()

    def _release_termination_wait(self) -> None:
        if self._terminated is not None and not self._terminated.done():
            self._terminated.set_result(None)

    async def _release_transport(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if self._transport is None:
            return
        try:
            await self._transport.close(code, reason)
        except TransportError as exc:
            logger.warning("Error closing transport: %s", exc)

    def _raise_fault(self) -> None:
        if self._fault is not None:
            raise self._fault
