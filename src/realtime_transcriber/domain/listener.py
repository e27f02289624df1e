import logging
from collections.abc import Callable

from realtime_transcriber.domain import codec
from realtime_transcriber.domain.dispatcher import Dispatcher
from realtime_transcriber.domain.errors import ProtocolViolation, TransportError
from realtime_transcriber.domain.events import ClosureInfo, ErrorNotification
from realtime_transcriber.ports.transport import CloseFrame, TransportPort

logger = logging.getLogger(__name__)


class ListenerLoop:
    """Sole reader of the transport once a session is active.

    ``run`` returns the closure of an orderly close frame. Every other way out
    is an exception: ``ProtocolViolation`` for sequencing errors,
    ``TransportError`` when the connection drops without a close frame and
    ``asyncio.CancelledError`` when the task is cancelled.
    """

    def __init__(
        self,
        transport: TransportPort,
        dispatcher: Dispatcher,
        on_session_terminated: Callable[[], None],
    ) -> None:
        self._transport = transport
        self._dispatcher = dispatcher
        self._on_session_terminated = on_session_terminated

    async def run(self) -> ClosureInfo:
        while self._transport.is_open:
            frame = await self._transport.receive()
            if isinstance(frame, CloseFrame):
                logger.debug(
                    "Close frame received after %d messages",
                    self._dispatcher.stats.messages_received,
                )
                return ClosureInfo(frame.code, frame.reason)
            self._dispatcher.stats.messages_received += 1
            await self._handle(codec.decode_message(frame))

        raise TransportError("WebSocket is not open.")

    async def _handle(self, message: dict) -> None:
        error = codec.error_indicator(message)
        if error is not None:
            await self._dispatcher.dispatch_error(ErrorNotification(error))

        message_type = codec.message_type(message)
        if message_type is None:
            return

        if message_type == codec.MessageType.SESSION_BEGINS.value:
            raise ProtocolViolation("Real-time service sent an unexpected message.")

        kind = codec.TRANSCRIPT_KINDS.get(message_type)
        if kind is not None:
            transcript = codec.decode_transcript(message, kind)
            logger.debug("Transcript: [%s] %s", kind.name.lower(), transcript.text)
            await self._dispatcher.dispatch_transcript(transcript)
        elif message_type == codec.MessageType.SESSION_TERMINATED.value:
            logger.info("Session terminated by service")
            self._on_session_terminated()
        else:
            logger.debug("Ignoring unknown message type %r", message_type)
