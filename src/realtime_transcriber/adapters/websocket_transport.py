import logging

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from realtime_transcriber.domain.errors import TransportError
from realtime_transcriber.ports.transport import CloseFrame, ConnectionTarget, NORMAL_CLOSURE

logger = logging.getLogger(__name__)


class WebsocketTransport:
    def __init__(self, connection: ClientConnection) -> None:
        self._connection = connection
        self._readable = True

    @property
    def is_open(self) -> bool:
        # Stays true after the close handshake starts so frames queued before
        # the close frame are still delivered.
        return self._readable

    async def receive(self) -> str | bytes | CloseFrame:
        fragments: list[str | bytes] = []
        try:
            async for fragment in self._connection.recv_streaming():
                fragments.append(fragment)
        except ConnectionClosed as exc:
            self._readable = False
            if exc.rcvd is not None:
                return CloseFrame(code=exc.rcvd.code, reason=exc.rcvd.reason)
            raise TransportError(f"Connection lost without a close frame: {exc}") from exc

        if len(fragments) > 1:
            logger.debug("Reassembled message from %d fragments", len(fragments))
        if fragments and isinstance(fragments[0], bytes):
            return b"".join(fragments)
        return "".join(fragments)

    async def send(self, data: str | bytes) -> None:
        try:
            await self._connection.send(data)
        except ConnectionClosed as exc:
            raise TransportError(f"Cannot send, connection closed: {exc}") from exc
        except OSError as exc:
            raise TransportError(f"Failed to send frame: {exc}") from exc

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        try:
            await self._connection.close(code=code, reason=reason)
        except OSError as exc:
            raise TransportError(f"Failed to close connection: {exc}") from exc


async def connect_websocket(target: ConnectionTarget) -> WebsocketTransport:
    try:
        connection = await connect(target.url, additional_headers=target.headers)
    except (InvalidURI, InvalidHandshake, OSError, TimeoutError) as exc:
        raise TransportError(f"Failed to connect: {exc}") from exc
    logger.debug("WebSocket connected")
    return WebsocketTransport(connection)
