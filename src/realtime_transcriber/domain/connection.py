import logging
from dataclasses import dataclass
from urllib.parse import quote, urlencode

from realtime_transcriber.domain import codec
from realtime_transcriber.domain.dispatcher import Dispatcher
from realtime_transcriber.domain.errors import ConfigurationError, HandshakeError, ProtocolViolation
from realtime_transcriber.domain.events import ClosureInfo, ErrorNotification, SessionBegins
from realtime_transcriber.ports.transport import CloseFrame, ConnectionTarget, TransportPort

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "wss://api.assemblyai.com/v2/realtime/ws"


@dataclass(frozen=True)
class ConnectionParams:
    api_key: str | None = None
    token: str | None = None
    sample_rate: int = 0
    word_boost: tuple[str, ...] = ()
    encoding: str | None = None
    endpoint: str = DEFAULT_ENDPOINT

    def __post_init__(self) -> None:
        if not self.api_key and not self.token:
            raise ConfigurationError("An API key or a temporary token is required")
        if self.api_key and self.token:
            raise ConfigurationError("Use either an API key or a temporary token, not both")
        if self.sample_rate < 0:
            raise ConfigurationError(f"Sample rate must be positive, got {self.sample_rate}")
        object.__setattr__(self, "word_boost", tuple(self.word_boost))

    @property
    def uses_token(self) -> bool:
        return bool(self.token)


def build_connection_target(params: ConnectionParams) -> ConnectionTarget:
    query: list[tuple[str, str]] = []
    if params.sample_rate:
        query.append(("sample_rate", str(params.sample_rate)))
    if params.word_boost:
        query.append(("word_boost", codec.encode_word_boost(params.word_boost)))
    if params.encoding:
        query.append(("encoding", params.encoding))

    headers: dict[str, str] = {}
    if params.uses_token:
        query.append(("token", params.token))
    else:
        headers["Authorization"] = params.api_key

    url = params.endpoint
    if query:
        separator = "&" if "?" in url else "?"
        url = f"{url}{separator}{urlencode(query, quote_via=quote)}"
    return ConnectionTarget(url=url, headers=headers)


async def perform_handshake(transport: TransportPort, dispatcher: Dispatcher) -> SessionBegins:
    frame = await transport.receive()
    if isinstance(frame, CloseFrame):
        await dispatcher.dispatch_closed(ClosureInfo(frame.code, frame.reason))
        raise ProtocolViolation(
            f"Unexpected close message received (code={frame.code}, reason={frame.reason!r})"
        )

    message = codec.decode_message(frame)
    error = codec.error_indicator(message)
    if error is not None:
        await dispatcher.dispatch_error(ErrorNotification(error))
        closing = await transport.receive()
        if not isinstance(closing, CloseFrame):
            raise ProtocolViolation("Expected close message not received.")
        await dispatcher.dispatch_closed(ClosureInfo(closing.code, closing.reason))
        raise HandshakeError(error)

    if codec.message_type(message) != codec.MessageType.SESSION_BEGINS.value:
        raise ProtocolViolation("Real-time service sent unexpected message.")

    return codec.decode_session_begins(message)
