from urllib.parse import parse_qsl, urlsplit
from uuid import UUID

import pytest

from realtime_transcriber.domain.connection import (
    DEFAULT_ENDPOINT,
    ConnectionParams,
    build_connection_target,
    perform_handshake,
)
from realtime_transcriber.domain.dispatcher import Dispatcher, EventKind
from realtime_transcriber.domain.errors import ConfigurationError, HandshakeError, ProtocolViolation
from realtime_transcriber.domain.events import ClosureInfo, ErrorNotification
from realtime_transcriber.ports.transport import CloseFrame

from tests.conftest import (
    SESSION_ID,
    EventRecorder,
    FakeTransport,
    error_message,
    final_message,
    session_begins_message,
)


class TestConnectionParams:
    def test_requires_a_credential(self):
        with pytest.raises(ConfigurationError, match="required"):
            ConnectionParams(sample_rate=16000)

    def test_rejects_both_credentials(self):
        with pytest.raises(ConfigurationError, match="not both"):
            ConnectionParams(api_key="k", token="t")

    def test_rejects_negative_sample_rate(self):
        with pytest.raises(ConfigurationError):
            ConnectionParams(api_key="k", sample_rate=-1)

    def test_word_boost_is_stored_as_tuple(self):
        params = ConnectionParams(api_key="k", word_boost=["foo", "bar"])
        assert params.word_boost == ("foo", "bar")

    def test_default_endpoint(self):
        assert ConnectionParams(api_key="k").endpoint == DEFAULT_ENDPOINT


class TestBuildConnectionTarget:
    def test_api_key_goes_in_authorization_header(self, api_key_params):
        target = build_connection_target(api_key_params)
        assert target.headers == {"Authorization": "secret-key"}
        assert target.url == f"{DEFAULT_ENDPOINT}?sample_rate=16000"

    def test_token_goes_in_query_without_header(self, token_params):
        target = build_connection_target(token_params)
        assert target.headers == {}
        assert target.url == f"{DEFAULT_ENDPOINT}?sample_rate=16000&token=temp-token"

    def test_word_boost_is_json_and_url_encoded(self):
        params = ConnectionParams(api_key="k", sample_rate=8000, word_boost=("foo", "bar baz"))
        target = build_connection_target(params)

        query = dict(parse_qsl(urlsplit(target.url).query))
        assert query["word_boost"] == '["foo","bar baz"]'
        assert " " not in target.url
        assert "%5B%22foo%22%2C%22bar%20baz%22%5D" in target.url

    def test_parameter_order(self):
        params = ConnectionParams(
            token="t", sample_rate=16000, word_boost=("x",), encoding="pcm_s16le"
        )
        target = build_connection_target(params)
        keys = [key for key, _ in parse_qsl(urlsplit(target.url).query)]
        assert keys == ["sample_rate", "word_boost", "encoding", "token"]

    def test_sample_rate_omitted_when_unset(self):
        target = build_connection_target(ConnectionParams(api_key="k"))
        assert target.url == DEFAULT_ENDPOINT

    def test_custom_endpoint_with_existing_query(self):
        params = ConnectionParams(
            api_key="k", sample_rate=16000, endpoint="ws://localhost:9000/ws?region=eu"
        )
        target = build_connection_target(params)
        assert target.url == "ws://localhost:9000/ws?region=eu&sample_rate=16000"


class TestHandshake:
    @pytest.mark.asyncio
    async def test_session_begins(self):
        transport = FakeTransport([session_begins_message()])
        info = await perform_handshake(transport, Dispatcher())
        assert info.session_id == UUID(SESSION_ID)
        assert info.expires_at.year == 2024

    @pytest.mark.asyncio
    async def test_error_then_close_raises_handshake_error(self):
        transport = FakeTransport([error_message("Not authorized"), CloseFrame(4001, "Not Authorized")])
        dispatcher = Dispatcher()
        events = EventRecorder()
        dispatcher.subscribe(EventKind.ERROR, events.recorder("error"))
        dispatcher.subscribe(EventKind.CLOSED, events.recorder("closed"))

        with pytest.raises(HandshakeError) as excinfo:
            await perform_handshake(transport, dispatcher)

        assert excinfo.value.message == "Not authorized"
        assert events.events == [
            ("error", ErrorNotification("Not authorized")),
            ("closed", ClosureInfo(4001, "Not Authorized")),
        ]

    @pytest.mark.asyncio
    async def test_error_without_close_is_protocol_violation(self):
        transport = FakeTransport([error_message("bad"), session_begins_message()])
        with pytest.raises(ProtocolViolation, match="Expected close message"):
            await perform_handshake(transport, Dispatcher())

    @pytest.mark.asyncio
    async def test_close_frame_first_emits_closure(self):
        transport = FakeTransport([CloseFrame(4008, "Session expired")])
        dispatcher = Dispatcher()
        events = EventRecorder()
        dispatcher.subscribe(EventKind.CLOSED, events.recorder("closed"))

        with pytest.raises(ProtocolViolation, match="Unexpected close"):
            await perform_handshake(transport, dispatcher)

        assert events.of("closed") == [ClosureInfo(4008, "Session expired")]

    @pytest.mark.asyncio
    async def test_wrong_first_message(self):
        transport = FakeTransport([final_message("too early")])
        with pytest.raises(ProtocolViolation, match="unexpected message"):
            await perform_handshake(transport, Dispatcher())

    @pytest.mark.asyncio
    async def test_malformed_first_message(self):
        transport = FakeTransport(["{not json"])
        with pytest.raises(ProtocolViolation, match="malformed"):
            await perform_handshake(transport, Dispatcher())
