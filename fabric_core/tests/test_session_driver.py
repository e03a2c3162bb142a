import io

import pytest

from fabric_core.agents.session_driver import SessionDriver
from fabric_core.domain.exceptions import ApiError, NetworkError
from fabric_core.domain.models import Pattern, ProviderReply, StreamResponse
from fabric_core.domain.session import QueryEntry, ReplyEntry
from fabric_core.infrastructure.storage.yaml_store import SessionManager
from fabric_core.providers.stream_decoder import BLOCK_SEPARATOR, StreamChannel


PATTERN = Pattern(name="summarize", system="Summarize the input.")


class FakeClient:
    name = "fake"
    model = "fake-model"

    def __init__(self, chunks=(), error=None, body="ok", send_error=None):
        self._chunks = list(chunks)
        self._error = error
        self._body = body
        self._send_error = send_error
        self.seen = None

    def send_message(self, pattern, session):
        self.seen = list(session.messages)
        if self._send_error:
            raise self._send_error
        return ProviderReply(meta={"id": "msg_1"}, body=self._body)

    def stream_message(self, pattern, session):
        self.seen = list(session.messages)
        channel = StreamChannel(maxsize=len(self._chunks) + 2)
        for chunk in self._chunks:
            channel.put(chunk)
        if self._error:
            channel.put(self._error)
        channel.finish()
        return StreamResponse(meta={"id": "msg_1"}, channel=channel)


class CountingOut(io.StringIO):
    def __init__(self):
        super().__init__()
        self.flushes = 0

    def flush(self):
        self.flushes += 1
        super().flush()


def test_send_message_records_query_and_reply(tmp_path):
    manager = SessionManager(tmp_path)
    out = io.StringIO()
    client = FakeClient(body="a summary")
    with manager.get_session("s") as session:
        reply = SessionDriver(session, client).send_message(PATTERN, "long text", out)
    assert reply.body == "a summary"
    assert out.getvalue() == "a summary\n"
    # Provider 看到的历史已经包含本次输入
    assert client.seen == [QueryEntry(content="long text", pattern="summarize")]
    with manager.load_session("s") as session:
        assert session.messages == [
            QueryEntry(content="long text", pattern="summarize"),
            ReplyEntry(content="a summary"),
        ]


def test_send_failure_keeps_query(tmp_path):
    manager = SessionManager(tmp_path)
    client = FakeClient(send_error=NetworkError(code="NETWORK_ERROR", message="down"))
    with manager.get_session("s") as session:
        with pytest.raises(NetworkError):
            SessionDriver(session, client).send_message(PATTERN, "text", io.StringIO())
    with manager.load_session("s") as session:
        assert session.messages == [QueryEntry(content="text", pattern="summarize")]


def test_stream_message_writes_each_chunk_and_records_reply(tmp_path):
    manager = SessionManager(tmp_path)
    out = CountingOut()
    with manager.get_session("s") as session:
        meta = SessionDriver(session, FakeClient(chunks=["Hel", "lo", "\n\n"])).stream_message(PATTERN, "hi", out)
    assert meta == {"id": "msg_1"}
    assert out.getvalue() == "Hello\n\n"
    assert out.flushes >= 3
    with manager.load_session("s") as session:
        assert session.messages == [
            QueryEntry(content="hi", pattern="summarize"),
            ReplyEntry(content="Hello\n\n"),
        ]


def test_stream_error_keeps_partial_output_and_skips_reply(tmp_path):
    manager = SessionManager(tmp_path)
    out = io.StringIO()
    error = ApiError(code="overloaded_error", message="Overloaded")
    with manager.get_session("s") as session:
        with pytest.raises(ApiError):
            SessionDriver(session, FakeClient(chunks=["part"], error=error)).stream_message(PATTERN, "hi", out)
        assert session.messages == [QueryEntry(content="hi", pattern="summarize")]
    assert out.getvalue() == "part"
    with manager.load_session("s") as session:
        assert session.messages == [QueryEntry(content="hi", pattern="summarize")]


def test_stream_with_dummy_session_does_not_accumulate(tmp_path):
    manager = SessionManager(tmp_path)
    before = manager.list_sessions()
    out = io.StringIO()
    session = manager.get_session(None)
    driver = SessionDriver(session, FakeClient(chunks=["a", "b"]))
    driver.stream_message(PATTERN, "hi", out)
    assert out.getvalue() == "ab"
    assert driver.is_dummy
    assert driver.messages == [QueryEntry(content="hi", pattern="summarize")]
    assert manager.list_sessions() == before
    assert list(tmp_path.iterdir()) == []


def test_stream_without_chunks_records_no_reply(tmp_path):
    manager = SessionManager(tmp_path)
    with manager.get_session("s") as session:
        SessionDriver(session, FakeClient(chunks=[])).stream_message(PATTERN, "hi", io.StringIO())
        assert session.messages == [QueryEntry(content="hi", pattern="summarize")]


def test_two_streamed_exchanges_reload_intact(tmp_path):
    manager = SessionManager(tmp_path)
    for text in ("first", "second"):
        with manager.get_session("chat") as session:
            SessionDriver(session, FakeClient(chunks=["Hi", BLOCK_SEPARATOR])).stream_message(PATTERN, text, io.StringIO())
    with manager.get_session("chat") as session:
        assert session.messages == [
            QueryEntry(content="first", pattern="summarize"),
            ReplyEntry(content="Hi\n\n"),
            QueryEntry(content="second", pattern="summarize"),
            ReplyEntry(content="Hi\n\n"),
        ]
    assert not (tmp_path / "chat.yml.bak").exists()
