"""Unit tests for the event stream decoder and client."""

import asyncio

import httpx
import pytest

from swupgrade.services.event_stream import (
    ConnectionState,
    EventStreamClient,
    EventStreamDecoder,
)

STREAM_URL = "http://device.test/ubus/subscribe/swupdate?sid"


def _feed(decoder, text):
    events = []
    for line in text.split("\n"):
        event = decoder.feed_line(line)
        if event is not None:
            events.append(event)
    return events


def _stream_response(body: bytes, status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code, content=body, headers={"Content-Type": "text/event-stream"}
    )


@pytest.mark.unit
class TestEventStreamDecoder:
    """Test the line protocol decoder in isolation."""

    def test_single_record(self):
        decoder = EventStreamDecoder()

        events = _feed(decoder, 'event: info\ndata: {"msg": "hi"}\n\n')

        assert len(events) == 1
        assert events[0].type == "info"
        assert events[0].data == '{"msg": "hi"}'
        assert events[0].id is None

    def test_multiple_data_lines_join_with_newline(self):
        events = _feed(EventStreamDecoder(), "data: first\ndata: second\ndata:third\n\n")

        assert events[0].data == "first\nsecond\nthird"
        assert events[0].type == "message"

    def test_id_is_attached_and_kept(self):
        decoder = EventStreamDecoder()

        events = _feed(decoder, "id: 7\nevent: progress\ndata: a\n\nevent: info\ndata: b\n\n")

        assert [e.id for e in events] == ["7", "7"]
        assert decoder.last_event_id == "7"

    def test_bare_id_resets_cursor(self):
        decoder = EventStreamDecoder()
        _feed(decoder, "id: 7\ndata: a\n\n")

        _feed(decoder, "id\ndata: b\n\n")

        assert decoder.last_event_id is None

    def test_retry_updates_interval(self):
        decoder = EventStreamDecoder()

        _feed(decoder, "retry: 1500\n\nretry: soon\n\n")

        assert decoder.retry_ms == 1500

    def test_record_without_data_is_dropped(self):
        events = _feed(EventStreamDecoder(), "event: info\n\n: keepalive\n\nfoo: bar\n\n")

        assert events == []

    def test_type_does_not_leak_into_next_record(self):
        events = _feed(EventStreamDecoder(), "event: info\n\ndata: x\n\n")

        assert len(events) == 1
        assert events[0].type == "message"

    def test_reset_drops_partial_record(self):
        decoder = EventStreamDecoder()
        _feed(decoder, "event: info\ndata: partial")

        decoder.reset()
        events = _feed(decoder, "\n")

        assert events == []

    def test_crlf_lines(self):
        decoder = EventStreamDecoder()

        assert decoder.feed_line("event: info\r") is None
        assert decoder.feed_line("data: x\r") is None
        event = decoder.feed_line("\r")

        assert event.type == "info"
        assert event.data == "x"


@pytest.mark.unit
class TestEventStreamClient:
    """Test EventStreamClient against httpx.MockTransport."""

    @pytest.mark.asyncio
    async def test_connects_and_dispatches(self):
        body = (
            b'event: info\ndata: {"msg": "hello"}\n\n'
            b": comment\n\n"
            b'event: progress\nid: 3\ndata: {"status": 8}\n\n'
        )
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: _stream_response(body))
        )
        stream = EventStreamClient(STREAM_URL, client=client, retry_interval=1.0)
        received = []
        got_progress = asyncio.Event()
        opened = []

        stream.on_open = lambda: opened.append(True)
        stream.add_listener("info", received.append)
        stream.add_listener("progress", lambda e: (received.append(e), got_progress.set()))

        await stream.connect()
        await asyncio.wait_for(got_progress.wait(), 1.0)
        await stream.close()
        await client.aclose()

        assert opened == [True]
        assert [e.type for e in received] == ["info", "progress"]
        assert received[1].id == "3"

    @pytest.mark.asyncio
    async def test_sends_stream_headers(self):
        seen = []
        done = asyncio.Event()

        def handler(request):
            seen.append(request)
            done.set()
            return _stream_response(b"")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        stream = EventStreamClient(STREAM_URL, client=client, retry_interval=1.0)

        await stream.connect()
        await asyncio.wait_for(done.wait(), 1.0)
        await stream.close()
        await client.aclose()

        assert seen[0].headers["Accept"] == "text/event-stream"
        assert seen[0].headers["Cache-Control"] == "no-cache"
        assert "Last-Event-ID" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_reconnects_with_last_event_id(self):
        requests = []
        reconnected = asyncio.Event()

        def handler(request):
            requests.append(request)
            if len(requests) == 1:
                return _stream_response(b"retry: 10\nid: 42\nevent: info\ndata: x\n\n")
            reconnected.set()
            return _stream_response(b"")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        stream = EventStreamClient(STREAM_URL, client=client, retry_interval=5.0)

        await stream.connect()
        # retry: 10 overrides the 5s default
        await asyncio.wait_for(reconnected.wait(), 1.0)
        await stream.close()
        await client.aclose()

        assert requests[1].headers["Last-Event-ID"] == "42"
        assert stream.last_event_id == "42"

    @pytest.mark.asyncio
    async def test_http_error_returns_to_connecting(self):
        calls = []
        second = asyncio.Event()
        errors = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(502)
            second.set()
            return _stream_response(b"")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        stream = EventStreamClient(STREAM_URL, client=client, retry_interval=0.01)
        stream.on_error = errors.append

        await stream.connect()
        await asyncio.wait_for(second.wait(), 1.0)
        await stream.close()
        await client.aclose()

        assert isinstance(errors[0], httpx.HTTPStatusError)
        assert stream.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_stream(self):
        body = b"event: info\ndata: one\n\nevent: info\ndata: two\n\n"
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: _stream_response(body))
        )
        stream = EventStreamClient(STREAM_URL, client=client, retry_interval=1.0)
        seen = []
        second = asyncio.Event()

        def listener(event):
            seen.append(event.data)
            if event.data == "one":
                raise RuntimeError("listener bug")
            second.set()

        stream.add_listener("info", listener)

        await stream.connect()
        await asyncio.wait_for(second.wait(), 1.0)
        await stream.close()
        await client.aclose()

        assert seen[:2] == ["one", "two"]

    @pytest.mark.asyncio
    async def test_remove_listener(self):
        stream = EventStreamClient(STREAM_URL)
        received = []

        stream.add_listener("info", received.append)
        stream.remove_listener("info", received.append)
        stream.remove_listener("progress", received.append)

        assert stream._listeners["info"] == []

    @pytest.mark.asyncio
    async def test_wait_open(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: _stream_response(b": hi\n\n"))
        )
        stream = EventStreamClient(STREAM_URL, client=client, retry_interval=1.0)

        assert stream.state == ConnectionState.CONNECTING
        await stream.connect()
        assert await stream.wait_open(1.0) is True

        await stream.close()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: _stream_response(b""))
        )
        stream = EventStreamClient(STREAM_URL, client=client, retry_interval=0.01)
        closed = []
        stream.on_close = lambda: closed.append(True)

        await stream.connect()
        await stream.close()
        await stream.close()
        await client.aclose()

        assert stream.state == ConnectionState.CLOSED
        assert closed == [True]

    @pytest.mark.asyncio
    async def test_connect_after_close_fails(self):
        stream = EventStreamClient(STREAM_URL)

        await stream.close()

        with pytest.raises(RuntimeError, match="closed"):
            await stream.connect()
        assert await stream.wait_open(0.01) is False
