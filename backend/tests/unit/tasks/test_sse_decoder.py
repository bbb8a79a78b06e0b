"""
Unit tests for SSE decoding and stream consumption.

Tests verify:
- Events split across chunk boundaries (including inside a UTF-8 sequence)
- Malformed and non-data lines are skipped
- HTTP error messages come from the JSON error field when present
- Error events fail the operation after the stream ends
"""

import pytest

from tasks.sse import OperationError, SSELineDecoder, consume_output_stream, consume_sse_stream
from tests.conftest import FakeResponse, sse

URL = "http://compoza/api/projects/web/pull"


class TestSSELineDecoder:

    def test_event_split_across_chunks(self):
        decoder = SSELineDecoder()
        assert decoder.feed(b'data: {"type": "out') == []
        assert decoder.feed(b'put", "data": "x"}\n\n') == [{"type": "output", "data": "x"}]

    def test_multibyte_character_split(self):
        payload = 'data: {"data": "pulled ✓"}\n'.encode()
        split = payload.index("✓".encode()) + 1

        decoder = SSELineDecoder()
        events = decoder.feed(payload[:split]) + decoder.feed(payload[split:])

        assert events == [{"data": "pulled ✓"}]

    def test_skips_malformed_and_non_data_lines(self):
        decoder = SSELineDecoder()
        events = decoder.feed(
            b': keepalive\n'
            b'event: progress\n'
            b'data: {not json}\n'
            b'data: [1, 2]\n'
            b'data: {"type": "done"}\r\n'
        )
        assert events == [{"type": "done"}]

    def test_flush_parses_unterminated_line(self):
        decoder = SSELineDecoder()
        assert decoder.feed(b'data: {"type": "done"}') == []
        assert decoder.flush() == [{"type": "done"}]
        assert decoder.flush() == []


class TestConsumeSseStream:

    @pytest.mark.asyncio
    async def test_dispatches_events_and_sends_body(self, fake_session):
        body = sse({"type": "output", "data": "a"}, {"type": "done"})
        fake_session.add("POST", URL, FakeResponse(chunks=[body[:10], body[10:]]))
        events = []

        await consume_sse_stream(fake_session, URL, events.append, body={"build": True})

        assert events == [{"type": "output", "data": "a"}, {"type": "done"}]
        assert fake_session.calls[0].json == {"build": True}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response,message", [
        (FakeResponse(status=500, text='{"error": "Compose file invalid"}'), "Compose file invalid"),
        (FakeResponse(status=502, text="Bad Gateway"), "Bad Gateway"),
        (FakeResponse(status=500), "HTTP error: 500"),
    ])
    async def test_http_error_message(self, fake_session, response, message):
        fake_session.add("POST", URL, response)

        with pytest.raises(OperationError, match=message):
            await consume_sse_stream(fake_session, URL, lambda e: None)


class TestConsumeOutputStream:

    @pytest.mark.asyncio
    async def test_collects_output(self, fake_session):
        fake_session.add("POST", URL, FakeResponse(chunks=[sse(
            {"type": "output", "data": "Pulling nginx"},
            {"type": "output", "data": ""},
            {"type": "done"},
        )]))
        lines = []

        await consume_output_stream(fake_session, URL, lines.extend)

        assert lines == ["Pulling nginx"]

    @pytest.mark.asyncio
    async def test_error_event_raises_after_stream(self, fake_session):
        fake_session.add("POST", URL, FakeResponse(chunks=[sse(
            {"type": "output", "data": "Pulling nginx"},
            {"type": "error", "message": "manifest unknown"},
            {"type": "output", "data": "trailing"},
        )]))
        lines = []

        with pytest.raises(OperationError, match="manifest unknown"):
            await consume_output_stream(fake_session, URL, lines.extend)

        assert lines == ["Pulling nginx", "trailing"]
