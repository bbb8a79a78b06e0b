"""
Server-sent events consumption for streaming operations.

Operation endpoints (project pull / up, container update) stream
`data: {json}` lines. The decoder buffers partial lines across chunk
boundaries and skips lines that don't parse; a malformed event never aborts
the stream.
"""

import codecs
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import aiohttp

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "


class OperationError(Exception):
    """An operation endpoint reported failure (HTTP error or an error event)."""


class SSELineDecoder:
    """
    Incremental decoder from raw byte chunks to parsed event dicts.

    Example:
        decoder = SSELineDecoder()
        decoder.feed(b'data: {"type": "out')   → []
        decoder.feed(b'put"}\\n\\n')           → [{"type": "output"}]
    """

    def __init__(self):
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> List[Dict[str, Any]]:
        self._buffer += self._utf8.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return [event for event in map(self._parse_line, lines) if event is not None]

    def flush(self) -> List[Dict[str, Any]]:
        """Parse whatever is left once the stream ends without a trailing newline."""
        self._buffer += self._utf8.decode(b"", final=True)
        remaining, self._buffer = self._buffer, ""
        event = self._parse_line(remaining)
        return [event] if event is not None else []

    @staticmethod
    def _parse_line(line: str) -> Optional[Dict[str, Any]]:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None
        try:
            event = json.loads(line[len(DATA_PREFIX):])
        except json.JSONDecodeError:
            logger.debug(f"Skipping malformed SSE line: {line[:100]}")
            return None
        return event if isinstance(event, dict) else None


async def _error_message(response: aiohttp.ClientResponse) -> str:
    try:
        text = await response.text()
    except (aiohttp.ClientError, UnicodeDecodeError):
        text = ""

    message = f"HTTP error: {response.status}"
    try:
        payload = json.loads(text)
        if isinstance(payload, dict) and payload.get("error"):
            message = payload["error"]
    except json.JSONDecodeError:
        if text:
            message = text
    return message


async def consume_sse_stream(
    session: aiohttp.ClientSession,
    url: str,
    on_event: Callable[[Dict[str, Any]], None],
    method: str = "POST",
    body: Any = None,
):
    """
    Stream an SSE endpoint, calling on_event for every parsed event.

    Args:
        session: aiohttp session
        url: Endpoint URL
        on_event: Callback per parsed event
        method: HTTP method (POST by default, as operations have side effects)
        body: Optional JSON body

    Raises:
        OperationError: non-OK response (message from the JSON `error` field when present)
        aiohttp.ClientError: connection failures
    """
    kwargs = {}
    if body is not None:
        kwargs["json"] = body

    async with session.request(method, url, timeout=aiohttp.ClientTimeout(total=None), **kwargs) as response:
        if response.status >= 400:
            raise OperationError(await _error_message(response))

        decoder = SSELineDecoder()
        async for chunk in response.content.iter_any():
            for event in decoder.feed(chunk):
                on_event(event)
        for event in decoder.flush():
            on_event(event)


async def consume_output_stream(
    session: aiohttp.ClientSession,
    url: str,
    append_output: Callable[[List[str]], None],
    method: str = "POST",
    body: Any = None,
):
    """
    Consume a stream of output / error / done events.

    Output lines go to append_output; an error event fails the operation
    once the stream has ended.

    Raises:
        OperationError: the stream reported an error event
    """
    stream_error: Optional[str] = None

    def on_event(event: Dict[str, Any]):
        nonlocal stream_error
        if event.get("type") == "output" and event.get("data"):
            append_output([event["data"]])
        elif event.get("type") == "error":
            stream_error = event.get("message") or "Operation failed"

    await consume_sse_stream(session, url, on_event, method=method, body=body)
    if stream_error:
        raise OperationError(stream_error)
