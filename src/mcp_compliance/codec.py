"""Frame codec: extract JSON-RPC messages from transport byte and event streams.

Two framings are supported:

* pipe framing (stdio): newline-delimited JSON, one message per line;
* event-stream framing (sse, streamable-http): ``data: `` prefixed lines of a
  ``text/event-stream`` body.

Decoders only observe. The relays forward the original bytes untouched, so
nothing here re-serializes a message. Anything that fails to parse or does not
qualify as a JSON-RPC message is dropped without an error: transports
interleave protocol traffic with banners, debug output and SSE control lines.
"""

import json
from typing import Any, Dict, List, Optional, Tuple, Union

from .models import JSONRPC_VERSION

SSE_DATA_PREFIX = "data: "


def _is_id(value: Any) -> bool:
    return isinstance(value, (str, int, float)) and not isinstance(value, bool)


def classify_message(value: Any) -> Optional[Dict[str, Any]]:
    """Return ``value`` if it qualifies as a JSON-RPC message, else ``None``.

    Qualifies: ``jsonrpc == "2.0"`` and one of
      - ``method`` present, ``id`` absent or a string/number;
      - ``result`` present with a string/number ``id``;
      - ``error`` present with a string/number ``id`` or ``id: null``.
    """
    if not isinstance(value, dict) or value.get("jsonrpc") != JSONRPC_VERSION:
        return None

    if "method" in value and ("id" not in value or _is_id(value["id"])):
        return value
    if "result" in value and _is_id(value.get("id")):
        return value
    if "error" in value and "id" in value and (value["id"] is None or _is_id(value["id"])):
        return value
    return None


def decode_line(line: Union[bytes, str]) -> Optional[Dict[str, Any]]:
    """Strictly parse one line as JSON and classify it."""
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError:
            return None

    text = line.strip()
    if not text:
        return None

    try:
        value = json.loads(text)
    except ValueError:
        return None
    return classify_message(value)


def decode_body(body: Union[bytes, str]) -> List[Dict[str, Any]]:
    """Decode an HTTP body holding a single JSON value.

    A JSON-RPC batch (array) yields each qualifying element in order.
    """
    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError:
            return []

    if not body.strip():
        return []

    try:
        value = json.loads(body)
    except ValueError:
        return []

    if isinstance(value, list):
        return [item for item in value if classify_message(item) is not None]

    message = classify_message(value)
    return [message] if message is not None else []


def decode_sse_line(line: Union[bytes, str]) -> Optional[Dict[str, Any]]:
    """Decode an event-stream line if it is a ``data: `` line carrying a message."""
    prefix = SSE_DATA_PREFIX.encode("ascii") if isinstance(line, bytes) else SSE_DATA_PREFIX
    if not line.startswith(prefix):
        return None
    return decode_line(line[len(prefix):])


class LineFramer:
    """Split a byte stream into ``\\n``-terminated lines.

    A partial trailing line is kept across chunk boundaries and only handed
    out by :meth:`flush` once the stream has closed.
    """

    def __init__(self):
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> List[bytes]:
        """Add a chunk and return the lines it completed (without ``\\n``)."""
        self._buffer.extend(chunk)
        if b"\n" not in chunk:
            return []

        *lines, rest = bytes(self._buffer).split(b"\n")
        self._buffer = bytearray(rest)
        return lines

    def flush(self) -> Optional[bytes]:
        """Return and clear the unterminated tail, if any."""
        if not self._buffer:
            return None
        tail = bytes(self._buffer)
        self._buffer.clear()
        return tail

    @property
    def pending(self) -> int:
        return len(self._buffer)


class PipeDecoder:
    """Decode newline-delimited JSON-RPC from one direction of a pipe."""

    def __init__(self):
        self._framer = LineFramer()

    def feed(self, chunk: bytes) -> List[Dict[str, Any]]:
        messages = []
        for line in self._framer.feed(chunk):
            message = decode_line(line)
            if message is not None:
                messages.append(message)
        return messages

    def close(self) -> List[Dict[str, Any]]:
        """Attempt the buffered tail as JSON now that the stream has ended."""
        tail = self._framer.flush()
        if tail is None:
            return []
        message = decode_line(tail)
        return [message] if message is not None else []


class EventStreamDecoder:
    """Split a ``text/event-stream`` byte stream into lines and decode ``data:`` lines.

    :meth:`feed` returns ``(line, message)`` pairs for every complete line so
    the caller can forward each line immediately. ``line`` is the raw bytes
    without the ``\\n``; ``message`` is ``None`` for comments, ``event:``/``id:``
    fields, blank separators, non-JSON data and lines that are not UTF-8.
    """

    def __init__(self):
        self._framer = LineFramer()

    def feed(self, chunk: bytes) -> List[Tuple[bytes, Optional[Dict[str, Any]]]]:
        return [(line, decode_sse_line(line)) for line in self._framer.feed(chunk)]

    def close(self) -> Optional[Tuple[bytes, Optional[Dict[str, Any]]]]:
        """Return the unterminated final line, if the stream ended mid-line."""
        tail = self._framer.flush()
        if tail is None:
            return None
        return tail, decode_sse_line(tail)
