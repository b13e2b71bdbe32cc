"""
Incremental JSON decoding for the export response body.

The export endpoint answers with one JSON object per line, potentially
gigabytes of them. JSONStreamDecoder turns arbitrary byte chunks into
complete objects without ever holding more than one partial record plus one
chunk in memory. Whitespace-separated concatenated objects (and objects
pretty-printed across several lines) are accepted as well.
"""

import codecs
import json
import re
from typing import Any

from core.errors.exceptions import StreamDecodeError

_WHITESPACE = re.compile(r"[ \t\n\r]*")
_BOM = "﻿"


class JSONStreamDecoder:
    """
    Push-style decoder: feed() bytes, get back every object completed so far.

    Only text up to the last newline is parsed on each feed. JSON strings
    cannot contain a raw newline, so a parse error that stops short of the
    end of that segment means the stream is corrupt, while an error at the
    very end only means the object continues in a later chunk.

    Offsets reported in errors are character positions in the decoded
    stream.
    """

    def __init__(self) -> None:
        self._decoder = json.JSONDecoder()
        self._utf8 = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""
        self._offset = 0
        self._started = False
        self._closed = False
        self.objects_decoded = 0

    @property
    def offset(self) -> int:
        """Characters consumed so far."""
        return self._offset

    @property
    def pending(self) -> int:
        """Characters buffered but not yet decoded."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[dict[str, Any]]:
        if self._closed:
            raise RuntimeError("JSONStreamDecoder is closed")
        try:
            text = self._utf8.decode(chunk)
        except UnicodeDecodeError as e:
            raise StreamDecodeError(
                "Export stream is not valid UTF-8",
                offset=self._offset + len(self._buffer),
                cause=e,
            ) from e
        self._append(text)
        return self._drain(final=False)

    def close(self) -> list[dict[str, Any]]:
        """Flush the tail at end of stream; a partial trailing record is an error."""
        if self._closed:
            return []
        self._closed = True
        try:
            text = self._utf8.decode(b"", final=True)
        except UnicodeDecodeError as e:
            raise StreamDecodeError(
                "Export stream ends inside a multi-byte UTF-8 sequence",
                offset=self._offset + len(self._buffer),
                cause=e,
            ) from e
        self._append(text)
        return self._drain(final=True)

    def _append(self, text: str) -> None:
        if not self._started and text:
            self._started = True
            if text.startswith(_BOM):
                text = text[1:]
                self._offset += 1
        self._buffer += text

    def _drain(self, final: bool) -> list[dict[str, Any]]:
        buf = self._buffer
        segment_end = len(buf) if final else buf.rfind("\n") + 1
        if segment_end == 0:
            return []

        segment = buf[:segment_end]
        objects: list[dict[str, Any]] = []
        pos = 0
        while True:
            pos = _WHITESPACE.match(segment, pos).end()
            if pos >= segment_end:
                break
            try:
                value, end = self._decoder.raw_decode(segment, pos)
            except json.JSONDecodeError as e:
                # Strings cannot hold a raw newline, so an unterminated one
                # runs to the end of the buffer
                incomplete = e.pos >= segment_end or e.msg.startswith("Unterminated string")
                if incomplete and not final:
                    # Record continues past the last newline
                    break
                if objects and not final:
                    # Hand back what decoded cleanly; the bad record raises on the next call
                    break
                self._consume(pos)
                if incomplete:
                    raise StreamDecodeError(
                        "Export stream ends with a truncated record",
                        offset=self._offset,
                        cause=e,
                    ) from e
                raise StreamDecodeError(
                    f"Malformed JSON record in export stream: {e.msg}",
                    offset=self._offset,
                    cause=e,
                ) from e

            if not isinstance(value, dict):
                if objects and not final:
                    break
                self._consume(pos)
                raise StreamDecodeError(
                    f"Expected a JSON object per record, got {type(value).__name__}",
                    offset=self._offset,
                )
            objects.append(value)
            self.objects_decoded += 1
            pos = end

        self._consume(pos)
        return objects

    def _consume(self, count: int) -> None:
        self._offset += count
        self._buffer = self._buffer[count:]


__all__ = ["JSONStreamDecoder"]
