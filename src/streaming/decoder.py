"""Incremental decoder for streamed JSON records.

Network chunks are not aligned to record boundaries: a chunk may hold half
a record, several records, or SSE framing around them. The decoder scans
for balanced top-level objects, string- and escape-aware, and keeps any
partial record buffered until the rest arrives. A record left unfinished
when a new SSE frame starts is dropped so the stream can resynchronise.
"""

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

_FRAME_START = "data:"


class RecordDecoder:
    """Split a character stream into decoded JSON objects.

    Text outside of objects (``data:`` prefixes, newlines, keep-alives) is
    skipped. A balanced object that fails to parse is logged and dropped
    without stopping the stream.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._pos = 0
        self._depth = 0
        self._in_string = False
        self._escape = False

    @property
    def pending(self) -> bool:
        """Whether part of an unfinished record is buffered."""
        return self._depth > 0

    def feed(self, text: str) -> list[dict[str, Any]]:
        """Add a chunk of text and return every record it completes.

        Args:
            text: Next decoded chunk of the response body.

        Returns:
            Completed records in transmission order.
        """
        self._buffer += text
        buf = self._buffer
        records: list[dict[str, Any]] = []
        start = 0 if self._depth else -1
        i = self._pos

        while i < len(buf):
            ch = buf[i]
            if self._depth and ch == "\n":
                boundary = _frame_boundary(buf, i)
                if boundary is None:
                    break
                if boundary:
                    logger.warning(
                        f"Dropping truncated stream record ({i - start} chars) at frame boundary"
                    )
                    self._reset_record()
                    start = -1
                    i += 1
                    continue
            if self._depth == 0:
                if ch == "{":
                    start = i
                    self._depth = 1
            elif self._in_string:
                if self._escape:
                    self._escape = False
                elif ch == "\\":
                    self._escape = True
                elif ch == '"':
                    self._in_string = False
            elif ch == '"':
                self._in_string = True
            elif ch == "{":
                self._depth += 1
            elif ch == "}":
                self._depth -= 1
                if self._depth == 0:
                    record = self._load(buf[start : i + 1])
                    if record is not None:
                        records.append(record)
            i += 1

        # Keep only the unfinished record, rescanning resumes where we stopped
        if self._depth:
            self._buffer = buf[start:]
            self._pos = i - start
        else:
            self._buffer = ""
            self._pos = 0
        return records

    def close(self) -> None:
        """Finish the stream, discarding any incomplete trailing record."""
        if self._depth:
            logger.warning(
                f"Discarding incomplete stream record ({len(self._buffer)} chars)"
            )
        self._buffer = ""
        self._pos = 0
        self._reset_record()

    def _reset_record(self) -> None:
        self._depth = 0
        self._in_string = False
        self._escape = False

    @staticmethod
    def _load(raw: str) -> dict[str, Any] | None:
        try:
            record = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping malformed stream record: {e}")
            return None
        return record


def _frame_boundary(buf: str, i: int) -> bool | None:
    """Whether the newline at ``buf[i]`` starts a new SSE frame.

    Raw newlines never occur inside a JSON string, so a blank line or a new
    ``data:`` line means the record being scanned was cut short.

    Returns:
        True or False, or None while too little text has arrived to tell.
    """
    rest = buf[i + 1 : i + 1 + len(_FRAME_START)]
    if rest.startswith(("\n", "\r\n")) or rest.startswith(_FRAME_START):
        return True
    if len(rest) < len(_FRAME_START) and (
        _FRAME_START.startswith(rest) or "\r\n".startswith(rest)
    ):
        return None
    return False
