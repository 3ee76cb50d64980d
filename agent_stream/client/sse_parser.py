"""Incremental decoder turning raw stream chunks into typed stream events."""

from __future__ import annotations

import codecs
import json
from typing import List, Optional, Union

from agent_stream.domain.events import Done, Error, StreamEvent, event_from_payload
from agent_stream.streaming.frames import SSE_DONE_MESSAGE

PARSE_ERROR_MESSAGE = "Failed to parse SSE message"

_DATA_FIELD = "data:"


class SSEParser:
    """Stateful, line-oriented SSE decoder.

    Text that does not yet end in a newline is carried over to the next call,
    so frames split at any byte offset decode the same as unsplit input.
    Bytes are decoded incrementally; a multi-byte character cut in half is
    completed by the next chunk.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def pending(self) -> str:
        return self._buffer

    def parse(self, chunk: Union[str, bytes, bytearray]) -> List[StreamEvent]:
        if isinstance(chunk, (bytes, bytearray)):
            text = self._decoder.decode(bytes(chunk))
        else:
            text = chunk
        lines = (self._buffer + text).split("\n")
        self._buffer = lines.pop()
        return self._parse_lines(lines)

    def finish(self) -> List[StreamEvent]:
        """Flush whatever is left once the stream has ended."""

        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return self._parse_lines(tail.split("\n"))

    def _parse_lines(self, lines: List[str]) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        for line in lines:
            event = self._parse_line(line)
            if event is not None:
                events.append(event)
        return events

    @staticmethod
    def _parse_line(line: str) -> Optional[StreamEvent]:
        trimmed = line.strip()
        # comments, pings and other SSE fields are not ours to interpret
        if not trimmed.startswith(_DATA_FIELD):
            return None
        data = trimmed[len(_DATA_FIELD):].strip()
        if data == SSE_DONE_MESSAGE:
            return Done()
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            return Error(error=PARSE_ERROR_MESSAGE)
        return event_from_payload(payload)
