"""Incremental Server-Sent-Events parsing.

The parser accepts text in arbitrary chunks and yields complete events once
their terminating blank line has been seen. ``iter_events`` wraps it as a
pull-based async event source over an upstream text stream.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, List, Optional

DONE_SENTINEL = "[DONE]"

_BOM = "\ufeff"


@dataclass
class ServerSentEvent:
    event: str = "message"
    data: str = ""
    id: Optional[str] = None
    retry: Optional[int] = None


def fix_terminator_framing(text: str) -> str:
    """Make a bare ``[DONE]`` line end its event even without a blank line."""
    return text.replace(f"{DONE_SENTINEL}\n", f"{DONE_SENTINEL}\n\n")


class EventSourceParser:
    def __init__(self) -> None:
        self._buffer = ""
        self._started = False
        self._data: list[str] = []
        self._event_type = ""
        self._last_event_id: Optional[str] = None
        self._retry: Optional[int] = None

    def feed(self, text: str) -> List[ServerSentEvent]:
        if not self._started and text:
            self._started = True
            if text.startswith(_BOM):
                text = text[len(_BOM) :]
        self._buffer += text
        events: list[ServerSentEvent] = []
        for line in self._drain_lines():
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def _drain_lines(self) -> List[str]:
        lines: list[str] = []
        buf = self._buffer
        start = 0
        i = 0
        while i < len(buf):
            ch = buf[i]
            if ch == "\n":
                lines.append(buf[start:i])
                start = i + 1
            elif ch == "\r":
                if i + 1 == len(buf):
                    # Might be the first half of a CRLF split across chunks
                    break
                lines.append(buf[start:i])
                if buf[i + 1] == "\n":
                    i += 1
                start = i + 1
            i += 1
        self._buffer = buf[start:]
        return lines

    def _process_line(self, line: str) -> Optional[ServerSentEvent]:
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None
        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]
        if field == "data":
            self._data.append(value)
        elif field == "event":
            self._event_type = value
        elif field == "id":
            if "\0" not in value:
                self._last_event_id = value
        elif field == "retry":
            if value.isdigit():
                self._retry = int(value)
        return None

    def _dispatch(self) -> Optional[ServerSentEvent]:
        if not self._data:
            self._event_type = ""
            return None
        event = ServerSentEvent(
            event=self._event_type or "message",
            data="\n".join(self._data),
            id=self._last_event_id,
            retry=self._retry,
        )
        self._data = []
        self._event_type = ""
        return event


async def iter_events(chunks: AsyncIterable[str]) -> AsyncIterator[ServerSentEvent]:
    """Yield parsed events from an async stream of decoded text chunks."""
    parser = EventSourceParser()
    async for chunk in chunks:
        for event in parser.feed(fix_terminator_framing(chunk)):
            yield event
