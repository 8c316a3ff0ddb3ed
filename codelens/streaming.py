"""
Incremental decoder for chat-completion event streams.

The gateway answers a streaming request with lines of the form
``data: {"choices": [{"delta": {"content": "..."}}]}`` terminated by
``data: [DONE]``. Network chunks may split those lines anywhere, so the
decoder buffers text until a full line is available before looking at it.
"""

import codecs
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterable, AsyncIterator, List, Optional, Union

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


class EventType(str, Enum):
    CONTENT_DELTA = "content-delta"
    DONE = "done"
    IGNORABLE = "ignorable"


@dataclass(frozen=True)
class Event:
    type: EventType
    text: str = ""


IGNORABLE_EVENT = Event(EventType.IGNORABLE)
DONE_EVENT = Event(EventType.DONE)


@dataclass
class DecoderState:
    """Text received but not yet framed into lines, for one stream."""

    buffer: str = ""
    # Line that failed to parse on the previous feed and was pushed back.
    retry_line: Optional[str] = None
    closed: bool = False


def extract_delta(document) -> Optional[str]:
    """Return ``choices[0].delta.content`` when it is a non-empty string."""
    try:
        content = document["choices"][0]["delta"]["content"]
    except (KeyError, IndexError, TypeError):
        return None
    if isinstance(content, str) and content:
        return content
    return None


def classify_line(line: str) -> Optional[Event]:
    """
    Turn one complete protocol line into an event.

    Returns None when the payload is not valid JSON, which the caller treats
    as a possibly truncated line.
    """
    if not line or line.startswith(":"):
        return IGNORABLE_EVENT
    if not line.startswith(DATA_PREFIX):
        return IGNORABLE_EVENT

    payload = line[len(DATA_PREFIX):].strip()
    if payload == DONE_SENTINEL:
        return DONE_EVENT

    try:
        document = json.loads(payload)
    except ValueError:
        return None

    delta = extract_delta(document)
    if delta is None:
        return IGNORABLE_EVENT
    return Event(EventType.CONTENT_DELTA, delta)


class StreamDecoder:
    """
    Frames a chunked event stream into ordered content deltas.

    One decoder serves exactly one stream and is driven by the task reading
    the transport. It never raises for malformed protocol content.
    """

    def __init__(self):
        self.state = DecoderState()
        self._bytes_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def closed(self) -> bool:
        return self.state.closed

    def feed(self, chunk: Union[str, bytes]) -> List[Event]:
        """
        Append a chunk and return the events of every line it completes.

        Only content-delta and done events are returned. A trailing partial
        line stays buffered for the next call.
        """
        if self.state.closed:
            return []

        if isinstance(chunk, bytes):
            chunk = self._bytes_decoder.decode(chunk)
        if not chunk:
            return []

        retry_line = self.state.retry_line
        self.state.retry_line = None
        return self._frame(self.state.buffer + chunk, retry_line, final=False)

    def finish(self) -> List[Event]:
        """
        Mark end of stream and return the events of lines still buffered.

        A pushed-back line gets no further chance and is dropped. Complete
        lines after it are framed as usual; only an unterminated trailing
        line is discarded.
        """
        if self.state.closed:
            return []

        tail = self._bytes_decoder.decode(b"", final=True)
        self.state.retry_line = None
        events = self._frame(self.state.buffer + tail, None, final=True)
        if self.state.buffer:
            logging.debug(
                f"Discarding {len(self.state.buffer)} unframed characters at end of stream"
            )
        self._close()
        return events

    def _frame(self, buffer: str, retry_line: Optional[str], final: bool) -> List[Event]:
        state = self.state
        events: List[Event] = []
        pos = 0
        while True:
            newline = buffer.find("\n", pos)
            if newline == -1:
                break

            line = buffer[pos:newline]
            if line.endswith("\r"):
                line = line[:-1]

            event = classify_line(line)
            if event is None:
                if not final and line != retry_line:
                    # Leave the line at the front of the buffer and wait for
                    # the next chunk before trying it again.
                    state.retry_line = line
                    break
                logging.debug(f"Dropping malformed stream line: {line[:200]!r}")
                event = IGNORABLE_EVENT

            retry_line = None
            pos = newline + 1

            if event.type is EventType.DONE:
                events.append(event)
                self._close()
                return events
            if event.type is EventType.CONTENT_DELTA:
                events.append(event)

        state.buffer = buffer[pos:]
        return events

    def _close(self) -> None:
        self.state.buffer = ""
        self.state.retry_line = None
        self.state.closed = True


async def decode_stream(chunks: AsyncIterable[Union[str, bytes]]) -> AsyncIterator[str]:
    """Yield delta text from a chunk stream until the done sentinel or its end."""
    decoder = StreamDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            if event.type is EventType.CONTENT_DELTA:
                yield event.text
        if decoder.closed:
            return
    for event in decoder.finish():
        if event.type is EventType.CONTENT_DELTA:
            yield event.text
