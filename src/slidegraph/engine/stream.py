"""Event streaming: producer thread to consumer iterator, SSE framing and decoding."""

from __future__ import annotations

import codecs
import json
import logging
import queue
import threading
from collections.abc import Callable, Iterable, Iterator
from typing import Any

from pydantic import BaseModel, ValidationError

from slidegraph.engine.cancel import CancelToken, GenerationCancelled
from slidegraph.models import ErrorEvent, event_adapter, is_terminal

logger = logging.getLogger(__name__)

DEFAULT_MAX_BUFFER = 64
_PUT_POLL_SECS = 0.25
_END = object()

Routine = Callable[[Callable[[BaseModel], None]], Any]


class EventStream:
    """Run ``routine(emit)`` on a worker thread and iterate the events it emits.

    The queue is bounded, so a slow consumer blocks the producer instead of
    buffering without limit. Iteration always ends with exactly one terminal
    event (``done`` or ``error``). Closing the iterator before the end
    cancels ``cancel``.
    """

    def __init__(
        self,
        routine: Routine,
        cancel: CancelToken | None = None,
        max_buffer: int = DEFAULT_MAX_BUFFER,
    ) -> None:
        self._routine = routine
        self.cancel = cancel or CancelToken()
        self._queue: queue.Queue = queue.Queue(maxsize=max_buffer)
        self._lock = threading.Lock()
        self._terminal_sent = False
        self._started = False

    def emit(self, event: BaseModel) -> None:
        with self._lock:
            if self._terminal_sent:
                logger.debug("Dropping %s emitted after terminal event", getattr(event, "type", "?"))
                return
            if is_terminal(event):
                self._terminal_sent = True
        self._put(event)

    def _put(self, item: object) -> None:
        while True:
            # Consumer gone: stop producing instead of blocking forever
            if self.cancel.cancelled and item is not _END and not is_terminal(item):
                return
            try:
                self._queue.put(item, timeout=_PUT_POLL_SECS)
                return
            except queue.Full:
                if self.cancel.cancelled:
                    return

    def _finish_with_error(self, message: str) -> None:
        with self._lock:
            if self._terminal_sent:
                return
            self._terminal_sent = True
        self._put(ErrorEvent(message=message))

    def _run(self) -> None:
        try:
            self._routine(self.emit)
        except GenerationCancelled:
            logger.info("Generation cancelled")
            self._finish_with_error("Generation cancelled")
        except Exception as e:
            logger.exception("Generation failed")
            self._finish_with_error(str(e) or type(e).__name__)
        else:
            self._finish_with_error("Generation ended without a result")
        finally:
            self._put(_END)

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._started = True
        threading.Thread(target=self._run, name="event-stream", daemon=True).start()

    def __iter__(self) -> Iterator[BaseModel]:
        self.start()
        finished = False
        try:
            while True:
                item = self._queue.get()
                if item is _END:
                    finished = True
                    return
                yield item
        finally:
            if not finished:
                logger.info("Event stream closed by consumer; cancelling")
                self.cancel.cancel()


def format_sse(event: BaseModel | dict) -> str:
    payload = event.to_wire() if hasattr(event, "to_wire") else event
    return f"data: {json.dumps(payload)}\n\n"


def sse_frames(events: Iterable[BaseModel]) -> Iterator[str]:
    for event in events:
        yield format_sse(event)


def parse_event(data: Any) -> BaseModel | None:
    """Validate a decoded frame into a generation event; None for unknown shapes."""
    try:
        return event_adapter.validate_python(data)
    except ValidationError as e:
        logger.debug("Ignoring unrecognized event: %s", e.errors()[:1])
        return None


class SSEDecoder:
    """Incremental decoder for ``data: <json>`` frames.

    Chunks may split anywhere, including inside a multi-byte character.
    Lines that are not ``data:`` lines and payloads that are not valid JSON
    are skipped.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes | str) -> list[Any]:
        if isinstance(chunk, bytes):
            chunk = self._utf8.decode(chunk)
        self._buffer += chunk
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return [p for p in (self._parse_line(line) for line in lines) if p is not None]

    def close(self) -> list[Any]:
        """Flush a final line left without a trailing newline."""
        tail = self._buffer + self._utf8.decode(b"", final=True)
        self._buffer = ""
        parsed = self._parse_line(tail)
        return [] if parsed is None else [parsed]

    @staticmethod
    def _parse_line(line: str) -> Any:
        line = line.rstrip("\r")
        if not line.startswith("data:"):
            return None
        raw = line[5:].strip()
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed SSE payload: %r", raw[:80])
            return None


def iter_sse_events(chunks: Iterable[bytes]) -> Iterator[BaseModel]:
    """Decode a byte stream into generation events, skipping unknown ones."""
    decoder = SSEDecoder()
    for chunk in chunks:
        for data in decoder.feed(chunk):
            event = parse_event(data)
            if event is not None:
                yield event
    for data in decoder.close():
        event = parse_event(data)
        if event is not None:
            yield event
