"""Rate limiting for partial-slide updates."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")

_UNSET = object()


class PartialThrottle(Generic[T]):
    """Forward at most one value per ``interval`` seconds, always keeping the latest.

    The first value after a quiet period is emitted immediately (leading
    edge). Values arriving inside the interval replace each other and the
    last one is emitted when the interval ends (trailing edge) or on
    ``flush()``.
    """

    def __init__(
        self,
        sink: Callable[[T], None],
        interval: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sink = sink
        self._interval = interval
        self._clock = clock
        self._lock = threading.Lock()
        self._last_emit: float | None = None
        self._pending: object = _UNSET
        self._timer: threading.Timer | None = None
        self._closed = False

    def push(self, value: T) -> None:
        with self._lock:
            if self._closed:
                return
            now = self._clock()
            if self._last_emit is None or now - self._last_emit >= self._interval:
                self._cancel_timer()
                self._pending = _UNSET
                self._last_emit = now
                self._sink(value)
                return
            self._pending = value
            if self._timer is None:
                delay = self._interval - (now - self._last_emit)
                self._timer = threading.Timer(delay, self._on_timer)
                self._timer.daemon = True
                self._timer.start()

    def flush(self) -> None:
        """Emit the pending value now, if any."""
        with self._lock:
            self._cancel_timer()
            self._emit_pending()

    def close(self) -> None:
        """Drop any pending value and stop emitting."""
        with self._lock:
            self._cancel_timer()
            self._pending = _UNSET
            self._closed = True

    def _on_timer(self) -> None:
        with self._lock:
            self._timer = None
            if not self._closed:
                self._emit_pending()

    def _emit_pending(self) -> None:
        if self._pending is _UNSET:
            return
        value, self._pending = self._pending, _UNSET
        self._last_emit = self._clock()
        self._sink(value)  # type: ignore[arg-type]

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
