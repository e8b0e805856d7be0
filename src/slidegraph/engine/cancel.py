"""Cooperative cancellation for generation jobs."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


class GenerationCancelled(Exception):
    """Raised inside a generation when its cancel token fires."""


class CancelToken:
    """Thread-safe, one-shot cancellation flag with abort callbacks.

    Callbacks registered with ``on_cancel`` run once, on the thread that
    calls ``cancel()`` (or immediately if the token already fired). They are
    used to abort in-flight transport requests where the transport allows it.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            try:
                cb()
            except Exception as e:
                logger.debug("cancel callback failed: %s", e)

    def on_cancel(self, cb: Callable[[], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(cb)
                return
        cb()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)
