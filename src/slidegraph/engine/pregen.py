"""Speculative pre-generation of the slides a user is likely to open next."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from pydantic import BaseModel

from slidegraph.engine.cancel import CancelToken, GenerationCancelled
from slidegraph.models import (
    ConversationHistory,
    ConversationMessage,
    GenerationResult,
    Slide,
    SlidePartialEvent,
)

logger = logging.getLogger(__name__)

CONTINUE_PROMPT = "Continue to the next topic in the learning sequence."

Launcher = Callable[
    [str, Sequence[ConversationMessage], Callable[[BaseModel], None], CancelToken],
    "GenerationResult | None",
]
Listener = Callable[[str, BaseModel], None]


class PregenClaimError(Exception):
    """Raised when a speculative job is claimed twice."""


class PregenJob:
    """One background generation for a (node, prompt) pair."""

    def __init__(self, prompt: str, node_id: str) -> None:
        self.prompt = prompt
        self.node_id = node_id
        self.cancel = CancelToken()
        self.future: Future = Future()
        self.resulting_node_id: str | None = None
        self._lock = threading.Lock()
        # Serializes delivery so a replayed partial never overtakes a newer event
        self._delivery_lock = threading.Lock()
        self._claimed = False
        self._latest_partial: SlidePartialEvent | None = None
        self._listeners: list[Listener] = []

    @property
    def is_claimed(self) -> bool:
        return self._claimed

    @property
    def is_complete(self) -> bool:
        return self.future.done()

    def _result(self) -> GenerationResult | None:
        if not self.future.done() or self.future.cancelled() or self.future.exception() is not None:
            return None
        return self.future.result()

    @property
    def cached_slide(self) -> Slide | None:
        result = self._result()
        return result.slide if result else None

    @property
    def cached_history(self) -> ConversationHistory | None:
        result = self._result()
        return result.history if result else None

    def claim(self) -> None:
        """Atomically mark the job as taken by a navigation."""
        with self._lock:
            if self._claimed:
                raise PregenClaimError(f"job for {self.prompt!r} already claimed")
            self._claimed = True

    def subscribe(self, listener: Listener) -> None:
        """Forward this job's events to ``listener``, starting with the latest partial."""
        with self._delivery_lock:
            with self._lock:
                replay = self._latest_partial
                self._listeners.append(listener)
            if replay is not None and not self.cancel.cancelled:
                listener(self.prompt, replay)

    def wait(self, timeout: float | None = None) -> GenerationResult | None:
        return self.future.result(timeout)

    def emit(self, event: BaseModel) -> None:
        with self._delivery_lock:
            if self.cancel.cancelled:
                return
            with self._lock:
                if isinstance(event, SlidePartialEvent):
                    self._latest_partial = event
                listeners = list(self._listeners)
            for listener in listeners:
                listener(self.prompt, event)


class PregenCoordinator:
    """Keeps one set of speculative jobs, versioned by the node they branch from.

    The coordinator never persists anything: a claimed result is handed to
    the caller, which decides whether to store it.
    """

    def __init__(
        self,
        launch: Launcher,
        max_workers: int = 4,
        listener: Listener | None = None,
    ) -> None:
        self._launch = launch
        self._listener = listener
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pregen")
        self._lock = threading.Lock()
        self._node_id: str | None = None
        self._jobs: dict[str, PregenJob] = {}

    @property
    def current_node_id(self) -> str | None:
        return self._node_id

    def pregenerate(
        self,
        node_id: str,
        slide: Slide,
        history: Sequence[ConversationMessage],
        include_continue: bool = True,
    ) -> list[PregenJob]:
        """Replace the current job set with jobs for ``slide``'s actions."""
        prompts: list[str] = []
        for action in slide.actions:
            if action.prompt not in prompts:
                prompts.append(action.prompt)
        if include_continue and CONTINUE_PROMPT not in prompts:
            prompts.append(CONTINUE_PROMPT)

        history = tuple(history)
        with self._lock:
            self._invalidate_locked()
            self._node_id = node_id
            jobs = [PregenJob(p, node_id) for p in prompts]
            for job in jobs:
                self._jobs[job.prompt] = job
        for job in jobs:
            self._submit(job, history)
        logger.info("Pre-generating %d branch(es) from node %s", len(jobs), node_id)
        return jobs

    def _submit(self, job: PregenJob, history: ConversationHistory) -> None:
        if self._listener is not None:
            job.subscribe(self._listener)

        def run() -> GenerationResult | None:
            logger.debug("Pregen start: %r", job.prompt[:80])
            return self._launch(job.prompt, history, job.emit, job.cancel)

        def done(f: Future) -> None:
            if f.cancelled():
                job.future.set_exception(GenerationCancelled())
                return
            exc = f.exception()
            if exc is None:
                job.future.set_result(f.result())
                return
            if isinstance(exc, GenerationCancelled):
                logger.debug("Pregen cancelled: %r", job.prompt[:80])
            else:
                logger.warning("Pregen failed for %r: %s", job.prompt[:80], exc)
            job.future.set_exception(exc)

        # Mark running so the job future can no longer be cancelled from outside
        job.future.set_running_or_notify_cancel()
        try:
            self._pool.submit(run).add_done_callback(done)
        except RuntimeError as e:
            # Pool already shut down
            job.cancel.cancel()
            job.future.set_exception(e)

    def get(self, node_id: str, prompt: str) -> PregenJob | None:
        with self._lock:
            if node_id != self._node_id:
                return None
            return self._jobs.get(prompt)

    def claim(self, node_id: str, prompt: str) -> PregenJob | None:
        """Take the job for ``prompt`` if it belongs to the current node.

        A stale node id or a missing entry means the user navigated
        somewhere the cache does not cover: every job is cancelled and
        None is returned so the caller generates fresh. Claiming the same
        job twice raises ``PregenClaimError``.
        """
        with self._lock:
            job = self._jobs.get(prompt) if node_id == self._node_id else None
            if job is None:
                logger.info("Pregen miss for %r from node %s; invalidating", prompt[:80], node_id)
                self._invalidate_locked()
                return None
        job.claim()
        logger.info("Pregen hit for %r (complete=%s)", prompt[:80], job.is_complete)
        return job

    def invalidate(self) -> None:
        """Cancel every job and forget the current node."""
        with self._lock:
            self._invalidate_locked()

    def _invalidate_locked(self) -> None:
        for job in self._jobs.values():
            job.cancel.cancel()
        if self._jobs:
            logger.debug("Invalidated %d pregen job(s)", len(self._jobs))
        self._jobs = {}
        self._node_id = None

    def shutdown(self) -> None:
        self.invalidate()
        self._pool.shutdown(wait=False, cancel_futures=True)
