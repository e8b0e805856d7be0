"""Navigation over the slide graph with speculative pre-generation."""

from __future__ import annotations

import logging
from collections.abc import Callable

from pydantic import BaseModel

from slidegraph.engine.cancel import CancelToken, GenerationCancelled
from slidegraph.engine.pregen import CONTINUE_PROMPT, Launcher, PregenCoordinator
from slidegraph.models import (
    DoneEvent,
    ErrorEvent,
    GenerationResult,
    SlideEvent,
    SlideNode,
    StatusEvent,
)
from slidegraph.storage.sqlite_store import SqliteStore

logger = logging.getLogger(__name__)

Emit = Callable[[BaseModel], None]


def _discard(event: BaseModel) -> None:
    pass


class SlideSession:
    """A user's walk through the graph.

    Opening a node pre-generates its branches; acting on a branch claims the
    matching speculative job when there is one. Only claimed, finalized
    results are written to the store.
    """

    def __init__(
        self,
        store: SqliteStore,
        launch: Launcher,
        coordinator: PregenCoordinator,
    ) -> None:
        self._store = store
        self._launch = launch
        self._coordinator = coordinator
        self.current: SlideNode | None = None

    def start(self, prompt: str, emit: Emit = _discard) -> SlideNode | None:
        """Generate a new root slide for ``prompt``."""
        self._coordinator.invalidate()
        result = self._launch(prompt, (), emit, CancelToken())
        return self._persist(result, None, False, prompt, emit)

    def open(self, node_id: str) -> SlideNode:
        """Make ``node_id`` current and pre-generate its branches."""
        node = self._store.get_node(node_id)
        self.current = node
        self._coordinator.pregenerate(
            node.id,
            node.slide,
            node.conversation_history,
            include_continue=node.main_child_id is None,
        )
        return node

    def act(self, prompt: str, emit: Emit = _discard) -> SlideNode | None:
        """Follow a branch action from the current slide."""
        return self._navigate(prompt, is_main_child=False, emit=emit)

    def continue_(self, emit: Emit = _discard) -> SlideNode | None:
        """Move to the main successor, generating it if it does not exist yet."""
        node = self._require_current()
        if node.main_child_id:
            self._coordinator.invalidate()
            return self.open(node.main_child_id)
        return self._navigate(CONTINUE_PROMPT, is_main_child=True, emit=emit)

    def _require_current(self) -> SlideNode:
        if self.current is None:
            raise RuntimeError("no current slide; call start() or open() first")
        return self.current

    def _navigate(self, prompt: str, is_main_child: bool, emit: Emit) -> SlideNode | None:
        node = self._require_current()
        job = self._coordinator.claim(node.id, prompt)
        result: GenerationResult | None = None
        if job is not None:
            saw_slide = False

            def forward(_prompt: str, event: BaseModel) -> None:
                nonlocal saw_slide
                if isinstance(event, SlideEvent):
                    saw_slide = True
                emit(event)

            if not job.is_complete:
                emit(StatusEvent(message="Loading next slide...", step="preparing"))
                job.subscribe(forward)
            try:
                result = job.wait()
            except GenerationCancelled:
                logger.info("Claimed job was cancelled; generating fresh")
                job = None
            except Exception as e:
                logger.warning("Claimed job failed (%s); generating fresh", e)
                job = None
            else:
                if result is not None and not saw_slide:
                    emit(SlideEvent(slide=result.slide))
        if job is None:
            result = self._launch(prompt, node.conversation_history, emit, CancelToken())
        created = self._persist(result, node.id, is_main_child, prompt, emit)
        if job is not None and created is not None:
            job.resulting_node_id = created.id
        return created

    def _persist(
        self,
        result: GenerationResult | None,
        parent_id: str | None,
        is_main_child: bool,
        prompt: str,
        emit: Emit,
    ) -> SlideNode | None:
        if result is None:
            emit(ErrorEvent(message="No slide generated"))
            return None
        node_id = self._store.create_node(
            result.slide,
            parent_id=parent_id,
            history=result.history,
            is_main_child=is_main_child,
            source_prompt=prompt,
        )
        emit(DoneEvent(slide_id=node_id, slide=result.slide))
        return self.open(node_id)

