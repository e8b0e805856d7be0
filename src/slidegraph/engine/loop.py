"""Generation engine: streamed, tool-calling turn loop that produces one slide."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import Any

from slidegraph.engine.cancel import CancelToken
from slidegraph.engine.compactor import compact_history
from slidegraph.engine.provider import (
    ModelClient,
    TextDelta,
    ToolCallDelta,
    ToolCallEnd,
    ToolCallStart,
    TurnEnd,
)
from slidegraph.engine.throttle import PartialThrottle
from slidegraph.models import (
    ConversationMessage,
    DoneEvent,
    ErrorEvent,
    GenerationResult,
    SlidePartialEvent,
    StatusEvent,
    TextBlock,
    ThinkingEvent,
    ToolResultBlock,
    ToolUseBlock,
)
from slidegraph.prompts import build_system_prompt
from slidegraph.tools.executor import TOOL_SPECS, Searcher, ToolExecutor
from slidegraph.tools.render_slide import build_partial_slide, parse_partial_arguments

logger = logging.getLogger(__name__)

MAX_TURNS = 10
PARTIAL_INTERVAL = 0.15

Emit = Callable[[Any], None]
OnResult = Callable[[GenerationResult], "str | None"]


class _PartialTracker:
    """Accumulates one render_slide call's argument fragments into partial slides."""

    def __init__(self, emit: Emit, interval: float) -> None:
        self._buffer = ""
        self._block_count = -1
        self._throttle: PartialThrottle = PartialThrottle(
            lambda slide: emit(SlidePartialEvent(slide=slide)), interval,
        )

    def feed(self, fragment: str) -> None:
        self._buffer += fragment
        try:
            args = parse_partial_arguments(self._buffer)
        except ValueError as e:
            logger.debug("Partial parse failed at %d chars: %s", len(self._buffer), e)
            return
        slide = build_partial_slide(args)
        if slide is None:
            return
        self._throttle.push(slide)

    def finish(self) -> None:
        self._throttle.flush()
        self._throttle.close()

    def abort(self) -> None:
        self._throttle.close()


class SlideEngine:
    """Runs one slide generation against a model client.

    A generation compacts the caller's history, appends the prompt and
    runs up to ``MAX_TURNS`` streamed turns, executing tool calls between
    them, until the model stops calling tools.
    """

    def __init__(
        self,
        client: ModelClient,
        searcher: Searcher,
        system_prompt: str | None = None,
        partial_interval: float = PARTIAL_INTERVAL,
    ) -> None:
        self._client = client
        self._searcher = searcher
        self._system_prompt = system_prompt
        self._partial_interval = partial_interval

    def generate(
        self,
        prompt: str,
        history: Sequence[ConversationMessage],
        emit: Emit,
        cancel: CancelToken | None = None,
    ) -> GenerationResult | None:
        """Generate one slide. Returns None when no slide was rendered."""
        cancel = cancel or CancelToken()
        logger.info("Generation started: %r (%d prior message(s))", prompt[:120], len(history))
        run_t0 = time.perf_counter()

        try:
            base = compact_history(history)
        except Exception:
            logger.warning("History compaction failed; using full history", exc_info=True)
            base = tuple(history)
        messages: list[ConversationMessage] = [
            *base, ConversationMessage(role="user", content=prompt),
        ]
        system = self._system_prompt or build_system_prompt()
        executor = ToolExecutor(self._searcher)
        building_announced = False

        emit(StatusEvent(message="Thinking...", step="thinking"))

        for turn in range(MAX_TURNS):
            cancel.raise_if_cancelled()
            logger.info("--- Turn %d/%d ---", turn + 1, MAX_TURNS)
            t0 = time.perf_counter()

            text_parts: list[str] = []
            calls: list[ToolCallEnd] = []
            trackers: dict[str, _PartialTracker] = {}
            names: dict[str, str] = {}
            stop_reason = "other"
            try:
                for delta in self._client.stream_turn(system, messages, TOOL_SPECS):
                    cancel.raise_if_cancelled()
                    if isinstance(delta, TextDelta):
                        text_parts.append(delta.text)
                        if delta.text.strip():
                            emit(ThinkingEvent(text=delta.text))
                    elif isinstance(delta, ToolCallStart):
                        names[delta.call_id] = delta.name
                    elif isinstance(delta, ToolCallDelta):
                        if names.get(delta.call_id) != "render_slide":
                            continue
                        if not building_announced:
                            emit(StatusEvent(message="Building slide...", step="building"))
                            building_announced = True
                        tracker = trackers.get(delta.call_id)
                        if tracker is None:
                            tracker = _PartialTracker(emit, self._partial_interval)
                            trackers[delta.call_id] = tracker
                        tracker.feed(delta.fragment)
                    elif isinstance(delta, ToolCallEnd):
                        tracker = trackers.pop(delta.call_id, None)
                        if tracker is not None:
                            tracker.finish()
                        calls.append(delta)
                    elif isinstance(delta, TurnEnd):
                        stop_reason = delta.stop_reason
            finally:
                for tracker in trackers.values():
                    tracker.abort()

            logger.info(
                "Turn %d: %d tool call(s) %s, stop=%s (%.2fs)",
                turn + 1, len(calls), [c.name for c in calls], stop_reason,
                time.perf_counter() - t0,
            )

            blocks: list[TextBlock | ToolUseBlock] = []
            text = "".join(text_parts)
            if text.strip():
                blocks.append(TextBlock(text=text))
            blocks.extend(
                ToolUseBlock(id=c.call_id, name=c.name, input=c.arguments, signature=c.signature)
                for c in calls
            )
            if blocks:
                messages.append(ConversationMessage(role="assistant", content=blocks))

            results: list[ToolResultBlock] = []
            for call in calls:
                cancel.raise_if_cancelled()
                content = executor.execute(call.name, call.arguments, emit)
                results.append(
                    ToolResultBlock(tool_use_id=call.call_id, name=call.name, content=content)
                )

            if not results or stop_reason == "end_turn":
                break
            messages.append(ConversationMessage(role="user", content=results))
        else:
            logger.warning("Turn budget (%d) exhausted", MAX_TURNS)

        total = time.perf_counter() - run_t0
        if executor.rendered is None:
            logger.info("Generation finished without a slide (%.2fs)", total)
            return None
        logger.info("Generation finished: %r (%.2fs)", executor.rendered.title, total)
        return GenerationResult(slide=executor.rendered, history=tuple(messages))


def run_generation(
    engine: Any,
    prompt: str,
    history: Sequence[ConversationMessage],
    emit: Emit,
    cancel: CancelToken | None = None,
    on_result: OnResult | None = None,
) -> GenerationResult | None:
    """Generate, persist through ``on_result`` and emit the terminal event.

    ``engine`` is anything with a ``generate(prompt, history, emit, cancel)``
    method (the local engine or a remote client).
    """
    result = engine.generate(prompt, history, emit, cancel)
    if result is None:
        emit(ErrorEvent(message="No slide generated"))
        return None
    slide_id = on_result(result) if on_result is not None else None
    emit(DoneEvent(
        slide_id=slide_id,
        slide=result.slide,
        conversation_history=list(result.history),
    ))
    return result
