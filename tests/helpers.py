"""Shared test helpers: scripted model client, fakes and mock Gemini stream factories."""

import json
import threading
from unittest.mock import MagicMock

from slidegraph.engine.provider import (
    TextDelta,
    ToolCallDelta,
    ToolCallEnd,
    ToolCallStart,
    TurnEnd,
)
from slidegraph.models import GenerationResult, Slide, SlideEvent, SlidePartialEvent


class ScriptedModelClient:
    """ModelClient that replays pre-built turns and records what it was sent."""

    def __init__(self, turns):
        self._turns = list(turns)
        self.calls = []

    def stream_turn(self, system, messages, tools):
        self.calls.append({"system": system, "messages": list(messages), "tools": list(tools)})
        if not self._turns:
            yield TurnEnd("end_turn")
            return
        yield from self._turns.pop(0)


class FakeSearcher:
    def __init__(self, result="1. Result\n   snippet"):
        self.result = result
        self.queries = []

    def search(self, query):
        self.queries.append(query)
        return self.result


class FakeChatProvider:
    def __init__(self, answer="Chlorophyll absorbs light."):
        self.answer = answer
        self.calls = []

    def complete(self, system, messages):
        self.calls.append((system, list(messages)))
        return self.answer


def photosynthesis_args():
    return {
        "slide": {
            "id": "s1",
            "title": "Photosynthesis",
            "blocks": [{"id": "b1", "type": "heading", "props": {"text": "Photosynthesis"}}],
            "actions": [{"label": "Show example", "prompt": "give an example"}],
        }
    }


def tool_call(name, args, call_id="call_1", fragments=None):
    """Deltas for one tool call; ``fragments`` splits the JSON arguments for streaming."""
    deltas = [ToolCallStart(call_id, name)]
    if fragments:
        raw = json.dumps(args)
        size = max(1, len(raw) // fragments)
        for i in range(0, len(raw), size):
            deltas.append(ToolCallDelta(call_id, raw[i:i + size]))
    deltas.append(ToolCallEnd(call_id, name, args))
    return deltas


def turn(*deltas, stop="tool_use"):
    """One scripted turn: the given deltas (or lists of deltas) plus a TurnEnd."""
    flat = []
    for d in deltas:
        if isinstance(d, list):
            flat.extend(d)
        elif isinstance(d, str):
            flat.append(TextDelta(d))
        else:
            flat.append(d)
    flat.append(TurnEnd(stop))
    return flat


def make_slide(title="Slide", prompts=("give an example",)):
    return Slide(
        id="s",
        title=title,
        blocks=[{"id": "b1", "type": "heading", "props": {"text": title}}],
        actions=[{"label": p.title(), "prompt": p} for p in prompts],
    )


class FakeLauncher:
    """Launcher whose generations block until released, for pre-generation tests."""

    def __init__(self, auto_release=False):
        self.started = []
        self.cancels = {}
        self._gates = {}
        self._lock = threading.Lock()
        self._auto = auto_release

    def _gate(self, prompt):
        with self._lock:
            return self._gates.setdefault(prompt, threading.Event())

    def release(self, prompt):
        self._gate(prompt).set()

    def __call__(self, prompt, history, emit, cancel):
        with self._lock:
            self.started.append(prompt)
            self.cancels[prompt] = cancel
        slide = make_slide(title=f"Re: {prompt}")
        emit(SlidePartialEvent(slide=Slide(id="s", title=slide.title)))
        gate = self._gate(prompt)
        if self._auto:
            gate.set()
        while not gate.wait(0.01):
            cancel.raise_if_cancelled()
        cancel.raise_if_cancelled()
        emit(SlideEvent(slide=slide))
        return GenerationResult(slide=slide, history=(*history,))


def _make_text_chunk(text, finish_reason=None, thought=False):
    """Create a mock Gemini stream chunk carrying text."""
    part = MagicMock()
    part.text = text
    part.thought = thought
    part.function_call = None
    part.thought_signature = None

    candidate = MagicMock()
    candidate.content.parts = [part]
    candidate.finish_reason = finish_reason

    chunk = MagicMock()
    chunk.candidates = [candidate]
    return chunk


def _make_fn_call_chunk(name, args, call_id=None, signature=None, finish_reason=None):
    """Create a mock Gemini stream chunk carrying a function call."""
    fn_call = MagicMock()
    fn_call.name = name
    fn_call.args = args
    fn_call.id = call_id

    part = MagicMock()
    part.function_call = fn_call
    part.text = None
    part.thought = None
    part.thought_signature = signature

    candidate = MagicMock()
    candidate.content.parts = [part]
    candidate.finish_reason = finish_reason

    chunk = MagicMock()
    chunk.candidates = [candidate]
    return chunk
