"""Tool declarations and dispatch for the slide generation loop."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from slidegraph.models import Slide, SlideEvent, StatusEvent
from slidegraph.tools.render_slide import finalize_slide

logger = logging.getLogger(__name__)

MAX_RESULT_CHARS = 15000

RENDER_ACK = "Slide rendered. Wait for the user to click an action button."
ALREADY_RENDERED = (
    "A slide was already rendered for this request. Only one slide per request; "
    "wait for the user to click an action button."
)

RENDER_SLIDE_DESCRIPTION = """\
Add ONE slide to the presentation. Generate one slide per call.

SLIDE STRUCTURE:
{ "id": "slide-1", "title": "...", "subtitle": "...", "background": "#ffffff", "dark": false, \
"blocks": [...], "actions": [{ "label": "...", "prompt": "...", "variant": "secondary" }] }

BLOCK ANIMATIONS:
Every block needs "animation": { "entrance": "fade-in"|"slide-up"|"scale-up"|"blur-in"|"none", \
"delay": 0.1, "duration": 0.5 }
Stagger blocks: 0.1, 0.3, 0.5, 0.7s etc.

BLOCK TYPES:

CONTENT:
- heading: { text, level?: 1-6 }
- text: { content } — supports **bold**, *italic*. Keep SHORT.
- list: { items: string[], ordered?: boolean, icon?: string } — max 4 items
- quote: { text, author? }
- callout: { type: "info"|"warning"|"success"|"tip", title?, content }
- card: { title, description?, tags?: string[] }

LAYOUT:
- grid: { columns?: 2|3|4 } (with children blocks)
- columns: { ratio?: "1:1"|"1:2"|"2:1" } (with children blocks)
- divider: {}

DATA:
- stats: { items: { value, label, change?, trend?: "up"|"down" }[], columns?: 2|3|4 } — max 4 items
- chart: { type: "bar"|"line"|"pie"|"donut", title?, data: { label, value, color? }[] } — max 6 data points
- timeline: { items: { date, title, description? }[] } — max 3 items
- table: { headers: string[], rows: string[][] } — max 4 rows
- progress: { items: { label, value, max?, color? }[] }

INTERACTIVE (use often to engage the user):
- quiz: { question, options: { text, correct?: boolean }[], explanation? }
- counter: { label, value, min?, max?, step? }

RICH:
- code: { code, language?, title? }
- image: { src, alt?, caption? }
- jsx: { content: "<React JSX>", height? } — for games, simulations, flashcards, interactive \
widgets, rich layouts, dashboards, data displays, and visual illustrations. React 18, ReactDOM, \
Babel, and Tailwind CSS are available. Write JSX in `<script type="text/babel">` and render with \
`ReactDOM.createRoot(document.getElementById('root')).render(<App />)`. A `<div id="root">` is \
provided automatically. Do NOT include `<html>` or `<head>` tags — just provide body content and \
scripts.

Every block needs a unique "id"."""

RENDER_SLIDE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "slide": {
            "type": "object",
            "properties": {
                "id": {"type": "string"},
                "title": {"type": "string"},
                "subtitle": {"type": "string"},
                "background": {"type": "string"},
                "dark": {"type": "boolean"},
                "blocks": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {"type": "string"},
                            "type": {"type": "string"},
                            "props": {"type": "object"},
                            "animation": {
                                "type": "object",
                                "properties": {
                                    "entrance": {"type": "string"},
                                    "delay": {"type": "number"},
                                    "duration": {"type": "number"},
                                },
                                "required": ["entrance", "delay", "duration"],
                            },
                            "children": {"type": "array", "items": {"type": "object"}},
                        },
                        "required": ["id", "type", "props"],
                    },
                },
                "actions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "label": {"type": "string"},
                            "prompt": {"type": "string"},
                            "variant": {
                                "type": "string",
                                "enum": ["primary", "secondary", "outline"],
                            },
                        },
                        "required": ["label", "prompt"],
                    },
                },
            },
            "required": ["id", "blocks", "actions"],
        },
    },
    "required": ["slide"],
}

WEB_SEARCH_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {"query": {"type": "string"}},
    "required": ["query"],
}


@dataclass(frozen=True)
class ToolSpec:
    """Provider-agnostic tool declaration."""

    name: str
    description: str
    parameters: dict[str, Any]


TOOL_SPECS: list[ToolSpec] = [
    ToolSpec("render_slide", RENDER_SLIDE_DESCRIPTION, RENDER_SLIDE_SCHEMA),
    ToolSpec(
        "web_search",
        "Search the web for factual information. MANDATORY for entities, people, events, statistics.",
        WEB_SEARCH_SCHEMA,
    ),
]


class SlideDraft(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    blocks: list[Any]
    actions: list[Any] = Field(default_factory=list)


class RenderSlideInput(BaseModel):
    slide: SlideDraft


class WebSearchInput(BaseModel):
    query: str = Field(min_length=1)


class Searcher(Protocol):
    def search(self, query: str) -> str: ...


def _truncate(result: str) -> str:
    if len(result) <= MAX_RESULT_CHARS:
        return result
    return result[:MAX_RESULT_CHARS] + f"\n[truncated {len(result) - MAX_RESULT_CHARS} chars]"


def _validation_summary(e: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
        for err in e.errors()[:5]
    )


class ToolExecutor:
    """Dispatches model tool calls for a single generation.

    A new executor is created per generation: it remembers the one slide
    that generation rendered (``rendered``).
    """

    def __init__(self, searcher: Searcher) -> None:
        self._searcher = searcher
        self.rendered: Slide | None = None

    def execute(self, name: str, args: dict[str, Any], emit: Callable[[Any], None]) -> str:
        logger.debug("  tool exec: %s", name)
        t0 = time.perf_counter()
        if name == "render_slide":
            result = self._render_slide(args, emit)
        elif name == "web_search":
            result = self._web_search(args, emit)
        else:
            result = f"Unknown tool: {name}"
        logger.debug(
            "  tool done: %s -> %d chars (%.3fs)", name, len(result), time.perf_counter() - t0,
        )
        return _truncate(result)

    def _render_slide(self, args: dict[str, Any], emit: Callable[[Any], None]) -> str:
        if self.rendered is not None:
            logger.info("Refusing second render_slide in one generation")
            return ALREADY_RENDERED
        try:
            RenderSlideInput.model_validate(args)
        except ValidationError as e:
            logger.info("render_slide input rejected: %s", _validation_summary(e))
            return f"Error: invalid render_slide input ({_validation_summary(e)}). Call render_slide again with a complete slide."
        slide = finalize_slide(args["slide"])
        self.rendered = slide
        logger.info("Slide rendered: %r (%d block(s), %d action(s))",
                    slide.title, len(slide.blocks), len(slide.actions))
        emit(SlideEvent(slide=slide))
        return RENDER_ACK

    def _web_search(self, args: dict[str, Any], emit: Callable[[Any], None]) -> str:
        try:
            query = WebSearchInput.model_validate(args).query
        except ValidationError as e:
            return f"Error: invalid web_search input ({_validation_summary(e)})."
        emit(StatusEvent(message=f"Searching: {query}", step="searching"))
        return self._searcher.search(query)
