"""History compaction: bound the context sent to the model on long explorations."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from slidegraph.models import ConversationHistory, ConversationMessage, TextBlock

logger = logging.getLogger(__name__)

MIN_MESSAGES = 6
KEEP_EXCHANGES = 2
PROMPT_PREVIEW_CHARS = 80
SUMMARY_HEADER = "[Earlier in this exploration]"

_NUMBERED_LINE = re.compile(r"^\d+\.\s+(.*)$")


def _find_cut(history: Sequence[ConversationMessage]) -> int | None:
    """Index of the user prompt that starts the last ``KEEP_EXCHANGES`` exchanges."""
    found = 0
    for i in range(len(history) - 1, 0, -1):
        if history[i].is_text_prompt:
            found += 1
            if found == KEEP_EXCHANGES:
                return i
    return None


def _summarize(middle: Sequence[ConversationMessage]) -> str:
    """One line per exchange: its prompt, the slides it rendered and what it searched.

    Lines from an earlier summary in ``middle`` are carried forward ahead
    of the new exchanges and renumbered.
    """
    carried: list[str] = []
    turns: list[dict] = []
    for msg in middle:
        if msg.role == "assistant" and msg.text.startswith(SUMMARY_HEADER):
            for line in msg.text.splitlines()[1:]:
                m = _NUMBERED_LINE.match(line.strip())
                if m:
                    carried.append(m.group(1))
            continue
        if msg.is_text_prompt:
            turns.append({"prompt": msg.text.strip(), "titles": [], "queries": []})
            continue
        if not turns:
            turns.append({"prompt": "", "titles": [], "queries": []})
        for use in msg.tool_uses:
            if use.name == "render_slide":
                slide = use.input.get("slide")
                title = slide.get("title") if isinstance(slide, dict) else None
                turns[-1]["titles"].append(title if isinstance(title, str) and title else "(untitled)")
            elif use.name == "web_search":
                query = use.input.get("query")
                if isinstance(query, str) and query:
                    turns[-1]["queries"].append(query)

    entries = list(carried)
    for turn in turns:
        if not (turn["prompt"] or turn["titles"] or turn["queries"]):
            continue
        prompt = turn["prompt"]
        if len(prompt) > PROMPT_PREVIEW_CHARS:
            prompt = prompt[:PROMPT_PREVIEW_CHARS] + "..."
        parts = [f'"{prompt}"' if prompt else "(continued)"]
        if turn["titles"]:
            parts.append("slides: " + ", ".join(turn["titles"]))
        if turn["queries"]:
            parts.append("searched: " + ", ".join(turn["queries"]))
        entries.append(" → ".join(parts))
    if not entries:
        return ""
    lines = [f"{i}. {entry}" for i, entry in enumerate(entries, 1)]
    return SUMMARY_HEADER + "\n" + "\n".join(lines)


def compact_history(history: Sequence[ConversationMessage]) -> ConversationHistory:
    """Keep the first message and the last exchanges; summarize the middle.

    Returns the history unchanged (as a tuple) when it is short, has no
    valid cut point, starts with tool calls, or has nothing to summarize.
    Every tool result kept in the output stays paired with its tool use,
    since the cut always lands on a text prompt.
    """
    history = tuple(history)
    if len(history) <= MIN_MESSAGES:
        return history
    cut = _find_cut(history)
    if cut is None or cut <= 1:
        return history
    if history[0].tool_uses:
        # A summary placed after it would orphan those calls
        return history
    summary = _summarize(history[1:cut])
    if not summary:
        return history
    compacted = (
        history[0],
        ConversationMessage(role="assistant", content=[TextBlock(text=summary)]),
        *history[cut:],
    )
    logger.info("Compacted history: %d -> %d messages", len(history), len(compacted))
    return compacted
