"""Slide post-processing: finalization of rendered slides and partial snapshots."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Any

import pydantic_core

from slidegraph.models import Block, Slide, SlideAction

logger = logging.getLogger(__name__)

ACTION_VARIANTS = {"primary", "secondary", "outline"}

_TAILWIND_SCRIPT = '<script src="https://cdn.tailwindcss.com"></script>'
_VIEWPORT_META = '<meta name="viewport" content="width=device-width,initial-scale=1">'

# Anchors pointing at external URLs that don't already declare a target
_EXTERNAL_LINK_RE = re.compile(r'<a\s+(?![^>]*target=)([^>]*href="https?://)', re.IGNORECASE)


def _is_str(value: Any) -> bool:
    return isinstance(value, str)


def _non_empty_list(value: Any) -> bool:
    return isinstance(value, list) and len(value) > 0


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and len(value) > 0


# Per-type predicates: a final block must carry the data its renderer needs.
COMPLETENESS: dict[str, Callable[[dict], bool]] = {
    "heading": lambda p: _is_str(p.get("text")),
    "text": lambda p: _is_str(p.get("content")),
    "list": lambda p: _non_empty_list(p.get("items")),
    "quote": lambda p: _is_str(p.get("text")),
    "callout": lambda p: _is_str(p.get("content")),
    "card": lambda p: _is_str(p.get("title")),
    "image": lambda p: _is_str(p.get("src")),
    "stats": lambda p: _non_empty_list(p.get("items")),
    "chart": lambda p: _non_empty_list(p.get("data")),
    "timeline": lambda p: _non_empty_list(p.get("items")),
    "table": lambda p: isinstance(p.get("headers"), list) and isinstance(p.get("rows"), list),
    "progress": lambda p: _non_empty_list(p.get("items")),
    "quiz": lambda p: _is_str(p.get("question")) and isinstance(p.get("options"), list),
    "counter": lambda p: _is_str(p.get("label")),
    "code": lambda p: _is_str(p.get("code")),
    "jsx": lambda p: _non_empty_str(p.get("content")),
    # Layout and decoration blocks carry no required props
    "grid": lambda p: True,
    "columns": lambda p: True,
    "divider": lambda p: True,
    "button": lambda p: True,
    "map": lambda p: True,
}


def fix_external_links(markup: str) -> str:
    """Open external links in a new tab."""
    return _EXTERNAL_LINK_RE.sub(r'<a target="_blank" rel="noopener" \1', markup)


def wrap_html_document(html: str) -> str:
    """Turn an html fragment into a full document with Tailwind and a viewport."""
    r = html
    if "<!DOCTYPE" not in r and "<!doctype" not in r:
        if "<html" in r:
            r = "<!DOCTYPE html>\n" + r
        else:
            r = (
                '<!DOCTYPE html><html><head><meta charset="utf-8">'
                f"{_VIEWPORT_META}{_TAILWIND_SCRIPT}</head><body>{r}</body></html>"
            )
    if "cdn.tailwindcss.com" not in r and "<head" in r:
        r = r.replace("</head>", f"{_TAILWIND_SCRIPT}</head>", 1)
    if "<head>" in r and "viewport" not in r:
        r = r.replace("<head>", f"<head>{_VIEWPORT_META}", 1)
    return fix_external_links(r)


def _normalize_props(block_type: str, props: dict) -> tuple[str, dict]:
    """Apply per-type rewrites. Legacy ``html`` blocks become ``jsx``."""
    content = props.get("content")
    if block_type == "html" and isinstance(content, str):
        return "jsx", {**props, "content": wrap_html_document(content)}
    if block_type == "jsx" and isinstance(content, str):
        return "jsx", {**props, "content": fix_external_links(content)}
    return block_type, props


def _has_identity(raw: Any) -> bool:
    return isinstance(raw, dict) and _is_str(raw.get("id")) and _is_str(raw.get("type"))


def is_block_complete(block: Block) -> bool:
    predicate = COMPLETENESS.get(block.type)
    if predicate is None:
        return False
    return predicate(block.props)


def finalize_block(raw: Any) -> Block | None:
    """Validate one rendered block. Returns None when the block must be dropped."""
    if not _has_identity(raw) or not isinstance(raw.get("props"), dict):
        return None
    block_type, props = _normalize_props(raw["type"], raw["props"])
    children = None
    if isinstance(raw.get("children"), list):
        children = [b for b in (finalize_block(c) for c in raw["children"]) if b is not None]
    animation = raw.get("animation") if isinstance(raw.get("animation"), dict) else None
    block = Block(
        id=raw["id"], type=block_type, props=props,
        animation=animation, children=children,
    )
    if not is_block_complete(block):
        logger.debug("Dropping incomplete %s block %r", block.type, block.id)
        return None
    return block


def parse_actions(raw_actions: Any) -> list[SlideAction]:
    """Keep actions that have both a label and a prompt."""
    if not isinstance(raw_actions, list):
        return []
    actions: list[SlideAction] = []
    for a in raw_actions:
        if not isinstance(a, dict):
            continue
        label, prompt = a.get("label"), a.get("prompt")
        if not _non_empty_str(label) or not _non_empty_str(prompt):
            continue
        variant = a.get("variant") if a.get("variant") in ACTION_VARIANTS else None
        actions.append(SlideAction(label=label, prompt=prompt, variant=variant))
    return actions


def _slide_fields(raw: dict) -> dict:
    dark = raw.get("dark")
    return {
        "id": raw["id"] if _is_str(raw.get("id")) else "",
        "title": raw["title"] if _is_str(raw.get("title")) else None,
        "subtitle": raw["subtitle"] if _is_str(raw.get("subtitle")) else None,
        "background": raw["background"] if _is_str(raw.get("background")) else None,
        "dark": dark if isinstance(dark, bool) else None,
    }


def finalize_slide(raw: dict) -> Slide:
    """Build the final, persistable slide from a ``render_slide`` payload.

    Blocks missing required data are dropped, never partially kept. A slide
    whose blocks are all dropped is still a valid (empty) slide.
    """
    raw_blocks = raw.get("blocks") if isinstance(raw.get("blocks"), list) else []
    blocks = [b for b in (finalize_block(rb) for rb in raw_blocks) if b is not None]
    if len(blocks) < len(raw_blocks):
        logger.info("Finalize: kept %d/%d block(s)", len(blocks), len(raw_blocks))
    return Slide(**_slide_fields(raw), blocks=blocks, actions=parse_actions(raw.get("actions")))


def _partial_block(raw: dict) -> Block:
    props = raw.get("props")
    block_type = raw["type"]
    if isinstance(props, dict):
        block_type, props = _normalize_props(block_type, props)
    else:
        props = {}
    children = None
    if isinstance(raw.get("children"), list):
        children = [_partial_block(c) for c in raw["children"] if _has_identity(c)]
    return Block(id=raw["id"], type=block_type, props=props, children=children)


def build_partial_slide(args: Any) -> Slide | None:
    """Best-effort slide from partially streamed ``render_slide`` arguments.

    Keeps blocks that at least have an id and a type (so skeletons can
    render) and actions with both label and prompt.
    """
    if not isinstance(args, dict) or not isinstance(args.get("slide"), dict):
        return None
    raw = args["slide"]
    raw_blocks = raw.get("blocks") if isinstance(raw.get("blocks"), list) else []
    blocks = [_partial_block(b) for b in raw_blocks if _has_identity(b)]
    return Slide(**_slide_fields(raw), blocks=blocks, actions=parse_actions(raw.get("actions")))


def parse_partial_arguments(buffer: str) -> Any:
    """Parse an incomplete JSON document; incomplete trailing strings are dropped.

    Raises ValueError when the buffer is not a JSON prefix.
    """
    return pydantic_core.from_json(buffer, allow_partial=True)
