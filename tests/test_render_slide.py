"""Tests for slide finalization and partial-slide building."""

from __future__ import annotations

import json

import pytest

from slidegraph.tools.render_slide import (
    build_partial_slide,
    finalize_block,
    finalize_slide,
    fix_external_links,
    parse_actions,
    parse_partial_arguments,
    wrap_html_document,
)


def _slide(blocks, actions=None, **extra):
    return {"id": "s1", "blocks": blocks, "actions": actions or [], **extra}


# ── Finalization ──


class TestFinalizeSlide:
    def test_keeps_complete_blocks_and_drops_incomplete(self):
        raw = _slide([
            {"id": "b1", "type": "heading", "props": {"text": "Hi"}},
            {"id": "b2", "type": "list", "props": {"items": []}},
        ])
        slide = finalize_slide(raw)
        assert slide.block_ids() == ["b1"]

    def test_all_blocks_dropped_is_still_a_slide(self):
        slide = finalize_slide(_slide([{"id": "b1", "type": "chart", "props": {}}]))
        assert slide.blocks == []
        assert slide.id == "s1"

    def test_metadata_copied(self):
        slide = finalize_slide(_slide([], title="T", subtitle="S", background="#fff", dark=True))
        assert (slide.title, slide.subtitle, slide.background, slide.dark) == ("T", "S", "#fff", True)

    def test_wrong_typed_metadata_ignored(self):
        slide = finalize_slide(_slide([], title=3, dark="yes"))
        assert slide.title is None
        assert slide.dark is None

    def test_missing_blocks_list(self):
        slide = finalize_slide({"id": "s1", "blocks": "nope"})
        assert slide.blocks == []

    def test_actions_filtered(self):
        slide = finalize_slide(_slide([], actions=[
            {"label": "Next", "prompt": "go on", "variant": "primary"},
            {"label": "No prompt"},
            {"label": "Odd", "prompt": "x", "variant": "ghost"},
        ]))
        assert [a.label for a in slide.actions] == ["Next", "Odd"]
        assert slide.actions[0].variant == "primary"
        assert slide.actions[1].variant is None


class TestFinalizeBlock:
    @pytest.mark.parametrize("block_type, props", [
        ("heading", {"text": "t"}),
        ("text", {"content": "c"}),
        ("list", {"items": ["a"]}),
        ("quote", {"text": "q"}),
        ("callout", {"content": "c"}),
        ("card", {"title": "t"}),
        ("image", {"src": "/api/image?query=x"}),
        ("stats", {"items": [{"value": "1", "label": "l"}]}),
        ("chart", {"data": [{"label": "a", "value": 1}]}),
        ("timeline", {"items": [{"date": "d", "title": "t"}]}),
        ("table", {"headers": ["a"], "rows": []}),
        ("progress", {"items": [{"label": "a", "value": 1}]}),
        ("quiz", {"question": "q", "options": []}),
        ("counter", {"label": "l"}),
        ("code", {"code": "x = 1"}),
        ("jsx", {"content": "<div/>"}),
        ("divider", {}),
        ("grid", {"columns": 2}),
    ])
    def test_complete_blocks_kept(self, block_type, props):
        assert finalize_block({"id": "b", "type": block_type, "props": props}) is not None

    @pytest.mark.parametrize("block_type, props", [
        ("heading", {}),
        ("text", {"content": 5}),
        ("list", {"items": []}),
        ("chart", {"data": []}),
        ("table", {"headers": ["a"]}),
        ("quiz", {"question": "q"}),
        ("jsx", {"content": ""}),
    ])
    def test_incomplete_blocks_dropped(self, block_type, props):
        assert finalize_block({"id": "b", "type": block_type, "props": props}) is None

    def test_unknown_type_dropped(self):
        assert finalize_block({"id": "b", "type": "hologram", "props": {"x": 1}}) is None

    def test_requires_id_type_and_props(self):
        assert finalize_block({"type": "heading", "props": {"text": "t"}}) is None
        assert finalize_block({"id": "b", "props": {"text": "t"}}) is None
        assert finalize_block({"id": "b", "type": "heading", "props": "t"}) is None
        assert finalize_block("heading") is None

    def test_children_finalized_recursively(self):
        block = finalize_block({
            "id": "g", "type": "grid", "props": {},
            "children": [
                {"id": "c1", "type": "card", "props": {"title": "ok"}},
                {"id": "c2", "type": "card", "props": {}},
            ],
        })
        assert [c.id for c in block.children] == ["c1"]

    def test_html_becomes_jsx_document(self):
        block = finalize_block({"id": "h", "type": "html", "props": {"content": "<p>hi</p>"}})
        assert block.type == "jsx"
        content = block.props["content"]
        assert content.startswith("<!DOCTYPE html>")
        assert "cdn.tailwindcss.com" in content
        assert "viewport" in content
        assert "<p>hi</p>" in content

    def test_animation_kept(self):
        anim = {"entrance": "fade-in", "delay": 0.1, "duration": 0.5}
        block = finalize_block({"id": "b", "type": "heading", "props": {"text": "t"}, "animation": anim})
        assert block.animation == anim


class TestMarkupFixes:
    def test_external_links_open_in_new_tab(self):
        out = fix_external_links('<a href="https://example.com">x</a>')
        assert 'target="_blank"' in out
        assert 'rel="noopener"' in out

    def test_existing_target_left_alone(self):
        markup = '<a target="_self" href="https://example.com">x</a>'
        assert fix_external_links(markup) == markup

    def test_relative_links_untouched(self):
        markup = '<a href="/local">x</a>'
        assert fix_external_links(markup) == markup

    def test_full_document_gets_tailwind_injected(self):
        out = wrap_html_document("<html><head></head><body></body></html>")
        assert out.startswith("<!DOCTYPE html>")
        assert "cdn.tailwindcss.com" in out

    def test_jsx_links_fixed(self):
        block = finalize_block({
            "id": "j", "type": "jsx",
            "props": {"content": '<a href="http://x.org">x</a>'},
        })
        assert 'target="_blank"' in block.props["content"]


class TestParseActions:
    def test_non_list(self):
        assert parse_actions(None) == []

    def test_empty_label_dropped(self):
        assert parse_actions([{"label": "", "prompt": "p"}]) == []


# ── Partial slides ──


class TestPartialSlides:
    def test_partial_keeps_identified_blocks_without_props(self):
        slide = build_partial_slide({"slide": {"id": "s", "blocks": [
            {"id": "b1", "type": "heading"},
            {"id": "b2"},
        ]}})
        assert slide.block_ids() == ["b1"]
        assert slide.blocks[0].props == {}

    def test_partial_without_slide(self):
        assert build_partial_slide({}) is None
        assert build_partial_slide(None) is None

    def test_partial_json_parse_drops_incomplete_string(self):
        parsed = parse_partial_arguments('{"slide": {"id": "s1", "title": "Photo')
        assert parsed["slide"]["id"] == "s1"

    def test_invalid_prefix_raises_value_error(self):
        with pytest.raises(ValueError):
            parse_partial_arguments("not json")

    def test_prefixes_grow_monotonically(self):
        """Block ids of successive partials only ever extend the previous list."""
        raw = json.dumps({"slide": {
            "id": "s1", "title": "T",
            "blocks": [
                {"id": f"b{i}", "type": "text", "props": {"content": "x" * 10}}
                for i in range(4)
            ],
            "actions": [{"label": "Next", "prompt": "next"}],
        }})
        previous: list[str] = []
        for end in range(1, len(raw) + 1):
            try:
                args = parse_partial_arguments(raw[:end])
            except ValueError:
                continue
            slide = build_partial_slide(args)
            if slide is None:
                continue
            ids = slide.block_ids()
            assert ids[:len(previous)] == previous
            previous = ids
        assert previous == ["b0", "b1", "b2", "b3"]
