"""Tests for the SQLite slide graph store."""

from __future__ import annotations

import sqlite3

import pytest

from slidegraph.models import ConversationMessage, Slide, ToolUseBlock
from slidegraph.storage.sqlite_store import (
    Conflict,
    InvalidArgument,
    NotFound,
    SqliteStore,
)
from tests.helpers import make_slide


def _history():
    return [
        ConversationMessage(role="user", content="Explain photosynthesis"),
        ConversationMessage(role="assistant", content=[
            ToolUseBlock(id="c1", name="render_slide", input={"slide": {"id": "s"}}, signature="c2ln"),
        ]),
    ]


def _node(store, title="Slide", parent_id=None, is_main_child=False, **kwargs):
    return store.create_node(
        make_slide(title), parent_id=parent_id, history=_history(),
        is_main_child=is_main_child, **kwargs,
    )


class TestInitDb:
    def test_init_is_idempotent(self, store):
        store.init_db()
        store.init_db()

    def test_migration_adds_source_prompt(self, tmp_path):
        path = tmp_path / "old.db"
        conn = sqlite3.connect(str(path))
        conn.execute(
            """CREATE TABLE slides (
                id TEXT PRIMARY KEY, title TEXT, subtitle TEXT, background TEXT, dark INTEGER,
                blocks TEXT NOT NULL, actions TEXT, parent_id TEXT, main_child_id TEXT,
                conversation_history TEXT, created_at INTEGER NOT NULL)"""
        )
        conn.commit()
        conn.close()

        s = SqliteStore(path)
        s.init_db()
        columns = {row[1] for row in s._conn.execute("PRAGMA table_info(slides)").fetchall()}
        s.close()
        assert "source_prompt" in columns


class TestNodes:
    def test_create_and_get(self, store):
        node_id = _node(store, "Photosynthesis", source_prompt="Explain photosynthesis")
        node = store.get_node(node_id)
        assert node.id == node_id
        assert node.slide.id == node_id
        assert node.slide.title == "Photosynthesis"
        assert node.slide.block_ids() == ["b1"]
        assert node.slide.actions[0].prompt == "give an example"
        assert node.source_prompt == "Explain photosynthesis"
        assert node.parent_id is None
        assert node.created_at > 0

    def test_history_round_trips_with_signature(self, store):
        node_id = _node(store)
        history = store.get_history(node_id)
        assert history == _history()
        assert history[1].tool_uses[0].signature == "c2ln"

    def test_dark_flag_round_trips(self, store):
        node_id = store.create_node(Slide(id="x", title="Dark", dark=True), None, [], False)
        assert store.get_node(node_id).slide.dark is True

    def test_missing_node(self, store):
        with pytest.raises(NotFound):
            store.get_node("nope")
        with pytest.raises(NotFound):
            store.get_history("nope")

    def test_missing_parent(self, store):
        with pytest.raises(NotFound):
            _node(store, parent_id="nope")

    def test_children_and_main_child(self, store):
        root = _node(store, "Root")
        branch = _node(store, "Branch", parent_id=root)
        main = _node(store, "Main", parent_id=root, is_main_child=True)
        node = store.get_node(root)
        assert node.main_child_id == main
        assert [(c.id, c.is_main) for c in node.children] == [(branch, False), (main, True)]

    def test_new_main_child_replaces_previous(self, store):
        root = _node(store, "Root")
        _node(store, "First", parent_id=root, is_main_child=True)
        second = _node(store, "Second", parent_id=root, is_main_child=True)
        assert store.get_node(root).main_child_id == second

    def test_list_nodes_newest_first(self, store):
        a = _node(store, "A")
        b = _node(store, "B", parent_id=a)
        listed = store.list_nodes()
        assert [n["id"] for n in listed] == [b, a]
        assert listed[0]["parentId"] == a
        assert set(listed[0]) == {"id", "title", "parentId", "createdAt"}

    def test_search_nodes(self, store):
        _node(store, "Photosynthesis")
        _node(store, "Calvin cycle")
        assert [n["title"] for n in store.search_nodes("photo")] == ["Photosynthesis"]
        assert store.search_nodes("zzz") == []

    def test_search_limit(self, store):
        for i in range(5):
            _node(store, f"Topic {i}")
        assert len(store.search_nodes("Topic", limit=3)) == 3

    def test_update_title(self, store):
        node_id = _node(store, "Old")
        store.update_node(node_id, title="New")
        assert store.get_node(node_id).slide.title == "New"

    def test_update_main_child_and_clear(self, store):
        root = _node(store, "Root")
        child = _node(store, "Child", parent_id=root)
        store.update_node(root, main_child_id=child)
        assert store.get_node(root).main_child_id == child
        store.update_node(root, main_child_id=None)
        assert store.get_node(root).main_child_id is None
        assert store.get_node(root).slide.title == "Root"

    def test_update_missing(self, store):
        with pytest.raises(NotFound):
            store.update_node("nope", title="x")


class TestLinks:
    def test_add_link_appears_as_link_and_backlink(self, store):
        a, b = _node(store, "A"), _node(store, "B")
        link_id = store.add_link(a, b)
        assert [(l.id, l.slide_id, l.title) for l in store.get_node(a).links] == [(link_id, b, "B")]
        assert [(l.id, l.slide_id) for l in store.get_node(b).backlinks] == [(link_id, a)]
        assert store.get_node(a).backlinks == []

    def test_self_link_rejected(self, store):
        a = _node(store)
        with pytest.raises(InvalidArgument):
            store.add_link(a, a)

    def test_duplicate_link_conflict(self, store):
        a, b = _node(store, "A"), _node(store, "B")
        store.add_link(a, b)
        with pytest.raises(Conflict):
            store.add_link(a, b)
        # Reverse direction is a different link
        store.add_link(b, a)

    def test_link_to_missing_slide(self, store):
        a = _node(store)
        with pytest.raises(NotFound):
            store.add_link(a, "nope")

    def test_remove_link(self, store):
        a, b = _node(store, "A"), _node(store, "B")
        link_id = store.add_link(a, b)
        assert store.remove_link(link_id) is True
        assert store.remove_link(link_id) is False
        assert store.get_node(a).links == []

    def test_graph(self, store):
        a = _node(store, "A")
        b = _node(store, "B", parent_id=a)
        store.add_link(b, a)
        graph = store.get_graph()
        assert graph["nodes"] == [
            {"id": a, "title": "A", "parentId": None},
            {"id": b, "title": "B", "parentId": a},
        ]
        assert graph["links"] == [{"from": b, "to": a}]


class TestChats:
    def test_thread_lifecycle(self, store):
        slide_id = _node(store)
        chat_id = store.create_chat_thread(slide_id, "chlorophyll", block_id="b1")
        thread = store.get_chat_thread(chat_id)
        assert thread["slideId"] == slide_id
        assert thread["selectedText"] == "chlorophyll"
        assert thread["blockId"] == "b1"

        store.append_chat_message(chat_id, "user", "What is it?")
        store.append_chat_message(chat_id, "assistant", "A pigment.")
        messages = store.list_chat_messages(chat_id)
        assert [(m["role"], m["content"]) for m in messages] == [
            ("user", "What is it?"), ("assistant", "A pigment."),
        ]
        chats = store.get_node(slide_id).chats
        assert [(c.id, c.selected_text, c.message_count) for c in chats] == [(chat_id, "chlorophyll", 2)]

    def test_thread_on_missing_slide(self, store):
        with pytest.raises(NotFound):
            store.create_chat_thread("nope", "x")

    def test_missing_thread(self, store):
        with pytest.raises(NotFound):
            store.get_chat_thread("nope")
        with pytest.raises(NotFound):
            store.append_chat_message("nope", "user", "hi")

    def test_invalid_role(self, store):
        chat_id = store.create_chat_thread(_node(store), "x")
        with pytest.raises(InvalidArgument):
            store.append_chat_message(chat_id, "system", "hi")

    def test_unknown_thread_has_no_messages(self, store):
        assert store.list_chat_messages("nope") == []
