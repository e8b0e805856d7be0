"""SQLite storage for the slide graph: slides, links, and side chats."""

from __future__ import annotations

import json
import sqlite3
import time
import uuid
from collections.abc import Sequence
from pathlib import Path

from slidegraph.models import (
    ChatRef,
    ChildRef,
    ConversationMessage,
    LinkRef,
    Slide,
    SlideNode,
    dump_history,
    parse_history,
)


class StoreError(Exception):
    """Base class for graph store errors."""


class NotFound(StoreError):
    pass


class Conflict(StoreError):
    pass


class InvalidArgument(StoreError):
    pass


_UNSET = object()


def _now_ms() -> int:
    return int(time.time() * 1000)


class SqliteStore:
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

    def close(self) -> None:
        self._conn.close()

    def init_db(self) -> None:
        """Create all tables and indexes."""
        cur = self._conn.cursor()
        cur.executescript(
            """
            CREATE TABLE IF NOT EXISTS slides (
                id TEXT PRIMARY KEY,
                title TEXT,
                subtitle TEXT,
                background TEXT,
                dark INTEGER,
                blocks TEXT NOT NULL,
                actions TEXT,
                parent_id TEXT REFERENCES slides(id),
                main_child_id TEXT,
                conversation_history TEXT,
                created_at INTEGER NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_slides_parent ON slides(parent_id);

            CREATE TABLE IF NOT EXISTS slide_links (
                id TEXT PRIMARY KEY,
                from_slide_id TEXT NOT NULL REFERENCES slides(id),
                to_slide_id TEXT NOT NULL REFERENCES slides(id),
                created_at INTEGER NOT NULL,
                UNIQUE (from_slide_id, to_slide_id)
            );
            CREATE INDEX IF NOT EXISTS idx_links_to ON slide_links(to_slide_id);

            CREATE TABLE IF NOT EXISTS chats (
                id TEXT PRIMARY KEY,
                slide_id TEXT NOT NULL REFERENCES slides(id),
                selected_text TEXT NOT NULL,
                block_id TEXT,
                created_at INTEGER NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_chats_slide ON chats(slide_id);

            CREATE TABLE IF NOT EXISTS chat_messages (
                id TEXT PRIMARY KEY,
                chat_id TEXT NOT NULL REFERENCES chats(id),
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at INTEGER NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_chat_messages_chat ON chat_messages(chat_id);
            """
        )
        self._conn.commit()

        # ── Migrations ──
        self._migrate_add_column("slides", "source_prompt", "TEXT")

    def _migrate_add_column(self, table: str, column: str, col_type: str) -> None:
        """Add a column to a table if it doesn't exist."""
        cur = self._conn.execute(f"PRAGMA table_info({table})")
        columns = {row[1] for row in cur.fetchall()}
        if column not in columns:
            self._conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}")
            self._conn.commit()

    def _exists(self, slide_id: str) -> bool:
        row = self._conn.execute("SELECT 1 FROM slides WHERE id = ?", (slide_id,)).fetchone()
        return row is not None

    # ── Slides ──

    def create_node(
        self,
        slide: Slide,
        parent_id: str | None,
        history: Sequence[ConversationMessage],
        is_main_child: bool,
        source_prompt: str | None = None,
    ) -> str:
        """Insert a finalized slide as a new node. Returns the node id.

        When ``is_main_child`` is set the parent's main-child pointer is
        moved to the new node.
        """
        if parent_id is not None and not self._exists(parent_id):
            raise NotFound(f"parent slide {parent_id} not found")
        node_id = str(uuid.uuid4())
        self._conn.execute(
            """INSERT INTO slides
               (id, title, subtitle, background, dark, blocks, actions, parent_id,
                conversation_history, source_prompt, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                node_id,
                slide.title,
                slide.subtitle,
                slide.background,
                None if slide.dark is None else int(slide.dark),
                json.dumps([b.to_wire() for b in slide.blocks]),
                json.dumps([a.to_wire() for a in slide.actions]),
                parent_id,
                json.dumps(dump_history(history)),
                source_prompt,
                _now_ms(),
            ),
        )
        if parent_id is not None and is_main_child:
            self._conn.execute(
                "UPDATE slides SET main_child_id = ? WHERE id = ?", (node_id, parent_id),
            )
        self._conn.commit()
        return node_id

    def _row_to_slide(self, row: sqlite3.Row) -> Slide:
        return Slide.model_validate({
            "id": row["id"],
            "title": row["title"],
            "subtitle": row["subtitle"],
            "background": row["background"],
            "dark": None if row["dark"] is None else bool(row["dark"]),
            "blocks": json.loads(row["blocks"]),
            "actions": json.loads(row["actions"]) if row["actions"] else [],
        })

    def _link_refs(self, column: str, other: str, slide_id: str) -> list[LinkRef]:
        cur = self._conn.execute(
            f"""SELECT l.id, l.{other} AS slide_id, s.title
                FROM slide_links l LEFT JOIN slides s ON s.id = l.{other}
                WHERE l.{column} = ?
                ORDER BY l.created_at, l.rowid""",
            (slide_id,),
        )
        return [LinkRef(id=r["id"], slide_id=r["slide_id"], title=r["title"]) for r in cur.fetchall()]

    def get_node(self, slide_id: str) -> SlideNode:
        """Load a node with its children, links, backlinks and chats."""
        row = self._conn.execute("SELECT * FROM slides WHERE id = ?", (slide_id,)).fetchone()
        if row is None:
            raise NotFound(f"slide {slide_id} not found")

        children = [
            ChildRef(id=c["id"], title=c["title"], is_main=c["id"] == row["main_child_id"])
            for c in self._conn.execute(
                "SELECT id, title FROM slides WHERE parent_id = ? ORDER BY created_at, rowid",
                (slide_id,),
            ).fetchall()
        ]
        chats = [
            ChatRef(
                id=c["id"], selected_text=c["selected_text"],
                block_id=c["block_id"], message_count=c["message_count"],
            )
            for c in self._conn.execute(
                """SELECT c.id, c.selected_text, c.block_id,
                          (SELECT COUNT(*) FROM chat_messages m WHERE m.chat_id = c.id) AS message_count
                   FROM chats c WHERE c.slide_id = ? ORDER BY c.created_at, c.rowid""",
                (slide_id,),
            ).fetchall()
        ]
        history = json.loads(row["conversation_history"]) if row["conversation_history"] else []
        return SlideNode(
            id=row["id"],
            slide=self._row_to_slide(row),
            parent_id=row["parent_id"],
            main_child_id=row["main_child_id"],
            source_prompt=row["source_prompt"],
            conversation_history=parse_history(history),
            children=children,
            links=self._link_refs("from_slide_id", "to_slide_id", slide_id),
            backlinks=self._link_refs("to_slide_id", "from_slide_id", slide_id),
            chats=chats,
            created_at=row["created_at"],
        )

    def get_history(self, slide_id: str) -> list[ConversationMessage]:
        row = self._conn.execute(
            "SELECT conversation_history FROM slides WHERE id = ?", (slide_id,),
        ).fetchone()
        if row is None:
            raise NotFound(f"slide {slide_id} not found")
        if not row["conversation_history"]:
            return []
        return parse_history(json.loads(row["conversation_history"]))

    def list_nodes(self) -> list[dict]:
        """All nodes, newest first."""
        cur = self._conn.execute(
            "SELECT id, title, parent_id, created_at FROM slides ORDER BY created_at DESC, rowid DESC",
        )
        return [
            {"id": r["id"], "title": r["title"], "parentId": r["parent_id"], "createdAt": r["created_at"]}
            for r in cur.fetchall()
        ]

    def search_nodes(self, query: str, limit: int = 20) -> list[dict]:
        """Nodes whose title or subtitle contains ``query``."""
        pattern = f"%{query}%"
        cur = self._conn.execute(
            """SELECT id, title FROM slides
               WHERE title LIKE ? OR subtitle LIKE ?
               ORDER BY created_at DESC, rowid DESC LIMIT ?""",
            (pattern, pattern, limit),
        )
        return [{"id": r["id"], "title": r["title"]} for r in cur.fetchall()]

    def get_graph(self) -> dict:
        """Nodes and link edges for graph views."""
        nodes = [
            {"id": r["id"], "title": r["title"], "parentId": r["parent_id"]}
            for r in self._conn.execute(
                "SELECT id, title, parent_id FROM slides ORDER BY created_at, rowid",
            ).fetchall()
        ]
        links = [
            {"from": r["from_slide_id"], "to": r["to_slide_id"]}
            for r in self._conn.execute(
                "SELECT from_slide_id, to_slide_id FROM slide_links ORDER BY created_at, rowid",
            ).fetchall()
        ]
        return {"nodes": nodes, "links": links}

    def update_node(
        self,
        slide_id: str,
        title: str | None | object = _UNSET,
        main_child_id: str | None | object = _UNSET,
    ) -> None:
        """Edit a node's title and/or main-child pointer. Omitted fields are kept."""
        if not self._exists(slide_id):
            raise NotFound(f"slide {slide_id} not found")
        updates: dict[str, object] = {}
        if title is not _UNSET:
            updates["title"] = title
        if main_child_id is not _UNSET:
            updates["main_child_id"] = main_child_id
        if not updates:
            return
        assignments = ", ".join(f"{k} = ?" for k in updates)
        self._conn.execute(
            f"UPDATE slides SET {assignments} WHERE id = ?", (*updates.values(), slide_id),
        )
        self._conn.commit()

    # ── Links ──

    def add_link(self, from_slide_id: str, to_slide_id: str) -> str:
        if from_slide_id == to_slide_id:
            raise InvalidArgument("cannot link a slide to itself")
        for slide_id in (from_slide_id, to_slide_id):
            if not self._exists(slide_id):
                raise NotFound(f"slide {slide_id} not found")
        link_id = str(uuid.uuid4())
        try:
            self._conn.execute(
                """INSERT INTO slide_links (id, from_slide_id, to_slide_id, created_at)
                   VALUES (?, ?, ?, ?)""",
                (link_id, from_slide_id, to_slide_id, _now_ms()),
            )
        except sqlite3.IntegrityError as e:
            self._conn.rollback()
            raise Conflict("link already exists") from e
        self._conn.commit()
        return link_id

    def remove_link(self, link_id: str) -> bool:
        cur = self._conn.execute("DELETE FROM slide_links WHERE id = ?", (link_id,))
        self._conn.commit()
        return cur.rowcount > 0

    # ── Chats ──

    def create_chat_thread(self, slide_id: str, selected_text: str, block_id: str | None = None) -> str:
        if not self._exists(slide_id):
            raise NotFound(f"slide {slide_id} not found")
        chat_id = str(uuid.uuid4())
        self._conn.execute(
            """INSERT INTO chats (id, slide_id, selected_text, block_id, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (chat_id, slide_id, selected_text, block_id, _now_ms()),
        )
        self._conn.commit()
        return chat_id

    def get_chat_thread(self, chat_id: str) -> dict:
        row = self._conn.execute("SELECT * FROM chats WHERE id = ?", (chat_id,)).fetchone()
        if row is None:
            raise NotFound(f"chat {chat_id} not found")
        return {
            "id": row["id"],
            "slideId": row["slide_id"],
            "selectedText": row["selected_text"],
            "blockId": row["block_id"],
            "createdAt": row["created_at"],
        }

    def append_chat_message(self, chat_id: str, role: str, content: str) -> str:
        if role not in ("user", "assistant"):
            raise InvalidArgument(f"invalid chat role {role!r}")
        message_id = str(uuid.uuid4())
        try:
            self._conn.execute(
                """INSERT INTO chat_messages (id, chat_id, role, content, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (message_id, chat_id, role, content, _now_ms()),
            )
        except sqlite3.IntegrityError as e:
            self._conn.rollback()
            raise NotFound(f"chat {chat_id} not found") from e
        self._conn.commit()
        return message_id

    def list_chat_messages(self, chat_id: str) -> list[dict]:
        cur = self._conn.execute(
            """SELECT id, role, content, created_at FROM chat_messages
               WHERE chat_id = ? ORDER BY created_at, rowid""",
            (chat_id,),
        )
        return [
            {"id": r["id"], "role": r["role"], "content": r["content"], "createdAt": r["created_at"]}
            for r in cur.fetchall()
        ]
