"""SQLite-backed conversation history.

Turns are immutable once written and ordered by their autoincrement id, which is
monotonic within a database even when two turns share a timestamp.
"""
from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

ROLES = ("user", "assistant", "system")
KINDS = ("text", "command_directive", "command_result")

PLACEHOLDER_TITLE = re.compile(r"^Chat \d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS chats (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    title TEXT NOT NULL,
    summary TEXT
);
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    chat_id INTEGER NOT NULL REFERENCES chats (id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    message_type TEXT NOT NULL DEFAULT 'text',
    command_info TEXT
);
CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages (chat_id, id);
"""


@dataclass(frozen=True)
class ConversationTurn:
    role: str
    content: str
    kind: str = "text"
    command_metadata: Optional[str] = None
    timestamp: str = ""
    id: Optional[int] = None


@dataclass(frozen=True)
class ChatInfo:
    id: int
    title: str
    created_at: str
    updated_at: str
    summary: Optional[str]
    message_count: int


def placeholder_title(now: Optional[datetime] = None) -> str:
    return f"Chat {(now or datetime.now()).strftime('%Y-%m-%d %H:%M:%S')}"


def is_placeholder_title(title: Optional[str]) -> bool:
    return bool(title) and bool(PLACEHOLDER_TITLE.match(title))


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


class ChatHistoryStore:
    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.conn.executescript(_SCHEMA)
        self._migrate()
        logger.debug("History store ready at %s", self.db_path)

    def _migrate(self) -> None:
        cols = {row["name"] for row in self.conn.execute("PRAGMA table_info(chats)")}
        if "summary" not in cols:
            logger.info("Adding summary column to chats")
            self.conn.execute("ALTER TABLE chats ADD COLUMN summary TEXT")
            self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    # ---- chats -----------------------------------------------------------
    def create_chat(self, title: Optional[str] = None) -> int:
        now = _now()
        with self.conn:
            cur = self.conn.execute(
                "INSERT INTO chats (created_at, updated_at, title) VALUES (?, ?, ?)",
                (now, now, title or placeholder_title()),
            )
        logger.info("Chat created: %s", cur.lastrowid)
        return cur.lastrowid

    def chat_exists(self, chat_id: int) -> bool:
        row = self.conn.execute("SELECT 1 FROM chats WHERE id = ?", (chat_id,)).fetchone()
        return row is not None

    def list_chats(self) -> List[ChatInfo]:
        rows = self.conn.execute(
            """SELECT c.id, c.title, c.created_at, c.updated_at, c.summary,
                      COUNT(m.id) AS message_count,
                      MAX(m.id) AS last_message_id
               FROM chats c LEFT JOIN messages m ON m.chat_id = c.id
               GROUP BY c.id
               ORDER BY c.updated_at DESC, COALESCE(last_message_id, 0) DESC, c.id DESC"""
        ).fetchall()
        return [
            ChatInfo(r["id"], r["title"], r["created_at"], r["updated_at"], r["summary"], r["message_count"])
            for r in rows
        ]

    def delete_chat(self, chat_id: int) -> None:
        with self.conn:
            self.conn.execute("DELETE FROM chats WHERE id = ?", (chat_id,))
        logger.info("Chat %s deleted", chat_id)

    def get_title(self, chat_id: int) -> Optional[str]:
        row = self.conn.execute("SELECT title FROM chats WHERE id = ?", (chat_id,)).fetchone()
        return row["title"] if row else None

    def put_title(self, chat_id: int, title: str) -> None:
        with self.conn:
            self.conn.execute(
                "UPDATE chats SET title = ?, updated_at = ? WHERE id = ?", (title, _now(), chat_id)
            )

    def get_summary(self, chat_id: int) -> Optional[str]:
        row = self.conn.execute("SELECT summary FROM chats WHERE id = ?", (chat_id,)).fetchone()
        return row["summary"] if row else None

    def put_summary(self, chat_id: int, summary: str) -> None:
        """Overwrite the standing summary."""
        with self.conn:
            self.conn.execute(
                "UPDATE chats SET summary = ?, updated_at = ? WHERE id = ?", (summary, _now(), chat_id)
            )

    # ---- turns -----------------------------------------------------------
    def append_turn(
        self,
        chat_id: int,
        role: str,
        content: str,
        kind: str = "text",
        metadata: Optional[str] = None,
    ) -> int:
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role!r}")
        if kind not in KINDS:
            raise ValueError(f"Unknown message kind: {kind!r}")
        now = _now()
        with self.conn:
            cur = self.conn.execute(
                """INSERT INTO messages (chat_id, role, content, timestamp, message_type, command_info)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (chat_id, role, content, now, kind, metadata),
            )
            self.conn.execute("UPDATE chats SET updated_at = ? WHERE id = ?", (now, chat_id))
        return cur.lastrowid

    def get_recent_turns(self, chat_id: int, limit: int = 20) -> List[ConversationTurn]:
        """The newest *limit* turns, oldest first."""
        rows = self.conn.execute(
            """SELECT id, role, content, message_type, command_info, timestamp FROM messages
               WHERE chat_id = ? ORDER BY id DESC LIMIT ?""",
            (chat_id, limit),
        ).fetchall()
        return [self._turn(r) for r in reversed(rows)]

    def get_first_turns(self, chat_id: int, limit: int = 4, include_system: bool = False) -> List[ConversationTurn]:
        sql = "SELECT id, role, content, message_type, command_info, timestamp FROM messages WHERE chat_id = ?"
        if not include_system:
            sql += " AND role != 'system'"
        sql += " ORDER BY id ASC LIMIT ?"
        return [self._turn(r) for r in self.conn.execute(sql, (chat_id, limit))]

    def count_turns(self, chat_id: int, include_system: bool = False) -> int:
        sql = "SELECT COUNT(*) FROM messages WHERE chat_id = ?"
        if not include_system:
            sql += " AND role != 'system'"
        return self.conn.execute(sql, (chat_id,)).fetchone()[0]

    @staticmethod
    def _turn(row: sqlite3.Row) -> ConversationTurn:
        return ConversationTurn(
            role=row["role"],
            content=row["content"],
            kind=row["message_type"],
            command_metadata=row["command_info"],
            timestamp=row["timestamp"],
            id=row["id"],
        )

