"""SQLite 会话存储。

两张只追加的表：conversations(id, created_at) 与 messages(...)。
messages.seq 为自增主键，读取时按 seq 排序，保证顺序即写入顺序，
即使两条消息的 created_at 相同也不会乱序。
"""

import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional
from uuid import uuid4

from support_chat.config.settings import settings
from support_chat.domain.conversation import TranscriptStore, Conversation, MessageRecord, Sender
from support_chat.domain.exceptions import (
    DuplicateConversationError,
    StoreError,
    UnknownConversationError,
)
from support_chat.infrastructure.logging.logger import logger


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        conversation_id TEXT NOT NULL REFERENCES conversations(id),
        sender TEXT NOT NULL CHECK (sender IN ('user', 'ai')),
        text TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_messages_conversation_seq
    ON messages(conversation_id, seq)
    """,
)


def _to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: str) -> datetime:
    return datetime.fromisoformat(value)


class SqliteTranscriptStore(TranscriptStore):
    """SQLite 实现，单连接 + 锁串行化所有访问。"""

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = Path(db_path or settings.sqlite_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self.conn: Optional[sqlite3.Connection] = None
        self.initialize()
        logger.info("SqliteTranscriptStore initialized", extra={"extra": {"path": str(self.db_path)}})

    def _get_connection(self) -> sqlite3.Connection:
        if self.conn is None:
            self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON")
            self.conn.execute("PRAGMA synchronous = FULL")
        return self.conn

    def initialize(self) -> None:
        """建表（若不存在）。"""
        with self._lock:
            try:
                conn = self._get_connection()
                for statement in _SCHEMA:
                    conn.execute(statement)
                conn.commit()
            except sqlite3.Error as e:
                raise StoreError(code="STORE_WRITE_ERROR", message=str(e))

    def close(self) -> None:
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

    def create_conversation(self, conversation_id: str, created_at: datetime) -> None:
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute(
                    "INSERT INTO conversations (id, created_at) VALUES (?, ?)",
                    (conversation_id, _to_iso(created_at)),
                )
                conn.commit()
            except sqlite3.IntegrityError:
                conn.rollback()
                raise DuplicateConversationError(code="DUPLICATE_CONVERSATION", message=conversation_id)
            except sqlite3.Error as e:
                conn.rollback()
                raise StoreError(code="STORE_WRITE_ERROR", message=str(e))

    def get_conversation(self, conversation_id: str) -> Conversation:
        row = self._fetch_one("SELECT id, created_at FROM conversations WHERE id = ?", (conversation_id,))
        if row is None:
            raise UnknownConversationError(code="UNKNOWN_CONVERSATION", message=str(conversation_id))
        return Conversation(id=row["id"], created_at=_from_iso(row["created_at"]))

    def list_conversations(self) -> List[Conversation]:
        rows = self._fetch_all("SELECT id, created_at FROM conversations ORDER BY created_at ASC, rowid ASC", ())
        return [Conversation(id=r["id"], created_at=_from_iso(r["created_at"])) for r in rows]

    def append_message(self, conversation_id: str, sender: Sender, text: str, created_at: datetime) -> str:
        message_id = f"m-{uuid4().hex}"
        with self._lock:
            conn = self._get_connection()
            try:
                exists = conn.execute("SELECT 1 FROM conversations WHERE id = ?", (conversation_id,)).fetchone()
                if exists is None:
                    raise UnknownConversationError(code="UNKNOWN_CONVERSATION", message=str(conversation_id))
                last = conn.execute(
                    "SELECT created_at FROM messages WHERE conversation_id = ? ORDER BY seq DESC LIMIT 1",
                    (conversation_id,),
                ).fetchone()
                if last is not None and created_at < _from_iso(last["created_at"]):
                    created_at = _from_iso(last["created_at"])
                conn.execute(
                    """INSERT INTO messages (id, conversation_id, sender, text, created_at)
                       VALUES (?, ?, ?, ?, ?)""",
                    (message_id, conversation_id, sender, text, _to_iso(created_at)),
                )
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StoreError(code="STORE_WRITE_ERROR", message=str(e))
        return message_id

    def list_recent_messages(self, conversation_id: str, limit: int) -> List[MessageRecord]:
        if limit <= 0:
            return []
        rows = self._fetch_all(
            """SELECT id, conversation_id, sender, text, created_at FROM messages
               WHERE conversation_id = ?
               ORDER BY seq DESC
               LIMIT ?""",
            (conversation_id, limit),
        )
        return [self._to_message(r) for r in reversed(rows)]

    def list_all_messages(self, conversation_id: str) -> List[MessageRecord]:
        rows = self._fetch_all(
            """SELECT id, conversation_id, sender, text, created_at FROM messages
               WHERE conversation_id = ?
               ORDER BY seq ASC""",
            (conversation_id,),
        )
        return [self._to_message(r) for r in rows]

    # ---- 辅助方法 ----

    def _fetch_one(self, query: str, params: tuple) -> Optional[sqlite3.Row]:
        with self._lock:
            try:
                return self._get_connection().execute(query, params).fetchone()
            except sqlite3.Error as e:
                raise StoreError(code="STORE_READ_ERROR", message=str(e))

    def _fetch_all(self, query: str, params: tuple) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._get_connection().execute(query, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(code="STORE_READ_ERROR", message=str(e))

    @staticmethod
    def _to_message(row: sqlite3.Row) -> MessageRecord:
        return MessageRecord(
            id=row["id"],
            conversation_id=row["conversation_id"],
            sender="user" if row["sender"] == "user" else "ai",
            text=str(row["text"]),
            created_at=_from_iso(row["created_at"]),
        )
