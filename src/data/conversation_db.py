"""
Soot Assistant — Conversation Database.

Agent conversations, their ordered messages and message attachments.
A conversation belongs to one Telegram user inside one household and is
only ever read back for that user.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from src.data.models import Attachment, Conversation, Message, MessageRole

logger = logging.getLogger(__name__)


def default_conversation_title(now: datetime | None = None) -> str:
    """'Conversation 18/10/2026 09:30' (fr-FR short date and time)."""
    now = now or datetime.now()
    return f"Conversation {now.strftime('%d/%m/%Y %H:%M')}"


class ConversationDB:
    """SQLite-backed storage for agent conversations."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS agent_conversations (
                    id               INTEGER PRIMARY KEY AUTOINCREMENT,
                    house_id         INTEGER NOT NULL,
                    telegram_user_id INTEGER NOT NULL,
                    title            TEXT    NOT NULL,
                    created_at       TEXT    NOT NULL,
                    updated_at       TEXT    NOT NULL
                );
                CREATE TABLE IF NOT EXISTS agent_messages (
                    id              INTEGER PRIMARY KEY AUTOINCREMENT,
                    conversation_id INTEGER NOT NULL
                        REFERENCES agent_conversations(id) ON DELETE CASCADE,
                    role            TEXT    NOT NULL,
                    content         TEXT    NOT NULL DEFAULT '',
                    created_at      TEXT    NOT NULL
                );
                CREATE TABLE IF NOT EXISTS agent_attachments (
                    id         INTEGER PRIMARY KEY AUTOINCREMENT,
                    message_id INTEGER NOT NULL REFERENCES agent_messages(id) ON DELETE CASCADE,
                    name       TEXT    NOT NULL,
                    mime_type  TEXT    NOT NULL,
                    size_bytes INTEGER NOT NULL,
                    path       TEXT    NOT NULL
                );
            """)
        logger.debug("Conversation tables initialized at %s", self._db_path)

    @staticmethod
    def _row_to_conversation(row: sqlite3.Row) -> Conversation:
        keys = row.keys()
        return Conversation(
            id=row["id"],
            house_id=row["house_id"],
            telegram_user_id=row["telegram_user_id"],
            title=row["title"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            preview=row["preview"] or "" if "preview" in keys else "",
        )

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def create_conversation(
        self, house_id: int, telegram_user_id: int, title: str | None = None,
    ) -> Conversation:
        now = datetime.now()
        title = title or default_conversation_title(now)
        stamp = now.isoformat(timespec="seconds")
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO agent_conversations
                    (house_id, telegram_user_id, title, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (house_id, telegram_user_id, title, stamp, stamp),
            )
            conversation_id = cursor.lastrowid
        logger.info("Conversation #%d created for user %d", conversation_id, telegram_user_id)
        return Conversation(
            id=conversation_id,
            house_id=house_id,
            telegram_user_id=telegram_user_id,
            title=title,
            created_at=stamp,
            updated_at=stamp,
        )

    def get_conversation(self, conversation_id: int, telegram_user_id: int) -> Conversation | None:
        """Fetch a conversation owned by the given user."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM agent_conversations WHERE id = ? AND telegram_user_id = ?",
                (conversation_id, telegram_user_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_conversation(row)

    def list_conversations(self, telegram_user_id: int, limit: int = 100) -> list[Conversation]:
        """Most recently updated first, each with a preview of its last message."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT c.*,
                       (SELECT CASE
                                 WHEN m.content != '' THEN m.content
                                 WHEN (SELECT COUNT(*) FROM agent_attachments a
                                        WHERE a.message_id = m.id) > 0
                                   THEN (SELECT COUNT(*) FROM agent_attachments a
                                          WHERE a.message_id = m.id) || ' pièce(s) jointe(s)'
                                 ELSE ''
                               END
                          FROM agent_messages m
                         WHERE m.conversation_id = c.id
                         ORDER BY m.id DESC LIMIT 1) AS preview
                FROM agent_conversations c
                WHERE c.telegram_user_id = ?
                ORDER BY c.updated_at DESC, c.id DESC
                LIMIT ?
                """,
                (telegram_user_id, limit),
            ).fetchall()
        return [self._row_to_conversation(r) for r in rows]

    def rename_conversation(self, conversation_id: int, telegram_user_id: int, title: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE agent_conversations SET title = ? WHERE id = ? AND telegram_user_id = ?",
                (title, conversation_id, telegram_user_id),
            )
        return cursor.rowcount > 0

    def retitle_if_unchanged(
        self,
        conversation_id: int,
        telegram_user_id: int,
        current_title: str,
        new_title: str,
    ) -> bool:
        """Rename only if nobody renamed the conversation in the meantime."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE agent_conversations SET title = ?
                WHERE id = ? AND telegram_user_id = ? AND title = ?
                """,
                (new_title, conversation_id, telegram_user_id, current_title),
            )
        updated = cursor.rowcount > 0
        if updated:
            logger.info("Conversation #%d retitled to '%s'", conversation_id, new_title)
        return updated

    def delete_conversation(self, conversation_id: int, telegram_user_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM agent_conversations WHERE id = ? AND telegram_user_id = ?",
                (conversation_id, telegram_user_id),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Conversation #%d deleted", conversation_id)
        return deleted

    def touch(self, conversation_id: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE agent_conversations SET updated_at = ? WHERE id = ?",
                (datetime.now().isoformat(timespec="seconds"), conversation_id),
            )

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_message(
        self,
        conversation_id: int,
        role: MessageRole,
        content: str,
        attachments: list[dict] | None = None,
    ) -> Message:
        """Append a message. attachments: dicts with name, mime_type, size_bytes, path."""
        stamp = datetime.now().isoformat(timespec="seconds")
        saved: list[Attachment] = []
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO agent_messages (conversation_id, role, content, created_at) VALUES (?, ?, ?, ?)",
                (conversation_id, role.value, content, stamp),
            )
            message_id = cursor.lastrowid
            for item in attachments or []:
                att_cursor = conn.execute(
                    """
                    INSERT INTO agent_attachments (message_id, name, mime_type, size_bytes, path)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (message_id, item["name"], item["mime_type"], item["size_bytes"], item["path"]),
                )
                saved.append(Attachment(
                    id=att_cursor.lastrowid,
                    message_id=message_id,
                    name=item["name"],
                    mime_type=item["mime_type"],
                    size_bytes=item["size_bytes"],
                    path=item["path"],
                ))
        return Message(
            id=message_id,
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=stamp,
            attachments=saved,
        )

    def message_count(self, conversation_id: int) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM agent_messages WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
        return row["n"]

    def recent_history(self, conversation_id: int, limit: int = 60) -> list[Message]:
        """The last `limit` messages, oldest first, with their attachments."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM agent_messages
                WHERE conversation_id = ?
                ORDER BY id DESC LIMIT ?
                """,
                (conversation_id, limit),
            ).fetchall()
            messages = [
                Message(
                    id=r["id"],
                    conversation_id=r["conversation_id"],
                    role=MessageRole(r["role"]),
                    content=r["content"],
                    created_at=r["created_at"],
                )
                for r in reversed(rows)
            ]
            by_id = {m.id: m for m in messages}
            if by_id:
                placeholders = ", ".join("?" for _ in by_id)
                att_rows = conn.execute(
                    f"SELECT * FROM agent_attachments WHERE message_id IN ({placeholders}) ORDER BY id",
                    list(by_id),
                ).fetchall()
                for a in att_rows:
                    by_id[a["message_id"]].attachments.append(Attachment(
                        id=a["id"],
                        message_id=a["message_id"],
                        name=a["name"],
                        mime_type=a["mime_type"],
                        size_bytes=a["size_bytes"],
                        path=a["path"],
                    ))
        return messages
