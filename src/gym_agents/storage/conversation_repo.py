"""Conversation repository: channel-agnostic threads and their append-only messages."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any, Optional, Sequence

from gym_agents.core.types import (
    OPEN_CONVERSATION_STATUSES,
    ConversationStatus,
    MessageDirection,
)
from gym_agents.log import get_logger
from gym_agents.storage.database import Database
from gym_agents.storage.models import Conversation, ConversationMessage, utcnow
from gym_agents.storage.session_repo import ts

logger = get_logger(__name__)


class ConversationRepository:
    """CRUD over conversations plus the atomic session link pointer."""

    def __init__(self, db: Database):
        self._db = db

    async def create(
        self,
        account_id: str,
        contact_id: str,
        channel: str,
        assigned_role: str,
        contact_name: Optional[str] = None,
        contact_email: Optional[str] = None,
        contact_phone: Optional[str] = None,
        subject: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Conversation:
        conversation = Conversation(
            id=str(uuid.uuid4()),
            account_id=account_id,
            contact_id=contact_id,
            channel=channel,
            contact_name=contact_name,
            contact_email=contact_email,
            contact_phone=contact_phone,
            assigned_role=assigned_role,
            subject=subject,
            metadata=metadata or {},
        )
        async with self._db.transaction() as conn:
            await conn.execute(
                """INSERT INTO conversations
                   (id, account_id, contact_id, contact_name, contact_email, contact_phone,
                    channel, status, assigned_role, subject, metadata_json, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    conversation.id,
                    account_id,
                    contact_id,
                    contact_name,
                    contact_email,
                    contact_phone,
                    channel,
                    conversation.status.value,
                    assigned_role,
                    subject,
                    json.dumps(conversation.metadata),
                    ts(conversation.created_at),
                    ts(conversation.updated_at),
                ),
            )
        logger.info(
            "conversation_created",
            conversation_id=conversation.id,
            channel=channel,
            assigned_role=assigned_role,
        )
        return conversation

    async def get(self, conversation_id: str) -> Optional[Conversation]:
        cursor = await self._db.conn.execute(
            "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_conversation(row) if row else None

    async def find_open(
        self, account_id: str, contact_id: str, channel: Optional[str] = None
    ) -> Optional[Conversation]:
        """Most recently active open conversation with a contact, optionally on one channel."""
        placeholders = ",".join("?" for _ in OPEN_CONVERSATION_STATUSES)
        sql = (
            f"SELECT * FROM conversations WHERE account_id = ? AND contact_id = ? "
            f"AND status IN ({placeholders})"
        )
        params: list[Any] = [account_id, contact_id, *(s.value for s in OPEN_CONVERSATION_STATUSES)]
        if channel:
            sql += " AND channel = ?"
            params.append(channel)
        sql += " ORDER BY updated_at DESC, rowid DESC LIMIT 1"
        cursor = await self._db.conn.execute(sql, params)
        row = await cursor.fetchone()
        return self._row_to_conversation(row) if row else None

    async def list_for_account(
        self,
        account_id: str,
        statuses: Optional[Sequence[ConversationStatus]] = None,
        assigned_role: Optional[str] = None,
        limit: int = 50,
    ) -> list[Conversation]:
        sql = "SELECT * FROM conversations WHERE account_id = ?"
        params: list[Any] = [account_id]
        if statuses:
            sql += f" AND status IN ({','.join('?' for _ in statuses)})"
            params.extend(s.value for s in statuses)
        if assigned_role:
            sql += " AND assigned_role = ?"
            params.append(assigned_role)
        sql += " ORDER BY updated_at DESC LIMIT ?"
        params.append(limit)
        cursor = await self._db.conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._row_to_conversation(row) for row in rows]

    async def add_message(
        self,
        conversation_id: str,
        direction: MessageDirection,
        channel: str,
        content: str,
        sender: Optional[str] = None,
        external_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ConversationMessage:
        """Append a message and touch the conversation's updated_at."""
        message = ConversationMessage(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            direction=direction,
            channel=channel,
            content=content,
            sender=sender,
            external_id=external_id,
            metadata=metadata or {},
        )
        async with self._db.transaction() as conn:
            await conn.execute(
                """INSERT INTO conversation_messages
                   (id, conversation_id, direction, channel, content, sender, external_id,
                    metadata_json, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    message.id,
                    conversation_id,
                    direction.value,
                    channel,
                    content,
                    sender,
                    external_id,
                    json.dumps(message.metadata),
                    ts(message.created_at),
                ),
            )
            await conn.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (ts(utcnow()), conversation_id),
            )
        return message

    async def list_messages(
        self, conversation_id: str, limit: Optional[int] = None
    ) -> list[ConversationMessage]:
        """Messages in stable chronological order. With limit, the most recent ones."""
        if limit is None:
            cursor = await self._db.conn.execute(
                """SELECT * FROM conversation_messages WHERE conversation_id = ?
                   ORDER BY created_at ASC, rowid ASC""",
                (conversation_id,),
            )
            rows = await cursor.fetchall()
        else:
            cursor = await self._db.conn.execute(
                """SELECT * FROM conversation_messages WHERE conversation_id = ?
                   ORDER BY created_at DESC, rowid DESC LIMIT ?""",
                (conversation_id, limit),
            )
            rows = list(reversed(await cursor.fetchall()))
        return [self._row_to_message(row) for row in rows]

    async def count_messages(self, conversation_id: str) -> int:
        cursor = await self._db.conn.execute(
            "SELECT COUNT(*) AS n FROM conversation_messages WHERE conversation_id = ?",
            (conversation_id,),
        )
        row = await cursor.fetchone()
        return int(row["n"])

    async def update_status(self, conversation_id: str, status: ConversationStatus) -> None:
        async with self._db.transaction() as conn:
            await conn.execute(
                "UPDATE conversations SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, ts(utcnow()), conversation_id),
            )

    async def reassign(
        self,
        conversation_id: str,
        assigned_role: str,
        status: Optional[ConversationStatus] = None,
    ) -> bool:
        """Assign a new owning role. Detaches whichever session was linked."""
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """UPDATE conversations
                   SET assigned_role = ?, status = COALESCE(?, status), session_id = NULL,
                       updated_at = ?
                   WHERE id = ?""",
                (assigned_role, status.value if status else None, ts(utcnow()), conversation_id),
            )
            updated = cursor.rowcount == 1
        if updated:
            logger.info(
                "conversation_reassigned",
                conversation_id=conversation_id,
                assigned_role=assigned_role,
            )
        return updated

    async def link_session(
        self,
        conversation_id: str,
        session_id: str,
        expected_session_id: Optional[str] = None,
    ) -> bool:
        """Compare-and-set the linked session pointer in a single UPDATE.

        Succeeds only when the current pointer equals expected_session_id, so of
        two concurrent linkers expecting the same value exactly one wins.
        """
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """UPDATE conversations SET session_id = ?, updated_at = ?
                   WHERE id = ? AND session_id IS ?""",
                (session_id, ts(utcnow()), conversation_id, expected_session_id),
            )
            return cursor.rowcount == 1

    async def unlink_session(self, conversation_id: str, session_id: str) -> bool:
        """Clear the pointer only if it still names session_id."""
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """UPDATE conversations SET session_id = NULL, updated_at = ?
                   WHERE id = ? AND session_id = ?""",
                (ts(utcnow()), conversation_id, session_id),
            )
            return cursor.rowcount == 1

    @staticmethod
    def _row_to_conversation(row) -> Conversation:
        return Conversation(
            id=row["id"],
            account_id=row["account_id"],
            contact_id=row["contact_id"],
            channel=row["channel"],
            contact_name=row["contact_name"],
            contact_email=row["contact_email"],
            contact_phone=row["contact_phone"],
            status=ConversationStatus(row["status"]),
            assigned_role=row["assigned_role"],
            session_id=row["session_id"],
            subject=row["subject"],
            metadata=json.loads(row["metadata_json"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_message(row) -> ConversationMessage:
        return ConversationMessage(
            id=row["id"],
            conversation_id=row["conversation_id"],
            direction=MessageDirection(row["direction"]),
            channel=row["channel"],
            content=row["content"],
            sender=row["sender"],
            external_id=row["external_id"],
            metadata=json.loads(row["metadata_json"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
