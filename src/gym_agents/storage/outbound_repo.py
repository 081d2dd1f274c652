"""Outbound message queue, opt-outs, and owner task records."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Optional

from gym_agents.storage.database import Database
from gym_agents.storage.models import OwnerTask, utcnow
from gym_agents.storage.session_repo import ts


class OutboundRepository:
    def __init__(self, db: Database):
        self._db = db

    async def queue(
        self,
        account_id: str,
        channel: str,
        recipient: str,
        body: str,
        recipient_name: Optional[str] = None,
        subject: Optional[str] = None,
        session_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> str:
        message_id = str(uuid.uuid4())
        async with self._db.transaction() as conn:
            await conn.execute(
                """INSERT INTO outbound_messages
                   (id, account_id, session_id, conversation_id, channel, recipient,
                    recipient_name, subject, body, status, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'queued', ?)""",
                (
                    message_id,
                    account_id,
                    session_id,
                    conversation_id,
                    channel,
                    recipient,
                    recipient_name,
                    subject,
                    body,
                    ts(utcnow()),
                ),
            )
        return message_id

    async def count_since(self, account_id: str, since: datetime) -> int:
        cursor = await self._db.conn.execute(
            "SELECT COUNT(*) AS n FROM outbound_messages WHERE account_id = ? AND created_at >= ?",
            (account_id, ts(since)),
        )
        row = await cursor.fetchone()
        return int(row["n"])

    async def count_last_day(self, account_id: str) -> int:
        return await self.count_since(account_id, utcnow() - timedelta(days=1))

    async def add_optout(self, account_id: str, channel: str, contact: str) -> None:
        async with self._db.transaction() as conn:
            await conn.execute(
                """INSERT OR IGNORE INTO communication_optouts (account_id, channel, contact)
                   VALUES (?, ?, ?)""",
                (account_id, channel, contact),
            )

    async def is_opted_out(self, account_id: str, channel: str, contact: str) -> bool:
        cursor = await self._db.conn.execute(
            """SELECT 1 FROM communication_optouts
               WHERE account_id = ? AND channel = ? AND contact = ?""",
            (account_id, channel, contact),
        )
        return await cursor.fetchone() is not None


class TaskRepository:
    """Requests for owner input raised by agents."""

    def __init__(self, db: Database):
        self._db = db

    async def create(
        self, account_id: str, title: str, detail: str, session_id: Optional[str] = None
    ) -> OwnerTask:
        task = OwnerTask(
            id=str(uuid.uuid4()),
            account_id=account_id,
            session_id=session_id,
            title=title,
            detail=detail,
        )
        async with self._db.transaction() as conn:
            await conn.execute(
                """INSERT INTO owner_tasks (id, account_id, session_id, title, detail, status, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (task.id, account_id, session_id, title, detail, task.status, ts(task.created_at)),
            )
        return task

    async def list_open(self, account_id: str) -> list[OwnerTask]:
        cursor = await self._db.conn.execute(
            """SELECT * FROM owner_tasks WHERE account_id = ? AND status = 'open'
               ORDER BY created_at ASC""",
            (account_id,),
        )
        rows = await cursor.fetchall()
        return [
            OwnerTask(
                id=row["id"],
                account_id=row["account_id"],
                session_id=row["session_id"],
                title=row["title"],
                detail=row["detail"],
                status=row["status"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]
