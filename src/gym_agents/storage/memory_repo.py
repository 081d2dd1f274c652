"""Business memories injected into agent system prompts."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from gym_agents.storage.database import Database
from gym_agents.storage.models import Memory
from gym_agents.storage.session_repo import ts


class MemoryRepository:
    def __init__(self, db: Database):
        self._db = db

    async def save(
        self,
        account_id: str,
        category: str,
        content: str,
        subject_id: Optional[str] = None,
    ) -> Memory:
        memory = Memory(
            id=str(uuid.uuid4()),
            account_id=account_id,
            category=category,
            content=content,
            subject_id=subject_id,
        )
        async with self._db.transaction() as conn:
            await conn.execute(
                """INSERT INTO memories (id, account_id, category, content, subject_id, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (memory.id, account_id, category, content, subject_id, ts(memory.created_at)),
            )
        return memory

    async def list_for_account(
        self, account_id: str, subject_id: Optional[str] = None, limit: int = 50
    ) -> list[Memory]:
        if subject_id:
            cursor = await self._db.conn.execute(
                """SELECT * FROM memories WHERE account_id = ? AND subject_id = ?
                   ORDER BY created_at ASC, rowid ASC LIMIT ?""",
                (account_id, subject_id, limit),
            )
        else:
            cursor = await self._db.conn.execute(
                """SELECT * FROM memories WHERE account_id = ?
                   ORDER BY created_at ASC, rowid ASC LIMIT ?""",
                (account_id, limit),
            )
        rows = await cursor.fetchall()
        return [
            Memory(
                id=row["id"],
                account_id=row["account_id"],
                category=row["category"],
                content=row["content"],
                subject_id=row["subject_id"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    async def render_for_prompt(self, account_id: str, limit: int = 50) -> str:
        """Format memories as a prompt section, empty string when there are none."""
        memories = await self.list_for_account(account_id, limit=limit)
        if not memories:
            return ""
        lines = ["## Business Memories"]
        for m in memories:
            about = f" (about {m.subject_id})" if m.subject_id else ""
            lines.append(f"- [{m.category}]{about} {m.content}")
        return "\n".join(lines)
