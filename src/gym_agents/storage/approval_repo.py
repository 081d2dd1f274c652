"""Pending human-approval records for side-effecting tool calls."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Optional

from gym_agents.core.types import ApprovalStatus
from gym_agents.storage.database import Database
from gym_agents.storage.models import PendingApproval, ToolCall, utcnow
from gym_agents.storage.session_repo import ts


class ApprovalRepository:
    def __init__(self, db: Database):
        self._db = db

    async def create(self, session_id: str, account_id: str, tool_call: ToolCall) -> PendingApproval:
        approval = PendingApproval(
            id=str(uuid.uuid4()),
            session_id=session_id,
            account_id=account_id,
            tool_call=tool_call,
        )
        async with self._db.transaction() as conn:
            await conn.execute(
                """INSERT INTO pending_approvals
                   (id, session_id, account_id, tool_call_json, status, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    approval.id,
                    session_id,
                    account_id,
                    json.dumps(tool_call.to_dict()),
                    approval.status.value,
                    ts(approval.created_at),
                ),
            )
        return approval

    async def get(self, approval_id: str) -> Optional[PendingApproval]:
        cursor = await self._db.conn.execute(
            "SELECT * FROM pending_approvals WHERE id = ?", (approval_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_approval(row) if row else None

    async def list_pending(self, account_id: str) -> list[PendingApproval]:
        cursor = await self._db.conn.execute(
            """SELECT * FROM pending_approvals WHERE account_id = ? AND status = 'pending'
               ORDER BY created_at ASC""",
            (account_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_approval(row) for row in rows]

    async def resolve(
        self,
        approval_id: str,
        status: ApprovalStatus,
        note: Optional[str] = None,
    ) -> bool:
        """Move a pending approval to approved/rejected. False if it was already resolved."""
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """UPDATE pending_approvals SET status = ?, note = ?, resolved_at = ?
                   WHERE id = ? AND status = 'pending'""",
                (status.value, note, ts(utcnow()), approval_id),
            )
            return cursor.rowcount == 1

    async def set_continuation(self, approval_id: str, session_id: str) -> None:
        async with self._db.transaction() as conn:
            await conn.execute(
                "UPDATE pending_approvals SET continuation_session_id = ? WHERE id = ?",
                (session_id, approval_id),
            )

    @staticmethod
    def _row_to_approval(row) -> PendingApproval:
        return PendingApproval(
            id=row["id"],
            session_id=row["session_id"],
            account_id=row["account_id"],
            tool_call=ToolCall.from_dict(json.loads(row["tool_call_json"])),
            status=ApprovalStatus(row["status"]),
            note=row["note"],
            continuation_session_id=row["continuation_session_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            resolved_at=datetime.fromisoformat(row["resolved_at"]) if row["resolved_at"] else None,
        )
