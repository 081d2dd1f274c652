"""Persistence for agent sessions and their turn logs."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from gym_agents.core.types import SESSION_TRANSITIONS, AutonomyMode, CreatedBy, SessionStatus
from gym_agents.errors import InvalidTransitionError, SessionNotFoundError
from gym_agents.log import get_logger
from gym_agents.storage.database import Database
from gym_agents.storage.models import SessionRecord, ToolResult, TurnRecord, utcnow

logger = get_logger(__name__)


def ts(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


class SessionRepository:
    """CRUD over agent_sessions and the append-only session_turns log."""

    def __init__(self, db: Database):
        self._db = db

    async def create(self, record: SessionRecord) -> SessionRecord:
        async with self._db.transaction() as conn:
            await conn.execute(
                """INSERT INTO agent_sessions
                   (id, account_id, role, goal, created_by, autonomy_mode, tool_groups_json,
                    max_turns, budget_cents, timeout_seconds, status, system_prompt,
                    conversation_id, parent_session_id, context_json, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.id,
                    record.account_id,
                    record.role,
                    record.goal,
                    record.created_by.value,
                    record.autonomy_mode.value,
                    json.dumps(record.tool_groups),
                    record.max_turns,
                    record.budget_cents,
                    record.timeout_seconds,
                    record.status.value,
                    record.system_prompt,
                    record.conversation_id,
                    record.parent_session_id,
                    json.dumps([t.to_dict() for t in record.context_turns], default=str),
                    ts(record.created_at),
                    ts(record.updated_at),
                ),
            )
        logger.info("session_record_created", session_id=record.id, role=record.role)
        return record

    async def get(self, session_id: str) -> Optional[SessionRecord]:
        cursor = await self._db.conn.execute(
            "SELECT * FROM agent_sessions WHERE id = ?", (session_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_record(row) if row else None

    async def require(self, session_id: str) -> SessionRecord:
        record = await self.get(session_id)
        if record is None:
            raise SessionNotFoundError(session_id)
        return record

    async def list_for_account(self, account_id: str, limit: int = 50) -> list[SessionRecord]:
        cursor = await self._db.conn.execute(
            "SELECT * FROM agent_sessions WHERE account_id = ? ORDER BY created_at DESC LIMIT ?",
            (account_id, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def update_status(
        self,
        session_id: str,
        status: SessionStatus,
        summary: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Move a session along the state machine. Terminal sessions are immutable."""
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "SELECT status FROM agent_sessions WHERE id = ?", (session_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                raise SessionNotFoundError(session_id)
            current = SessionStatus(row["status"])
            if status != current and status not in SESSION_TRANSITIONS.get(current, frozenset()):
                raise InvalidTransitionError(current, status)
            await conn.execute(
                """UPDATE agent_sessions
                   SET status = ?, summary = COALESCE(?, summary), error = COALESCE(?, error),
                       updated_at = ?
                   WHERE id = ?""",
                (status.value, summary, error, ts(utcnow()), session_id),
            )

    async def persist_turn(self, turn: TurnRecord, turns_used: int, cost_cents: float) -> None:
        """Write a turn row and the session counters in one transaction.

        The (session_id, turn_index) key makes a retried write idempotent.
        """
        async with self._db.transaction() as conn:
            await conn.execute(
                """INSERT OR REPLACE INTO session_turns
                   (session_id, turn_index, response_json, stop_reason, results_json,
                    input_tokens, output_tokens, cost_cents, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    turn.session_id,
                    turn.turn_index,
                    json.dumps(turn.response_blocks),
                    turn.stop_reason,
                    json.dumps([r.to_dict() for r in turn.results], default=str),
                    turn.input_tokens,
                    turn.output_tokens,
                    turn.cost_cents,
                    ts(turn.created_at),
                ),
            )
            await conn.execute(
                """UPDATE agent_sessions
                   SET turns_used = ?, cost_cents = ?, updated_at = ?
                   WHERE id = ?""",
                (turns_used, cost_cents, ts(utcnow()), turn.session_id),
            )

    async def list_turns(self, session_id: str) -> list[TurnRecord]:
        cursor = await self._db.conn.execute(
            "SELECT * FROM session_turns WHERE session_id = ? ORDER BY turn_index ASC",
            (session_id,),
        )
        rows = await cursor.fetchall()
        return [
            TurnRecord(
                session_id=row["session_id"],
                turn_index=row["turn_index"],
                response_blocks=json.loads(row["response_json"]),
                stop_reason=row["stop_reason"],
                results=[ToolResult.from_dict(r) for r in json.loads(row["results_json"])],
                input_tokens=row["input_tokens"],
                output_tokens=row["output_tokens"],
                cost_cents=row["cost_cents"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    async def request_cancel(self, session_id: str) -> bool:
        """Flag a session for cooperative cancellation. Returns False if already terminal."""
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """UPDATE agent_sessions SET cancel_requested = 1, updated_at = ?
                   WHERE id = ? AND status NOT IN ('completed','failed','budget_exceeded','cancelled')""",
                (ts(utcnow()), session_id),
            )
            return cursor.rowcount == 1

    async def is_cancel_requested(self, session_id: str) -> bool:
        cursor = await self._db.conn.execute(
            "SELECT cancel_requested FROM agent_sessions WHERE id = ?", (session_id,)
        )
        row = await cursor.fetchone()
        # A deleted session counts as cancelled.
        return row is None or bool(row["cancel_requested"])

    async def annotate(self, session_id: str, note: str, author: str = "operator") -> None:
        """Attach an audit note. The only mutation allowed on a terminal session."""
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "SELECT annotations_json FROM agent_sessions WHERE id = ?", (session_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                raise SessionNotFoundError(session_id)
            annotations: list[dict[str, Any]] = json.loads(row["annotations_json"])
            annotations.append({"author": author, "note": note, "at": ts(utcnow())})
            await conn.execute(
                "UPDATE agent_sessions SET annotations_json = ? WHERE id = ?",
                (json.dumps(annotations), session_id),
            )

    async def delete(self, session_id: str) -> bool:
        async with self._db.transaction() as conn:
            cursor = await conn.execute("DELETE FROM agent_sessions WHERE id = ?", (session_id,))
            return cursor.rowcount == 1

    @staticmethod
    def _row_to_record(row) -> SessionRecord:
        return SessionRecord(
            id=row["id"],
            account_id=row["account_id"],
            role=row["role"],
            goal=row["goal"],
            created_by=CreatedBy(row["created_by"]),
            autonomy_mode=AutonomyMode(row["autonomy_mode"]),
            tool_groups=json.loads(row["tool_groups_json"]),
            max_turns=row["max_turns"],
            budget_cents=row["budget_cents"],
            timeout_seconds=row["timeout_seconds"],
            status=SessionStatus(row["status"]),
            turns_used=row["turns_used"],
            cost_cents=row["cost_cents"],
            system_prompt=row["system_prompt"],
            conversation_id=row["conversation_id"],
            parent_session_id=row["parent_session_id"],
            context_turns=[
                TurnRecord.from_dict(row["id"], t) for t in json.loads(row["context_json"])
            ],
            cancel_requested=bool(row["cancel_requested"]),
            summary=row["summary"],
            error=row["error"],
            annotations=json.loads(row["annotations_json"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
