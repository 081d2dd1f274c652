"""Member directory: read-only view of the fitness platform's member data."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import yaml

from gym_agents.log import get_logger

logger = get_logger(__name__)


class MemberDirectory(ABC):
    """Narrow interface onto the fitness-platform connector."""

    @abstractmethod
    async def get_member(self, account_id: str, member_id: str) -> Optional[dict[str, Any]]:
        ...

    @abstractmethod
    async def search(self, account_id: str, query: str, limit: int = 10) -> list[dict[str, Any]]:
        ...


class InMemoryMemberDirectory(MemberDirectory):
    """Members held in memory, keyed by account. Seeded from YAML or directly."""

    def __init__(self, members: dict[str, list[dict[str, Any]]] | None = None):
        self._members: dict[str, dict[str, dict[str, Any]]] = {}
        for account_id, rows in (members or {}).items():
            for row in rows:
                self.add(account_id, row)

    @classmethod
    def from_yaml(cls, path: str | Path) -> InMemoryMemberDirectory:
        """Load a file shaped as {account_id: [member, ...]}."""
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        directory = cls(data)
        logger.info("member_directory_loaded", path=str(path), accounts=len(data))
        return directory

    def add(self, account_id: str, member: dict[str, Any]) -> None:
        if "id" not in member:
            raise ValueError("member record requires an 'id'")
        self._members.setdefault(account_id, {})[str(member["id"])] = dict(member)

    async def get_member(self, account_id: str, member_id: str) -> Optional[dict[str, Any]]:
        member = self._members.get(account_id, {}).get(member_id)
        return dict(member) if member else None

    async def search(self, account_id: str, query: str, limit: int = 10) -> list[dict[str, Any]]:
        needle = query.strip().lower()
        matches = []
        for member in self._members.get(account_id, {}).values():
            haystack = " ".join(
                str(member.get(k, "")) for k in ("name", "email", "phone", "status")
            ).lower()
            if needle in haystack:
                matches.append(dict(member))
            if len(matches) >= limit:
                break
        return matches
