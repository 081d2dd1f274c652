"""Role definitions loaded from Markdown files with YAML front-matter."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

import yaml

from gym_agents.config import RolesConfig, RuntimeConfig
from gym_agents.core.types import AutonomyMode, role_label
from gym_agents.log import get_logger

logger = get_logger(__name__)

_FRONT_MATTER_DELIM = "---"


@dataclass(frozen=True)
class RoleDefinition:
    id: str
    title: str
    tool_groups: tuple[str, ...]
    default_autonomy: AutonomyMode
    max_turns: int
    budget_cents: float
    reports_to: Optional[str] = None
    escalate_to: tuple[str, ...] = ()
    channels: tuple[str, ...] = ()
    directs: tuple[str, ...] = ()
    instructions: str = ""
    source: Optional[str] = field(default=None, compare=False)


def parse_role_file(text: str) -> tuple[dict[str, Any], str]:
    """Split a role file into its front-matter mapping and Markdown body."""
    stripped = text.lstrip()
    if not stripped.startswith(_FRONT_MATTER_DELIM):
        return {}, text.strip()
    _, _, rest = stripped.partition(_FRONT_MATTER_DELIM)
    header, sep, body = rest.partition(f"\n{_FRONT_MATTER_DELIM}")
    if not sep:
        raise ValueError("Unterminated role front-matter")
    meta = yaml.safe_load(header) or {}
    if not isinstance(meta, dict):
        raise ValueError("Role front-matter must be a mapping")
    return meta, body.lstrip("-").strip()


class RoleCatalog:
    """Memoized store of role definitions.

    Files are re-read when the cache is older than the configured TTL or after
    invalidate(). Unknown roles resolve to a fallback built from config.
    """

    def __init__(
        self,
        config: RolesConfig,
        runtime: RuntimeConfig,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config
        self._runtime = runtime
        self._clock = clock
        self._roles: dict[str, RoleDefinition] = {}
        self._loaded_at: Optional[float] = None

    def invalidate(self) -> None:
        self._loaded_at = None
        logger.debug("role_cache_invalidated")

    def _stale(self) -> bool:
        if self._loaded_at is None:
            return True
        return self._clock() - self._loaded_at >= self._config.cache_ttl_seconds

    def _load(self) -> None:
        roles: dict[str, RoleDefinition] = {}
        roles_dir = Path(self._config.roles_dir)
        if roles_dir.is_dir():
            for path in sorted(roles_dir.glob("*.md")):
                try:
                    role = self._parse(path)
                except (OSError, ValueError, yaml.YAMLError) as e:
                    logger.warning("role_file_invalid", path=str(path), error=str(e))
                    continue
                roles[role.id] = role
        else:
            logger.warning("roles_dir_missing", roles_dir=str(roles_dir))
        self._roles = roles
        self._loaded_at = self._clock()
        logger.info("roles_loaded", count=len(roles), roles=sorted(roles))

    def _parse(self, path: Path) -> RoleDefinition:
        meta, body = parse_role_file(path.read_text(encoding="utf-8"))
        role_id = str(meta.get("id") or path.stem)
        escalate_to = meta.get("escalate_to") or ()
        if isinstance(escalate_to, str):
            escalate_to = (escalate_to,)
        return RoleDefinition(
            id=role_id,
            title=str(meta.get("title") or role_label(role_id)),
            tool_groups=tuple(meta.get("tool_groups") or self._config.fallback_tool_groups),
            default_autonomy=AutonomyMode(meta.get("default_autonomy") or self._config.fallback_autonomy),
            max_turns=int(meta.get("max_turns") or self._runtime.default_max_turns),
            budget_cents=float(meta.get("budget_cents") or self._runtime.default_budget_cents),
            reports_to=meta.get("reports_to"),
            escalate_to=tuple(escalate_to),
            channels=tuple(meta.get("channels") or ()),
            directs=tuple(meta.get("directs") or ()),
            instructions=body,
            source=str(path),
        )

    def fallback(self, role_id: str) -> RoleDefinition:
        return RoleDefinition(
            id=role_id,
            title=role_label(role_id),
            tool_groups=tuple(self._config.fallback_tool_groups),
            default_autonomy=self._config.fallback_autonomy,
            max_turns=self._runtime.default_max_turns,
            budget_cents=self._runtime.default_budget_cents,
        )

    def get(self, role_id: str) -> RoleDefinition:
        if self._stale():
            self._load()
        role = self._roles.get(role_id)
        if role is None:
            logger.warning("role_not_found_using_fallback", role=role_id)
            return self.fallback(role_id)
        return role

    def all(self) -> list[RoleDefinition]:
        if self._stale():
            self._load()
        return list(self._roles.values())
