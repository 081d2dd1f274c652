from __future__ import annotations

import pytest

from gym_agents.config import RolesConfig, RuntimeConfig
from gym_agents.core.roles import RoleCatalog, parse_role_file
from gym_agents.core.types import AutonomyMode

ROLE_FILE = """---
id: retention
title: Retention Lead
tool_groups: [data, action]
default_autonomy: draft_only
max_turns: 4
budget_cents: 12.5
escalate_to: gm
---

Win back members who stopped coming.
"""


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_parse_role_file():
    meta, body = parse_role_file(ROLE_FILE)
    assert meta["id"] == "retention"
    assert meta["tool_groups"] == ["data", "action"]
    assert body == "Win back members who stopped coming."


def test_parse_without_front_matter():
    assert parse_role_file("Just instructions.") == ({}, "Just instructions.")


def test_unterminated_front_matter():
    with pytest.raises(ValueError):
        parse_role_file("---\nid: x\n")


def test_builtin_roles():
    catalog = RoleCatalog(RolesConfig(), RuntimeConfig())

    front_desk = catalog.get("front_desk")
    gm = catalog.get("gm")

    assert front_desk.title == "Front Desk"
    assert front_desk.default_autonomy == AutonomyMode.FULL_AUTO
    assert front_desk.escalate_to == ("gm",)
    assert "action" not in front_desk.tool_groups
    assert gm.default_autonomy == AutonomyMode.SEMI_AUTO
    assert "action" in gm.tool_groups
    assert gm.directs == ("front_desk",)


def test_custom_role_dir_and_fallback(tmp_path):
    (tmp_path / "retention.md").write_text(ROLE_FILE, encoding="utf-8")
    (tmp_path / "broken.md").write_text("---\n: [unclosed\n---\nbody", encoding="utf-8")
    runtime = RuntimeConfig(default_max_turns=7, default_budget_cents=20.0)
    catalog = RoleCatalog(RolesConfig(roles_dir=str(tmp_path)), runtime)

    retention = catalog.get("retention")
    assert retention.title == "Retention Lead"
    assert retention.tool_groups == ("data", "action")
    assert retention.default_autonomy == AutonomyMode.DRAFT_ONLY
    assert retention.budget_cents == 12.5
    assert retention.escalate_to == ("gm",)
    assert [r.id for r in catalog.all()] == ["retention"]

    unknown = catalog.get("sales_coach")
    assert unknown.title == "Sales Coach"
    assert unknown.max_turns == 7
    assert unknown.budget_cents == 20.0
    assert unknown.default_autonomy == AutonomyMode.SEMI_AUTO


def test_cache_reloads_after_ttl(tmp_path):
    clock = FakeClock()
    catalog = RoleCatalog(RolesConfig(roles_dir=str(tmp_path), cache_ttl_seconds=60), RuntimeConfig(), clock=clock)
    assert catalog.all() == []

    (tmp_path / "retention.md").write_text(ROLE_FILE, encoding="utf-8")
    clock.now = 30
    assert catalog.all() == []

    clock.now = 61
    assert [r.id for r in catalog.all()] == ["retention"]


def test_invalidate_forces_reload(tmp_path):
    catalog = RoleCatalog(RolesConfig(roles_dir=str(tmp_path)), RuntimeConfig(), clock=FakeClock())
    assert catalog.all() == []
    (tmp_path / "retention.md").write_text(ROLE_FILE, encoding="utf-8")

    catalog.invalidate()

    assert catalog.get("retention").id == "retention"
