from __future__ import annotations

import structlog

from gym_agents.log import get_logger, session_log_context, setup_logging


def test_session_log_context_binds_and_clears():
    structlog.contextvars.clear_contextvars()

    with session_log_context("s-1", "acct-1"):
        bound = structlog.contextvars.get_contextvars()
        assert bound["session_id"] == "s-1"
        assert bound["account_id"] == "acct-1"

    assert "session_id" not in structlog.contextvars.get_contextvars()


def test_json_output_renders_one_object_per_line(capsys):
    setup_logging("INFO", json_output=True)
    try:
        get_logger("gym_agents.test").info("json_line", turn=3)
        get_logger("gym_agents.test").debug("filtered_out")
    finally:
        structlog.reset_defaults()

    err = capsys.readouterr().err.strip().splitlines()
    assert len(err) == 1
    assert '"event": "json_line"' in err[0]
    assert '"turn": 3' in err[0]
