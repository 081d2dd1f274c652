"""CLI entry point for gym-agents."""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from typing import AsyncIterator, Awaitable, Callable

from gym_agents.app import GymAgentsApp
from gym_agents.config import AppConfig, load_config
from gym_agents.core.events import SessionEvent
from gym_agents.core.router import InboundMessage
from gym_agents.core.types import AutonomyMode, CreatedBy
from gym_agents.errors import GymAgentsError
from gym_agents.log import setup_logging


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gym-agents",
        description="Role-scoped agent sessions for member retention",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run scheduled sessions until stopped")
    _add_config_args(serve_parser)

    run_parser = subparsers.add_parser("run", help="Run one session from a direct command")
    _add_config_args(run_parser)
    run_parser.add_argument("--account", required=True, help="Account ID")
    run_parser.add_argument("--role", default="gm", help="Role to run as")
    run_parser.add_argument("--goal", required=True, help="What the agent should accomplish")
    run_parser.add_argument("--autonomy", choices=[m.value for m in AutonomyMode], help="Override autonomy mode")
    run_parser.add_argument("--max-turns", type=int, help="Override max turns")
    run_parser.add_argument("--budget-cents", type=float, help="Override budget in cents")

    inbound_parser = subparsers.add_parser("inbound", help="Route an inbound message and run its session")
    _add_config_args(inbound_parser)
    inbound_parser.add_argument("--account", required=True, help="Account ID")
    inbound_parser.add_argument("--channel", default="email", help="Channel the message arrived on")
    inbound_parser.add_argument("--contact-id", required=True, help="Member or lead ID")
    inbound_parser.add_argument("--content", required=True, help="Message text")
    inbound_parser.add_argument("--name", help="Contact name")
    inbound_parser.add_argument("--email", help="Contact email")
    inbound_parser.add_argument("--phone", help="Contact phone")
    inbound_parser.add_argument("--subject", help="Email subject")

    for name, help_text in (("approve", "Approve a pending tool call"), ("reject", "Reject a pending tool call")):
        p = subparsers.add_parser(name, help=help_text)
        _add_config_args(p)
        p.add_argument("approval_id", help="Pending approval ID")
        p.add_argument("--note", help="Note passed to the agent")

    cancel_parser = subparsers.add_parser("cancel", help="Cancel a running session")
    _add_config_args(cancel_parser)
    cancel_parser.add_argument("session_id", help="Session ID")

    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_config_args(check_parser)
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(2)

    if args.command == "config-check":
        _check_config(args.config, args.env)
        return

    config = _load_or_exit(args.config, args.env)
    setup_logging(config.log_level, json_output=config.log_json)

    if args.command == "serve":
        asyncio.run(_serve(config))
    elif args.command == "run":
        asyncio.run(_one_shot(config, lambda app: _print_events(_run_command(app, args))))
    elif args.command == "inbound":
        asyncio.run(_one_shot(config, lambda app: _print_events(_inbound(app, args))))
    elif args.command in ("approve", "reject"):
        asyncio.run(_one_shot(config, lambda app: _resolve(app, args.approval_id, args.command == "approve", args.note)))
    elif args.command == "cancel":
        asyncio.run(_one_shot(config, lambda app: _cancel(app, args.session_id)))


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml and .env.example to .env", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Storage: {config.storage.db_path}")
    print(f"  Model: {config.model.model} (anthropic={'yes' if config.anthropic else 'missing'})")
    print(f"  Roles directory: {config.roles.roles_dir}")
    print(f"  Default role: {config.routing.default_role}")
    print(f"  Approval threshold: {config.runtime.approval_confidence_threshold}")
    print(f"  Schedules: {len(config.schedules)}")
    for schedule in config.schedules:
        print(f"    - {schedule.id} [{schedule.cron}] {schedule.role} @ {schedule.account_id}")


async def _one_shot(config: AppConfig, action: Callable[[GymAgentsApp], Awaitable[int]]) -> None:
    app = GymAgentsApp(config)
    await app.initialize()
    try:
        code = await action(app)
        # Let handoffs and continuations started by this command finish.
        await app.supervisor.join()
    finally:
        await app.stop()
    if code:
        sys.exit(code)


async def _print_events(events: AsyncIterator[SessionEvent]) -> int:
    code = 0
    async for event in events:
        print(json.dumps(event.to_dict(), default=str, ensure_ascii=False), flush=True)
        if event.type == "error":
            code = 1
    return code


def _run_command(app: GymAgentsApp, args: argparse.Namespace) -> AsyncIterator[SessionEvent]:
    config = app.session_manager.session_config(
        account_id=args.account,
        role=args.role,
        goal=args.goal,
        created_by=CreatedBy.COMMAND,
        autonomy_mode=AutonomyMode(args.autonomy) if args.autonomy else None,
        max_turns=args.max_turns,
        budget_cents=args.budget_cents,
    )
    return app.session_manager.stream(config)


def _inbound(app: GymAgentsApp, args: argparse.Namespace) -> AsyncIterator[SessionEvent]:
    return app.inbound.handle(
        InboundMessage(
            account_id=args.account,
            channel=args.channel,
            content=args.content,
            contact_id=args.contact_id,
            contact_name=args.name,
            contact_email=args.email,
            contact_phone=args.phone,
            subject=args.subject,
        )
    )


async def _resolve(app: GymAgentsApp, approval_id: str, approved: bool, note: str | None) -> int:
    try:
        outcome = await app.approval_service.resolve(approval_id, approved, note)
    except GymAgentsError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"Approval {outcome.approval_id}: {outcome.status.value}")
    if outcome.result.is_error:
        print(f"  Result: {outcome.result.error}")
    print(f"  Continuation session: {outcome.continuation_session_id}")
    return 0


async def _cancel(app: GymAgentsApp, session_id: str) -> int:
    if await app.session_manager.cancel(session_id):
        print(f"Cancellation requested for {session_id}")
        return 0
    print(f"Session {session_id} not found or already finished", file=sys.stderr)
    return 1


async def _serve(config: AppConfig) -> None:
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda s, f: stop_event.set())

    app = GymAgentsApp(config)
    await app.start()
    try:
        await stop_event.wait()
    finally:
        await app.stop()


if __name__ == "__main__":
    main()
