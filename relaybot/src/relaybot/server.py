"""Relay bot CLI: run the webhook server or replay updates offline."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from typing import Iterable, TextIO

from aiohttp import web

from .config import AccessPolicy, ConfigError, load_config_from_env
from .dispatcher import Dispatcher
from .simulation import Clock, RecordingGateway
from .store import InMemoryStateStore
from .tasks import BackgroundTasks
from .webhook import create_app


async def simulate(
    updates: Iterable[dict],
    output: TextIO,
    *,
    owner_id: str,
    policy: AccessPolicy | None = None,
) -> list[str]:
    """Dispatch ``updates`` against an in-memory store and print gateway calls.

    An update may carry a ``now`` field (epoch seconds) that sets the clock
    before it is dispatched; it is stripped from the update itself.
    """

    clock = Clock()
    store = InMemoryStateStore(now_func=clock)
    gateway = RecordingGateway(output=output)
    tasks = BackgroundTasks()
    dispatcher = Dispatcher(owner_id, gateway, store, policy=policy, tasks=tasks, now_func=clock)

    kinds: list[str] = []
    for update in updates:
        update = dict(update)
        now = update.pop("now", None)
        if now is not None:
            clock.now = int(now)
        kind = await dispatcher.dispatch(update)
        await tasks.drain()
        kinds.append(kind.value)
    return kinds


def _load_updates(handle: TextIO) -> Iterable[dict]:
    content = handle.read()
    if not content.strip():
        return []

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        parsed = None

    if parsed is None:
        updates: list[dict] = []
        for line in content.splitlines():
            if line.strip():
                updates.append(json.loads(line))
        return updates

    if isinstance(parsed, list):
        return parsed
    return [parsed]


def _run_simulation(args: argparse.Namespace, output: TextIO) -> int:
    if args.file is None:
        updates = _load_updates(sys.stdin)
    else:
        with args.file:
            updates = _load_updates(args.file)
    asyncio.run(simulate(updates, output, owner_id=args.owner))
    return 0


def _run_serve(args: argparse.Namespace) -> int:
    config = load_config_from_env()
    if args.db is not None:
        config = replace(config, db_path=args.db)
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(config)
    web.run_app(app, host=args.host, port=args.port)
    return 0


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    """Entry point for CLI commands."""

    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Owner relay bot")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the aiohttp webhook server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port to bind")
    serve_parser.add_argument("--db", type=str, default=None, help="Path to SQLite database for durable state")

    simulate_parser = subparsers.add_parser("simulate", help="Replay Bot API updates against an in-memory relay")
    simulate_parser.add_argument("--owner", required=True, help="Owner chat id")
    simulate_parser.add_argument(
        "-f",
        "--file",
        type=argparse.FileType("r"),
        default=None,
        help="Path to JSON updates file; defaults to stdin",
    )

    args = parser.parse_args(argv)

    if args.command == "simulate":
        return _run_simulation(args, output or sys.stdout)
    try:
        return _run_serve(args)
    except ConfigError as exc:
        parser.error(str(exc))
    return 2


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
