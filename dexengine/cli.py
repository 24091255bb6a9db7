#!/usr/bin/env python3
"""Command-line entrypoint.

Usage:
    dexengine serve [--host HOST] [--port PORT]
    dexengine snapshot [--prune-days N]
    dexengine resume-stuck [--older-than MINUTES]
    dexengine list-failed

Global options (before the command): --database-url, --verbose, --json-logs.
Everything else comes from DEX_* environment variables.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import replace

import structlog

from dexengine.config import EngineConfig
from dexengine.engine import Engine, build_engine
from dexengine.log import configure_logging

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dexengine",
        description="Constant-product AMM engine: API server and operator tasks",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="SQLAlchemy database URL (default: DEX_DATABASE_URL, else in-memory)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    subparsers = parser.add_subparsers(dest="command", help="Commands")
    subparsers.required = True

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", type=str, default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port")

    snapshot_parser = subparsers.add_parser("snapshot", help="Record reserve snapshots for all pools")
    snapshot_parser.add_argument(
        "--prune-days",
        type=int,
        default=None,
        help="Also delete snapshots older than this many days",
    )

    resume_parser = subparsers.add_parser(
        "resume-stuck", help="Replay settlement for transactions stuck after TX1"
    )
    resume_parser.add_argument(
        "--older-than",
        type=int,
        default=None,
        help="Only records whose TX1 completed at least this many minutes ago",
    )

    subparsers.add_parser("list-failed", help="List transactions awaiting manual recovery")
    return parser


def _snapshot(engine: Engine, prune_days: int | None) -> int:
    report = engine.snapshots.record_all()
    print(
        f"recorded={report.recorded} existing={report.existing} "
        f"skipped={report.skipped} failed={report.failed}"
    )
    if prune_days is not None:
        print(f"pruned={engine.snapshots.prune(prune_days)}")
    return 1 if report.failed else 0


def _resume_stuck(engine: Engine, older_than: int | None) -> int:
    minutes = engine.config.stuck_after_minutes if older_than is None else older_than
    results = asyncio.run(engine.coordinator.resume_stuck(minutes))
    for tx in results:
        print(f"{tx.id} {tx.state.value} {tx.error_message or ''}".rstrip())
    print(f"resumed={len(results)}")
    return 0


def _list_failed(engine: Engine) -> int:
    for tx in engine.coordinator.list_failed():
        print(
            json.dumps(
                {
                    "id": tx.id,
                    "type": tx.type.value,
                    "user_address": tx.user_address,
                    "pool_id": tx.pool_id,
                    "tx1_hash": tx.tx1_hash,
                    "tx2_hash": tx.tx2_hash,
                    "error": tx.error_message,
                    "params": tx.params,
                }
            )
        )
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    config = EngineConfig.from_env()
    if args.database_url:
        config = replace(config, database_url=args.database_url)
    configure_logging(verbose=args.verbose or config.debug, json=args.json_logs or config.log_json)

    if args.command == "serve":
        from dexengine.api.main import run

        if args.host:
            config = replace(config, host=args.host)
        if args.port:
            config = replace(config, port=args.port)
        run(config)
        return 0

    engine = build_engine(config)
    if args.command == "snapshot":
        return _snapshot(engine, args.prune_days)
    if args.command == "resume-stuck":
        return _resume_stuck(engine, args.older_than)
    return _list_failed(engine)


if __name__ == "__main__":
    raise SystemExit(main())
