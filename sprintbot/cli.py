"""CLI entry point for running the sprint bot against a board export.

Usage:
  python -m sprintbot preview MM/DD/YYYY NAME --export board.json [--store-dir DIR]
  python -m sprintbot kickoff MM/DD/YYYY NAME --export board.json [--store-dir DIR]
  python -m sprintbot ingest --export board.json [--pull-requests prs.json]
  python -m sprintbot status [--store-dir DIR]
  python -m sprintbot close [--export board.json] [--store-dir DIR]
  python -m sprintbot cancel [--store-dir DIR]
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from .adapters.json_store import JsonFileStore
from .board.loader import BoardSnapshotLoader
from .board.sources import StaticPullRequests, TrelloExportSource
from .config import BotConfig
from .log import setup_logging
from .reports import renderer
from .slack.payloads import parse_kickoff_args
from .sprint.engine import SprintEngine
from .sprint.exceptions import SprintBotError
from .sprint.models import SprintStatus


def _add_board_args(parser: argparse.ArgumentParser, required: bool = True) -> None:
    parser.add_argument("--export", required=required, help="Trello board JSON export")
    parser.add_argument("--pull-requests", default=None, help="JSON file of PR states by URL")


def main() -> None:
    parser = argparse.ArgumentParser(description="Sprint bot CLI")
    parser.add_argument("--store-dir", default=None, help="Sprint state directory")
    parser.add_argument("--log-level", default=None, help="Log level (default: LOG_LEVEL or INFO)")
    subparsers = parser.add_subparsers(dest="command")

    preview_parser = subparsers.add_parser("preview", help="Preview a sprint kickoff")
    preview_parser.add_argument("end_date", help="End date, MM/DD/YYYY")
    preview_parser.add_argument("name", nargs="+", help="Sprint name")
    _add_board_args(preview_parser)

    kickoff_parser = subparsers.add_parser("kickoff", help="Start a sprint")
    kickoff_parser.add_argument("end_date", help="End date, MM/DD/YYYY")
    kickoff_parser.add_argument("name", nargs="+", help="Sprint name")
    _add_board_args(kickoff_parser)

    ingest_parser = subparsers.add_parser("ingest", help="Refresh the sprint and print the daily summary")
    _add_board_args(ingest_parser)

    subparsers.add_parser("status", help="Show sprint status without reading the board")

    close_parser = subparsers.add_parser("close", help="Close the active sprint")
    _add_board_args(close_parser, required=False)

    subparsers.add_parser("cancel", help="Abandon the active sprint without recording it")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    setup_logging(args.log_level)
    config = BotConfig.from_env()
    if args.store_dir:
        config.store_dir = Path(args.store_dir)

    commands = {
        "preview": _preview_command,
        "kickoff": _kickoff_command,
        "ingest": _ingest_command,
        "status": _status_command,
        "close": _close_command,
        "cancel": _cancel_command,
    }
    try:
        asyncio.run(commands[args.command](args, config))
    except (SprintBotError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _engine(config: BotConfig) -> SprintEngine:
    return SprintEngine(
        JsonFileStore(config.store_dir),
        policy=config.policy,
        new_ticket_days=config.new_ticket_days,
        velocity_window=config.velocity_window,
    )


def _loader(args, config: BotConfig) -> BoardSnapshotLoader:
    pull_requests = StaticPullRequests.from_file(args.pull_requests) if args.pull_requests else None
    return BoardSnapshotLoader(
        TrelloExportSource(args.export),
        config.board_id or Path(args.export).stem,
        pull_requests=pull_requests,
        ignored_lists=config.ignored_lists,
    )


async def _preview_command(args, config: BotConfig) -> None:
    end_date, name = parse_kickoff_args(f"{args.end_date} {' '.join(args.name)}")
    engine = _engine(config)
    snapshot = await _loader(args, config).load()
    preview = await engine.preview_kickoff(snapshot, name=name, end_date=end_date)
    print(renderer.render_kickoff_preview(preview, await engine.records()))


async def _kickoff_command(args, config: BotConfig) -> None:
    end_date, name = parse_kickoff_args(f"{args.end_date} {' '.join(args.name)}")
    engine = _engine(config)
    snapshot = await _loader(args, config).load()
    sprint = await engine.kickoff(snapshot, name=name, end_date=end_date)
    print(renderer.render_kickoff(sprint))


async def _ingest_command(args, config: BotConfig) -> None:
    engine = _engine(config)
    snapshot = await _loader(args, config).load()
    delta = await engine.ingest_snapshot(snapshot)
    text = renderer.render_daily_summary(
        await engine.active_sprint(),
        delta,
        await engine.metrics(),
        await engine.records(),
        today=snapshot.taken_at.date(),
    )
    print(text)


async def _status_command(args, config: BotConfig) -> None:
    engine = _engine(config)
    sprint = await engine.current_sprint()
    if sprint is None:
        print("No sprint has been started")
        return
    metrics = await engine.metrics()
    print(f"Sprint {sprint.name} ({sprint.id})")
    print(f"  Status: {sprint.status.value}")
    print(f"  Open: {len(sprint.open_tickets())}  Done: {len(sprint.done_tickets())}")
    print(f"  Completion: {metrics.completed_count}/{metrics.total_count} ({metrics.completion_pct:.2f}%)")
    print(f"  Velocity: {metrics.velocity:.1f} over {metrics.sample_size} sprints ({metrics.trend.value})")
    if sprint.blocked_ids:
        print(f"  Blocked: {', '.join(sorted(sprint.blocked_ids))}")


async def _close_command(args, config: BotConfig) -> None:
    engine = _engine(config)
    if args.export and await engine.get_status() is SprintStatus.ACTIVE:
        await engine.ingest_snapshot(await _loader(args, config).load())
    record = await engine.close_sprint()
    sprint = await engine.current_sprint()
    print(renderer.render_sprint_review(sprint, record, await engine.records()))


async def _cancel_command(args, config: BotConfig) -> None:
    sprint = await _engine(config).cancel_sprint()
    print(renderer.render_cancelled(sprint))


if __name__ == "__main__":
    main()
