"""
chorus.__main__ — Operator CLI for ``python -m chorus``
========================================================

Hook for cron-style schedulers and operators::

    python -m chorus init-db
    python -m chorus contest start [--name NAME] [--duration-hours N]
    python -m chorus contest end
    python -m chorus contest rotate
    python -m chorus contests archive
    python -m chorus rewards expire

Wiring:
1. Load .env (secrets).
2. Load config.yaml (tuning; defaults if absent).
3. Create the SQLAlchemy engine and build the service graph.
4. Run the sub-command; typed engine errors exit with status 1.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from chorus.config import ChorusConfig, load_config
from chorus.database.engine import create_db_engine, init_db
from chorus.errors import EngagementError
from chorus.services.container import build_services

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("chorus")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chorus", description="Chorus engagement engine")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create all tables")

    contest = sub.add_parser("contest", help="Contest lifecycle")
    contest_sub = contest.add_subparsers(dest="action", required=True)
    start = contest_sub.add_parser("start", help="Start a new contest")
    start.add_argument("--name", default=None)
    start.add_argument("--duration-hours", type=int, default=None)
    contest_sub.add_parser("end", help="End the active contest and distribute rewards")
    contest_sub.add_parser("rotate", help="End the contest if due and start the next one")

    contests = sub.add_parser("contests", help="Contest housekeeping")
    contests_sub = contests.add_subparsers(dest="action", required=True)
    contests_sub.add_parser("archive", help="Archive completed contests older than 7 days")

    rewards = sub.add_parser("rewards", help="Reward housekeeping")
    rewards_sub = rewards.add_subparsers(dest="action", required=True)
    rewards_sub.add_parser("expire", help="Expire unclaimed rewards past their window")
    return parser


def _load_config(path: str) -> ChorusConfig:
    if Path(path).exists():
        return load_config(path)
    logger.warning("%s not found; using built-in defaults", path)
    return ChorusConfig()


def main(argv: list[str] | None = None) -> int:
    """Parse *argv*, run the command, return the process exit status."""
    load_dotenv()
    args = _build_parser().parse_args(argv)
    cfg = _load_config(args.config)
    engine = create_db_engine()

    if args.command == "init-db":
        init_db(engine)
        return 0

    services = build_services(cfg, engine)
    contests = services.contests
    try:
        if args.command == "contest" and args.action == "start":
            rules = {}
            if args.duration_hours is not None:
                rules["duration_hours"] = args.duration_hours
            contest = contests.start_new_contest(rules, name=args.name)
            print(f"Started contest {contest.id} ({contest.name}), ends {contest.end_time.isoformat()}")
        elif args.command == "contest" and args.action == "end":
            contest = contests.end_current_contest()
            print(f"Completed contest {contest.id} ({contest.name})")
        elif args.command == "contest" and args.action == "rotate":
            contest = contests.rotate()
            print(f"Started contest {contest.id}" if contest else "Nothing to rotate")
        elif args.command == "contests" and args.action == "archive":
            print(f"Archived {contests.archive_old_contests()} contests")
        elif args.command == "rewards" and args.action == "expire":
            print(f"Expired {contests.expire_stale_rewards()} rewards")
    except EngagementError as exc:
        logger.error("%s: %s", exc.code, exc.message)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
