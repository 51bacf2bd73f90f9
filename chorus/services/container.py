"""
chorus.services.container — Process-Wide Service Graph
=======================================================

Builds the ledger, trackers and contest manager exactly once per process
and hands them to adapters, the API and the CLI by reference.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import Engine

from chorus.config import ChorusConfig
from chorus.database.models import Platform
from chorus.engine.rules import build_rule_table
from chorus.services.contest_service import ContestManager
from chorus.services.engagement_tracker import EngagementTracker, TrackerRegistry
from chorus.services.lock_service import LockService, build_lock_service
from chorus.services.point_ledger import PointLedger
from chorus.services.rate_limiter import RateLimiter
from chorus.services.streak_tracker import StreakTracker


@dataclass
class Services:
    config: ChorusConfig
    engine: Engine
    lock: LockService
    rate_limiter: RateLimiter
    ledger: PointLedger
    streaks: StreakTracker
    trackers: TrackerRegistry
    contests: ContestManager


def build_services(
    config: ChorusConfig,
    engine: Engine,
    lock: LockService | None = None,
    *,
    clock=None,
) -> Services:
    """Wire every service from *config*.  *lock* defaults to Redis when
    ``REDIS_URL`` is set, else the in-memory backend."""
    lock = lock if lock is not None else build_lock_service()
    rules = build_rule_table(config.points)
    rate_limiter = RateLimiter(config.rate_limits.daily_point_cap)
    ledger = PointLedger(engine, rate_limiter)
    streaks = StreakTracker(ledger, config.streaks)

    tracker_kwargs = {"max_clock_skew_seconds": config.rate_limits.max_clock_skew_seconds}
    if clock is not None:
        tracker_kwargs["clock"] = clock
    trackers = TrackerRegistry({
        platform.value: EngagementTracker(platform, engine, ledger, streaks, rules, **tracker_kwargs)
        for platform in Platform
    })

    contests = ContestManager(engine, lock, config.contest, config.locks)
    return Services(
        config=config,
        engine=engine,
        lock=lock,
        rate_limiter=rate_limiter,
        ledger=ledger,
        streaks=streaks,
        trackers=trackers,
        contests=contests,
    )
