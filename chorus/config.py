"""
chorus.config — YAML Configuration Loader
==========================================

Reads ``config.yaml`` for the engine's tuning values: contest duration and
reward tables, the daily point cap, streak bonus cadence, lifecycle-lock
TTLs, and per-platform rule overrides.  Secrets and connection strings
(``DATABASE_URL``, ``REDIS_URL``, ``JWT_SECRET``) stay in the environment
and are loaded by python-dotenv at the entry points.

Every section is optional; anything left out falls back to the contract
constants in :mod:`chorus.constants`.

Usage::

    from chorus.config import load_config

    cfg = load_config()                  # reads ./config.yaml by default
    print(cfg.contest.duration_hours)    # 24
    print(cfg.rate_limits.daily_point_cap)  # 1000
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from chorus.constants import (
    CONTEST_DURATION_HOURS,
    DAILY_POINT_CAP,
    DEFAULT_PRIZES,
    DEFAULT_TIERS,
    REWARD_CLAIM_WINDOW_DAYS,
    STREAK_BONUS_INTERVAL,
    STREAK_BONUS_POINTS,
)


# ---------------------------------------------------------------------------
# Typed settings objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ContestSettings:
    name_prefix: str = "Contest Round"
    duration_hours: int = CONTEST_DURATION_HOURS
    min_points: int = 0
    claim_window_days: int = REWARD_CLAIM_WINDOW_DAYS
    tiers: tuple[dict, ...] = tuple(DEFAULT_TIERS)
    prizes: tuple[dict, ...] = tuple(DEFAULT_PRIZES)


@dataclass(frozen=True, slots=True)
class RateLimitSettings:
    daily_point_cap: int = DAILY_POINT_CAP
    # Submitted timestamps further than this into the future are rejected
    max_clock_skew_seconds: int = 300


@dataclass(frozen=True, slots=True)
class StreakSettings:
    bonus_interval: int = STREAK_BONUS_INTERVAL
    bonus_points: int = STREAK_BONUS_POINTS


@dataclass(frozen=True, slots=True)
class LockSettings:
    start_ttl_seconds: int = 30
    end_ttl_seconds: int = 60
    acquire_attempts: int = 3
    retry_delay_seconds: float = 0.2


@dataclass(frozen=True, slots=True)
class ChorusConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    community_name: str = "Chorus"
    api_port: int = 8000
    contest: ContestSettings = field(default_factory=ContestSettings)
    rate_limits: RateLimitSettings = field(default_factory=RateLimitSettings)
    streaks: StreakSettings = field(default_factory=StreakSettings)
    locks: LockSettings = field(default_factory=LockSettings)
    # {platform: {engagement_type: {"points": int, "cooldown_seconds": int, "daily_limit": int}}}
    points: dict[str, dict[str, dict]] = field(default_factory=dict)
    # Seconds between contest rotation checks; 0 disables the loop
    rotation_interval_seconds: int = 60


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------
def _positive_int(raw: dict, key: str, default: int, *, allow_zero: bool = False) -> int:
    value = raw.get(key, default)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Config value {key!r} must be an integer, got {value!r}") from None
    if number < 0 or (number == 0 and not allow_zero):
        raise ValueError(f"Config value {key!r} must be positive, got {number}")
    return number


def _parse_tiers(raw_tiers: list | None) -> tuple[dict, ...]:
    if raw_tiers is None:
        return tuple(DEFAULT_TIERS)
    tiers = []
    for entry in raw_tiers:
        tiers.append({
            "name": str(entry["name"]).upper(),
            "min_points": int(entry["min_points"]),
            "reward": str(entry["reward"]),
        })
    thresholds = [t["min_points"] for t in tiers]
    if thresholds != sorted(thresholds) or len(set(thresholds)) != len(thresholds):
        raise ValueError("Contest tiers must have strictly ascending min_points")
    return tuple(tiers)


def _parse_prizes(raw_prizes: list | None) -> tuple[dict, ...]:
    if raw_prizes is None:
        return tuple(DEFAULT_PRIZES)
    prizes = []
    for entry in raw_prizes:
        rank = int(entry["rank"])
        if rank < 1:
            raise ValueError(f"Prize rank must be >= 1, got {rank}")
        prizes.append({
            "rank": rank,
            "reward": str(entry["reward"]),
            "amount": str(entry.get("amount", "")),
            "description": str(entry.get("description", f"Rank {rank}")),
        })
    return tuple(sorted(prizes, key=lambda p: p["rank"]))


def _parse_points(raw_points: dict | None) -> dict[str, dict[str, dict]]:
    overrides: dict[str, dict[str, dict]] = {}
    for platform, types in (raw_points or {}).items():
        per_type: dict[str, dict] = {}
        for engagement_type, rule in (types or {}).items():
            if isinstance(rule, int):
                rule = {"points": rule}
            per_type[str(engagement_type).upper()] = {
                key: int(value)
                for key, value in rule.items()
                if key in ("points", "cooldown_seconds", "daily_limit")
            }
        overrides[str(platform).upper()] = per_type
    return overrides


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def parse_config(raw: dict | None) -> ChorusConfig:
    """Build a :class:`ChorusConfig` from an already-parsed YAML mapping."""
    raw = raw or {}
    contest_raw = raw.get("contest") or {}
    limits_raw = raw.get("rate_limits") or {}
    streak_raw = raw.get("streaks") or {}
    lock_raw = raw.get("locks") or {}

    contest = ContestSettings(
        name_prefix=str(contest_raw.get("name_prefix", "Contest Round")),
        duration_hours=_positive_int(contest_raw, "duration_hours", CONTEST_DURATION_HOURS),
        min_points=_positive_int(contest_raw, "min_points", 0, allow_zero=True),
        claim_window_days=_positive_int(
            contest_raw, "claim_window_days", REWARD_CLAIM_WINDOW_DAYS
        ),
        tiers=_parse_tiers(contest_raw.get("tiers")),
        prizes=_parse_prizes(contest_raw.get("prizes")),
    )
    rate_limits = RateLimitSettings(
        daily_point_cap=_positive_int(limits_raw, "daily_point_cap", DAILY_POINT_CAP),
        max_clock_skew_seconds=_positive_int(
            limits_raw, "max_clock_skew_seconds", 300, allow_zero=True
        ),
    )
    streaks = StreakSettings(
        bonus_interval=_positive_int(streak_raw, "bonus_interval", STREAK_BONUS_INTERVAL),
        bonus_points=_positive_int(streak_raw, "bonus_points", STREAK_BONUS_POINTS),
    )
    locks = LockSettings(
        start_ttl_seconds=_positive_int(lock_raw, "start_ttl_seconds", 30),
        end_ttl_seconds=_positive_int(lock_raw, "end_ttl_seconds", 60),
        acquire_attempts=_positive_int(lock_raw, "acquire_attempts", 3),
        retry_delay_seconds=float(lock_raw.get("retry_delay_seconds", 0.2)),
    )

    return ChorusConfig(
        community_name=str(raw.get("community_name", "Chorus")),
        api_port=_positive_int(raw, "api_port", 8000),
        contest=contest,
        rate_limits=rate_limits,
        streaks=streaks,
        locks=locks,
        points=_parse_points(raw.get("points")),
        rotation_interval_seconds=_positive_int(
            raw, "rotation_interval_seconds", 60, allow_zero=True
        ),
    )


def load_config(path: str | Path = "config.yaml") -> ChorusConfig:
    """Read *path* and return a :class:`ChorusConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a value is malformed (non-integer, non-positive, unordered tiers).
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return parse_config(raw)
