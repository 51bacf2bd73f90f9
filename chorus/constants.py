"""
chorus.constants — Shared Constants & Helpers
==============================================

Single source of truth for the contract constants (daily point cap, streak
interval, claim window), the default contest tiers/prizes, and the UTC
calendar-day helpers every service uses.  Import from here instead of
duplicating in services, routes, and tests.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta

# ---------------------------------------------------------------------------
# Contract constants
# ---------------------------------------------------------------------------
DAILY_POINT_CAP = 1000
STREAK_BONUS_INTERVAL = 3
STREAK_BONUS_POINTS = 5
REWARD_CLAIM_WINDOW_DAYS = 30
CONTEST_DURATION_HOURS = 24

# Admin adjustments are bounded to this range per call
MIN_ADMIN_ADJUSTMENT = -1000
MAX_ADMIN_ADJUSTMENT = 1000

# Completed contests older than this are flagged archived
CONTEST_ARCHIVE_AFTER_DAYS = 7

LIFECYCLE_LOCK_KEY = "contest-lifecycle"


# ---------------------------------------------------------------------------
# Default contest reward tables
# ---------------------------------------------------------------------------
DEFAULT_TIERS: list[dict] = [
    {"name": "BRONZE", "min_points": 50, "reward": "WHITELIST"},
    {"name": "SILVER", "min_points": 100, "reward": "FREE_MINT"},
    {"name": "GOLD", "min_points": 200, "reward": "FREE_GAS"},
    {"name": "PLATINUM", "min_points": 300, "reward": "NO_FEES"},
    {"name": "DIAMOND", "min_points": 500, "reward": "SOUL"},
]

DEFAULT_PRIZES: list[dict] = [
    {"rank": 1, "reward": "USDC", "amount": "100", "description": "First Place - 100 USDC"},
    {"rank": 2, "reward": "USDC", "amount": "75", "description": "Second Place - 75 USDC"},
    {"rank": 3, "reward": "USDC", "amount": "50", "description": "Third Place - 50 USDC"},
    {"rank": 4, "reward": "USDC", "amount": "25", "description": "Fourth Place - 25 USDC"},
    {"rank": 5, "reward": "USDC", "amount": "10", "description": "Fifth Place - 10 USDC"},
]


# ---------------------------------------------------------------------------
# Time helpers — every calendar-day decision is made in UTC
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)
    and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def utc_day(value: datetime) -> date:
    """Calendar day of *value* in UTC."""
    return ensure_utc(value).date()


def day_start(value: datetime) -> datetime:
    """Midnight UTC of the day containing *value*."""
    return datetime.combine(utc_day(value), time.min, tzinfo=UTC)


def format_duration(seconds: float) -> str:
    """Render a non-negative duration as ``"3h 12m"``."""
    seconds = max(0, int(seconds))
    hours, rem = divmod(seconds, 3600)
    return f"{hours}h {rem // 60}m"


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole calendar days (UTC) from *earlier* to *later*."""
    return (utc_day(later) - utc_day(earlier)).days


def plus_days(value: datetime, days: int) -> datetime:
    return ensure_utc(value) + timedelta(days=days)
