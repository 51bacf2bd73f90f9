"""
chorus.services.rate_limiter — Cooldowns, Daily Limits & the Daily Point Cap
=============================================================================

All checks read the ledger's own history (``engagements`` and
``point_transactions``), so they stay correct across processes and
restarts.  The in-memory hint cache only ever short-circuits a rejection
that the database would also produce; it is never consulted to *allow*
an award.
"""

from __future__ import annotations

import logging
import math
import threading
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from chorus.constants import DAILY_POINT_CAP, day_start, ensure_utc
from chorus.database.models import Engagement, PointTransaction, TransactionReason
from chorus.engine.rules import SubReward
from chorus.errors import CooldownError, DailyLimitError

logger = logging.getLogger(__name__)

# Admin corrections and streak bonuses do not consume the user's daily earning allowance
_CAP_EXEMPT_REASONS = (
    TransactionReason.STREAK_BONUS,
    TransactionReason.MANUAL_ADJUSTMENT,
    TransactionReason.BALANCE_RESET,
)

_HINT_CLEANUP_SECONDS = 3600


def _day_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = day_start(now)
    return start, start + timedelta(days=1)


class RateLimiter:
    """Per-user cooldown, per-type daily count and global daily point cap.

    Thread-safe.  One instance is shared by every platform tracker.
    """

    def __init__(self, daily_point_cap: int = DAILY_POINT_CAP) -> None:
        self.daily_point_cap = daily_point_cap
        self._hint_lock = threading.Lock()
        # (user_id, platform, type) → earliest next eligible instant
        self._next_eligible: dict[tuple[int, str, str], datetime] = {}
        self._last_cleanup: datetime | None = None

    # -- hint cache --------------------------------------------------------
    def peek(self, user_id: int, platform: str, sub: SubReward, now: datetime) -> None:
        """Raise :class:`CooldownError` if the hint cache already knows the
        sub-reward is cooling down.  Never touches the database."""
        with self._hint_lock:
            eligible_at = self._next_eligible.get((user_id, platform, sub.type))
        if eligible_at is not None and now < eligible_at:
            raise CooldownError(platform, sub.type, _remaining(eligible_at, now))

    def note_award(self, user_id: int, platform: str, sub: SubReward, at: datetime) -> None:
        """Record a committed award so repeats inside the cooldown skip the DB."""
        if sub.cooldown_seconds <= 0:
            return
        eligible_at = ensure_utc(at) + timedelta(seconds=sub.cooldown_seconds)
        with self._hint_lock:
            key = (user_id, platform, sub.type)
            current = self._next_eligible.get(key)
            if current is None or eligible_at > current:
                self._next_eligible[key] = eligible_at
            self._maybe_cleanup(ensure_utc(at))

    def _maybe_cleanup(self, now: datetime) -> None:
        if self._last_cleanup and (now - self._last_cleanup).total_seconds() < _HINT_CLEANUP_SECONDS:
            return
        self._last_cleanup = now
        stale = [k for k, v in self._next_eligible.items() if v <= now]
        for key in stale:
            del self._next_eligible[key]

    # -- authoritative checks ----------------------------------------------
    def check_cooldown(
        self, session: Session, user_id: int, platform: str, sub: SubReward, now: datetime
    ) -> None:
        if sub.cooldown_seconds <= 0:
            return
        last = session.scalar(
            select(func.max(Engagement.timestamp)).where(
                Engagement.user_id == user_id,
                Engagement.platform == platform,
                Engagement.type == sub.type,
            )
        )
        if last is None:
            return
        eligible_at = ensure_utc(last) + timedelta(seconds=sub.cooldown_seconds)
        if now < eligible_at:
            raise CooldownError(platform, sub.type, _remaining(eligible_at, now))

    def count_today(
        self, session: Session, user_id: int, platform: str, engagement_type: str, now: datetime
    ) -> int:
        start, end = _day_bounds(now)
        return session.scalar(
            select(func.count(Engagement.id)).where(
                Engagement.user_id == user_id,
                Engagement.platform == platform,
                Engagement.type == engagement_type,
                Engagement.timestamp >= start,
                Engagement.timestamp < end,
            )
        ) or 0

    def check_daily_limit(
        self, session: Session, user_id: int, platform: str, sub: SubReward, now: datetime
    ) -> None:
        if sub.daily_limit is None:
            return
        if self.count_today(session, user_id, platform, sub.type, now) >= sub.daily_limit:
            raise DailyLimitError.for_type(platform, sub.type, sub.daily_limit)

    def check(
        self, session: Session, user_id: int, platform: str, sub: SubReward, now: datetime
    ) -> None:
        """Hint cache, then cooldown, then per-type daily count."""
        self.peek(user_id, platform, sub, now)
        self.check_cooldown(session, user_id, platform, sub, now)
        self.check_daily_limit(session, user_id, platform, sub, now)

    def points_today(self, session: Session, user_id: int, now: datetime) -> int:
        """Sum of today's earned (positive, non-admin) transaction amounts."""
        start, end = _day_bounds(now)
        return session.scalar(
            select(func.coalesce(func.sum(PointTransaction.amount), 0)).where(
                PointTransaction.user_id == user_id,
                PointTransaction.amount > 0,
                PointTransaction.reason.not_in(_CAP_EXEMPT_REASONS),
                PointTransaction.timestamp >= start,
                PointTransaction.timestamp < end,
            )
        ) or 0

    def check_point_cap(
        self, session: Session, user_id: int, requested: int, now: datetime
    ) -> None:
        """Reject the whole batch if it would push today's total past the cap."""
        current = self.points_today(session, user_id, now)
        if current + requested > self.daily_point_cap:
            raise DailyLimitError.for_point_cap(current, requested, self.daily_point_cap)


def _remaining(eligible_at: datetime, now: datetime) -> int:
    return max(1, math.ceil((eligible_at - now).total_seconds()))
