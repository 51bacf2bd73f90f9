"""
chorus.services.streak_tracker — Consecutive-Day Streaks
=========================================================

One ``user_streaks`` row per user, one counter per platform.  Calendar
days are UTC.  On each qualifying engagement:

* same day as the last activity → nothing changes;
* the day after → streak + 1, and every ``bonus_interval``-th day emits a
  STREAK_BONUS transaction through the point ledger;
* anything else (a gap, or no history) → streak resets to 1.

A gap of two or more days always resets; there is no separate grace
window.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chorus.config import StreakSettings
from chorus.constants import days_between, ensure_utc
from chorus.database.models import Platform, TransactionReason, UserStreak
from chorus.engine.rules import SubReward
from chorus.services.point_ledger import PointLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StreakUpdate:
    platform: str
    streak: int
    changed: bool
    bonus_awarded: int = 0


def get_or_create_streak(session: Session, user_id: int) -> UserStreak:
    row = session.get(UserStreak, user_id, with_for_update=True)
    if row is not None:
        return row
    try:
        with session.begin_nested():
            row = UserStreak(user_id=user_id)
            session.add(row)
    except IntegrityError:
        row = session.get(UserStreak, user_id, with_for_update=True, populate_existing=True)
    return row


class StreakTracker:
    def __init__(self, ledger: PointLedger, settings: StreakSettings | None = None) -> None:
        self.ledger = ledger
        self.settings = settings or StreakSettings()

    def touch(self, session: Session, user_id: int, platform: str, now: datetime) -> StreakUpdate:
        """Record activity on *platform* at *now* within *session*."""
        platform = Platform(platform)
        now = ensure_utc(now)
        row = get_or_create_streak(session, user_id)
        streak, last = row.get(platform)

        if last is not None:
            gap = days_between(last, now)
            if gap <= 0:
                return StreakUpdate(platform, streak, changed=False)
            new_streak = streak + 1 if gap == 1 else 1
        else:
            new_streak = 1

        row.set(platform, new_streak, now)
        session.flush()

        bonus = 0
        if new_streak % self.settings.bonus_interval == 0:
            bonus = self.settings.bonus_points
            self.ledger.apply(
                session,
                user_id,
                platform,
                [SubReward(
                    type=TransactionReason.STREAK_BONUS,
                    points=bonus,
                    cooldown_seconds=0,
                    daily_limit=None,
                    metadata={"streak": new_streak},
                )],
                now,
                enforce_limits=False,
                record_engagement=False,
            )
            logger.info(
                "Streak bonus +%d for user %d on %s (day %d)",
                bonus, user_id, platform, new_streak,
            )
        elif new_streak == 1 and streak > 1:
            logger.debug("Streak reset for user %d on %s (was %d)", user_id, platform, streak)

        return StreakUpdate(platform, new_streak, changed=True, bonus_awarded=bonus)

    def get_streaks(self, session: Session, user_id: int) -> dict[str, int]:
        row = session.get(UserStreak, user_id)
        if row is None:
            return {p.value: 0 for p in Platform}
        return row.as_dict()
