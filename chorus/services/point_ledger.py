"""
chorus.services.point_ledger — Atomic Point Transactions
=========================================================

The only code path that changes a user's ``points`` / ``lifetime_points``.
One call to :meth:`PointLedger.apply` does, inside the caller's
transaction:

    1. lock the user row (``SELECT … FOR UPDATE`` on PostgreSQL),
    2. re-validate cooldown and daily limit for every item,
    3. enforce the global daily point cap for the surviving batch as a
       whole — the entire batch is withheld if it would exceed the cap,
    4. append one ``engagements`` row and one ``point_transactions`` row
       per item,
    5. increment the user's running totals with SQL expressions,
    6. upsert the user's entry in the ACTIVE contest, if there is one.

Any failure rolls all six back together.  :meth:`PointLedger.award` wraps
``apply`` in its own retrying transaction for callers without a session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from sqlalchemy import Engine, update
from sqlalchemy.orm import Session

from chorus.constants import MAX_ADMIN_ADJUSTMENT, MIN_ADMIN_ADJUSTMENT, ensure_utc, utcnow
from chorus.database.engine import run_in_transaction
from chorus.database.models import (
    Engagement,
    PointTransaction,
    TransactionReason,
    User,
)
from chorus.engine.rules import SubReward
from chorus.errors import (
    CooldownError,
    DailyLimitError,
    EngagementError,
    NotFoundError,
    ValidationError,
)
from chorus.services import contest_service
from chorus.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@dataclass
class AwardResult:
    """Outcome of one ledger call."""

    transactions: list[PointTransaction] = field(default_factory=list)
    awarded: list[SubReward] = field(default_factory=list)
    rejected: list[EngagementError] = field(default_factory=list)
    contest_id: int | None = None

    @property
    def total(self) -> int:
        return sum(tx.amount for tx in self.transactions)


def lock_user(session: Session, user_id: int) -> User:
    """Load *user_id* with a row lock, or raise :class:`NotFoundError`."""
    user = session.get(User, user_id, with_for_update=True)
    if user is None:
        raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})
    return user


class PointLedger:
    def __init__(self, engine: Engine, rate_limiter: RateLimiter) -> None:
        self.engine = engine
        self.rate_limiter = rate_limiter

    # ------------------------------------------------------------------
    # Core append
    # ------------------------------------------------------------------
    def apply(
        self,
        session: Session,
        user_id: int,
        platform: str | None,
        items: list[SubReward],
        now: datetime | None = None,
        *,
        on_ineligible: Literal["raise", "skip"] = "raise",
        enforce_limits: bool = True,
        record_engagement: bool = True,
        count_for_contest: bool = True,
    ) -> AwardResult:
        """Append *items* for *user_id* within *session*'s transaction.

        ``on_ineligible="skip"`` drops items that fail their cooldown or
        daily limit and reports them in :attr:`AwardResult.rejected`;
        ``"raise"`` propagates the first such error.  The global daily cap
        always raises.
        """
        now = ensure_utc(now or utcnow())
        user = lock_user(session, user_id)
        result = AwardResult()

        eligible: list[SubReward] = []
        for item in items:
            if enforce_limits and platform is not None:
                try:
                    self.rate_limiter.check(session, user_id, platform, item, now)
                except (CooldownError, DailyLimitError) as exc:
                    if on_ineligible == "raise":
                        raise
                    result.rejected.append(exc)
                    continue
            eligible.append(item)

        if not eligible:
            return result

        earned = sum(item.points for item in eligible if item.points > 0)
        if enforce_limits:
            self.rate_limiter.check_point_cap(session, user_id, earned, now)

        contest = (
            contest_service.get_active_contest(session, shared=True) if count_for_contest else None
        )
        contest_id = contest.id if contest is not None else None

        for item in eligible:
            engagement_id = None
            if record_engagement:
                engagement = Engagement(
                    user_id=user_id,
                    platform=platform,
                    type=item.type,
                    timestamp=now,
                    metadata_=item.metadata or None,
                )
                session.add(engagement)
                session.flush()
                engagement_id = engagement.id
            tx = PointTransaction(
                user_id=user_id,
                amount=item.points,
                reason=item.type,
                platform=platform,
                engagement_id=engagement_id,
                contest_id=contest_id,
                metadata_=item.metadata or None,
                timestamp=now,
            )
            session.add(tx)
            result.transactions.append(tx)
            result.awarded.append(item)

        total = sum(item.points for item in eligible)
        self._increment_totals(session, user, total, earned, now)

        if contest_id is not None and total > 0:
            if contest_service.add_entry_points(session, contest_id, user_id, total):
                result.contest_id = contest_id
            else:
                logger.info(
                    "Contest %d ended mid-award; %d pts for user %d stay off its board",
                    contest_id, total, user_id,
                )
                for tx in result.transactions:
                    tx.contest_id = None

        session.flush()
        logger.debug(
            "Ledger +%d for user %d (%s): %s",
            total, user_id, platform, [item.type for item in eligible],
        )
        return result

    def _increment_totals(
        self, session: Session, user: User, delta: int, earned: int, now: datetime
    ) -> None:
        session.execute(
            update(User)
            .where(User.id == user.id)
            .values(
                points=User.points + delta,
                lifetime_points=User.lifetime_points + earned,
                last_active=now,
            )
            .execution_options(synchronize_session=False)
        )
        session.expire(user, ["points", "lifetime_points", "last_active"])

    def award(
        self,
        user_id: int,
        platform: str | None,
        items: list[SubReward],
        now: datetime | None = None,
        **kwargs,
    ) -> AwardResult:
        """:meth:`apply` in its own retrying transaction."""
        return run_in_transaction(
            self.engine, self.apply, user_id, platform, items, now, **kwargs
        )

    # ------------------------------------------------------------------
    # Admin corrections
    # ------------------------------------------------------------------
    def adjust(
        self,
        session: Session,
        user_id: int,
        amount: int,
        now: datetime | None = None,
        *,
        note: str | None = None,
    ) -> PointTransaction:
        """Signed manual adjustment within ``[-1000, 1000]``.

        Negative amounts reduce ``points`` only; ``lifetime_points`` never
        decreases.  Adjustments bypass rate limits and never count toward
        a contest.
        """
        if amount == 0 or not MIN_ADMIN_ADJUSTMENT <= amount <= MAX_ADMIN_ADJUSTMENT:
            raise ValidationError(
                f"Adjustment must be a non-zero amount between "
                f"{MIN_ADMIN_ADJUSTMENT} and {MAX_ADMIN_ADJUSTMENT}",
                {"amount": amount},
            )
        now = ensure_utc(now or utcnow())
        user = lock_user(session, user_id)
        if user.points + amount < 0:
            raise ValidationError(
                f"Adjustment would make balance negative ({user.points} + {amount})",
                {"amount": amount, "points": user.points},
            )
        tx = PointTransaction(
            user_id=user_id,
            amount=amount,
            reason=TransactionReason.MANUAL_ADJUSTMENT,
            platform=None,
            metadata_={"note": note} if note else None,
            timestamp=now,
        )
        session.add(tx)
        self._increment_totals(session, user, amount, max(amount, 0), now)
        session.flush()
        logger.info("Manual adjustment %+d for user %d", amount, user_id)
        return tx

    def reset_balance(
        self, session: Session, user_id: int, now: datetime | None = None
    ) -> PointTransaction | None:
        """Zero the spendable balance with one offsetting transaction.

        Returns ``None`` when the balance is already zero.
        """
        now = ensure_utc(now or utcnow())
        user = lock_user(session, user_id)
        if user.points == 0:
            return None
        tx = PointTransaction(
            user_id=user_id,
            amount=-user.points,
            reason=TransactionReason.BALANCE_RESET,
            platform=None,
            metadata_={"previous_points": user.points},
            timestamp=now,
        )
        session.add(tx)
        self._increment_totals(session, user, -user.points, 0, now)
        session.flush()
        logger.info("Balance reset for user %d", user_id)
        return tx
