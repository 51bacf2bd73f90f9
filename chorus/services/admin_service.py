"""
chorus.services.admin_service — Audit-Logged Admin Mutations
=============================================================

Every admin write follows the same pattern:
  1. Begin transaction
  2. Read "before" snapshot
  3. Apply change (through the ledger / contest manager)
  4. Write admin_log with before/after JSONB
  5. Commit

Contest lifecycle calls made on behalf of an admin pass ``actor_id`` to
:class:`~chorus.services.contest_service.ContestManager`, which writes its
audit row with :func:`log_admin_action` inside its own transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from chorus.database.engine import get_session, run_in_transaction
from chorus.database.models import AdminActionType, AdminLog, User

if TYPE_CHECKING:
    from chorus.services.contest_service import ContestManager
    from chorus.services.point_ledger import PointLedger

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Generic audit helpers
# ---------------------------------------------------------------------------
def row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key if col.key != "metadata" else "metadata_", None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def log_admin_action(
    session: Session,
    *,
    actor_id: str,
    action_type: str,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=str(actor_id),
        action_type=action_type,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))


# ---------------------------------------------------------------------------
# Point corrections
# ---------------------------------------------------------------------------
def adjust_points(
    engine: Engine,
    ledger: PointLedger,
    *,
    user_id: int,
    amount: int,
    actor_id: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> User:
    """Signed manual adjustment, audited.  Returns the updated user."""

    def _apply(session: Session) -> User:
        user = session.get(User, user_id)
        before = row_to_dict(user)
        tx = ledger.adjust(session, user_id, amount, now, note=reason)
        session.refresh(user)
        log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.POINT_ADJUSTMENT,
            target_table="users",
            target_id=str(user_id),
            before=before,
            after={**row_to_dict(user), "transaction_id": tx.id},
            reason=reason,
        )
        return user

    user = run_in_transaction(engine, _apply)
    logger.info("Admin %s adjusted user %d by %+d", actor_id, user_id, amount)
    return user


def reset_balance(
    engine: Engine,
    ledger: PointLedger,
    *,
    user_id: int,
    actor_id: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> User:
    """Zero a user's spendable balance, audited.  Lifetime points are kept."""

    def _apply(session: Session) -> User:
        user = session.get(User, user_id)
        before = row_to_dict(user)
        ledger.reset_balance(session, user_id, now)
        session.refresh(user)
        log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.BALANCE_RESET,
            target_table="users",
            target_id=str(user_id),
            before=before,
            after=row_to_dict(user),
            reason=reason,
        )
        return user

    user = run_in_transaction(engine, _apply)
    logger.info("Admin %s reset balance of user %d", actor_id, user_id)
    return user


# ---------------------------------------------------------------------------
# Reward housekeeping
# ---------------------------------------------------------------------------
def expire_rewards(
    engine: Engine,
    contests: ContestManager,
    *,
    actor_id: str,
    now: datetime | None = None,
) -> int:
    """Run the reward-expiry sweep on an admin's behalf and audit the count."""
    expired = contests.expire_stale_rewards(now)
    with get_session(engine) as session:
        log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.REWARD_EXPIRY,
            target_table="contest_rewards",
            target_id=None,
            before=None,
            after={"expired": expired},
        )
    return expired


def recent_admin_log(engine: Engine, limit: int = 50) -> list[dict]:
    with Session(engine) as session:
        rows = session.scalars(
            select(AdminLog).order_by(AdminLog.id.desc()).limit(limit)
        ).all()
        return [row_to_dict(r) for r in rows]
