"""
chorus.services.stats_service — Read Projections
=================================================

Read-only views used by the HTTP layer and bot replies.  Nothing here
mutates state.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from chorus.constants import day_start, ensure_utc, utcnow
from chorus.database.models import (
    ContestEntry,
    Engagement,
    PointTransaction,
    User,
    UserStreak,
)
from chorus.errors import NotFoundError
from chorus.services.contest_service import get_active_contest, live_rank


def _tx_to_dict(tx: PointTransaction) -> dict:
    return {
        "id": tx.id,
        "amount": tx.amount,
        "reason": tx.reason,
        "platform": tx.platform,
        "contest_id": tx.contest_id,
        "timestamp": ensure_utc(tx.timestamp).isoformat(),
        "metadata": tx.metadata_ or {},
    }


def get_user_stats(engine: Engine, user_id: int, *, recent: int = 10) -> dict:
    """Balance, global rank, current-contest standing, streaks and recent
    transactions for one user."""
    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})

        global_rank = (
            session.scalar(select(func.count(User.id)).where(User.points > user.points)) or 0
        ) + 1

        contest_view = None
        contest = get_active_contest(session)
        if contest is not None:
            entry = session.scalar(
                select(ContestEntry).where(
                    ContestEntry.contest_id == contest.id, ContestEntry.user_id == user_id
                )
            )
            contest_view = {
                "contest_id": contest.id,
                "points": entry.points if entry else 0,
                "rank": live_rank(session, entry) if entry else None,
            }

        streak = session.get(UserStreak, user_id)
        transactions = session.scalars(
            select(PointTransaction)
            .where(PointTransaction.user_id == user_id)
            .order_by(PointTransaction.timestamp.desc(), PointTransaction.id.desc())
            .limit(recent)
        ).all()

        return {
            "user_id": user.id,
            "wallet_address": user.wallet_address,
            "username": user.username,
            "points": user.points,
            "lifetime_points": user.lifetime_points,
            "last_active": ensure_utc(user.last_active).isoformat() if user.last_active else None,
            "rank": global_rank,
            "contest": contest_view,
            "streaks": streak.as_dict() if streak else {"TELEGRAM": 0, "DISCORD": 0, "TWITTER": 0},
            "recent_transactions": [_tx_to_dict(tx) for tx in transactions],
        }


def get_global_stats(engine: Engine, now: datetime | None = None) -> dict:
    """Community totals, today's activity per platform and the current contest."""
    now = ensure_utc(now or utcnow())
    start = day_start(now)
    end = start + timedelta(days=1)

    with Session(engine) as session:
        total_users = session.scalar(select(func.count(User.id))) or 0
        total_points = session.scalar(select(func.coalesce(func.sum(User.lifetime_points), 0))) or 0
        active_today = session.scalar(
            select(func.count(func.distinct(Engagement.user_id))).where(
                Engagement.timestamp >= start, Engagement.timestamp < end
            )
        ) or 0

        per_platform = {}
        rows = session.execute(
            select(
                PointTransaction.platform,
                func.count(func.distinct(PointTransaction.user_id)),
                func.coalesce(func.sum(PointTransaction.amount), 0),
            )
            .where(
                PointTransaction.platform.is_not(None),
                PointTransaction.timestamp >= start,
                PointTransaction.timestamp < end,
            )
            .group_by(PointTransaction.platform)
        ).all()
        for platform, users, points in rows:
            per_platform[platform] = {"active_users": users, "points": points}

        top_types = [
            {"type": engagement_type, "count": count}
            for engagement_type, count in session.execute(
                select(Engagement.type, func.count(Engagement.id))
                .where(Engagement.timestamp >= start, Engagement.timestamp < end)
                .group_by(Engagement.type)
                .order_by(func.count(Engagement.id).desc(), Engagement.type)
                .limit(5)
            ).all()
        ]

        contest_view = None
        contest = get_active_contest(session)
        if contest is not None:
            participants = session.scalar(
                select(func.count(ContestEntry.id)).where(ContestEntry.contest_id == contest.id)
            ) or 0
            contest_view = {
                "id": contest.id,
                "name": contest.name,
                "participants": participants,
                "end_time": ensure_utc(contest.end_time).isoformat(),
            }

        return {
            "total_users": total_users,
            "total_points": total_points,
            "active_today": active_today,
            "platforms": per_platform,
            "top_engagement_types": top_types,
            "current_contest": contest_view,
        }
