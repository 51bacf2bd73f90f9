"""
chorus.api.routes.public — Read-only public endpoints
=======================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from chorus.api.deps import get_services
from chorus.constants import ensure_utc
from chorus.database.models import Contest, ContestReward
from chorus.services import stats_service
from chorus.services.container import Services

router = APIRouter(tags=["public"])


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------
def contest_dict(c: Contest) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "status": c.status,
        "start_time": ensure_utc(c.start_time).isoformat(),
        "end_time": ensure_utc(c.end_time).isoformat(),
        "completed_at": ensure_utc(c.completed_at).isoformat() if c.completed_at else None,
        "rules": c.rules,
        "metadata": c.metadata_ or {},
    }


def reward_dict(r: ContestReward) -> dict:
    return {
        "id": r.id,
        "contest_id": r.contest_id,
        "user_id": r.user_id,
        "kind": r.kind,
        "label": r.label,
        "reward_type": r.reward_type,
        "status": r.status,
        "metadata": r.metadata_ or {},
        "expires_at": ensure_utc(r.expires_at).isoformat() if r.expires_at else None,
        "claimed_at": ensure_utc(r.claimed_at).isoformat() if r.claimed_at else None,
    }


# ---------------------------------------------------------------------------
# Contests
# ---------------------------------------------------------------------------
@router.get("/contests/current")
def current_contest(services: Services = Depends(get_services)):
    """The ACTIVE contest (or ``null``), time left and round number."""
    contests = services.contests
    contest = contests.get_current_contest()
    return {
        "contest": contest_dict(contest) if contest else None,
        "time_left": contests.get_time_left(),
        "round": contests.get_current_round(),
    }


@router.get("/contests/{contest_id}/leaderboard")
def contest_leaderboard(
    contest_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    services: Services = Depends(get_services),
):
    return services.contests.get_leaderboard(contest_id, page, page_size)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
@router.get("/users/{user_id}/stats")
def user_stats(user_id: int, services: Services = Depends(get_services)):
    return stats_service.get_user_stats(services.engine, user_id)


@router.get("/users/{user_id}/rewards")
def user_rewards(
    user_id: int,
    status: str | None = Query(None),
    services: Services = Depends(get_services),
):
    rewards = services.contests.get_user_rewards(user_id, status)
    return {"user_id": user_id, "rewards": [reward_dict(r) for r in rewards]}


@router.get("/users/{user_id}/tier")
def user_tier(
    user_id: int,
    contest_id: int | None = Query(None),
    services: Services = Depends(get_services),
):
    return services.contests.check_tier_eligibility(user_id, contest_id)


@router.get("/users/{user_id}/rank")
def user_rank(
    user_id: int,
    contest_id: int | None = Query(None),
    services: Services = Depends(get_services),
):
    return services.contests.check_rank_eligibility(user_id, contest_id)


# ---------------------------------------------------------------------------
# Community
# ---------------------------------------------------------------------------
@router.get("/stats")
def global_stats(services: Services = Depends(get_services)):
    return stats_service.get_global_stats(services.engine)
