"""
chorus.api.routes.admin — Admin and scheduler endpoints (JWT‑protected)
=========================================================================
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from chorus.api.deps import get_current_admin, get_services
from chorus.api.routes.public import contest_dict, reward_dict
from chorus.constants import MAX_ADMIN_ADJUSTMENT, MIN_ADMIN_ADJUSTMENT
from chorus.services import admin_service
from chorus.services.container import Services

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ContestStart(BaseModel):
    name: str | None = None
    rules: dict[str, Any] = Field(default_factory=dict)


class PointAdjustment(BaseModel):
    amount: int = Field(ge=MIN_ADMIN_ADJUSTMENT, le=MAX_ADMIN_ADJUSTMENT)
    reason: str | None = None


class BalanceReset(BaseModel):
    reason: str | None = None


def _user_dict(user) -> dict:
    return {
        "id": user.id,
        "wallet_address": user.wallet_address,
        "points": user.points,
        "lifetime_points": user.lifetime_points,
    }


# ---------------------------------------------------------------------------
# Contest lifecycle
# ---------------------------------------------------------------------------
@router.post("/contests/start", status_code=201)
def start_contest(
    body: ContestStart,
    admin: dict = Depends(get_current_admin),
    services: Services = Depends(get_services),
):
    contest = services.contests.start_new_contest(
        body.rules, name=body.name, actor_id=str(admin["sub"])
    )
    return contest_dict(contest)


@router.post("/contests/end")
def end_contest(
    admin: dict = Depends(get_current_admin),
    services: Services = Depends(get_services),
):
    contest = services.contests.end_current_contest(actor_id=str(admin["sub"]))
    return contest_dict(contest)


@router.post("/contests/{contest_id}/distribute")
def distribute_rewards(
    contest_id: int,
    admin: dict = Depends(get_current_admin),
    services: Services = Depends(get_services),
):
    rewards = services.contests.distribute_rewards(contest_id, actor_id=str(admin["sub"]))
    return {"contest_id": contest_id, "created": [reward_dict(r) for r in rewards]}


# ---------------------------------------------------------------------------
# Point corrections
# ---------------------------------------------------------------------------
@router.post("/users/{user_id}/adjust")
def adjust_points(
    user_id: int,
    body: PointAdjustment,
    admin: dict = Depends(get_current_admin),
    services: Services = Depends(get_services),
):
    user = admin_service.adjust_points(
        services.engine,
        services.ledger,
        user_id=user_id,
        amount=body.amount,
        actor_id=str(admin["sub"]),
        reason=body.reason,
    )
    return _user_dict(user)


@router.post("/users/{user_id}/reset")
def reset_balance(
    user_id: int,
    body: BalanceReset,
    admin: dict = Depends(get_current_admin),
    services: Services = Depends(get_services),
):
    user = admin_service.reset_balance(
        services.engine,
        services.ledger,
        user_id=user_id,
        actor_id=str(admin["sub"]),
        reason=body.reason,
    )
    return _user_dict(user)


# ---------------------------------------------------------------------------
# Housekeeping
# ---------------------------------------------------------------------------
@router.post("/rewards/expire")
def expire_rewards(
    admin: dict = Depends(get_current_admin),
    services: Services = Depends(get_services),
):
    expired = admin_service.expire_rewards(
        services.engine, services.contests, actor_id=str(admin["sub"])
    )
    return {"expired": expired}


@router.get("/audit")
def audit_log(
    limit: int = Query(50, ge=1, le=500),
    admin: dict = Depends(get_current_admin),
    services: Services = Depends(get_services),
):
    return {"entries": admin_service.recent_admin_log(services.engine, limit)}
