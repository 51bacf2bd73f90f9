"""
chorus.api.routes.engagement — Adapter and user write endpoints
=================================================================

Platform adapters (``role: adapter`` tokens) report engagement, register
wallets and link platform accounts here.  Users claim their own rewards.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from chorus.api.deps import get_current_adapter, get_current_principal, get_services
from chorus.api.routes.public import reward_dict
from chorus.engine.events import EngagementEvent
from chorus.services import user_service
from chorus.services.container import Services

router = APIRouter(tags=["engagement"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class EngagementIn(BaseModel):
    platform: str
    user_id: int
    type: str
    timestamp: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class UserCreate(BaseModel):
    wallet_address: str
    username: str | None = None


class AccountLink(BaseModel):
    platform: str
    platform_id: str
    username: str | None = None


# ---------------------------------------------------------------------------
# Engagement
# ---------------------------------------------------------------------------
@router.post("/engagements")
def track_engagement(
    body: EngagementIn,
    adapter: dict = Depends(get_current_adapter),
    services: Services = Depends(get_services),
):
    event = EngagementEvent.from_dict(body.model_dump(exclude_none=True))
    awarded = services.trackers.track(event)
    return {"awarded": awarded}


# ---------------------------------------------------------------------------
# Users & accounts
# ---------------------------------------------------------------------------
@router.post("/users", status_code=201)
def register_user(
    body: UserCreate,
    adapter: dict = Depends(get_current_adapter),
    services: Services = Depends(get_services),
):
    user = user_service.create_user(services.engine, body.wallet_address, body.username)
    return {"id": user.id, "wallet_address": user.wallet_address, "username": user.username}


@router.post("/users/{user_id}/accounts", status_code=201)
def link_account(
    user_id: int,
    body: AccountLink,
    adapter: dict = Depends(get_current_adapter),
    services: Services = Depends(get_services),
):
    account = user_service.link_platform_account(
        services.engine, user_id, body.platform, body.platform_id, body.username
    )
    return {
        "id": account.id,
        "user_id": account.user_id,
        "platform": account.platform,
        "platform_id": account.platform_id,
    }


@router.get("/accounts/{platform}/{platform_id}")
def resolve_account(
    platform: str,
    platform_id: str,
    adapter: dict = Depends(get_current_adapter),
    services: Services = Depends(get_services),
):
    return {"user_id": user_service.resolve_user_id(services.engine, platform, platform_id)}


# ---------------------------------------------------------------------------
# Rewards
# ---------------------------------------------------------------------------
@router.post("/rewards/{reward_id}/claim")
def claim_reward(
    reward_id: int,
    principal: dict = Depends(get_current_principal),
    services: Services = Depends(get_services),
):
    """Claim a reward; the token subject must be the owning user."""
    try:
        user_id = int(principal.get("sub", ""))
    except ValueError:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "User token required")
    reward = services.contests.claim_reward(reward_id, user_id)
    return {"claimed": True, "reward": reward_dict(reward)}
