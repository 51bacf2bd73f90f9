"""
chorus.engine.tiers — Contest Tier & Prize Evaluation
======================================================

Pure functions over a contest's rule snapshot (``Contest.rules``).  Tiers
are absolute point thresholds, independent of rank; prizes are keyed by
final rank.
"""

from __future__ import annotations

from dataclasses import dataclass

__all__ = [
    "TierStatus",
    "crossed_tiers",
    "current_tier",
    "next_tier",
    "prize_for_rank",
    "tier_status",
]


@dataclass(frozen=True, slots=True)
class TierStatus:
    eligible: bool
    current_tier: dict | None
    next_tier: dict | None
    points_needed: int


def _sorted(tiers: list[dict]) -> list[dict]:
    return sorted(tiers, key=lambda t: t["min_points"])


def crossed_tiers(points: int, tiers: list[dict]) -> list[dict]:
    """Every tier whose threshold *points* meets, lowest first."""
    return [t for t in _sorted(tiers) if points >= t["min_points"]]


def current_tier(points: int, tiers: list[dict]) -> dict | None:
    crossed = crossed_tiers(points, tiers)
    return crossed[-1] if crossed else None


def next_tier(points: int, tiers: list[dict]) -> dict | None:
    for tier in _sorted(tiers):
        if points < tier["min_points"]:
            return tier
    return None


def tier_status(points: int, tiers: list[dict], min_points: int = 0) -> TierStatus:
    """Current tier, next tier and the points still needed to reach it."""
    upcoming = next_tier(points, tiers)
    return TierStatus(
        eligible=points >= min_points and current_tier(points, tiers) is not None,
        current_tier=current_tier(points, tiers),
        next_tier=upcoming,
        points_needed=(upcoming["min_points"] - points) if upcoming else 0,
    )


def prize_for_rank(rank: int, prizes: list[dict]) -> dict | None:
    for prize in prizes:
        if prize["rank"] == rank:
            return prize
    return None
