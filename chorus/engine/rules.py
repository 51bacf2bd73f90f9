"""
chorus.engine.rules — Per-Platform Engagement Rules
====================================================

Pure rule logic: no DB I/O.  Holds the point / cooldown / daily-limit table
for every (platform, engagement type) pair and resolves one incoming
:class:`~chorus.engine.events.EngagementEvent` into the sub-rewards it may
earn.

Most events map to exactly one sub-reward.  A Telegram ``MESSAGE`` is a
composite: a single message can simultaneously count as a keyword message,
a quality post, a mention and a teaching post, each with its own cooldown.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace

from chorus.database.models import EngagementType, Platform
from chorus.engine.events import EngagementEvent
from chorus.errors import ValidationError

__all__ = [
    "RULES",
    "EngagementRule",
    "SubReward",
    "build_rule_table",
    "is_composite",
    "resolve_sub_rewards",
]

# ---------------------------------------------------------------------------
# Message classification thresholds
# ---------------------------------------------------------------------------
QUALITY_POST_MIN_WORDS = 10
TEACHING_POST_MIN_WORDS = 35
KEYWORDS = ("soless", "#soless", "@soless", "solarium", "solspace", "soulie", "soul", "nft", "swap")
OWN_HANDLE = "@soless"


@dataclass(frozen=True, slots=True)
class EngagementRule:
    """Points, cooldown and daily limit for one (platform, type)."""

    points: int
    cooldown_seconds: int = 0
    daily_limit: int | None = None
    # STREAK_BONUS is emitted by the streak tracker only
    submittable: bool = True


@dataclass(frozen=True, slots=True)
class SubReward:
    """One point-earning outcome of an event."""

    type: str
    points: int
    cooldown_seconds: int
    daily_limit: int | None
    metadata: dict


_T = EngagementType

RULES: dict[str, dict[str, EngagementRule]] = {
    Platform.TELEGRAM: {
        _T.MESSAGE: EngagementRule(points=1, cooldown_seconds=60),
        _T.QUALITY_POST: EngagementRule(points=1, cooldown_seconds=300),
        _T.MENTION: EngagementRule(points=1, cooldown_seconds=180),
        _T.TEACHING_POST: EngagementRule(points=4, cooldown_seconds=900),
        _T.MUSIC_SHARE: EngagementRule(points=5, cooldown_seconds=300, daily_limit=10),
        _T.FACT_SHARE: EngagementRule(points=2, cooldown_seconds=4 * 3600, daily_limit=3),
        _T.INVITE: EngagementRule(points=10, daily_limit=10),
        _T.DAILY_ACTIVE: EngagementRule(points=2, daily_limit=1),
        _T.STREAK_BONUS: EngagementRule(points=5, submittable=False),
    },
    Platform.DISCORD: {
        _T.MESSAGE: EngagementRule(points=0),
        _T.QUALITY_POST: EngagementRule(points=1, cooldown_seconds=300),
        _T.VOICE_CHAT: EngagementRule(points=2, cooldown_seconds=300),
        _T.REACTION: EngagementRule(points=1, cooldown_seconds=60, daily_limit=50),
        _T.INVITE: EngagementRule(points=10, daily_limit=10),
        _T.DAILY_ACTIVE: EngagementRule(points=2, daily_limit=1),
        _T.STREAK_BONUS: EngagementRule(points=5, submittable=False),
    },
    Platform.TWITTER: {
        _T.TWEET: EngagementRule(points=2, cooldown_seconds=300),
        _T.RETWEET: EngagementRule(points=1, cooldown_seconds=300),
        _T.MENTION: EngagementRule(points=3, cooldown_seconds=600),
        _T.DAILY_ACTIVE: EngagementRule(points=2, daily_limit=1),
        _T.STREAK_BONUS: EngagementRule(points=5, submittable=False),
    },
}

# Event types whose single report fans out to several sub-rewards
_COMPOSITE: dict[str, frozenset[str]] = {
    Platform.TELEGRAM: frozenset({_T.MESSAGE}),
    Platform.DISCORD: frozenset({_T.MESSAGE}),
}


def build_rule_table(overrides: dict[str, dict[str, dict]] | None = None):
    """Return :data:`RULES` with per-platform/type overrides from config.

    Unknown platforms or types in *overrides* raise ``ValueError`` so a
    typo in ``config.yaml`` never silently does nothing.
    """
    table = {platform: dict(rules) for platform, rules in RULES.items()}
    for platform, per_type in (overrides or {}).items():
        if platform not in table:
            raise ValueError(f"Unknown platform in points config: {platform!r}")
        for engagement_type, fields in per_type.items():
            current = table[platform].get(engagement_type)
            if current is None:
                raise ValueError(
                    f"Unknown engagement type {engagement_type!r} for platform {platform!r}"
                )
            table[platform][engagement_type] = replace(current, **fields)
    return table


def is_composite(platform: str, engagement_type: str) -> bool:
    return engagement_type in _COMPOSITE.get(platform, frozenset())


# ---------------------------------------------------------------------------
# Message classification
# ---------------------------------------------------------------------------
def word_count(event: EngagementEvent) -> int:
    """Whitespace-split word count, or the adapter-supplied ``word_count``."""
    text = event.metadata.get("text")
    if isinstance(text, str):
        return len(text.split())
    raw = event.metadata.get("word_count", 0)
    try:
        if isinstance(raw, bool):
            raise TypeError
        count = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("Invalid word_count", {"word_count": str(raw)}) from None
    if count < 0:
        raise ValidationError("Invalid word_count", {"word_count": count})
    return count


def _mentions_keyword(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in KEYWORDS)


def _mentions_other_account(text: str) -> bool:
    lowered = text.lower()
    return "@" in lowered and OWN_HANDLE not in lowered


def _message_types(event: EngagementEvent) -> list[str]:
    text = event.metadata.get("text") or ""
    words = word_count(event)
    types: list[str] = []
    if event.platform == Platform.TELEGRAM:
        if text and _mentions_keyword(text):
            types.append(_T.MESSAGE)
        if words >= QUALITY_POST_MIN_WORDS:
            types.append(_T.QUALITY_POST)
        if text and _mentions_other_account(text):
            types.append(_T.MENTION)
        if words >= TEACHING_POST_MIN_WORDS:
            types.append(_T.TEACHING_POST)
    elif words >= QUALITY_POST_MIN_WORDS:
        types.append(_T.QUALITY_POST)
    return types


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------
def resolve_sub_rewards(
    event: EngagementEvent,
    rules: dict[str, dict[str, EngagementRule]] | None = None,
) -> list[SubReward]:
    """Map *event* to the sub-rewards it may earn, before rate limiting.

    Assumes the platform and type were already validated against *rules*.
    Zero-point rules never produce a sub-reward.
    """
    rules = rules or RULES
    platform_rules = rules[event.platform]

    if is_composite(event.platform, event.type):
        types = _message_types(event)
    else:
        types = [event.type]

    words = word_count(event)
    sub_rewards = []
    for engagement_type in types:
        rule = platform_rules.get(engagement_type)
        if rule is None or rule.points <= 0:
            continue
        metadata = {k: v for k, v in event.metadata.items() if k != "text"}
        if is_composite(event.platform, event.type):
            metadata["word_count"] = words
            metadata["source_type"] = event.type
            if engagement_type == _T.MENTION:
                metadata["mentions"] = mentioned_handles(event.metadata.get("text") or "")
        sub_rewards.append(
            SubReward(
                type=str(engagement_type),
                points=rule.points,
                cooldown_seconds=rule.cooldown_seconds,
                daily_limit=rule.daily_limit,
                metadata=metadata,
            )
        )
    return sub_rewards


_HANDLE_RE = re.compile(r"@\w+")


def mentioned_handles(text: str) -> list[str]:
    """Handles mentioned in *text*, lower-cased, own handle excluded."""
    return [h.lower() for h in _HANDLE_RE.findall(text) if h.lower() != OWN_HANDLE]
