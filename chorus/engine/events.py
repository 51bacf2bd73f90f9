"""
chorus.engine.events — EngagementEvent
=======================================

The envelope platform adapters hand to the engine.  Every chat message,
share, reaction or tweet is normalized into an :class:`EngagementEvent`
before the tracker resolves it into point-earning sub-rewards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from chorus.constants import utcnow

__all__ = ["EngagementEvent"]


@dataclass(frozen=True, slots=True)
class EngagementEvent:
    """Normalized engagement from any platform.

    ``metadata`` carries source-specific details: message ``text`` or
    ``word_count`` for messages, ``song_title`` for music shares, and so on.
    """

    platform: str
    user_id: int
    type: str
    timestamp: datetime = field(default_factory=utcnow)
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict) -> EngagementEvent:
        """Build an event from an adapter payload (``userId`` or ``user_id``)."""
        timestamp = raw.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            platform=str(raw.get("platform", "")).upper(),
            user_id=raw.get("user_id", raw.get("userId")),
            type=str(raw.get("type", "")).upper(),
            timestamp=timestamp or utcnow(),
            metadata=dict(raw.get("metadata") or {}),
        )
