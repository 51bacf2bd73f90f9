"""
chorus.errors — Typed Engine Errors
====================================

Every expected failure the engine can report is a subclass of
:class:`EngagementError`.  Validation, cooldown, and daily-limit errors are
frequent, normal outcomes: adapters catch them and reply to the end user
with :func:`user_message`.  Lock and storage failures surface as
:class:`LockUnavailable` or as the underlying SQLAlchemy error after the
bounded retries in :func:`chorus.database.engine.run_in_transaction`.
"""

from __future__ import annotations

import math
from typing import Any


class EngagementError(Exception):
    """Base class for all typed engine errors."""

    code = "ENGAGEMENT_ERROR"
    status_code = 500

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "context": self.context,
        }


class ValidationError(EngagementError):
    """Unknown platform/type or malformed identifiers."""

    code = "VALIDATION_ERROR"
    status_code = 400


class CooldownError(EngagementError):
    """Action attempted before its cooldown elapsed."""

    code = "COOLDOWN_ACTIVE"
    status_code = 429

    def __init__(self, platform: str, engagement_type: str, remaining_seconds: int) -> None:
        super().__init__(
            f"Engagement type {engagement_type!r} is on cooldown for platform "
            f"{platform!r}. Try again in {remaining_seconds} seconds.",
            {
                "platform": platform,
                "type": engagement_type,
                "remaining_seconds": remaining_seconds,
            },
        )
        self.remaining_seconds = remaining_seconds


class DailyLimitError(EngagementError):
    """Per-type daily count or the global daily point cap was reached."""

    code = "DAILY_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(
        self,
        message: str,
        *,
        limit: int,
        platform: str | None = None,
        engagement_type: str | None = None,
        current: int | None = None,
    ) -> None:
        super().__init__(
            message,
            {
                "platform": platform,
                "type": engagement_type,
                "limit": limit,
                "current": current,
            },
        )
        self.limit = limit

    @classmethod
    def for_type(cls, platform: str, engagement_type: str, limit: int) -> DailyLimitError:
        return cls(
            f"Daily limit of {limit} reached for engagement type "
            f"{engagement_type!r} on platform {platform!r}.",
            limit=limit,
            platform=platform,
            engagement_type=engagement_type,
        )

    @classmethod
    def for_point_cap(cls, current: int, requested: int, cap: int) -> DailyLimitError:
        return cls(
            f"Daily point limit exceeded. Current: {current}, "
            f"requested: {requested}, max: {cap}",
            limit=cap,
            current=current,
        )

    @property
    def is_point_cap(self) -> bool:
        return self.context.get("type") is None


class NotFoundError(EngagementError):
    """Missing user, contest, or reward."""

    code = "NOT_FOUND"
    status_code = 404


class ConflictError(EngagementError):
    """State conflict: duplicate active contest, reward already claimed or
    expired, platform account already linked."""

    code = "CONFLICT"
    status_code = 409


class LockUnavailable(EngagementError):
    """The lifecycle lock could not be acquired."""

    code = "LOCK_UNAVAILABLE"
    status_code = 503

    def __init__(self, key: str) -> None:
        super().__init__(f"Could not acquire lock {key!r}; try again shortly.", {"key": key})


# ---------------------------------------------------------------------------
# Adapter-facing replies
# ---------------------------------------------------------------------------
def user_message(error: EngagementError) -> str:
    """Short human reply for an engine error.  Never exposes internals."""
    if isinstance(error, CooldownError):
        minutes = math.ceil(error.remaining_seconds / 60)
        if minutes <= 1:
            return "Please wait a minute before doing that again."
        return f"Please wait {minutes} minutes before doing that again."
    if isinstance(error, DailyLimitError):
        if error.is_point_cap:
            return "You've reached today's point limit. Come back tomorrow!"
        return "You've reached today's limit for that. Try again tomorrow!"
    if isinstance(error, NotFoundError):
        return "We couldn't find that. Have you linked your account?"
    if isinstance(error, ConflictError):
        return error.message
    if isinstance(error, ValidationError):
        return "That action isn't supported here."
    return "Something went wrong. Please try again later."
