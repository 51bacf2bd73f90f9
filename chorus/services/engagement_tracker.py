"""
chorus.services.engagement_tracker — Per-Platform Engagement Orchestration
===========================================================================

``track(event)`` is the single entry point platform adapters call:

    validate → resolve sub-rewards → rate-limit checks
             → ledger append → streak touch          (one transaction)

Single-rule events raise :class:`~chorus.errors.CooldownError` or
:class:`~chorus.errors.DailyLimitError` when suppressed, so the adapter
can tell the user how long to wait.  Composite events (a Telegram message
that may count as several sub-rewards at once) return ``False`` when every
sub-reward is suppressed; that is a normal outcome, not an error.  The
global daily point cap always raises.

One :class:`EngagementTracker` per platform, all sharing one ledger, rate
limiter and streak tracker; :class:`TrackerRegistry` dispatches on
``event.platform``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from chorus.constants import ensure_utc, utcnow
from chorus.database.engine import run_in_transaction
from chorus.database.models import EngagementType, Platform
from chorus.engine.events import EngagementEvent
from chorus.engine.rules import EngagementRule, is_composite, resolve_sub_rewards
from chorus.errors import CooldownError, DailyLimitError, EngagementError, ValidationError
from chorus.services.point_ledger import AwardResult, PointLedger
from chorus.services.streak_tracker import StreakTracker

logger = logging.getLogger(__name__)


class EngagementTracker:
    def __init__(
        self,
        platform: str,
        engine: Engine,
        ledger: PointLedger,
        streaks: StreakTracker,
        rules: dict[str, dict[str, EngagementRule]],
        *,
        max_clock_skew_seconds: int = 300,
        clock=utcnow,
    ) -> None:
        self.platform = Platform(platform)
        self.engine = engine
        self.ledger = ledger
        self.rate_limiter = ledger.rate_limiter
        self.streaks = streaks
        self.rules = rules
        self.max_clock_skew = timedelta(seconds=max_clock_skew_seconds)
        self._clock = clock

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def validate(self, event: EngagementEvent) -> datetime:
        """Reject malformed events; return the event time in UTC."""
        if event.platform != self.platform:
            raise ValidationError(
                f"Event for platform {event.platform!r} sent to {self.platform} tracker",
                {"platform": event.platform},
            )
        if not isinstance(event.user_id, int) or isinstance(event.user_id, bool) or event.user_id <= 0:
            raise ValidationError("Invalid user id", {"user_id": event.user_id})
        if event.type == EngagementType.STREAK_BONUS:
            raise ValidationError(
                "STREAK_BONUS is awarded automatically and cannot be submitted",
                {"type": event.type},
            )
        rule = self.rules.get(self.platform, {}).get(event.type)
        if rule is None or not rule.submittable:
            raise ValidationError(
                f"Unknown engagement type {event.type!r} for platform {self.platform}",
                {"platform": self.platform, "type": event.type},
            )
        if not isinstance(event.timestamp, datetime):
            raise ValidationError("Invalid timestamp", {"timestamp": str(event.timestamp)})
        timestamp = ensure_utc(event.timestamp)
        if timestamp - ensure_utc(self._clock()) > self.max_clock_skew:
            raise ValidationError(
                "Event timestamp is in the future", {"timestamp": timestamp.isoformat()}
            )
        return timestamp

    # ------------------------------------------------------------------
    # Track
    # ------------------------------------------------------------------
    def track(self, event: EngagementEvent) -> bool:
        """Award whatever *event* currently qualifies for.

        Returns ``True`` if at least one sub-reward was awarded.
        """
        try:
            now = self.validate(event)
        except ValidationError as exc:
            logger.debug("Rejected invalid event: %s", exc.message)
            raise

        sub_rewards = resolve_sub_rewards(event, self.rules)
        composite = is_composite(self.platform, event.type)
        if not sub_rewards:
            if composite:
                return False
            raise ValidationError(
                f"Engagement type {event.type!r} earns no points on {self.platform}",
                {"type": event.type},
            )

        # Hint cache: drop sub-rewards already known to be cooling down
        candidates = []
        for sub in sub_rewards:
            try:
                self.rate_limiter.peek(event.user_id, self.platform, sub, now)
            except CooldownError as exc:
                if not composite:
                    logger.debug("Cooldown (cached) for user %d: %s", event.user_id, exc.message)
                    raise
                continue
            candidates.append(sub)
        if not candidates:
            return False

        try:
            result = run_in_transaction(
                self.engine,
                self._track_in_session,
                event.user_id,
                candidates,
                now,
                "skip" if composite else "raise",
            )
        except (CooldownError, DailyLimitError) as exc:
            logger.debug(
                "Engagement suppressed for user %d (%s/%s): %s",
                event.user_id, self.platform, event.type, exc.message,
            )
            raise
        except EngagementError:
            raise
        except Exception:
            logger.exception(
                "Failed to track engagement",
                extra={"user_id": event.user_id, "platform": self.platform, "type": event.type},
            )
            raise

        for sub in result.awarded:
            self.rate_limiter.note_award(event.user_id, self.platform, sub, now)

        if not result.awarded:
            logger.debug(
                "All sub-rewards suppressed for user %d (%s/%s)",
                event.user_id, self.platform, event.type,
            )
            return False

        logger.info(
            "User %d earned %d pts on %s: %s",
            event.user_id, result.total, self.platform, [s.type for s in result.awarded],
        )
        return True

    def _track_in_session(
        self, session: Session, user_id: int, sub_rewards, now: datetime, on_ineligible: str
    ) -> AwardResult:
        result = self.ledger.apply(
            session, user_id, self.platform, sub_rewards, now, on_ineligible=on_ineligible
        )
        if result.awarded:
            self.streaks.touch(session, user_id, self.platform, now)
        return result


class TrackerRegistry:
    """One tracker per platform, dispatched on ``event.platform``."""

    def __init__(self, trackers: dict[str, EngagementTracker]) -> None:
        self._trackers = dict(trackers)

    def __getitem__(self, platform: str) -> EngagementTracker:
        return self.get(platform)

    def get(self, platform: str) -> EngagementTracker:
        tracker = self._trackers.get(str(platform).upper())
        if tracker is None:
            raise ValidationError(f"Unknown platform {platform!r}", {"platform": platform})
        return tracker

    def track(self, event: EngagementEvent) -> bool:
        return self.get(event.platform).track(event)
