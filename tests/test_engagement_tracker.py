"""
tests/test_engagement_tracker.py — End-to-End Engagement Tracking
==================================================================

validate → resolve sub-rewards → rate limits → ledger → streak, through
the per-platform trackers the adapters call.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import NOW, make_services
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from chorus.config import ChorusConfig, RateLimitSettings
from chorus.database.models import Engagement, PointTransaction, User
from chorus.engine.events import EngagementEvent
from chorus.errors import CooldownError, DailyLimitError, NotFoundError, ValidationError

LONG_MESSAGE = "the soless swap flow settles instantly and fees stay tiny for everyone"


def emit(services, clock, platform, user_id, engagement_type, at=NOW, **metadata) -> bool:
    clock.now = at
    event = EngagementEvent(platform, user_id, engagement_type, at, metadata)
    return services.trackers.track(event)


def points(engine, user_id: int) -> int:
    with Session(engine) as session:
        return session.get(User, user_id).points


def journal(engine) -> list[str]:
    with Session(engine) as session:
        return list(session.scalars(select(Engagement.type).order_by(Engagement.id)).all())


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
class TestValidation:
    def test_unknown_type(self, services, clock, user_id):
        with pytest.raises(ValidationError, match="Unknown engagement type"):
            emit(services, clock, "TWITTER", user_id, "VOICE_CHAT")

    def test_unknown_platform(self, services, clock, user_id):
        with pytest.raises(ValidationError, match="Unknown platform"):
            emit(services, clock, "MYSPACE", user_id, "MESSAGE")

    def test_wrong_tracker(self, services, user_id):
        event = EngagementEvent("DISCORD", user_id, "REACTION", NOW)
        with pytest.raises(ValidationError):
            services.trackers["TELEGRAM"].track(event)

    def test_streak_bonus_cannot_be_submitted(self, services, clock, user_id):
        with pytest.raises(ValidationError, match="STREAK_BONUS"):
            emit(services, clock, "TELEGRAM", user_id, "STREAK_BONUS")

    @pytest.mark.parametrize("bad_id", [0, -3, "12", True, None])
    def test_bad_user_id(self, services, clock, bad_id):
        with pytest.raises(ValidationError, match="Invalid user id"):
            emit(services, clock, "TWITTER", bad_id, "TWEET")

    def test_future_timestamp_beyond_skew(self, services, clock, user_id):
        event = EngagementEvent("TWITTER", user_id, "TWEET", NOW + timedelta(minutes=10))
        clock.now = NOW
        with pytest.raises(ValidationError, match="future"):
            services.trackers.track(event)

    def test_small_skew_tolerated(self, services, clock, user_id):
        event = EngagementEvent("TWITTER", user_id, "TWEET", NOW + timedelta(minutes=4))
        clock.now = NOW
        assert services.trackers.track(event) is True

    def test_unknown_user(self, services, clock):
        with pytest.raises(NotFoundError):
            emit(services, clock, "TWITTER", 4242, "TWEET")

    def test_invalid_event_writes_nothing(self, services, clock, user_id):
        with pytest.raises(ValidationError):
            emit(services, clock, "TWITTER", user_id, "REACTION")
        assert journal(services.engine) == []


# ---------------------------------------------------------------------------
# Single-rule events
# ---------------------------------------------------------------------------
class TestSingleRule:
    def test_award(self, services, clock, user_id):
        assert emit(services, clock, "TELEGRAM", user_id, "MUSIC_SHARE", song_title="gm") is True
        assert points(services.engine, user_id) == 5
        with Session(services.engine) as session:
            assert session.scalar(select(Engagement.metadata_)) == {"song_title": "gm"}

    def test_cooldown_raises_with_remaining(self, services, clock, user_id):
        emit(services, clock, "TELEGRAM", user_id, "MUSIC_SHARE")
        with pytest.raises(CooldownError) as exc_info:
            emit(services, clock, "TELEGRAM", user_id, "MUSIC_SHARE", at=NOW + timedelta(minutes=1))
        assert exc_info.value.remaining_seconds == 240

    def test_database_is_authoritative_without_hints(self, services, clock, user_id):
        emit(services, clock, "TELEGRAM", user_id, "MUSIC_SHARE")
        restarted = make_services(services.engine, clock)
        with pytest.raises(CooldownError):
            emit(restarted, clock, "TELEGRAM", user_id, "MUSIC_SHARE", at=NOW + timedelta(minutes=1))

    def test_daily_limit(self, services, clock, user_id):
        emit(services, clock, "DISCORD", user_id, "DAILY_ACTIVE")
        with pytest.raises(DailyLimitError):
            emit(services, clock, "DISCORD", user_id, "DAILY_ACTIVE", at=NOW + timedelta(hours=2))
        assert emit(services, clock, "DISCORD", user_id, "DAILY_ACTIVE", at=NOW + timedelta(days=1))

    def test_music_share_ten_per_day(self, services, clock, user_id):
        for i in range(10):
            emit(services, clock, "TELEGRAM", user_id, "MUSIC_SHARE", at=NOW + timedelta(minutes=5 * i))
        with pytest.raises(DailyLimitError):
            emit(services, clock, "TELEGRAM", user_id, "MUSIC_SHARE", at=NOW + timedelta(minutes=55))
        assert points(services.engine, user_id) == 50

    def test_global_cap_raises(self, db_engine, clock, user_id):
        capped = make_services(
            db_engine, clock, ChorusConfig(rate_limits=RateLimitSettings(daily_point_cap=5))
        )
        with pytest.raises(DailyLimitError) as exc_info:
            emit(capped, clock, "TELEGRAM", user_id, "INVITE")
        assert exc_info.value.is_point_cap


# ---------------------------------------------------------------------------
# Composite messages
# ---------------------------------------------------------------------------
class TestCompositeMessage:
    def test_long_keyword_message_fans_out(self, services, clock, user_id):
        assert emit(services, clock, "TELEGRAM", user_id, "MESSAGE", text=LONG_MESSAGE) is True
        assert journal(services.engine) == ["MESSAGE", "QUALITY_POST"]
        assert points(services.engine, user_id) == 2

    def test_fully_suppressed_returns_false(self, services, clock, user_id):
        emit(services, clock, "TELEGRAM", user_id, "MESSAGE", text=LONG_MESSAGE)
        again = emit(
            services, clock, "TELEGRAM", user_id, "MESSAGE",
            at=NOW + timedelta(seconds=10), text=LONG_MESSAGE,
        )
        assert again is False
        assert points(services.engine, user_id) == 2

    def test_partially_eligible_awards_the_rest(self, services, clock, user_id):
        emit(services, clock, "TELEGRAM", user_id, "MESSAGE", text=LONG_MESSAGE)
        # MESSAGE cooldown (60s) has passed, QUALITY_POST (300s) has not
        later = emit(
            services, clock, "TELEGRAM", user_id, "MESSAGE",
            at=NOW + timedelta(seconds=90), text=LONG_MESSAGE,
        )
        assert later is True
        assert journal(services.engine) == ["MESSAGE", "QUALITY_POST", "MESSAGE"]

    def test_message_earning_nothing_returns_false(self, services, clock, user_id):
        assert emit(services, clock, "DISCORD", user_id, "MESSAGE", text="hi all") is False
        assert journal(services.engine) == []

    def test_adapter_word_count(self, services, clock, user_id):
        assert emit(services, clock, "TELEGRAM", user_id, "MESSAGE", word_count=12) is True
        assert journal(services.engine) == ["QUALITY_POST"]

    @pytest.mark.parametrize("bad", ["lots", -4, None, True, [12]])
    def test_malformed_word_count_rejected(self, services, clock, user_id, bad):
        with pytest.raises(ValidationError, match="Invalid word_count"):
            emit(services, clock, "TELEGRAM", user_id, "MESSAGE", word_count=bad)
        assert journal(services.engine) == []

    def test_message_text_not_stored(self, services, clock, user_id):
        emit(services, clock, "TELEGRAM", user_id, "MESSAGE", text=LONG_MESSAGE)
        with Session(services.engine) as session:
            for metadata in session.scalars(select(Engagement.metadata_)).all():
                assert "text" not in metadata
                assert metadata["word_count"] == 12


# ---------------------------------------------------------------------------
# Streak integration
# ---------------------------------------------------------------------------
class TestStreakIntegration:
    def test_third_consecutive_day_earns_bonus(self, services, clock, user_id):
        for day in range(3):
            emit(services, clock, "TWITTER", user_id, "TWEET", at=NOW + timedelta(days=day))
        assert points(services.engine, user_id) == 3 * 2 + 5
        with Session(services.engine) as session:
            reasons = session.scalars(
                select(PointTransaction.reason).order_by(PointTransaction.id)
            ).all()
        assert reasons == ["TWEET", "TWEET", "TWEET", "STREAK_BONUS"]

    def test_suppressed_event_does_not_touch_streak(self, services, clock, user_id):
        emit(services, clock, "DISCORD", user_id, "MESSAGE", text="hi all")
        with Session(services.engine) as session:
            assert services.streaks.get_streaks(session, user_id)["DISCORD"] == 0

    def test_ledger_conservation(self, services, clock, user_id):
        for day in range(3):
            at = NOW + timedelta(days=day)
            emit(services, clock, "TELEGRAM", user_id, "MESSAGE", at=at, text=LONG_MESSAGE)
            emit(services, clock, "TELEGRAM", user_id, "FACT_SHARE", at=at)
        with Session(services.engine) as session:
            user = session.get(User, user_id)
            positive = session.scalar(
                select(func.sum(PointTransaction.amount)).where(
                    PointTransaction.user_id == user_id, PointTransaction.amount > 0
                )
            )
            assert user.lifetime_points == positive == user.points
