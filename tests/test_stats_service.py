"""
tests/test_stats_service.py — Read Projections
===============================================
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import NOW, WALLET_B, make_user

from chorus.engine.events import EngagementEvent
from chorus.engine.rules import resolve_sub_rewards
from chorus.errors import NotFoundError
from chorus.services import stats_service


def award(services, user_id: int, platform: str, engagement_type: str, at=NOW) -> None:
    items = resolve_sub_rewards(EngagementEvent(platform, user_id, engagement_type))
    services.ledger.award(user_id, platform, items, at)


class TestUserStats:
    def test_unknown_user(self, db_engine):
        with pytest.raises(NotFoundError):
            stats_service.get_user_stats(db_engine, 77)

    def test_fresh_user(self, db_engine, user_id):
        stats = stats_service.get_user_stats(db_engine, user_id)
        assert stats["points"] == 0
        assert stats["rank"] == 1
        assert stats["contest"] is None
        assert stats["last_active"] is None
        assert stats["streaks"] == {"TELEGRAM": 0, "DISCORD": 0, "TWITTER": 0}
        assert stats["recent_transactions"] == []

    def test_balance_rank_and_contest_standing(self, services, user_id, db_engine):
        other = make_user(db_engine, WALLET_B)
        contest = services.contests.start_new_contest(now=NOW)
        award(services, other, "TELEGRAM", "INVITE")
        award(services, user_id, "TWITTER", "TWEET")

        stats = stats_service.get_user_stats(db_engine, user_id)
        assert (stats["points"], stats["lifetime_points"]) == (2, 2)
        assert stats["rank"] == 2
        assert stats["contest"] == {"contest_id": contest.id, "points": 2, "rank": 2}
        assert stats["last_active"].startswith("2026-03-04T12:00:00")

    def test_recent_transactions_newest_first(self, services, user_id, db_engine):
        for minutes, engagement_type in enumerate(("TWEET", "RETWEET", "MENTION")):
            award(services, user_id, "TWITTER", engagement_type, NOW + timedelta(minutes=minutes))
        stats = stats_service.get_user_stats(db_engine, user_id, recent=2)
        assert [tx["reason"] for tx in stats["recent_transactions"]] == ["MENTION", "RETWEET"]
        assert stats["recent_transactions"][0]["platform"] == "TWITTER"

    def test_streaks_reported(self, services, user_id, db_engine, clock):
        for day in range(2):
            clock.now = NOW + timedelta(days=day)
            services.trackers.track(
                EngagementEvent("TWITTER", user_id, "TWEET", NOW + timedelta(days=day))
            )
        assert stats_service.get_user_stats(db_engine, user_id)["streaks"]["TWITTER"] == 2


class TestGlobalStats:
    def test_empty(self, db_engine):
        stats = stats_service.get_global_stats(db_engine, NOW)
        assert stats == {
            "total_users": 0,
            "total_points": 0,
            "active_today": 0,
            "platforms": {},
            "top_engagement_types": [],
            "current_contest": None,
        }

    def test_today_activity(self, services, user_id, db_engine):
        other = make_user(db_engine, WALLET_B)
        award(services, user_id, "TELEGRAM", "INVITE")
        award(services, other, "TELEGRAM", "MUSIC_SHARE")
        award(services, other, "DISCORD", "INVITE")
        # Yesterday's activity counts toward totals only
        award(services, user_id, "TWITTER", "TWEET", NOW - timedelta(days=1))

        stats = stats_service.get_global_stats(db_engine, NOW)
        assert stats["total_users"] == 2
        assert stats["total_points"] == 27
        assert stats["active_today"] == 2
        assert stats["platforms"] == {
            "TELEGRAM": {"active_users": 2, "points": 15},
            "DISCORD": {"active_users": 1, "points": 10},
        }
        assert stats["top_engagement_types"][0] == {"type": "INVITE", "count": 2}

    def test_current_contest(self, services, user_id, db_engine):
        contest = services.contests.start_new_contest(now=NOW)
        award(services, user_id, "TWITTER", "TWEET")
        view = stats_service.get_global_stats(db_engine, NOW)["current_contest"]
        assert (view["id"], view["name"], view["participants"]) == (contest.id, contest.name, 1)
