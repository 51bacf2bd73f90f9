"""
tests/test_rules.py — Rule Table, Message Classification & Tiers
=================================================================

Pure logic: no database.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from chorus.constants import DEFAULT_PRIZES, DEFAULT_TIERS
from chorus.database.models import EngagementType, Platform
from chorus.engine.events import EngagementEvent
from chorus.engine.rules import (
    RULES,
    build_rule_table,
    is_composite,
    mentioned_handles,
    resolve_sub_rewards,
    word_count,
)
from chorus.engine.tiers import crossed_tiers, prize_for_rank, tier_status


def _message(platform: str, text: str | None = None, **metadata) -> EngagementEvent:
    if text is not None:
        metadata["text"] = text
    return EngagementEvent(platform=platform, user_id=1, type="MESSAGE", metadata=metadata)


def _types(event: EngagementEvent) -> list[str]:
    return [sub.type for sub in resolve_sub_rewards(event)]


TWELVE_WORDS = "hey @alice check out this great thing happening in our community today"
TEACHING = " ".join(["word"] * 35)


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------
class TestRuleTable:
    def test_telegram_music_share_rule(self):
        rule = RULES[Platform.TELEGRAM][EngagementType.MUSIC_SHARE]
        assert (rule.points, rule.cooldown_seconds, rule.daily_limit) == (5, 300, 10)

    def test_fact_share_has_four_hour_cooldown(self):
        rule = RULES["TELEGRAM"]["FACT_SHARE"]
        assert rule.cooldown_seconds == 14400
        assert rule.daily_limit == 3

    def test_streak_bonus_not_submittable(self):
        for platform in Platform:
            assert RULES[platform][EngagementType.STREAK_BONUS].submittable is False

    def test_override_replaces_only_given_fields(self):
        table = build_rule_table({"TELEGRAM": {"MESSAGE": {"points": 3}}})
        assert table["TELEGRAM"]["MESSAGE"].points == 3
        assert table["TELEGRAM"]["MESSAGE"].cooldown_seconds == 60
        # The shared default table is untouched
        assert RULES["TELEGRAM"]["MESSAGE"].points == 1

    def test_override_unknown_platform_rejected(self):
        with pytest.raises(ValueError, match="Unknown platform"):
            build_rule_table({"MYSPACE": {"MESSAGE": {"points": 1}}})

    def test_override_unknown_type_rejected(self):
        with pytest.raises(ValueError, match="Unknown engagement type"):
            build_rule_table({"TWITTER": {"VOICE_CHAT": {"points": 1}}})

    def test_message_is_composite_on_chat_platforms_only(self):
        assert is_composite("TELEGRAM", "MESSAGE")
        assert is_composite("DISCORD", "MESSAGE")
        assert not is_composite("TWITTER", "TWEET")
        assert not is_composite("TELEGRAM", "MUSIC_SHARE")


# ---------------------------------------------------------------------------
# Message classification
# ---------------------------------------------------------------------------
class TestTelegramMessageFanOut:
    def test_keyword_message(self):
        assert _types(_message("TELEGRAM", "I love soless and nft swaps")) == ["MESSAGE"]

    def test_short_message_without_keyword_earns_nothing(self):
        assert _types(_message("TELEGRAM", "good morning everyone")) == []

    def test_long_message_with_mention(self):
        assert _types(_message("TELEGRAM", TWELVE_WORDS)) == ["QUALITY_POST", "MENTION"]

    def test_teaching_post_also_counts_as_quality(self):
        assert _types(_message("TELEGRAM", TEACHING)) == ["QUALITY_POST", "TEACHING_POST"]

    def test_own_handle_is_not_a_mention(self):
        assert _types(_message("TELEGRAM", "gm @soless")) == ["MESSAGE"]

    def test_word_count_from_metadata_without_text(self):
        event = _message("TELEGRAM", word_count=40)
        assert word_count(event) == 40
        assert _types(event) == ["QUALITY_POST", "TEACHING_POST"]

    def test_sub_reward_metadata(self):
        subs = resolve_sub_rewards(_message("TELEGRAM", TWELVE_WORDS, chat_id=7))
        mention = next(s for s in subs if s.type == "MENTION")
        assert "text" not in mention.metadata
        assert mention.metadata["word_count"] == 12
        assert mention.metadata["source_type"] == "MESSAGE"
        assert mention.metadata["mentions"] == ["@alice"]
        assert mention.metadata["chat_id"] == 7
        assert mention.points == 1 and mention.cooldown_seconds == 180


class TestDiscordMessage:
    def test_short_message_earns_nothing(self):
        assert _types(_message("DISCORD", "hello there")) == []

    def test_long_message_is_quality_post(self):
        assert _types(_message("DISCORD", TEACHING)) == ["QUALITY_POST"]


class TestSingleRuleEvents:
    def test_tweet_maps_to_itself(self):
        event = EngagementEvent(platform="TWITTER", user_id=1, type="TWEET", metadata={"id": "1"})
        subs = resolve_sub_rewards(event)
        assert [(s.type, s.points) for s in subs] == [("TWEET", 2)]
        assert subs[0].metadata == {"id": "1"}

    def test_configured_points_are_used(self):
        table = build_rule_table({"TWITTER": {"TWEET": {"points": 7}}})
        event = EngagementEvent(platform="TWITTER", user_id=1, type="TWEET")
        assert resolve_sub_rewards(event, table)[0].points == 7


def test_mentioned_handles_lowercases_and_skips_own_handle():
    assert mentioned_handles("hi @Bob and @SOLESS and @carol_1") == ["@bob", "@carol_1"]


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
class TestEventFromDict:
    def test_accepts_camel_case_user_id(self):
        event = EngagementEvent.from_dict(
            {"platform": "telegram", "userId": 5, "type": "music_share"}
        )
        assert (event.platform, event.user_id, event.type) == ("TELEGRAM", 5, "MUSIC_SHARE")

    def test_parses_iso_timestamp(self):
        event = EngagementEvent.from_dict({
            "platform": "TWITTER",
            "user_id": 1,
            "type": "TWEET",
            "timestamp": "2026-03-04T12:00:00+00:00",
        })
        assert event.timestamp == datetime(2026, 3, 4, 12, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Tiers & prizes
# ---------------------------------------------------------------------------
class TestTiers:
    def test_crossed_tiers_lowest_first(self):
        names = [t["name"] for t in crossed_tiers(250, DEFAULT_TIERS)]
        assert names == ["BRONZE", "SILVER", "GOLD"]

    def test_threshold_is_inclusive(self):
        assert [t["name"] for t in crossed_tiers(50, DEFAULT_TIERS)] == ["BRONZE"]

    def test_status_mid_table(self):
        status = tier_status(250, DEFAULT_TIERS)
        assert status.eligible
        assert status.current_tier["name"] == "GOLD"
        assert status.next_tier["name"] == "PLATINUM"
        assert status.points_needed == 50

    def test_status_top_tier(self):
        status = tier_status(600, DEFAULT_TIERS)
        assert status.current_tier["name"] == "DIAMOND"
        assert status.next_tier is None
        assert status.points_needed == 0

    def test_status_below_first_tier(self):
        status = tier_status(10, DEFAULT_TIERS)
        assert not status.eligible
        assert status.current_tier is None
        assert status.points_needed == 40

    def test_contest_minimum_blocks_eligibility(self):
        assert not tier_status(60, DEFAULT_TIERS, min_points=100).eligible

    def test_prize_for_rank(self):
        assert prize_for_rank(1, DEFAULT_PRIZES)["amount"] == "100"
        assert prize_for_rank(5, DEFAULT_PRIZES)["amount"] == "10"
        assert prize_for_rank(6, DEFAULT_PRIZES) is None
