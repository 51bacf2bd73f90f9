"""
chorus.database.models — SQLAlchemy 2.0 Data Models
====================================================

Tables:
- users              — Participants, keyed by wallet address
- platform_accounts  — Telegram / Discord / Twitter identities linked to a user
- engagements        — Append-only journal of accepted qualifying actions
- point_transactions — Immutable signed ledger entries
- user_streaks       — Per-platform consecutive-day counters (one row per user)
- contests           — Time-boxed competitions; at most one ACTIVE
- contest_entries    — Per (contest, user) point tally and final rank
- contest_rewards    — Tier / rank rewards created after a contest completes
- admin_log          — Append-only audit trail of admin mutations
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from chorus.constants import utcnow


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Chorus ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class Platform(enum.StrEnum):
    """Community platforms that report engagement."""
    TELEGRAM = "TELEGRAM"
    DISCORD = "DISCORD"
    TWITTER = "TWITTER"


class EngagementType(enum.StrEnum):
    """Every engagement type the rule table knows about."""
    MESSAGE = "MESSAGE"
    QUALITY_POST = "QUALITY_POST"
    MENTION = "MENTION"
    TEACHING_POST = "TEACHING_POST"
    MUSIC_SHARE = "MUSIC_SHARE"
    FACT_SHARE = "FACT_SHARE"
    INVITE = "INVITE"
    DAILY_ACTIVE = "DAILY_ACTIVE"
    REACTION = "REACTION"
    VOICE_CHAT = "VOICE_CHAT"
    TWEET = "TWEET"
    RETWEET = "RETWEET"
    STREAK_BONUS = "STREAK_BONUS"


class TransactionReason(enum.StrEnum):
    """Reason codes on point transactions that are not engagement types."""
    STREAK_BONUS = "STREAK_BONUS"
    MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT"
    BALANCE_RESET = "BALANCE_RESET"


class ContestStatus(enum.StrEnum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class RewardStatus(enum.StrEnum):
    PENDING = "PENDING"
    CLAIMED = "CLAIMED"
    EXPIRED = "EXPIRED"


class RewardKind(enum.StrEnum):
    TIER = "TIER"
    RANK = "RANK"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    POINT_ADJUSTMENT = "POINT_ADJUSTMENT"
    BALANCE_RESET = "BALANCE_RESET"
    CONTEST_START = "CONTEST_START"
    CONTEST_END = "CONTEST_END"
    REWARD_DISTRIBUTION = "REWARD_DISTRIBUTION"
    REWARD_EXPIRY = "REWARD_EXPIRY"


# ---------------------------------------------------------------------------
# Users — one row per wallet
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    username: Mapped[str | None] = mapped_column(String(100), default=None)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lifetime_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_active: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    accounts: Mapped[list[PlatformAccount]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    streak: Mapped[UserStreak | None] = relationship(
        back_populates="user", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_users_points_desc", "points"),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} wallet={self.wallet_address!r} pts={self.points}>"


# ---------------------------------------------------------------------------
# PlatformAccount — linked chat / social identities
# ---------------------------------------------------------------------------
class PlatformAccount(Base):
    __tablename__ = "platform_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    platform_id: Mapped[str] = mapped_column(String(100), nullable=False)
    username: Mapped[str | None] = mapped_column(String(100), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user: Mapped[User] = relationship(back_populates="accounts")

    __table_args__ = (
        UniqueConstraint("platform", "platform_id", name="uq_platform_accounts_identity"),
        UniqueConstraint("user_id", "platform", name="uq_platform_accounts_user_platform"),
    )

    def __repr__(self) -> str:
        return (
            f"<PlatformAccount user={self.user_id} "
            f"platform={self.platform} id={self.platform_id!r}>"
        )


# ---------------------------------------------------------------------------
# Engagement — append-only journal of accepted actions
# ---------------------------------------------------------------------------
class Engagement(Base):
    """One row per accepted sub-reward.

    Cooldown and daily-count state is reconstructed from this table, so
    rows are never updated or deleted.
    """
    __tablename__ = "engagements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)

    __table_args__ = (
        Index("ix_engagements_user_type_time", "user_id", "platform", "type", "timestamp"),
        Index("ix_engagements_timestamp", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<Engagement id={self.id} user={self.user_id} {self.platform}/{self.type}>"


# ---------------------------------------------------------------------------
# PointTransaction — immutable ledger entries
# ---------------------------------------------------------------------------
class PointTransaction(Base):
    __tablename__ = "point_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(30), nullable=False)
    platform: Mapped[str | None] = mapped_column(String(20), nullable=True)
    engagement_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("engagements.id", ondelete="SET NULL"), nullable=True
    )
    contest_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("contests.id", ondelete="SET NULL"), nullable=True
    )
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_point_transactions_user_time", "user_id", "timestamp"),
        Index("ix_point_transactions_reason_time", "reason", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<PointTransaction id={self.id} user={self.user_id} "
            f"amount={self.amount} reason={self.reason}>"
        )


# ---------------------------------------------------------------------------
# UserStreak — per-platform consecutive-day counters
# ---------------------------------------------------------------------------
class UserStreak(Base):
    __tablename__ = "user_streaks"

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    telegram_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discord_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    twitter_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_telegram: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    last_discord: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    last_twitter: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user: Mapped[User] = relationship(back_populates="streak")

    def get(self, platform: str) -> tuple[int, datetime | None]:
        """Return ``(streak, last_activity)`` for *platform*."""
        key = Platform(platform).lower()
        return getattr(self, f"{key}_streak") or 0, getattr(self, f"last_{key}")

    def set(self, platform: str, streak: int, last_activity: datetime) -> None:
        key = Platform(platform).lower()
        setattr(self, f"{key}_streak", streak)
        setattr(self, f"last_{key}", last_activity)

    def as_dict(self) -> dict[str, int]:
        return {p.value: self.get(p)[0] for p in Platform}

    def __repr__(self) -> str:
        return (
            f"<UserStreak user={self.user_id} tg={self.telegram_streak} "
            f"dc={self.discord_streak} tw={self.twitter_streak}>"
        )


# ---------------------------------------------------------------------------
# Contest — time-boxed competitions
# ---------------------------------------------------------------------------
class Contest(Base):
    """A contest round.

    ``rules`` snapshots the tier/prize tables in force when the contest
    started, so later config changes never alter a running contest.
    """
    __tablename__ = "contests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ContestStatus.ACTIVE
    )
    rules: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    entries: Mapped[list[ContestEntry]] = relationship(
        back_populates="contest", cascade="all, delete-orphan"
    )
    rewards: Mapped[list[ContestReward]] = relationship(
        back_populates="contest", cascade="all, delete-orphan"
    )

    __table_args__ = (
        # Storage-level guarantee: at most one ACTIVE contest
        Index(
            "uq_contests_single_active",
            "status",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
        Index("ix_contests_status_end", "status", "end_time"),
    )

    def __repr__(self) -> str:
        return f"<Contest id={self.id} name={self.name!r} status={self.status}>"


# ---------------------------------------------------------------------------
# ContestEntry — per (contest, user) tally
# ---------------------------------------------------------------------------
class ContestEntry(Base):
    __tablename__ = "contest_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contest_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contests.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rank: Mapped[int | None] = mapped_column(Integer, default=None)
    # Set client-side so tie-breaks keep microsecond precision
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    contest: Mapped[Contest] = relationship(back_populates="entries")

    __table_args__ = (
        UniqueConstraint("contest_id", "user_id", name="uq_contest_entries_contest_user"),
        Index("ix_contest_entries_contest_points", "contest_id", "points"),
    )

    def __repr__(self) -> str:
        return (
            f"<ContestEntry contest={self.contest_id} user={self.user_id} "
            f"pts={self.points} rank={self.rank}>"
        )


# ---------------------------------------------------------------------------
# ContestReward — tier / rank outcomes
# ---------------------------------------------------------------------------
class ContestReward(Base):
    __tablename__ = "contest_rewards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contest_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contests.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(10), nullable=False)
    # Tier name for TIER rewards, rank number for RANK rewards
    label: Mapped[str] = mapped_column(String(30), nullable=False)
    reward_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RewardStatus.PENDING
    )
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    contest: Mapped[Contest] = relationship(back_populates="rewards")

    __table_args__ = (
        UniqueConstraint(
            "contest_id", "user_id", "kind", "label",
            name="uq_contest_rewards_outcome",
        ),
        Index("ix_contest_rewards_user_status", "user_id", "status"),
        Index("ix_contest_rewards_status_expiry", "status", "expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ContestReward id={self.id} user={self.user_id} "
            f"{self.kind}:{self.label} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"
