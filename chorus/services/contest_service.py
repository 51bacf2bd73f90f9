"""
chorus.services.contest_service — Contest Lifecycle, Rewards & Leaderboard
===========================================================================

State machine::

    NONE ──start──▶ ACTIVE ──end──▶ COMPLETED   (terminal)

A new contest is always a new row; completed contests are never reopened.

Start and end run under the ``contest-lifecycle`` lock so concurrent
schedulers and admins queue up instead of racing, but the lock is only a
contention aid.  The partial unique index on ``contests.status = 'ACTIVE'``
is the authority: a racing insert that slips past the lock (expired TTL,
in-memory lock in another process) fails with ``IntegrityError`` and is
reported as :class:`~chorus.errors.ConflictError`.  Both lifecycle
transitions re-check state inside their transaction, so a late second
holder finds nothing left to do.

Ranking order at contest end is points descending, then earliest entry
creation, then entry id.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, TypeVar

from sqlalchemy import Engine, and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chorus.config import ContestSettings, LockSettings
from chorus.constants import (
    CONTEST_ARCHIVE_AFTER_DAYS,
    LIFECYCLE_LOCK_KEY,
    ensure_utc,
    format_duration,
    utcnow,
)
from chorus.database.engine import run_in_transaction
from chorus.database.models import (
    AdminActionType,
    Contest,
    ContestEntry,
    ContestReward,
    ContestStatus,
    RewardKind,
    RewardStatus,
    User,
)
from chorus.engine.tiers import crossed_tiers, prize_for_rank, tier_status
from chorus.errors import ConflictError, LockUnavailable, NotFoundError, ValidationError
from chorus.services.admin_service import log_admin_action, row_to_dict
from chorus.services.lock_service import LockService, acquire_with_retry, held_lock

logger = logging.getLogger(__name__)

T = TypeVar("T")

NO_ACTIVE_CONTEST_MESSAGE = "No active contest found to end"

_RANK_ORDER = (ContestEntry.points.desc(), ContestEntry.created_at.asc(), ContestEntry.id.asc())


# ---------------------------------------------------------------------------
# Session-level helpers (also used by the point ledger)
# ---------------------------------------------------------------------------
def get_active_contest(
    session: Session, *, for_update: bool = False, shared: bool = False
) -> Contest | None:
    """The ACTIVE contest, if any.

    ``for_update`` takes the exclusive row lock the lifecycle needs;
    ``shared`` takes ``FOR SHARE`` so concurrent awards only block a
    contest end, not each other.
    """
    stmt = select(Contest).where(Contest.status == ContestStatus.ACTIVE)
    if for_update:
        stmt = stmt.with_for_update()
    elif shared:
        stmt = stmt.with_for_update(read=True)
    return session.scalar(stmt)


def add_entry_points(session: Session, contest_id: int, user_id: int, amount: int) -> bool:
    """Add *amount* to the user's entry, creating it on first contribution.

    Returns ``False`` without touching any entry once the contest has left
    ACTIVE.
    """
    status = session.scalar(select(Contest.status).where(Contest.id == contest_id))
    if status != ContestStatus.ACTIVE:
        return False
    increment = (
        update(ContestEntry)
        .where(ContestEntry.contest_id == contest_id, ContestEntry.user_id == user_id)
        .values(points=ContestEntry.points + amount)
        .execution_options(synchronize_session=False)
    )
    if session.execute(increment).rowcount:
        return True
    try:
        with session.begin_nested():
            session.add(ContestEntry(contest_id=contest_id, user_id=user_id, points=amount))
    except IntegrityError:
        # Another transaction created the entry first
        session.execute(increment)
    return True


def completed_count(session: Session) -> int:
    return session.scalar(
        select(func.count(Contest.id)).where(Contest.status == ContestStatus.COMPLETED)
    ) or 0


def live_rank(session: Session, entry: ContestEntry) -> int:
    """1-based position of *entry* under the ranking order."""
    ahead = session.scalar(
        select(func.count(ContestEntry.id)).where(
            ContestEntry.contest_id == entry.contest_id,
            or_(
                ContestEntry.points > entry.points,
                and_(
                    ContestEntry.points == entry.points,
                    or_(
                        ContestEntry.created_at < entry.created_at,
                        and_(
                            ContestEntry.created_at == entry.created_at,
                            ContestEntry.id < entry.id,
                        ),
                    ),
                ),
            ),
        )
    ) or 0
    return ahead + 1


# ---------------------------------------------------------------------------
# ContestManager
# ---------------------------------------------------------------------------
class ContestManager:
    """Owns contest start / end / distribution / claim and the read
    projections built on them.  Construct once per process."""

    def __init__(
        self,
        engine: Engine,
        lock: LockService,
        settings: ContestSettings | None = None,
        lock_settings: LockSettings | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.engine = engine
        self.lock = lock
        self.settings = settings or ContestSettings()
        self.lock_settings = lock_settings or LockSettings()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Lifecycle lock
    # ------------------------------------------------------------------
    def _locked(self, ttl: float, func: Callable[..., T], *args: Any) -> T:
        token = acquire_with_retry(
            self.lock,
            LIFECYCLE_LOCK_KEY,
            ttl,
            attempts=self.lock_settings.acquire_attempts,
            delay=self.lock_settings.retry_delay_seconds,
            sleep=self._sleep,
        )
        if token is None:
            raise LockUnavailable(LIFECYCLE_LOCK_KEY)
        with held_lock(self.lock, LIFECYCLE_LOCK_KEY, token):
            return func(*args)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------
    def default_rules(self) -> dict:
        return {
            "duration_hours": self.settings.duration_hours,
            "min_points": self.settings.min_points,
            "claim_window_days": self.settings.claim_window_days,
            "tiers": [dict(t) for t in self.settings.tiers],
            "prizes": [dict(p) for p in self.settings.prizes],
        }

    def _merge_rules(self, rules: dict | None) -> dict:
        merged = self.default_rules()
        for key, value in (rules or {}).items():
            if key not in merged:
                raise ValidationError(f"Unknown contest rule {key!r}", {"rule": key})
            merged[key] = value
        duration = merged["duration_hours"]
        if not isinstance(duration, (int, float)) or duration <= 0:
            raise ValidationError(
                "Contest duration must be a positive number of hours",
                {"duration_hours": duration},
            )
        if int(merged["min_points"]) < 0:
            raise ValidationError("min_points must be >= 0", {"min_points": merged["min_points"]})
        return merged

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------
    def start_new_contest(
        self,
        rules: dict | None = None,
        now: datetime | None = None,
        *,
        name: str | None = None,
        actor_id: str | None = None,
    ) -> Contest:
        """Open a new ACTIVE contest.

        Raises
        ------
        ConflictError
            If a contest is already ACTIVE (checked, or rejected by the
            uniqueness constraint).
        LockUnavailable
            If the lifecycle lock stayed contended through every attempt.
        """
        merged = self._merge_rules(rules)
        now = ensure_utc(now or utcnow())
        return self._locked(
            self.lock_settings.start_ttl_seconds, self._start, merged, now, name, actor_id
        )

    def _start(self, rules: dict, now: datetime, name: str | None, actor_id: str | None) -> Contest:
        try:
            contest = run_in_transaction(
                self.engine, self._start_in_session, rules, now, name, actor_id
            )
        except IntegrityError as exc:
            logger.warning("Concurrent contest start rejected by uniqueness constraint")
            raise ConflictError("An active contest already exists") from exc
        logger.info(
            "Contest %d (%s) started, ends %s", contest.id, contest.name, contest.end_time.isoformat()
        )
        return contest

    def _start_in_session(
        self, session: Session, rules: dict, now: datetime, name: str | None, actor_id: str | None
    ) -> Contest:
        existing = get_active_contest(session)
        if existing is not None:
            raise ConflictError(
                "An active contest already exists", {"contest_id": existing.id}
            )
        round_number = completed_count(session) + 1
        contest = Contest(
            name=name or f"{self.settings.name_prefix} {round_number}",
            start_time=now,
            end_time=now + timedelta(hours=rules["duration_hours"]),
            status=ContestStatus.ACTIVE,
            rules=rules,
            metadata_={"round": round_number},
        )
        session.add(contest)
        session.flush()
        if actor_id is not None:
            log_admin_action(
                session,
                actor_id=actor_id,
                action_type=AdminActionType.CONTEST_START,
                target_table="contests",
                target_id=str(contest.id),
                before=None,
                after=row_to_dict(contest),
            )
        return contest

    # ------------------------------------------------------------------
    # End
    # ------------------------------------------------------------------
    def end_current_contest(
        self, now: datetime | None = None, *, actor_id: str | None = None
    ) -> Contest:
        """Rank the ACTIVE contest, complete it and distribute rewards.

        Raises
        ------
        NotFoundError
            ``"No active contest found to end"`` when nothing is ACTIVE.
        """
        now = ensure_utc(now or utcnow())
        contest = self._locked(
            self.lock_settings.end_ttl_seconds,
            run_in_transaction,
            self.engine,
            self._end_in_session,
            now,
            actor_id,
        )
        logger.info(
            "Contest %d completed: %d participants, %d rewards",
            contest.id,
            (contest.metadata_ or {}).get("participants", 0),
            (contest.metadata_ or {}).get("rewards", 0),
        )
        return contest

    def _end_in_session(self, session: Session, now: datetime, actor_id: str | None) -> Contest:
        contest = get_active_contest(session, for_update=True)
        if contest is None:
            raise NotFoundError(NO_ACTIVE_CONTEST_MESSAGE)
        before = row_to_dict(contest)

        entries = session.scalars(
            select(ContestEntry)
            .where(ContestEntry.contest_id == contest.id)
            .order_by(*_RANK_ORDER)
        ).all()
        for position, entry in enumerate(entries, start=1):
            entry.rank = position

        contest.status = ContestStatus.COMPLETED
        contest.completed_at = now
        session.flush()

        rewards = self._distribute_in_session(session, contest, now)
        contest.metadata_ = {
            **(contest.metadata_ or {}),
            "participants": len(entries),
            "rewards": len(rewards),
        }
        session.flush()
        if actor_id is not None:
            log_admin_action(
                session,
                actor_id=actor_id,
                action_type=AdminActionType.CONTEST_END,
                target_table="contests",
                target_id=str(contest.id),
                before=before,
                after=row_to_dict(contest),
            )
        return contest

    # ------------------------------------------------------------------
    # Reward distribution
    # ------------------------------------------------------------------
    def distribute_rewards(
        self, contest_id: int, now: datetime | None = None, *, actor_id: str | None = None
    ) -> list[ContestReward]:
        """Create tier and rank rewards for a COMPLETED contest.

        Idempotent: a contest that already has rewards gets none added.
        """
        now = ensure_utc(now or utcnow())
        return run_in_transaction(
            self.engine, self._distribute_by_id, contest_id, now, actor_id
        )

    def _distribute_by_id(
        self, session: Session, contest_id: int, now: datetime, actor_id: str | None
    ) -> list[ContestReward]:
        contest = session.get(Contest, contest_id, with_for_update=True)
        if contest is None:
            raise NotFoundError(f"Contest {contest_id} not found", {"contest_id": contest_id})
        if contest.status != ContestStatus.COMPLETED:
            raise ConflictError(
                "Rewards can only be distributed for a completed contest",
                {"contest_id": contest_id, "status": contest.status},
            )
        rewards = self._distribute_in_session(session, contest, now)
        if actor_id is not None:
            log_admin_action(
                session,
                actor_id=actor_id,
                action_type=AdminActionType.REWARD_DISTRIBUTION,
                target_table="contest_rewards",
                target_id=str(contest_id),
                before=None,
                after={"created": len(rewards)},
            )
        return rewards

    def _distribute_in_session(
        self, session: Session, contest: Contest, now: datetime
    ) -> list[ContestReward]:
        already = session.scalar(
            select(func.count(ContestReward.id)).where(ContestReward.contest_id == contest.id)
        )
        if already:
            logger.info("Contest %d rewards already distributed (%d)", contest.id, already)
            return []

        rules = contest.rules or {}
        tiers = rules.get("tiers") or []
        prizes = rules.get("prizes") or []
        min_points = int(rules.get("min_points", 0))
        claim_days = int(rules.get("claim_window_days", self.settings.claim_window_days))
        completed_at = ensure_utc(contest.completed_at or now)
        expires_at = completed_at + timedelta(days=claim_days)

        entries = session.scalars(
            select(ContestEntry)
            .where(ContestEntry.contest_id == contest.id)
            .order_by(ContestEntry.rank.asc(), *_RANK_ORDER)
        ).all()

        rewards: list[ContestReward] = []
        for entry in entries:
            if entry.points <= 0 or entry.points < min_points:
                continue
            for tier in crossed_tiers(entry.points, tiers):
                rewards.append(ContestReward(
                    contest_id=contest.id,
                    user_id=entry.user_id,
                    kind=RewardKind.TIER,
                    label=tier["name"],
                    reward_type=tier["reward"],
                    status=RewardStatus.PENDING,
                    metadata_={
                        "tier": tier["name"],
                        "min_points": tier["min_points"],
                        "points": entry.points,
                    },
                    expires_at=expires_at,
                ))
            prize = prize_for_rank(entry.rank, prizes) if entry.rank else None
            if prize is not None:
                rewards.append(ContestReward(
                    contest_id=contest.id,
                    user_id=entry.user_id,
                    kind=RewardKind.RANK,
                    label=str(entry.rank),
                    reward_type=prize["reward"],
                    status=RewardStatus.PENDING,
                    metadata_={
                        "rank": entry.rank,
                        "amount": prize.get("amount"),
                        "description": prize.get("description"),
                        "points": entry.points,
                    },
                    expires_at=expires_at,
                ))

        session.add_all(rewards)
        session.flush()
        logger.info("Distributed %d rewards for contest %d", len(rewards), contest.id)
        return rewards

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------
    def claim_reward(
        self, reward_id: int, user_id: int, now: datetime | None = None
    ) -> ContestReward:
        """Transition a PENDING reward owned by *user_id* to CLAIMED.

        An overdue reward is marked EXPIRED (and that change committed)
        before :class:`ConflictError` is raised.
        """
        now = ensure_utc(now or utcnow())
        reward, error = run_in_transaction(
            self.engine, self._claim_in_session, reward_id, user_id, now
        )
        if error is not None:
            logger.debug("Claim of reward %d by user %d rejected: %s", reward_id, user_id, error)
            raise error
        logger.info("Reward %d claimed by user %d", reward_id, user_id)
        return reward

    def _claim_in_session(
        self, session: Session, reward_id: int, user_id: int, now: datetime
    ) -> tuple[ContestReward, ConflictError | None]:
        reward = session.get(ContestReward, reward_id, with_for_update=True)
        if reward is None or reward.user_id != user_id:
            raise NotFoundError(f"Reward {reward_id} not found", {"reward_id": reward_id})
        if reward.status == RewardStatus.CLAIMED:
            raise ConflictError("Reward already claimed", {"reward_id": reward_id})
        if reward.status == RewardStatus.EXPIRED:
            return reward, ConflictError("Reward has expired", {"reward_id": reward_id})
        if reward.expires_at is not None and now > ensure_utc(reward.expires_at):
            reward.status = RewardStatus.EXPIRED
            session.flush()
            return reward, ConflictError("Reward has expired", {"reward_id": reward_id})

        claimed = session.execute(
            update(ContestReward)
            .where(ContestReward.id == reward_id, ContestReward.status == RewardStatus.PENDING)
            .values(status=RewardStatus.CLAIMED, claimed_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        if not claimed:
            raise ConflictError("Reward already claimed", {"reward_id": reward_id})
        session.refresh(reward)
        return reward, None

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------
    def expire_stale_rewards(self, now: datetime | None = None) -> int:
        """Mark every PENDING reward past its expiry as EXPIRED."""
        now = ensure_utc(now or utcnow())

        def _sweep(session: Session) -> int:
            return session.execute(
                update(ContestReward)
                .where(
                    ContestReward.status == RewardStatus.PENDING,
                    ContestReward.expires_at.is_not(None),
                    ContestReward.expires_at < now,
                )
                .values(status=RewardStatus.EXPIRED)
                .execution_options(synchronize_session=False)
            ).rowcount

        expired = run_in_transaction(self.engine, _sweep)
        if expired:
            logger.info("Expired %d unclaimed rewards", expired)
        return expired

    def archive_old_contests(self, now: datetime | None = None) -> int:
        """Flag completed contests older than the archive window."""
        now = ensure_utc(now or utcnow())
        cutoff = now - timedelta(days=CONTEST_ARCHIVE_AFTER_DAYS)

        def _archive(session: Session) -> int:
            contests = session.scalars(
                select(Contest).where(
                    Contest.status == ContestStatus.COMPLETED,
                    Contest.completed_at < cutoff,
                )
            ).all()
            archived = 0
            for contest in contests:
                meta = contest.metadata_ or {}
                if meta.get("archived"):
                    continue
                contest.metadata_ = {**meta, "archived": True, "archived_at": now.isoformat()}
                archived += 1
            return archived

        archived = run_in_transaction(self.engine, _archive)
        if archived:
            logger.info("Archived %d completed contests", archived)
        return archived

    def rotate(self, now: datetime | None = None) -> Contest | None:
        """End the ACTIVE contest once its end time has passed and open the
        next one; open one if none is ACTIVE.  Returns the new contest, or
        ``None`` when nothing was due."""
        now = ensure_utc(now or utcnow())
        current = self.get_current_contest()
        if current is not None:
            if now < ensure_utc(current.end_time):
                return None
            try:
                self.end_current_contest(now)
            except NotFoundError:
                logger.info("Contest %d was ended by another caller", current.id)
        try:
            return self.start_new_contest(now=now)
        except ConflictError:
            logger.info("Another caller already started the next contest")
            return None

    # ------------------------------------------------------------------
    # Read projections
    # ------------------------------------------------------------------
    def get_current_contest(self) -> Contest | None:
        with Session(self.engine, expire_on_commit=False) as session:
            contest = get_active_contest(session)
            if contest is not None:
                session.expunge(contest)
            return contest

    def get_contest(self, contest_id: int) -> Contest:
        with Session(self.engine) as session:
            contest = session.get(Contest, contest_id)
            if contest is None:
                raise NotFoundError(f"Contest {contest_id} not found", {"contest_id": contest_id})
            session.expunge(contest)
            return contest

    def get_current_round(self) -> int:
        with Session(self.engine) as session:
            return completed_count(session) + 1

    def get_time_left(self, now: datetime | None = None) -> dict | None:
        now = ensure_utc(now or utcnow())
        contest = self.get_current_contest()
        if contest is None:
            return None
        seconds = max(0, int((ensure_utc(contest.end_time) - now).total_seconds()))
        return {
            "contest_id": contest.id,
            "seconds": seconds,
            "formatted": format_duration(seconds),
        }

    def _resolve_contest(self, session: Session, contest_id: int | None) -> Contest:
        if contest_id is None:
            contest = get_active_contest(session)
            if contest is None:
                raise NotFoundError("No active contest", {})
            return contest
        contest = session.get(Contest, contest_id)
        if contest is None:
            raise NotFoundError(f"Contest {contest_id} not found", {"contest_id": contest_id})
        return contest

    def check_tier_eligibility(self, user_id: int, contest_id: int | None = None) -> dict:
        """Current tier, next tier and points still needed.  Read-only."""
        with Session(self.engine) as session:
            contest = self._resolve_contest(session, contest_id)
            rules = contest.rules or {}
            points = session.scalar(
                select(ContestEntry.points).where(
                    ContestEntry.contest_id == contest.id, ContestEntry.user_id == user_id
                )
            ) or 0
            status = tier_status(points, rules.get("tiers") or [], int(rules.get("min_points", 0)))
            return {
                "contest_id": contest.id,
                "points": points,
                "eligible": status.eligible,
                "current_tier": status.current_tier,
                "next_tier": status.next_tier,
                "points_needed": status.points_needed,
            }

    def check_rank_eligibility(self, user_id: int, contest_id: int | None = None) -> dict:
        """Live (ACTIVE) or final (COMPLETED) rank and the prize it earns."""
        with Session(self.engine) as session:
            contest = self._resolve_contest(session, contest_id)
            prizes = (contest.rules or {}).get("prizes") or []
            entry = session.scalar(
                select(ContestEntry).where(
                    ContestEntry.contest_id == contest.id, ContestEntry.user_id == user_id
                )
            )
            if entry is None:
                return {
                    "contest_id": contest.id,
                    "rank": None,
                    "points": 0,
                    "eligible": False,
                    "prize": None,
                }
            rank = entry.rank if entry.rank is not None else live_rank(session, entry)
            prize = prize_for_rank(rank, prizes)
            return {
                "contest_id": contest.id,
                "rank": rank,
                "points": entry.points,
                "eligible": prize is not None,
                "prize": prize,
            }

    def get_leaderboard(self, contest_id: int, page: int = 1, page_size: int = 20) -> dict:
        """Entries ordered by the ranking order, paginated (1-based pages)."""
        page = max(1, page)
        page_size = max(1, min(page_size, 100))
        with Session(self.engine) as session:
            contest = session.get(Contest, contest_id)
            if contest is None:
                raise NotFoundError(f"Contest {contest_id} not found", {"contest_id": contest_id})
            total = session.scalar(
                select(func.count(ContestEntry.id)).where(ContestEntry.contest_id == contest_id)
            ) or 0
            offset = (page - 1) * page_size
            rows = session.execute(
                select(ContestEntry, User.wallet_address, User.username)
                .join(User, User.id == ContestEntry.user_id)
                .where(ContestEntry.contest_id == contest_id)
                .order_by(*_RANK_ORDER)
                .offset(offset)
                .limit(page_size)
            ).all()
            entries = [
                {
                    "rank": entry.rank if entry.rank is not None else offset + i,
                    "user_id": entry.user_id,
                    "wallet_address": wallet,
                    "username": username,
                    "points": entry.points,
                }
                for i, (entry, wallet, username) in enumerate(rows, start=1)
            ]
            return {
                "contest_id": contest_id,
                "status": contest.status,
                "page": page,
                "page_size": page_size,
                "total": total,
                "entries": entries,
            }

    def get_user_rewards(self, user_id: int, status: str | None = None) -> list[ContestReward]:
        if status is not None:
            try:
                status = RewardStatus(status.upper())
            except ValueError:
                raise ValidationError(f"Unknown reward status {status!r}", {"status": status}) from None
        with Session(self.engine) as session:
            stmt = select(ContestReward).where(ContestReward.user_id == user_id)
            if status is not None:
                stmt = stmt.where(ContestReward.status == status)
            rewards = session.scalars(stmt.order_by(ContestReward.id.desc())).all()
            for reward in rewards:
                session.expunge(reward)
            return list(rewards)
