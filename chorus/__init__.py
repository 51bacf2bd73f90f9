"""
Chorus — A Multi-Platform Community Engagement Rewards Engine
===============================================================
Turns community activity reported by platform adapters (Telegram, Discord,
Twitter) into points under rate limits, keeps per-platform daily streaks,
and runs time-boxed contests that rank participants and hand out tiered
and rank-based rewards.

Package layout::

    chorus/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # UTC day helpers, default tiers & prizes
    ├── errors.py          # Typed engine errors (validation, cooldown, ...)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine, retrying transactions, async bridge
    │   └── models.py      # All ORM models (9 tables)
    ├── engine/
    │   ├── events.py      # EngagementEvent dataclass
    │   ├── rules.py       # Per-platform point rules + sub-reward resolution
    │   └── tiers.py       # Tier / prize evaluation
    ├── services/
    │   ├── lock_service.py       # Distributed lock (Redis / in-memory)
    │   ├── rate_limiter.py       # Cooldowns, daily limits, daily point cap
    │   ├── point_ledger.py       # Atomic point transactions
    │   ├── streak_tracker.py     # Consecutive-day streaks + bonuses
    │   ├── engagement_tracker.py # Per-platform track() orchestration
    │   ├── contest_service.py    # Contest lifecycle, rewards, leaderboard
    │   ├── contest_rotation.py   # Background contest end/restart loop
    │   ├── user_service.py       # Users + linked platform accounts
    │   ├── stats_service.py      # Read projections for UI / bot replies
    │   ├── admin_service.py      # Audit-logged admin mutations
    │   └── container.py          # Builds the service graph once per process
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Dependency injection + JWT validation
        └── routes/        # Public, engagement and admin endpoints
"""

__version__ = "0.1.0"
