"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os
from datetime import UTC, datetime

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of chorus.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from chorus.config import ChorusConfig, LockSettings  # noqa: E402
from chorus.database.models import Base, User  # noqa: E402
from chorus.services.container import Services, build_services  # noqa: E402
from chorus.services.lock_service import InMemoryLockService  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()

# A fixed Wednesday noon keeps every calendar-day assertion deterministic
NOW = datetime(2026, 3, 4, 12, 0, tzinfo=UTC)

WALLET_A = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
WALLET_B = "0x52908400098527886E0F7030069857D2E4169EE7"
WALLET_C = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Chorus tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used by the rotation loop).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def file_engine(tmp_path) -> Engine:
    """File-backed SQLite with a real connection pool, for threaded tests."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'chorus.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


class FakeClock:
    """Mutable wall clock for the trackers; tests assign ``now``."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_services(engine: Engine, clock=None, config: ChorusConfig | None = None) -> Services:
    config = config or ChorusConfig(
        locks=LockSettings(acquire_attempts=2, retry_delay_seconds=0.01),
    )
    return build_services(config, engine, InMemoryLockService(), clock=clock)


@pytest.fixture
def services(db_engine: Engine, clock: FakeClock) -> Services:
    """The full service graph over the in-memory database, with a fake clock
    for the trackers and an in-memory lifecycle lock."""
    return make_services(db_engine, clock)


def make_user(engine: Engine, wallet: str = WALLET_A, **fields) -> int:
    """Insert a user directly and return its id."""
    with Session(engine) as session:
        user = User(wallet_address=wallet, **fields)
        session.add(user)
        session.commit()
        return user.id


@pytest.fixture
def user_id(db_engine: Engine) -> int:
    return make_user(db_engine)


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------
def _encode(payload: dict) -> str:
    import jwt

    from chorus.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def make_admin_token(sub: str = "99999", username: str = "FixtureAdmin") -> str:
    """Create an admin JWT.  Usable as both a fixture and a factory function."""
    return _encode({"sub": sub, "username": username, "is_admin": True})


def make_adapter_token(name: str = "telegram-bot") -> str:
    return _encode({"sub": name, "role": "adapter"})


def make_user_token(user_id: int) -> str:
    return _encode({"sub": str(user_id)})


@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_admin_token()


@pytest.fixture
def adapter_token():
    return make_adapter_token()
