"""
chorus.database.engine — Database Connection, Transactions & Async Helper
==========================================================================

Every mutating engine operation runs inside one storage transaction, so
readers never observe half-applied awards, rankings, or claims.  This
module provides the three ways services get one:

    1. :func:`get_session` — a plain commit-or-rollback context manager.
    2. :func:`run_in_transaction` — the same, plus bounded retries on
       serialization failures and deadlocks (PostgreSQL ``40001`` /
       ``40P01``, SQLite ``database is locked``).  Business errors
       (:class:`~chorus.errors.EngagementError`) are never retried.
    3. :func:`run_db` — ships any synchronous DB function onto a worker
       thread via :func:`asyncio.to_thread` for async callers (the FastAPI
       lifespan, the contest rotation loop, platform adapters).

Usage::

    from chorus.database.engine import create_db_engine, init_db, run_in_transaction

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    total = run_in_transaction(engine, ledger.apply, user_id, platform, items)
"""

from __future__ import annotations

import asyncio
import logging
import os
import random
import time
from collections.abc import Callable
from contextlib import contextmanager
from typing import Concatenate, ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from chorus.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

DEFAULT_TRANSACTION_ATTEMPTS = 3

_RETRYABLE_PGCODES = frozenset({"40001", "40P01"})


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from *url* or ``DATABASE_URL``.

    The connection pool is sized for a handful of adapters plus the API:
    * ``pool_size=5`` — five persistent connections.
    * ``max_overflow=10`` — up to 10 extra connections under load.
    * ``pool_timeout=10`` — fail after 10 s if no connection is available.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    Raises
    ------
    RuntimeError
        If neither *url* nor ``DATABASE_URL`` is set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    if url.startswith("sqlite"):
        engine = create_engine(url, echo=False, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(
            url,
            echo=False,        # Set True for SQL debugging
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,   # Reconnect stale connections automatically
            pool_timeout=10,      # Fail after 10s instead of hanging forever
            pool_recycle=3600,    # Recycle connections after 1 hour
        )
    logger.info("Database engine created → %s", engine.url.host or engine.url.database)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`chorus.database.models`.

    Safe to call on every startup.  In production the schema is managed by
    Alembic (``alembic upgrade head``); ``create_all`` covers dev/test.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helpers
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.

    Usage::

        with get_session(engine) as session:
            session.add(User(wallet_address="0xabc…"))
            # commit happens automatically on block exit
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def is_retryable(exc: DBAPIError) -> bool:
    """True for serialization failures, deadlocks and SQLite lock timeouts."""
    orig = exc.orig
    if getattr(orig, "pgcode", None) in _RETRYABLE_PGCODES:
        return True
    return "database is locked" in str(orig).lower()


def run_in_transaction(
    engine: Engine,
    func: Callable[Concatenate[Session, P], T],
    *args: P.args,
    attempts: int = DEFAULT_TRANSACTION_ATTEMPTS,
    **kwargs: P.kwargs,
) -> T:
    """Run ``func(session, *args, **kwargs)`` in one transaction.

    Commits when *func* returns; rolls back and re-raises on any error.
    Retryable storage conflicts are re-run up to *attempts* times with a
    jittered backoff, so *func* must keep all of its effects inside the
    session.  Objects *func* returns stay readable after commit
    (``expire_on_commit=False``).
    """
    for attempt in range(1, attempts + 1):
        session = Session(engine, expire_on_commit=False)
        try:
            result = func(session, *args, **kwargs)
            session.commit()
            return result
        except DBAPIError as exc:
            session.rollback()
            if attempt >= attempts or not is_retryable(exc):
                raise
            delay = 0.05 * (2 ** (attempt - 1)) + random.uniform(0, 0.05)
            logger.warning(
                "Retryable storage conflict in %s (attempt %d/%d), retrying in %.2fs",
                getattr(func, "__name__", func), attempt, attempts, delay,
            )
            time.sleep(delay)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
    raise RuntimeError("unreachable")  # pragma: no cover


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Async callers (adapters, the rotation loop) go through this wrapper so
    the event loop is never blocked on a query::

        awarded = await run_db(tracker.track, event)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
