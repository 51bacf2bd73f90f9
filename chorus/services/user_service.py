"""
chorus.services.user_service — Users & Linked Platform Accounts
================================================================

A user is a wallet.  Platform adapters only know chat / social ids, so
each user may link at most one account per platform and each platform id
belongs to at most one user.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chorus.database.engine import run_in_transaction
from chorus.database.models import Platform, PlatformAccount, User
from chorus.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# Base58 (Solana) or 0x-prefixed hex (EVM) addresses
_WALLET_RE = re.compile(r"^(?:[1-9A-HJ-NP-Za-km-z]{32,44}|0x[0-9a-fA-F]{40})$")


def validate_wallet(address: str) -> str:
    address = (address or "").strip()
    if not _WALLET_RE.match(address):
        raise ValidationError("Invalid wallet address", {"wallet_address": address})
    return address


def _platform(value: str) -> Platform:
    try:
        return Platform(str(value).upper())
    except ValueError:
        raise ValidationError(f"Unknown platform {value!r}", {"platform": value}) from None


def create_user(engine: Engine, wallet_address: str, username: str | None = None) -> User:
    """Create a user for *wallet_address*.

    Raises ``ValidationError`` on a malformed address and ``ConflictError``
    when the wallet is already registered.
    """
    wallet_address = validate_wallet(wallet_address)

    def _create(session: Session) -> User:
        if session.scalar(select(User.id).where(User.wallet_address == wallet_address)):
            raise ConflictError("Wallet already registered", {"wallet_address": wallet_address})
        user = User(wallet_address=wallet_address, username=username)
        session.add(user)
        session.flush()
        return user

    try:
        user = run_in_transaction(engine, _create)
    except IntegrityError as exc:
        raise ConflictError(
            "Wallet already registered", {"wallet_address": wallet_address}
        ) from exc
    logger.info("Registered user %d (%s)", user.id, wallet_address)
    return user


def get_user(engine: Engine, user_id: int) -> User:
    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})
        session.expunge(user)
        return user


def get_user_by_wallet(engine: Engine, wallet_address: str) -> User | None:
    with Session(engine) as session:
        user = session.scalar(select(User).where(User.wallet_address == wallet_address))
        if user is not None:
            session.expunge(user)
        return user


def link_platform_account(
    engine: Engine,
    user_id: int,
    platform: str,
    platform_id: str,
    username: str | None = None,
) -> PlatformAccount:
    """Link a platform identity to *user_id*.

    Raises ``ConflictError`` when *platform_id* is already linked (to anyone)
    or the user already has an account on *platform*.
    """
    platform = _platform(platform)
    platform_id = str(platform_id).strip()
    if not platform_id:
        raise ValidationError("Platform id is required", {"platform": platform})

    def _link(session: Session) -> PlatformAccount:
        if session.get(User, user_id) is None:
            raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})
        taken = session.scalar(
            select(PlatformAccount).where(
                PlatformAccount.platform == platform,
                PlatformAccount.platform_id == platform_id,
            )
        )
        if taken is not None:
            raise ConflictError(
                "Platform account already linked",
                {"platform": platform, "platform_id": platform_id},
            )
        existing = session.scalar(
            select(PlatformAccount).where(
                PlatformAccount.user_id == user_id, PlatformAccount.platform == platform
            )
        )
        if existing is not None:
            raise ConflictError(
                f"User already has a linked {platform} account",
                {"platform": platform, "user_id": user_id},
            )
        account = PlatformAccount(
            user_id=user_id, platform=platform, platform_id=platform_id, username=username
        )
        session.add(account)
        session.flush()
        return account

    try:
        account = run_in_transaction(engine, _link)
    except IntegrityError as exc:
        raise ConflictError(
            "Platform account already linked",
            {"platform": platform, "platform_id": platform_id},
        ) from exc
    logger.info("Linked %s account %s to user %d", platform, platform_id, user_id)
    return account


def resolve_user_id(engine: Engine, platform: str, platform_id: str) -> int:
    """User id behind a platform identity, or ``NotFoundError``."""
    platform = _platform(platform)
    with Session(engine) as session:
        user_id = session.scalar(
            select(PlatformAccount.user_id).where(
                PlatformAccount.platform == platform,
                PlatformAccount.platform_id == str(platform_id),
            )
        )
    if user_id is None:
        raise NotFoundError(
            "No user linked to this account",
            {"platform": platform, "platform_id": str(platform_id)},
        )
    return user_id
