"""
chorus.api.deps — FastAPI dependency injection
================================================
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from chorus.config import ChorusConfig, load_config
from chorus.database.engine import create_db_engine
from chorus.services.container import Services, build_services

logger = logging.getLogger(__name__)

_WEAK_SECRETS = frozenset({
    "chorus-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"

ROLE_ADAPTER = "adapter"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> ChorusConfig:
    path = Path(os.getenv("CHORUS_CONFIG", "config.yaml"))
    if not path.exists():
        logger.warning("%s not found; using built-in defaults", path)
        return ChorusConfig()
    return load_config(path)


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services(get_config(), get_engine())


def _decode_bearer(authorization: str | None) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")


def get_current_principal(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Any valid token: a user, a platform adapter, or an admin."""
    return _decode_bearer(authorization)


def get_current_admin(
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """Validate JWT and return admin payload. Raises 401/403 if invalid."""
    payload = _decode_bearer(authorization)
    if not payload.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return payload


def get_current_adapter(
    principal: Annotated[dict, Depends(get_current_principal)],
) -> dict:
    """Platform adapters (``role: adapter``) and admins may report engagement."""
    if principal.get("role") != ROLE_ADAPTER and not principal.get("is_admin"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Adapter token required")
    return principal
