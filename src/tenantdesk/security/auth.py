from __future__ import annotations

"""Service authentication for collaborator-facing endpoints.

Collaborators (the chat webhook, the CRUD app) call token issuance and the
assistant triggers with a bearer JWT naming their roles. Token-gated pages
never use this module; the capability token is their only credential.

Env vars:
- JWT_SECRET (required in prod; default for dev)
- JWT_EXPIRES_MIN (default 60)
- TENANTDESK_PUBLIC_MODE (allow anonymous access in development)
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

logger = logging.getLogger("tenantdesk.auth")
bearer_scheme = HTTPBearer(auto_error=False)


def _get_env(name: str, default: Optional[str] = None) -> str:
    val = os.getenv(name, default)
    if val is None:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return val


@dataclass
class JwtConfig:
    secret: str
    algorithm: str = "HS256"
    expires_min: int = 60

    @staticmethod
    def from_env() -> "JwtConfig":
        secret = _get_env("JWT_SECRET", "dev-secret-change-me")
        expires = int(os.getenv("JWT_EXPIRES_MIN", "60"))
        return JwtConfig(secret=secret, expires_min=expires)


class Principal(BaseModel):
    subject: str
    roles: List[str]


GUEST = Principal(subject="guest", roles=["operator"])


def create_access_token(principal: Principal, cfg: Optional[JwtConfig] = None) -> str:
    cfg = cfg or JwtConfig.from_env()
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=cfg.expires_min)
    payload = {
        "sub": principal.subject,
        "roles": principal.roles,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, cfg.secret, algorithm=cfg.algorithm)


def decode_token(token: str, cfg: Optional[JwtConfig] = None) -> Principal:
    cfg = cfg or JwtConfig.from_env()
    try:
        data = jwt.decode(token, cfg.secret, algorithms=[cfg.algorithm])
        return Principal(subject=data["sub"], roles=list(data.get("roles", [])))
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except (jwt.InvalidTokenError, KeyError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def _public_mode_enabled() -> bool:
    """Return True if anonymous access is allowed.

    An explicit TENANTDESK_PUBLIC_MODE wins. Otherwise public mode is off under
    pytest, in production and in CI, and on for local development.
    """
    val = os.getenv("TENANTDESK_PUBLIC_MODE")
    if val is not None:
        return val.lower() in ("1", "true", "yes")
    if os.getenv("PYTEST_CURRENT_TEST"):
        return False
    env_name = (
        os.getenv("TENANTDESK_ENV")
        or os.getenv("ENVIRONMENT")
        or os.getenv("ENV")
        or "development"
    ).lower()
    if env_name in ("prod", "production"):
        return False
    if os.getenv("CI") or os.getenv("GITHUB_ACTIONS"):
        return False
    return True


def get_current_principal(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Principal:
    public_mode = _public_mode_enabled()
    if creds is None or not creds.scheme or creds.scheme.lower() != "bearer":
        if public_mode:
            return GUEST
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    try:
        return decode_token(creds.credentials)
    except HTTPException:
        if public_mode:
            logger.info("invalid_bearer_tolerated_in_public_mode")
            return GUEST
        raise
