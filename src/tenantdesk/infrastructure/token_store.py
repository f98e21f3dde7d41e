from __future__ import annotations

"""Capability token persistence.

A token is a one-time permission slip: ``issue`` creates it, ``peek`` reads it
without spending it, and ``consume`` validates and spends it in a single
atomic step. Exactly one of any number of concurrent ``consume`` calls for the
same token succeeds; the others fail with :class:`TokenAlreadyUsed`.

Backends:
- ``memory`` (default): process-local, guarded by a lock. Dev/test only.
- ``mongo``: conditional ``find_one_and_update`` on a shared collection.
"""

import logging
import os
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from threading import Lock
from typing import Callable, Dict, Optional, Protocol

from ..domain.tokens import TokenKind, TokenRecord, TokenTarget

logger = logging.getLogger("tenantdesk.tokens")

Clock = Callable[[], datetime]

# 16 random bytes -> 128 bits of entropy, hex encoded.
TOKEN_BYTES = 16


def utc_now() -> datetime:
    return datetime.now(UTC)


def generate_token_id() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def short_id(token_id: str) -> str:
    return f"{token_id[:6]}…" if token_id else "<empty>"


class TokenError(Exception):
    """Base class for capability token rejections (all map to HTTP 403)."""

    code = "invalid"
    message = "Invalid or expired token."

    def __init__(self, token_id: Optional[str] = None) -> None:
        super().__init__(self.message)
        self.token_id = token_id


class MissingToken(TokenError):
    code = "missing"
    message = "No token provided."


class TokenNotFound(TokenError):
    code = "not_found"
    message = "Invalid or expired token."


class TokenAlreadyUsed(TokenError):
    code = "already_used"
    message = "This link has already been used."


class TokenExpired(TokenError):
    code = "expired"
    message = "This link has expired."


class TokenStoreUnavailable(RuntimeError):
    """Raised when the backing store cannot be reached (maps to HTTP 500)."""


@dataclass(frozen=True)
class TokenConfig:
    upload_ttl: timedelta
    authorize_ttl: timedelta

    @staticmethod
    def from_env() -> "TokenConfig":
        upload = _env_minutes("TENANTDESK_UPLOAD_TOKEN_TTL_MIN", 15)
        authorize = _env_minutes("TENANTDESK_AUTHORIZE_TOKEN_TTL_MIN", 15)
        return TokenConfig(upload_ttl=timedelta(minutes=upload), authorize_ttl=timedelta(minutes=authorize))

    def ttl_for(self, kind: TokenKind) -> timedelta:
        return self.upload_ttl if kind == TokenKind.UPLOAD else self.authorize_ttl


def _env_minutes(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


class TokenStore(Protocol):
    def issue(
        self,
        recipient: str,
        kind: TokenKind,
        target: Optional[TokenTarget] = None,
        ttl: Optional[timedelta] = None,
    ) -> TokenRecord: ...
    def consume(self, token_id: str) -> TokenRecord: ...
    def peek(self, token_id: str) -> Optional[TokenRecord]: ...
    def purge_expired(self, now: Optional[datetime] = None) -> int: ...
    def now(self) -> datetime: ...


def build_record(
    recipient: str,
    kind: TokenKind,
    target: Optional[TokenTarget],
    ttl: timedelta,
    now: datetime,
) -> TokenRecord:
    target = target or TokenTarget()
    return TokenRecord(
        token=generate_token_id(),
        recipient=recipient,
        kind=kind,
        entity_type=target.entity_type,
        entity_id=target.entity_id,
        action=target.action,
        used=False,
        created_at=now,
        expires_at=now + ttl,
    )


def classify_rejection(record: Optional[TokenRecord], token_id: str, now: datetime) -> TokenError:
    """Pick the error for a token that failed the conditional consume."""
    if record is None:
        return TokenNotFound(token_id)
    if record.used:
        return TokenAlreadyUsed(token_id)
    if record.is_expired(now):
        return TokenExpired(token_id)
    # Lost a race between the read and the conditional update.
    return TokenAlreadyUsed(token_id)


class InMemoryTokenStore:
    """Process-local token store.

    The check and the ``used`` flip happen under one lock, which gives the same
    exactly-one-winner guarantee as the conditional update in the Mongo store.
    Does not survive restarts and cannot be shared between workers.
    """

    def __init__(self, config: Optional[TokenConfig] = None, clock: Optional[Clock] = None) -> None:
        self._config = config or TokenConfig.from_env()
        self._clock = clock or utc_now
        self._lock = Lock()
        self._tokens: Dict[str, TokenRecord] = {}

    def issue(
        self,
        recipient: str,
        kind: TokenKind,
        target: Optional[TokenTarget] = None,
        ttl: Optional[timedelta] = None,
    ) -> TokenRecord:
        now = self._clock()
        record = build_record(recipient, kind, target, ttl or self._config.ttl_for(kind), now)
        with self._lock:
            self._tokens[record.token] = record
        logger.info(
            "token_issued",
            extra={"token": short_id(record.token), "kind": kind.value, "expires_at": record.expires_at.isoformat()},
        )
        return record.model_copy()

    def consume(self, token_id: str) -> TokenRecord:
        with self._lock:
            now = self._clock()
            record = self._tokens.get(token_id)
            if record is None or record.used or record.is_expired(now):
                raise classify_rejection(record, token_id, now)
            prior = record.model_copy()
            record.used = True
            record.used_at = now
        logger.info("token_consumed", extra={"token": short_id(token_id), "kind": prior.kind.value})
        return prior

    def peek(self, token_id: str) -> Optional[TokenRecord]:
        with self._lock:
            record = self._tokens.get(token_id)
            return record.model_copy() if record else None

    def now(self) -> datetime:
        return self._clock()

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        with self._lock:
            expired = [tid for tid, rec in self._tokens.items() if rec.is_expired(now)]
            for tid in expired:
                del self._tokens[tid]
        if expired:
            logger.info("tokens_purged", extra={"count": len(expired)})
        return len(expired)


_store: TokenStore | None = None


def get_token_store() -> TokenStore:
    global _store
    if _store is not None:
        return _store
    impl = os.getenv("TENANTDESK_TOKEN_STORE_IMPL", "memory").lower()
    if impl == "mongo":
        from .token_store_mongo import MongoTokenStore

        _store = MongoTokenStore()
        return _store
    _store = InMemoryTokenStore()
    return _store


def set_token_store(store: Optional[TokenStore]) -> None:
    global _store
    _store = store


def reset_token_store() -> None:
    set_token_store(None)
