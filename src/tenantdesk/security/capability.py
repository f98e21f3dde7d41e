from __future__ import annotations

"""Request-time gate for capability-token protected actions.

Read-only confirmation pages *peek* at the token (taken from the query
string); mutating submissions *consume* it (taken from the form body). The
resolved recipient and target are attached to ``request.state.token_context``
and handed to the route, which trusts them without re-deriving identity.

Every rejection is a 403 whose ``detail`` carries a stable ``code``:
``missing``, ``not_found``, ``already_used`` or ``expired``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import HTTPException, Query, Request, status

from ..domain.tokens import PendingAction, TokenKind, TokenRecord, TokenTarget
from ..infrastructure.token_store import (
    MissingToken,
    TokenAlreadyUsed,
    TokenError,
    TokenExpired,
    TokenNotFound,
    TokenStore,
    TokenStoreUnavailable,
    get_token_store,
    short_id,
)
from ..observability.metrics import observe_token

logger = logging.getLogger("tenantdesk.tokens")


@dataclass(frozen=True)
class TokenContext:
    token: str
    recipient: str
    kind: TokenKind
    target: TokenTarget
    expires_at: datetime
    consumed: bool

    @classmethod
    def from_record(cls, record: TokenRecord, consumed: bool) -> "TokenContext":
        return cls(
            token=record.token,
            recipient=record.recipient,
            kind=record.kind,
            target=record.target,
            expires_at=record.expires_at,
            consumed=consumed,
        )

    def pending_action(self) -> PendingAction:
        return PendingAction(
            recipient=self.recipient,
            kind=self.kind,
            entity_type=self.target.entity_type,
            entity_id=self.target.entity_id,
            action=self.target.action,
            expires_at=self.expires_at,
        )


class TokenGuard:
    """Validates capability tokens against a :class:`TokenStore`."""

    def __init__(self, store: Optional[TokenStore] = None, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._store = store
        self._clock = clock

    @property
    def store(self) -> TokenStore:
        return self._store or get_token_store()

    def _now(self) -> datetime:
        # Expiry is judged on the store's clock unless one is injected.
        return self._clock() if self._clock else self.store.now()

    def view(self, token_id: Optional[str], kind: TokenKind) -> TokenContext:
        """Validate without spending (GET/confirmation path)."""
        token_id = _require(token_id)
        record = self.store.peek(token_id)
        if record is None or record.kind != kind:
            raise TokenNotFound(token_id)
        if record.used:
            raise TokenAlreadyUsed(token_id)
        if record.is_expired(self._now()):
            raise TokenExpired(token_id)
        return TokenContext.from_record(record, consumed=False)

    def consume(self, token_id: Optional[str], kind: TokenKind) -> TokenContext:
        """Validate and spend (POST/mutating path)."""
        token_id = _require(token_id)
        # The kind never changes after issue, so checking it before the atomic
        # consume keeps a mismatched token unspent.
        existing = self.store.peek(token_id)
        if existing is not None and existing.kind != kind:
            raise TokenNotFound(token_id)
        record = self.store.consume(token_id)
        return TokenContext.from_record(record, consumed=True)


def _require(token_id: Optional[str]) -> str:
    token_id = (token_id or "").strip()
    if not token_id:
        raise MissingToken()
    return token_id


def token_http_error(exc: TokenError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": exc.code, "message": exc.message},
    )


def _guarded(request: Request, operation: str, kind: TokenKind, run: Callable[[], TokenContext]) -> TokenContext:
    try:
        ctx = run()
    except TokenError as exc:
        observe_token(operation, kind.value, exc.code)
        logger.info(
            "token_rejected",
            extra={"operation": operation, "code": exc.code, "token": short_id(exc.token_id or "")},
        )
        raise token_http_error(exc) from exc
    except TokenStoreUnavailable as exc:
        observe_token(operation, kind.value, "store_error")
        logger.exception("token_store_unavailable")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server error during token validation.",
        ) from exc
    observe_token(operation, kind.value, "ok")
    request.state.token_context = ctx
    return ctx


def get_token_guard() -> TokenGuard:
    return TokenGuard()


def view_token(request: Request, token: Optional[str], kind: TokenKind) -> TokenContext:
    guard = get_token_guard()
    return _guarded(request, "view", kind, lambda: guard.view(token, kind))


def consume_token(request: Request, token: Optional[str], kind: TokenKind) -> TokenContext:
    """Spend a token from inside a handler, once the submission itself has been validated."""
    guard = get_token_guard()
    return _guarded(request, "consume", kind, lambda: guard.consume(token, kind))


def require_token_view(kind: TokenKind) -> Callable[..., TokenContext]:
    """FastAPI dependency: peek a token passed as ``?token=``."""

    def dependency(request: Request, token: Optional[str] = Query(default=None)) -> TokenContext:
        return view_token(request, token, kind)

    return dependency

