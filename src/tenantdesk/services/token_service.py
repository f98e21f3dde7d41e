from __future__ import annotations

"""Issue capability tokens and the links that carry them."""

import logging
import os
from datetime import timedelta
from typing import Optional, Tuple
from urllib.parse import urlencode

from ..domain.tokens import TokenKind, TokenRecord, TokenTarget
from ..infrastructure.token_store import TokenStore, get_token_store, short_id
from ..observability.metrics import observe_token
from .messenger import Messenger, get_messenger

logger = logging.getLogger("tenantdesk.tokens")

LINK_PATHS = {
    TokenKind.UPLOAD: "/upload-image",
    TokenKind.AUTHORIZE: "/authorize",
}


def public_base_url() -> str:
    return os.getenv("TENANTDESK_PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")


def link_for(record: TokenRecord) -> str:
    return f"{public_base_url()}{LINK_PATHS[record.kind]}?{urlencode({'token': record.token})}"


def link_message(record: TokenRecord, url: str) -> str:
    minutes = max(int((record.expires_at - record.created_at).total_seconds() // 60), 1)
    if record.kind == TokenKind.UPLOAD:
        what = f"upload an image for your {record.target.label()}"
    else:
        what = f"confirm the action '{record.target.label()}'"
    return f"Use this link to {what}: {url}\nThe link is valid for {minutes} minutes and works only once."


def issue_link(
    recipient: str,
    kind: TokenKind,
    target: Optional[TokenTarget] = None,
    ttl: Optional[timedelta] = None,
    notify: bool = False,
    store: Optional[TokenStore] = None,
    messenger: Optional[Messenger] = None,
) -> Tuple[TokenRecord, str]:
    record = (store or get_token_store()).issue(recipient, kind, target, ttl)
    observe_token("issue", kind.value, "ok")
    url = link_for(record)
    if notify:
        sent = (messenger or get_messenger()).send_text(recipient, link_message(record, url))
        if not sent:
            logger.warning("token_link_not_delivered", extra={"token": short_id(record.token)})
    return record, url
