from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Request, status
from pydantic import BaseModel

from ...domain.tokens import PendingAction, TokenKind
from ...infrastructure.events import publish_event
from ...security.capability import TokenContext, consume_token, require_token_view, view_token
from ...services.messenger import get_messenger
from ...services.telemetry_sink import TelemetryEvent, record_event

router = APIRouter(tags=["authorize"])
logger = logging.getLogger("tenantdesk.tokens")


class Decision(str, Enum):
    YES = "yes"
    NO = "no"


class AuthorizationResult(BaseModel):
    status: str
    action: Optional[str] = None
    recipient: str


@router.get("/authorize", response_model=PendingAction)
def view_authorization(ctx: TokenContext = Depends(require_token_view(TokenKind.AUTHORIZE))) -> PendingAction:
    return ctx.pending_action()


@router.post("/authorize", response_model=AuthorizationResult)
def submit_authorization(
    request: Request,
    token: Optional[str] = Form(default=None),
    decision: Optional[str] = Form(default=None),
) -> AuthorizationResult:
    view_token(request, token, TokenKind.AUTHORIZE)
    try:
        choice = Decision((decision or "").strip().lower())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="decision must be 'yes' or 'no'")

    ctx = consume_token(request, token, TokenKind.AUTHORIZE)
    action = ctx.target.action.value if ctx.target.action else None
    result = AuthorizationResult(
        status="authorized" if choice == Decision.YES else "declined",
        action=action,
        recipient=ctx.recipient,
    )
    record_event(TelemetryEvent(name="authorization_decided", properties=result.model_dump(), actor=ctx.recipient))
    publish_event("authorization.decided", result.model_dump())
    logger.info("authorization_decided", extra={"action": action, "decision": choice.value})

    if choice == Decision.YES:
        text = f"✅ Authorized. You can now continue with {action or 'your request'}."
    else:
        text = f"❌ Declined. {action or 'The request'} was not authorized."
    get_messenger().send_text(ctx.recipient, text)
    return result
