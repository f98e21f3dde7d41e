from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from ...domain.reports import AssistantQueryRequest, AssistantReply, ReportAccepted, ReportJob
from ...infrastructure.job_queue import get_job_queue
from ...security.auth import Principal
from ...security.rate_limit import RateLimitExceeded, limit_assistant_query
from ...security.rbac import Permission, require_permission
from ...services.ai_client import AIErrorKind, AIQueryError, get_ai_client
from ...services.context_builder import build_portfolio_context
from ...services.credential_pool import PoolEmpty

router = APIRouter(prefix="/assistant", tags=["assistant"])
logger = logging.getLogger("tenantdesk.llm")

_ERROR_STATUS = {
    AIErrorKind.ALL_CREDENTIALS_EXHAUSTED: status.HTTP_503_SERVICE_UNAVAILABLE,
    AIErrorKind.PAYLOAD_TOO_LARGE: status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
}


def command_prefix() -> str:
    return os.getenv("TENANTDESK_COMMAND_PREFIX", "/")


def _context_for(payload: AssistantQueryRequest) -> Optional[str]:
    if payload.context:
        return payload.context
    if payload.portfolio is not None:
        return build_portfolio_context(payload.portfolio)
    return None


def _check_rate(recipient: str) -> None:
    try:
        limit_assistant_query(recipient)
    except RateLimitExceeded as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many questions, please slow down.",
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )


@router.post("/ask", response_model=AssistantReply)
def ask(
    payload: AssistantQueryRequest,
    _: Principal = Depends(require_permission(Permission.ASSISTANT_QUERY)),
):
    prefix = command_prefix()
    text = payload.query.strip()
    if prefix and not text.startswith(prefix):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Message must start with {prefix}")
    query = text[len(prefix):].strip() if prefix else text
    if not query:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Query must not be empty")
    _check_rate(payload.recipient)

    try:
        reply = get_ai_client().ask(_context_for(payload), query)
    except PoolEmpty:
        logger.error("assistant_not_configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Assistant is not configured")
    except AIQueryError as exc:
        code = _ERROR_STATUS.get(exc.kind, status.HTTP_502_BAD_GATEWAY)
        headers = {"Retry-After": "30"} if exc.kind == AIErrorKind.ALL_CREDENTIALS_EXHAUSTED else None
        return JSONResponse(
            status_code=code,
            content={"reply": exc.user_message, "error": exc.kind.value},
            headers=headers,
        )
    return AssistantReply(reply=reply)


@router.post("/reports", response_model=ReportAccepted, status_code=status.HTTP_202_ACCEPTED)
def enqueue_report(
    payload: AssistantQueryRequest,
    _: Principal = Depends(require_permission(Permission.ASSISTANT_QUERY)),
) -> ReportAccepted:
    query = payload.query.strip()
    prefix = command_prefix()
    if prefix and query.startswith(prefix):
        query = query[len(prefix):].strip()
    if not query:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Query must not be empty")
    _check_rate(payload.recipient)

    job = ReportJob(
        recipient=payload.recipient,
        query=query,
        context=_context_for(payload),
        output=payload.output,
    )
    return ReportAccepted(job_id=get_job_queue().enqueue(job))
