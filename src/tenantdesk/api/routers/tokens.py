from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, status

from ...domain.tokens import TokenIssueRequest, TokenIssueResponse
from ...infrastructure.token_store import TokenStoreUnavailable
from ...security.auth import Principal
from ...security.rbac import Permission, require_permission
from ...services.token_service import issue_link

router = APIRouter(prefix="/tokens", tags=["tokens"])


@router.post("", response_model=TokenIssueResponse, status_code=status.HTTP_201_CREATED)
def issue_token(
    payload: TokenIssueRequest,
    _: Principal = Depends(require_permission(Permission.TOKEN_ISSUE)),
) -> TokenIssueResponse:
    ttl = timedelta(minutes=payload.ttl_minutes) if payload.ttl_minutes else None
    try:
        record, url = issue_link(payload.recipient, payload.kind, payload.target(), ttl, notify=payload.notify)
    except TokenStoreUnavailable:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Token store unavailable")
    return TokenIssueResponse(token=record.token, url=url, expires_at=record.expires_at)
