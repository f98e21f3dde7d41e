from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from pydantic import BaseModel

from ...domain.tokens import PendingAction, TokenKind
from ...infrastructure.image_store import MAX_IMAGE_BYTES, ImageRejected, get_image_store, validate_image
from ...infrastructure.token_store import TokenStoreUnavailable
from ...security.capability import TokenContext, consume_token, require_token_view, view_token
from ...services.messenger import get_messenger
from ...services.token_service import issue_link

router = APIRouter(tags=["uploads"])
logger = logging.getLogger("tenantdesk.uploads")


class UploadResult(BaseModel):
    success: bool = True
    entity_type: str
    entity_id: str
    image: str


@router.get("/upload-image", response_model=PendingAction)
def view_upload(ctx: TokenContext = Depends(require_token_view(TokenKind.UPLOAD))) -> PendingAction:
    return ctx.pending_action()


@router.post("/upload-image", response_model=UploadResult)
def submit_upload(
    request: Request,
    token: Optional[str] = Form(default=None),
    image: Optional[UploadFile] = File(default=None),
) -> UploadResult:
    # Reject bad tokens, then bad files, before spending the token.
    view_token(request, token, TokenKind.UPLOAD)
    if image is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No image provided")
    # One byte past the limit is enough to reject; larger bodies are never buffered whole.
    content = image.file.read(MAX_IMAGE_BYTES + 1)
    try:
        validate_image(image.filename, image.content_type, len(content))
    except ImageRejected as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    ctx = consume_token(request, token, TokenKind.UPLOAD)
    target = ctx.target
    try:
        stored = get_image_store().save(target, image.filename or "image", content, image.content_type or "")
    except Exception:
        logger.exception("image_store_failed", extra={"target": target.label()})
        _send_retry_link(ctx)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Upload failed. A new link has been sent to you.",
        )

    get_messenger().send_text(ctx.recipient, f"✅ Image uploaded for your {target.label()}.")
    return UploadResult(
        entity_type=target.entity_type.value if target.entity_type else "",
        entity_id=target.entity_id or "",
        image=stored,
    )


def _send_retry_link(ctx: TokenContext) -> None:
    # The spent token cannot be reused; hand out a fresh one for the same target.
    try:
        issue_link(ctx.recipient, TokenKind.UPLOAD, ctx.target, notify=True)
    except TokenStoreUnavailable:
        logger.exception("retry_link_issue_failed")
