from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class TokenKind(str, Enum):
    AUTHORIZE = "authorize"
    UPLOAD = "upload"


class EntityType(str, Enum):
    PROPERTY = "property"
    UNIT = "unit"
    TENANT = "tenant"


class AuthorizedAction(str, Enum):
    ADD_PROPERTY = "addproperty"
    ADD_UNIT = "addunit"
    ADD_TENANT = "addtenant"


class TokenTarget(BaseModel):
    """Record a token grants access to (upload tokens) or the action it approves."""

    entity_type: Optional[EntityType] = None
    entity_id: Optional[str] = None
    action: Optional[AuthorizedAction] = None

    def label(self) -> str:
        if self.entity_type and self.entity_id:
            return f"{self.entity_type.value}:{self.entity_id}"
        if self.action:
            return self.action.value
        return "-"


class TokenRecord(BaseModel):
    token: str
    recipient: str
    kind: TokenKind
    entity_type: Optional[EntityType] = None
    entity_id: Optional[str] = None
    action: Optional[AuthorizedAction] = None
    used: bool = False
    created_at: datetime
    expires_at: datetime
    used_at: Optional[datetime] = None

    @property
    def target(self) -> TokenTarget:
        return TokenTarget(entity_type=self.entity_type, entity_id=self.entity_id, action=self.action)

    def is_expired(self, now: datetime) -> bool:
        # Expiry is inclusive: a token whose expires_at equals now is already invalid.
        return now >= self.expires_at


class TokenIssueRequest(BaseModel):
    recipient: str = Field(min_length=1)
    kind: TokenKind
    entity_type: Optional[EntityType] = None
    entity_id: Optional[str] = None
    action: Optional[AuthorizedAction] = None
    ttl_minutes: Optional[int] = Field(default=None, gt=0, le=24 * 60)
    notify: bool = False

    @model_validator(mode="after")
    def _check_target(self) -> "TokenIssueRequest":
        if self.kind == TokenKind.UPLOAD and (self.entity_type is None or not self.entity_id):
            raise ValueError("upload tokens require entity_type and entity_id")
        if self.kind == TokenKind.AUTHORIZE and self.action is None:
            raise ValueError("authorize tokens require an action")
        return self

    def target(self) -> TokenTarget:
        return TokenTarget(entity_type=self.entity_type, entity_id=self.entity_id, action=self.action)


class TokenIssueResponse(BaseModel):
    token: str
    url: str
    expires_at: datetime


class PendingAction(BaseModel):
    """Read-only view of a token returned by the confirmation (GET) endpoints."""

    recipient: str
    kind: TokenKind
    entity_type: Optional[EntityType] = None
    entity_id: Optional[str] = None
    action: Optional[AuthorizedAction] = None
    expires_at: datetime
