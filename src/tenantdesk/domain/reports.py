from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from .portfolio import PortfolioSnapshot


class JobState(str, Enum):
    PENDING = "pending"
    QUERYING = "querying"
    RENDERING = "rendering"
    DELIVERING = "delivering"
    DONE = "done"
    FAILED = "failed"


class OutputFormat(str, Enum):
    PDF = "pdf"
    TABLE_TEXT = "table_text"


class ReportJob(BaseModel):
    """A queued AI query; lives only in the work queue until a worker claims it."""

    job_id: str = Field(default_factory=lambda: uuid4().hex)
    recipient: str
    query: str
    context: Optional[str] = None
    output: OutputFormat = OutputFormat.PDF
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str | bytes) -> "ReportJob":
        return cls.model_validate_json(raw)


class ArtifactKind(str, Enum):
    TEXT = "text"
    DOCUMENT = "document"


class RenderedArtifact(BaseModel):
    kind: ArtifactKind
    text: Optional[str] = None
    content: Optional[bytes] = None
    mime_type: Optional[str] = None
    filename: Optional[str] = None

    @classmethod
    def plain(cls, text: str) -> "RenderedArtifact":
        return cls(kind=ArtifactKind.TEXT, text=text)

    @classmethod
    def document(cls, content: bytes, mime_type: str, filename: str) -> "RenderedArtifact":
        return cls(kind=ArtifactKind.DOCUMENT, content=content, mime_type=mime_type, filename=filename)

    @property
    def is_document(self) -> bool:
        return self.kind == ArtifactKind.DOCUMENT


class JobOutcome(BaseModel):
    job_id: str
    recipient: str
    state: JobState
    artifact_kind: Optional[ArtifactKind] = None
    delivered: bool = False
    error: Optional[str] = None
    detail: Dict[str, Any] = Field(default_factory=dict)


class AssistantQueryRequest(BaseModel):
    recipient: str = Field(min_length=1)
    query: str
    context: Optional[str] = None
    portfolio: Optional[PortfolioSnapshot] = None
    output: OutputFormat = OutputFormat.PDF


class AssistantReply(BaseModel):
    reply: str


class ReportAccepted(BaseModel):
    job_id: str
    status: str = "accepted"

