from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ...security.auth import Principal
from ...security.rbac import Permission, require_permission
from ...services.telemetry_sink import TelemetryEvent, list_recent_events

router = APIRouter(prefix="/telemetry", tags=["telemetry"])


class TelemetryRecentResponse(BaseModel):
    events: List[TelemetryEvent]


@router.get("/events/recent", response_model=TelemetryRecentResponse)
async def recent_events(
    limit: int = 25,
    name: Optional[str] = None,
    _: Principal = Depends(require_permission(Permission.TELEMETRY_READ)),
) -> TelemetryRecentResponse:
    return TelemetryRecentResponse(events=list_recent_events(limit, name=name))
