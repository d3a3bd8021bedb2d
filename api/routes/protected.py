"""
api/routes/protected.py -- API-class protected endpoints.

Routes:
  GET  /activity-history  -- newest-first activity entries for the caller
  POST /log-activity      -- append one entry for the caller
  GET  /protected-data    -- example machine-caller resource

Auth policy: every route here depends on require_api_session. A missing or
invalid session is a structured 401 JSON, never a redirect -- these callers
are scripts and fetch() calls, not browser navigations.

The subject is always taken from the verified Principal. A caller can never
read or write another subject's history.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from activity.log import ActivityLog
from api.models import (
    ActivityEntryResponse,
    ActivityHistoryResponse,
    LogActivityRequest,
    ProtectedDataResponse,
    StatusResponse,
)
from auth.dependencies import require_api_session
from auth.models import Principal

router = APIRouter()


@router.get("/activity-history", response_model=ActivityHistoryResponse)
async def activity_history(
    request: Request,
    limit: int = Query(default=20, ge=1, le=100),
    principal: Principal = Depends(require_api_session),
) -> ActivityHistoryResponse:
    """Return the caller's most recent activity entries, newest first.

    A store failure propagates to the catch-all handler (500).
    """
    activity_log: ActivityLog = request.app.state.activity_log
    entries = await activity_log.history(principal.subject, limit)
    return ActivityHistoryResponse(
        subject=principal.subject,
        entries=[ActivityEntryResponse.from_entry(e) for e in entries],
    )


@router.post("/log-activity", response_model=StatusResponse)
async def log_activity(
    request: Request,
    body: Optional[LogActivityRequest] = None,
    principal: Principal = Depends(require_api_session),
) -> StatusResponse:
    """Record one action for the caller. The timestamp is assigned by the log."""
    action = body.action if body is not None else None
    if not action:
        raise HTTPException(
            status_code=400,
            detail={"code": "missing_action", "message": "An action is required."},
        )
    activity_log: ActivityLog = request.app.state.activity_log
    entry = await activity_log.record(principal.subject, action)
    if entry is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "activity_log_unavailable", "message": "Activity could not be recorded."},
        )
    return StatusResponse(status="logged")


@router.get("/protected-data", response_model=ProtectedDataResponse)
async def protected_data(principal: Principal = Depends(require_api_session)) -> ProtectedDataResponse:
    return ProtectedDataResponse(secret_data="This is protected content", subject=principal.subject)
