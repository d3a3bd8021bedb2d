"""
API request and response models for PageGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
activity/models.py, which own the internal domain representation. Route
handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from activity.models import ActivityEntry

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SessionLoginRequest(BaseModel):
    """Request body for POST /sessionLogin.

    idToken is the identity assertion from the client-side provider SDK. It
    defaults to "" so a missing token is an authentication failure (401), not
    a validation error (422).
    """

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    id_token: str = Field(default="", alias="idToken", max_length=8192)


class LogActivityRequest(BaseModel):
    """Request body for POST /log-activity. A missing action is a 400, checked in the route."""

    model_config = ConfigDict(str_strip_whitespace=True)

    action: Optional[str] = Field(default=None, max_length=200)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class StatusResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str


class ActivityEntryResponse(BaseModel):
    """One activity log entry as returned by GET /activity-history."""

    model_config = ConfigDict(frozen=True)

    subject: str
    action: str
    timestamp: str

    @classmethod
    def from_entry(cls, entry: ActivityEntry) -> "ActivityEntryResponse":
        return cls(subject=entry.subject, action=entry.action, timestamp=entry.recorded_at)


class ActivityHistoryResponse(BaseModel):
    """Response for GET /activity-history. entries are newest first."""

    model_config = ConfigDict(frozen=True)

    subject: str
    entries: list[ActivityEntryResponse]


class ProtectedDataResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    secret_data: str = Field(alias="secretData")
    subject: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health.

    ready mirrors the provider lifecycle: False means login and protected
    routes currently answer 503. init_last_error is an exception class name
    only, never its message.
    """

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    ready: bool
    identity_provider: str
    init_attempts: int = 0
    init_last_error: Optional[str] = None
    pending_activity_writes: int = 0
    components: dict[str, str]
