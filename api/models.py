"""
API request and response models for QueryBoard REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/, which own the
domain representation and its rules. Pydantic checks shape only (types,
required fields); domain rules such as username characters or password
strength are enforced by the entities and come back as Failure errors.

Separation of concerns: auth/ dataclasses = domain truth; api/ models = API contract.
"""

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Clients may send naive timestamps; the domain compares aware UTC datetimes.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/sessions/password."""

    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    remember_me: bool = False


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users. Admin only."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str
    password: str = Field(min_length=1)
    admin: bool = False


class UserUpdate(BaseModel):
    """Request body for PUT /api/v1/users/{username}.

    version must be the value last read from GET; a stale version answers 409.
    Omitted fields are left unchanged. clear_end_date reopens an end-dated
    account.
    """

    version: int
    admin: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    clear_end_date: bool = False

    @field_validator("start_date", "end_date")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class PasswordChange(BaseModel):
    """Request body for PUT /api/v1/users/{username}/password.

    old_password is required when changing your own password and ignored
    when an admin sets someone else's.
    """

    new_password: str = Field(min_length=1)
    old_password: Optional[str] = None


class PasswordTest(BaseModel):
    """Request body for POST /api/v1/password/test."""

    password: str


class SettingUpdate(BaseModel):
    """Request body for PUT /api/v1/settings."""

    id: str
    value: Union[bool, int]


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SessionResponse(BaseModel):
    """The caller's session. csrf_token must be echoed in X-CSRFToken on writes."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    csrf_token: str
    expires: datetime
    admin: bool


class UserResponse(BaseModel):
    """Response for user endpoints. Password material is never included."""

    model_config = ConfigDict(frozen=True)

    username: str
    admin: bool
    active: bool
    start_date: datetime
    end_date: Optional[datetime] = None
    version: int
    created_by: Optional[str] = None
    created_date: Optional[datetime] = None
    updated_by: Optional[str] = None
    updated_date: Optional[datetime] = None


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
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
    schema_version: Optional[int] = None
