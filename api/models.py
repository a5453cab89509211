"""
API request and response models for storekeep auth endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two,
field by field, so a password hash can never leak into a response.

Envelope (uniform across every endpoint):
  success -> {"status": true,  "message": ..., "data": ...}
  failure -> {"status": false, "error": {"message": ...}}

JSON keys are camelCase (accessToken, refreshToken, createdAt); Python field
names stay snake_case via alias_generator.
"""

import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from auth.models import Identity

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
_SPECIAL_CHAR = re.compile(r"[\W_]")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(_CamelModel):
    """Request body for POST /api/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=255)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class RegisterRequest(_CamelModel):
    """Request body for POST /api/auth/register.

    Password rules: 8-255 characters with at least one non-alphanumeric
    character. password_confirm is optional; when sent it must match.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    name: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=8, max_length=255)
    password_confirm: Optional[str] = Field(default=None, max_length=255)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("password")
    @classmethod
    def require_special_char(cls, v: str) -> str:
        if not _SPECIAL_CHAR.search(v):
            raise ValueError("Password must contain at least one special character")
        return v

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.password_confirm is not None and self.password_confirm != self.password:
            raise ValueError("The passwords do not match")
        return self


class RefreshRequest(_CamelModel):
    """Request body for POST /api/auth/refresh-token. A missing token is a 401, not a 400."""

    token: Optional[str] = Field(default=None, max_length=255)


class LogoutRequest(_CamelModel):
    """Optional body for POST /api/auth/logout; token is used by the "presented" policy."""

    token: Optional[str] = Field(default=None, max_length=255)


class ChangePasswordRequest(_CamelModel):
    """Request body for POST /api/auth/change-password.

    Passwords are trimmed like at register and login, so the stored hash
    always matches what the login form will send.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    current_password: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=8, max_length=255)
    password_confirm: str = Field(max_length=255)

    @field_validator("password")
    @classmethod
    def require_special_char(cls, v: str) -> str:
        if not _SPECIAL_CHAR.search(v):
            raise ValueError("Password must contain at least one special character")
        return v

    @model_validator(mode="after")
    def passwords_match(self) -> "ChangePasswordRequest":
        if self.password_confirm != self.password:
            raise ValueError("The passwords do not match")
        return self


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(_CamelModel):
    """Public view of an Identity. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str
    role: str
    created_at: Optional[str] = None

    @classmethod
    def from_identity(cls, user: Identity) -> "UserOut":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            created_at=user.created_at,
        )


class TokenPairOut(_CamelModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str


class LoginData(TokenPairOut):
    user: UserOut


class SuccessResponse(BaseModel):
    """Top-level success envelope."""

    status: bool = True
    message: str
    data: Any = None


class FieldError(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    message: str


class ErrorDetail(BaseModel):
    """Client-safe error payload. fields is only present for request validation failures."""

    model_config = ConfigDict(frozen=True)

    message: str
    fields: Optional[list[FieldError]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    status: bool = False
    error: ErrorDetail

    def to_content(self) -> dict:
        return self.model_dump(exclude_none=True)


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
