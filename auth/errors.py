"""
auth/errors.py -- Exception taxonomy for the credential lifecycle.

Every error carries the HTTP status_code it should surface as and a client-safe
message. api.main registers one exception handler for AuthError that turns
any subclass into the failure envelope {status: false, error: {message}}.

Messages are deliberately generic for authentication failures: callers must
not be able to tell which check rejected them.
"""

from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    """Base class for errors mapped to HTTP responses."""

    status_code: int = 500
    message: str = "Something went wrong"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        if message is not None:
            self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.headers = headers or {}
        super().__init__(self.message)


class ValidationFailed(AuthError):
    """Malformed or missing input (400)."""

    status_code = 400
    message = "Validation failed"


class EmailAlreadyExists(ValidationFailed):
    message = "Email already exists"


class AuthenticationFailed(AuthError):
    """Bad credentials or a missing credential (401)."""

    status_code = 401
    message = "Un-authorized"


class InvalidRefreshToken(AuthenticationFailed):
    """Unknown, expired or purged refresh token. One message for all three."""

    message = "Invalid refresh token"


class Forbidden(AuthError):
    """A credential was presented but is not acceptable (403)."""

    status_code = 403
    message = "Un-authorized"


class NotFound(AuthError):
    status_code = 404
    message = "Not Found"


class SigningKeyError(RuntimeError):
    """The signing key pair could not be loaded. Fatal at startup."""


__all__ = [
    "AuthError",
    "ValidationFailed",
    "EmailAlreadyExists",
    "AuthenticationFailed",
    "InvalidRefreshToken",
    "Forbidden",
    "NotFound",
    "SigningKeyError",
]
