"""
auth/dependencies.py -- Request authorization for protected routes.

Authorizer runs the per-request state machine; get_current_user() and
require_admin() expose it as FastAPI Depends() helpers.

State machine (terminal states: authorized / rejected):
  1. Authorization header missing                          -> 401
  2. not "Bearer <token>", bad signature, expired, no sub  -> 403
  3. subject does not resolve to an identity               -> 403
  4. identity's latest refresh token was issued to another
     origin than the one making this request               -> 403  (hijack check)
  5. otherwise authorized: identity attached to request.state.user

Every step re-reads the store; nothing is cached between requests, so a
revoked refresh token or deleted identity takes effect immediately.

Layer rule: this module may import from fastapi because it is part of the
FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request

from auth.errors import AuthenticationFailed, Forbidden
from auth.models import Identity
from auth.signing import TokenSigner
from auth.store import UserStore

logger = logging.getLogger("storekeep.auth")

_EXPIRED_CHALLENGE = 'Bearer error="invalid_token", error_description="The access token expired"'


def _first_forwarded_hop(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    return forwarded.split(",")[0].strip()


def client_origin(request: Request, trust_forwarded_for: bool = False) -> str:
    """Return the network origin of the caller.

    Resolution order:
      1. X-Forwarded-For first hop, when the deployment trusts its proxy
      2. the ASGI client address
      3. X-Forwarded-For first hop, when the server does not know the peer
      4. "" -- recorded as-is on the refresh token
    """
    if trust_forwarded_for:
        forwarded = _first_forwarded_hop(request)
        if forwarded:
            return forwarded
    if request.client and request.client.host:
        return request.client.host
    return _first_forwarded_hop(request)


class Authorizer:
    """Verifies bearer access tokens and enforces refresh-token origin binding."""

    def __init__(
        self,
        signer: TokenSigner,
        store: UserStore,
        algorithms: Optional[list[str]] = None,
        trust_forwarded_for: bool = False,
    ) -> None:
        self.signer = signer
        self.store = store
        self.algorithms = algorithms or [signer.algorithm]
        self.trust_forwarded_for = trust_forwarded_for

    def authorize(self, authorization: Optional[str], origin: str) -> Identity:
        """Return the identity for a valid request or raise AuthenticationFailed / Forbidden."""
        if authorization is None:
            raise AuthenticationFailed()

        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise Forbidden()

        result = self.signer.verify(token.strip(), algorithms=self.algorithms)
        if result.expired:
            raise Forbidden(headers={"WWW-Authenticate": _EXPIRED_CHALLENGE})
        subject = result.claims.get("sub") if result.valid else None
        if not subject:
            raise Forbidden()

        user = self.store.get_by_id(subject)
        if user is None:
            raise Forbidden()

        binding = self.store.get_latest_refresh_token_for_user(user.id)
        if binding is not None and binding.created_by_ip != origin:
            logger.warning(
                "Origin mismatch for user %s: token bound to %r, request from %r",
                user.id,
                binding.created_by_ip,
                origin,
            )
            raise Forbidden()

        return user


def get_current_user(request: Request) -> Identity:
    """Require a valid bearer token. Raises 401/403 via AuthError subclasses.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: Identity = Depends(get_current_user)): ...
    """
    authorizer: Authorizer = request.app.state.authorizer
    origin = client_origin(request, authorizer.trust_forwarded_for)
    user = authorizer.authorize(request.headers.get("Authorization"), origin)
    request.state.user = user
    return user


def require_admin(request: Request) -> Identity:
    """Require the admin role. 401/403 if unauthenticated, 403 if not admin."""
    user = get_current_user(request)
    if not user.is_admin:
        raise Forbidden("Admin access required")
    return user
