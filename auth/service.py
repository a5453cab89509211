"""
auth/service.py -- Credential lifecycle orchestration.

AuthService is constructed once per process (api.main.lifespan) and shared by
reference through app.state; it holds no per-request state. Route handlers
call it and let AuthError subclasses propagate to the exception handlers in
api.main.

Policies taken from Settings:
  logout_policy          "expired"   -- delete only the caller's expired refresh tokens
                         "presented" -- also delete the refresh token sent with logout
                         "all"       -- delete every refresh token of the caller
  rotate_refresh_tokens  delete the presented refresh token once a new pair is issued
  bind_refresh_to_origin a refresh token presented from another origin than the one it
                         was issued to is treated as stolen: revoked and rejected

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from typing import Optional, get_args

from sqlalchemy.exc import IntegrityError

from auth.errors import AuthenticationFailed, EmailAlreadyExists, InvalidRefreshToken, NotFound, ValidationFailed
from auth.models import Identity, Role
from auth.passwords import authenticate_user, hash_password, verify_password
from auth.signing import TokenSigner
from auth.store import UserStore
from auth.tokens import RefreshValidator, TokenIssuer, TokenPair
from core.config import LogoutPolicy, Settings

logger = logging.getLogger("storekeep.auth")

LOGIN_FAILED_MESSAGE = "User does not exist or the password is incorrect."

LOGOUT_POLICIES = get_args(LogoutPolicy)


class AuthService:
    def __init__(
        self,
        store: UserStore,
        issuer: TokenIssuer,
        validator: RefreshValidator,
        bcrypt_rounds: int = 12,
        logout_policy: LogoutPolicy = "expired",
        rotate_refresh_tokens: bool = False,
        bind_refresh_to_origin: bool = True,
    ) -> None:
        if logout_policy not in LOGOUT_POLICIES:
            raise ValueError(f"Unknown logout policy {logout_policy!r}")
        self.store = store
        self.issuer = issuer
        self.validator = validator
        self.bcrypt_rounds = bcrypt_rounds
        self.logout_policy = logout_policy
        self.rotate_refresh_tokens = rotate_refresh_tokens
        self.bind_refresh_to_origin = bind_refresh_to_origin

    @classmethod
    def from_settings(cls, settings: Settings, store: UserStore, signer: TokenSigner) -> "AuthService":
        issuer = TokenIssuer(
            signer,
            store,
            access_token_expire_seconds=settings.access_token_expire_seconds,
            refresh_token_expire_days=settings.refresh_token_expire_days,
            refresh_token_bytes=settings.refresh_token_bytes,
        )
        return cls(
            store,
            issuer,
            RefreshValidator(store),
            bcrypt_rounds=settings.bcrypt_rounds,
            logout_policy=settings.logout_policy,
            rotate_refresh_tokens=settings.rotate_refresh_tokens,
            bind_refresh_to_origin=settings.bind_refresh_to_origin,
        )

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(self, email: str, name: str, password: str, role: str = Role.user.value) -> Identity:
        """Create an identity. Raises EmailAlreadyExists if the email is taken."""
        if self.store.get_by_email(email) is not None:
            raise EmailAlreadyExists()
        user = Identity(
            email=email.lower(),
            name=name,
            role=role,
            hashed_password=hash_password(password, rounds=self.bcrypt_rounds),
        )
        try:
            user_id = self.store.create_user(user)
        except IntegrityError as exc:
            # A concurrent registration won the race after the pre-check.
            raise EmailAlreadyExists() from exc
        logger.info("Registered user %s (role=%s)", user_id, role)
        return self.store.get_by_id(user_id)

    def authenticate(self, email: str, password: str) -> Identity:
        """Return the identity for a valid email/password pair.

        Raises AuthenticationFailed with the same message whether the email is
        unknown or the password is wrong.
        """
        user = authenticate_user(self.store, email, password)
        if user is None:
            logger.info("Failed login attempt")
            raise AuthenticationFailed(LOGIN_FAILED_MESSAGE)
        return user

    def login(self, email: str, password: str, origin: str) -> tuple[Identity, TokenPair]:
        user = self.authenticate(email, password)
        tokens = self.issuer.issue_tokens(user, origin)
        logger.info("User %s logged in from %r", user.id, origin)
        return user, tokens

    # ------------------------------------------------------------------
    # Refresh and logout
    # ------------------------------------------------------------------

    def refresh(self, presented: str, origin: str) -> TokenPair:
        """Exchange a live refresh token for a new access/refresh pair.

        Unknown, expired and (with bind_refresh_to_origin) foreign-origin tokens
        all raise InvalidRefreshToken.
        """
        record = self.validator.lookup(presented)
        if record is None:
            raise InvalidRefreshToken()
        if self.bind_refresh_to_origin and record.created_by_ip != origin:
            self.store.delete_refresh_token(record.id)
            logger.warning(
                "Refresh token of user %s presented from %r, issued to %r; revoked",
                record.user_id,
                origin,
                record.created_by_ip,
            )
            raise InvalidRefreshToken()
        user = self.store.get_by_id(record.user_id)
        if user is None:
            raise InvalidRefreshToken()
        tokens = self.issuer.issue_tokens(user, origin)
        if self.rotate_refresh_tokens:
            self.store.delete_refresh_token(record.id)
        logger.info("Refreshed tokens for user %s (rotated=%s)", user.id, self.rotate_refresh_tokens)
        return tokens

    def logout(self, user: Identity, presented: Optional[str] = None) -> int:
        """Revoke refresh tokens of user according to logout_policy. Returns rows removed.

        Idempotent: nothing left to delete is not an error.
        """
        if self.logout_policy == "all":
            removed = self.store.delete_refresh_tokens_for_user(user.id)
        else:
            removed = 0
            if self.logout_policy == "presented" and presented:
                removed += int(self.store.delete_refresh_token_for_user(presented, user.id))
            removed += self.store.delete_expired_refresh_tokens(user.id)
        logger.info("User %s logged out (policy=%s, removed=%d)", user.id, self.logout_policy, removed)
        return removed

    # ------------------------------------------------------------------
    # Account maintenance
    # ------------------------------------------------------------------

    def change_password(self, user: Identity, current_password: str, new_password: str) -> int:
        """Re-hash the password and revoke every refresh token of user.

        Returns the number of refresh tokens revoked.
        """
        if not verify_password(current_password, user.hashed_password):
            raise ValidationFailed("Current password is incorrect")
        self.store.update_password(user.id, hash_password(new_password, rounds=self.bcrypt_rounds))
        revoked = self.store.delete_refresh_tokens_for_user(user.id)
        logger.info("User %s changed password; revoked %d refresh tokens", user.id, revoked)
        return revoked

    def revoke_sessions(self, user_id: str) -> int:
        """Delete every refresh token of user_id. Raises NotFound for an unknown identity."""
        if self.store.get_by_id(user_id) is None:
            raise NotFound("User not found")
        revoked = self.store.delete_refresh_tokens_for_user(user_id)
        logger.info("Revoked %d refresh tokens of user %s", revoked, user_id)
        return revoked

    def purge_expired(self) -> int:
        removed = self.store.purge_expired_refresh_tokens()
        if removed:
            logger.info("Purged %d expired refresh tokens", removed)
        return removed
