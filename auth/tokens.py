"""
auth/tokens.py -- Access/refresh token issuance and refresh-token validation.

Token model:
  Access token:  JWT signed by TokenSigner (RS256 by default), claims
                 {sub, id} = identity id, default lifetime 1 hour. Never stored;
                 it becomes invalid purely by signature or expiry.
  Refresh token: secrets.token_hex(40) -- 320 bits of entropy, opaque, stored
                 with its owner, expiry (now + 7 days) and the client origin
                 it was issued to.

Rotation:
  TokenIssuer never deduplicates -- each call adds exactly one refresh token
  row, so concurrent logins from several devices keep independent sessions.
  Whether the presented refresh token is removed on refresh is a policy
  decision made by AuthService (Settings.rotate_refresh_tokens).

Expiry is enforced lazily: RefreshValidator purges an expired token (and the
owner's other expired tokens) at the moment it is presented.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from auth.models import Identity, RefreshToken
from auth.signing import TokenSigner
from auth.store import UserStore, format_ts, parse_ts, utcnow

logger = logging.getLogger("storekeep.auth")

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


class TokenIssuer:
    """Issues an access token and a persisted, origin-bound refresh token."""

    def __init__(
        self,
        signer: TokenSigner,
        store: UserStore,
        access_token_expire_seconds: int = 3600,
        refresh_token_expire_days: int = 7,
        refresh_token_bytes: int = 40,
        clock: Clock = utcnow,
    ) -> None:
        self.signer = signer
        self.store = store
        self.access_token_expire_seconds = access_token_expire_seconds
        self.refresh_token_expire_days = refresh_token_expire_days
        self.refresh_token_bytes = refresh_token_bytes
        self._clock = clock

    def create_access_token(self, identity: Identity) -> str:
        return self.signer.sign(
            {"sub": identity.id, "id": identity.id},
            expires_in=self.access_token_expire_seconds,
        )

    def create_refresh_token(self, identity: Identity, origin: str) -> RefreshToken:
        """Generate and persist a new refresh token bound to origin."""
        now = self._clock()
        record = RefreshToken(
            user_id=identity.id,
            token=secrets.token_hex(self.refresh_token_bytes),
            expires_at=format_ts(now + timedelta(days=self.refresh_token_expire_days)),
            created_by_ip=origin,
            created_at=format_ts(now),
        )
        record.id = self.store.create_refresh_token(record)
        return record

    def issue_tokens(self, identity: Identity, origin: str) -> TokenPair:
        """Return a fresh access/refresh pair. Writes exactly one refresh token row."""
        access_token = self.create_access_token(identity)
        refresh = self.create_refresh_token(identity, origin)
        logger.debug("Issued tokens for user %s (origin=%r, refresh id=%s)", identity.id, origin, refresh.id)
        return TokenPair(access_token=access_token, refresh_token=refresh.token)


class RefreshValidator:
    """Resolves a presented refresh token to its owner, purging expired tokens."""

    def __init__(self, store: UserStore, clock: Clock = utcnow) -> None:
        self.store = store
        self._clock = clock

    def lookup(self, presented: str) -> RefreshToken | None:
        """Return the live RefreshToken record for presented, or None.

        An expired record (expires_at <= now) is deleted, together with every
        other expired token of the same owner, and None is returned. Callers
        must answer the unknown and expired cases with the same message.
        """
        record = self.store.get_refresh_token(presented)
        if record is None:
            return None
        now = self._clock()
        if parse_ts(record.expires_at) <= now:
            self.store.delete_refresh_token(record.id)
            purged = self.store.delete_expired_refresh_tokens(record.user_id, now)
            logger.info("Expired refresh token presented for user %s; purged %d more", record.user_id, purged)
            return None
        return record

    def validate(self, presented: str) -> Identity | None:
        """Return the identity owning presented, or None if it is unknown or expired."""
        record = self.lookup(presented)
        if record is None:
            return None
        return self.store.get_by_id(record.user_id)
