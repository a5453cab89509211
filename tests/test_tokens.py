"""Tests for auth/tokens.py -- TokenIssuer and RefreshValidator."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

from auth.models import Identity
from auth.store import format_ts, parse_ts
from auth.tokens import RefreshValidator, TokenIssuer

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _identity(store, email: str = "alice@example.com") -> Identity:
    user_id = store.create_user(Identity(email=email, name="Alice", hashed_password="$2b$04$hash"))
    return store.get_by_id(user_id)


class TestTokenIssuer:
    def test_access_token_claims_carry_identity_id(self, signer, store):
        user = _identity(store)
        issuer = TokenIssuer(signer, store)
        claims = signer.verify(issuer.create_access_token(user)).claims
        assert claims["sub"] == user.id
        assert claims["id"] == user.id
        assert claims["exp"] - claims["iat"] == 3600

    def test_access_token_lifetime_configurable(self, signer, store):
        user = _identity(store)
        issuer = TokenIssuer(signer, store, access_token_expire_seconds=120)
        claims = signer.verify(issuer.create_access_token(user)).claims
        assert claims["exp"] - claims["iat"] == 120

    def test_refresh_token_is_80_hex_chars(self, signer, store):
        issuer = TokenIssuer(signer, store)
        pair = issuer.issue_tokens(_identity(store), "10.0.0.1")
        assert re.fullmatch(r"[0-9a-f]{80}", pair.refresh_token)

    def test_refresh_token_persisted_with_origin_and_expiry(self, signer, store):
        user = _identity(store)
        issuer = TokenIssuer(signer, store, clock=FrozenClock(NOW))
        pair = issuer.issue_tokens(user, "10.0.0.1")

        record = store.get_refresh_token(pair.refresh_token)
        assert record.user_id == user.id
        assert record.created_by_ip == "10.0.0.1"
        assert parse_ts(record.expires_at) == NOW + timedelta(days=7)
        assert record.created_at == format_ts(NOW)

    def test_each_issue_adds_exactly_one_row(self, signer, store):
        user = _identity(store)
        issuer = TokenIssuer(signer, store)
        first = issuer.issue_tokens(user, "10.0.0.1")
        second = issuer.issue_tokens(user, "10.0.0.2")
        assert first.refresh_token != second.refresh_token
        assert len(store.list_refresh_tokens_for_user(user.id)) == 2

    def test_empty_origin_recorded_as_is(self, signer, store):
        user = _identity(store)
        pair = TokenIssuer(signer, store).issue_tokens(user, "")
        assert store.get_refresh_token(pair.refresh_token).created_by_ip == ""

    def test_create_refresh_token_sets_record_id(self, signer, store):
        user = _identity(store)
        record = TokenIssuer(signer, store).create_refresh_token(user, "10.0.0.1")
        assert record.id is not None
        assert store.get_refresh_token(record.token).id == record.id


class TestRefreshValidator:
    def _issue(self, signer, store, clock, origin="10.0.0.1"):
        user = _identity(store)
        pair = TokenIssuer(signer, store, clock=clock).issue_tokens(user, origin)
        return user, pair.refresh_token

    def test_live_token_resolves_owner(self, signer, store):
        clock = FrozenClock(NOW)
        user, token = self._issue(signer, store, clock)
        assert RefreshValidator(store, clock=clock).validate(token).id == user.id

    def test_unknown_token_is_none(self, store):
        assert RefreshValidator(store).validate("f" * 80) is None

    def test_token_one_microsecond_before_expiry_is_live(self, signer, store):
        clock = FrozenClock(NOW)
        _, token = self._issue(signer, store, clock)
        clock.advance(days=7, microseconds=-1)
        assert RefreshValidator(store, clock=clock).validate(token) is not None

    def test_token_expiring_exactly_now_is_invalid_and_purged(self, signer, store):
        clock = FrozenClock(NOW)
        _, token = self._issue(signer, store, clock)
        clock.advance(days=7)
        assert RefreshValidator(store, clock=clock).validate(token) is None
        assert store.get_refresh_token(token) is None

    def test_expired_presentation_purges_owners_other_expired_tokens(self, signer, store):
        clock = FrozenClock(NOW)
        user = _identity(store)
        issuer = TokenIssuer(signer, store, clock=clock)
        old_a = issuer.issue_tokens(user, "10.0.0.1").refresh_token
        old_b = issuer.issue_tokens(user, "10.0.0.1").refresh_token
        clock.advance(days=3)
        live = issuer.issue_tokens(user, "10.0.0.1").refresh_token
        clock.advance(days=5)

        assert RefreshValidator(store, clock=clock).validate(old_a) is None
        remaining = [t.token for t in store.list_refresh_tokens_for_user(user.id)]
        assert remaining == [live]
        assert old_b not in remaining

    def test_expired_presentation_leaves_other_users_alone(self, signer, store):
        clock = FrozenClock(NOW)
        issuer = TokenIssuer(signer, store, clock=clock)
        alice = _identity(store)
        bob = _identity(store, email="bob@example.com")
        alice_token = issuer.issue_tokens(alice, "10.0.0.1").refresh_token
        bob_token = issuer.issue_tokens(bob, "10.0.0.2").refresh_token
        clock.advance(days=8)

        RefreshValidator(store, clock=clock).validate(alice_token)
        assert store.get_refresh_token(bob_token) is not None

    def test_lookup_does_not_delete_live_token(self, signer, store):
        clock = FrozenClock(NOW)
        _, token = self._issue(signer, store, clock)
        validator = RefreshValidator(store, clock=clock)
        assert validator.lookup(token) is not None
        assert validator.lookup(token) is not None
