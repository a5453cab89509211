"""
Unit tests for auth/dependencies.py -- Authorizer state machine and client_origin.

The Authorizer is exercised directly (no HTTP) so each terminal state is
reached with exactly the input that triggers it.
"""

from __future__ import annotations

import pytest
from jose import jwt
from starlette.requests import Request

from auth.dependencies import Authorizer, client_origin
from auth.errors import AuthenticationFailed, Forbidden
from auth.models import Identity
from auth.tokens import TokenIssuer


def _request(client=("203.0.113.7", 52000), headers: dict | None = None) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


@pytest.fixture
def user(store) -> Identity:
    user_id = store.create_user(Identity(email="alice@example.com", name="Alice", hashed_password="$2b$04$hash"))
    return store.get_by_id(user_id)


@pytest.fixture
def authorizer(signer, store) -> Authorizer:
    return Authorizer(signer, store)


@pytest.fixture
def issuer(signer, store) -> TokenIssuer:
    return TokenIssuer(signer, store)


# ---------------------------------------------------------------------------
# client_origin
# ---------------------------------------------------------------------------


class TestClientOrigin:
    def test_peer_address_used_by_default(self):
        req = _request(headers={"X-Forwarded-For": "198.51.100.1"})
        assert client_origin(req) == "203.0.113.7"

    def test_forwarded_for_preferred_when_trusted(self):
        req = _request(headers={"X-Forwarded-For": "198.51.100.1, 10.0.0.2"})
        assert client_origin(req, trust_forwarded_for=True) == "198.51.100.1"

    def test_trusted_but_absent_header_falls_back_to_peer(self):
        assert client_origin(_request(), trust_forwarded_for=True) == "203.0.113.7"

    def test_unknown_peer_falls_back_to_forwarded_for(self):
        req = _request(client=None, headers={"X-Forwarded-For": " 198.51.100.1 "})
        assert client_origin(req) == "198.51.100.1"

    def test_nothing_known_is_empty_string(self):
        assert client_origin(_request(client=None)) == ""


# ---------------------------------------------------------------------------
# Authorizer
# ---------------------------------------------------------------------------


class TestAuthorizer:
    def test_missing_header_is_401(self, authorizer):
        with pytest.raises(AuthenticationFailed) as exc_info:
            authorizer.authorize(None, "10.0.0.1")
        assert exc_info.value.status_code == 401

    @pytest.mark.parametrize("header", ["", "Bearer", "Bearer ", "Basic abc", "Token abc", "bearerabc"])
    def test_malformed_header_is_403(self, authorizer, header):
        with pytest.raises(Forbidden) as exc_info:
            authorizer.authorize(header, "10.0.0.1")
        assert exc_info.value.status_code == 403

    def test_scheme_is_case_insensitive(self, authorizer, issuer, user):
        pair = issuer.issue_tokens(user, "10.0.0.1")
        assert authorizer.authorize(f"bearer {pair.access_token}", "10.0.0.1").id == user.id

    def test_valid_token_from_bound_origin(self, authorizer, issuer, user):
        pair = issuer.issue_tokens(user, "10.0.0.1")
        assert authorizer.authorize(f"Bearer {pair.access_token}", "10.0.0.1").id == user.id

    def test_invalid_signature_is_403(self, authorizer):
        with pytest.raises(Forbidden):
            authorizer.authorize("Bearer not.a.jwt", "10.0.0.1")

    def test_expired_token_is_403_with_challenge(self, authorizer, signer, user):
        token = signer.sign({"sub": user.id, "id": user.id}, expires_in=-5)
        with pytest.raises(Forbidden) as exc_info:
            authorizer.authorize(f"Bearer {token}", "10.0.0.1")
        assert "expired" in exc_info.value.headers["WWW-Authenticate"]

    def test_token_without_subject_is_403(self, authorizer, signer):
        token = signer.sign({"id": "nobody"}, expires_in=60)
        with pytest.raises(Forbidden):
            authorizer.authorize(f"Bearer {token}", "10.0.0.1")

    def test_deleted_or_unknown_identity_is_403(self, authorizer, signer):
        token = signer.sign({"sub": "0" * 32, "id": "0" * 32}, expires_in=60)
        with pytest.raises(Forbidden):
            authorizer.authorize(f"Bearer {token}", "10.0.0.1")

    def test_origin_mismatch_is_403(self, authorizer, issuer, user, caplog):
        pair = issuer.issue_tokens(user, "10.0.0.1")
        with caplog.at_level("WARNING", logger="storekeep.auth"):
            with pytest.raises(Forbidden):
                authorizer.authorize(f"Bearer {pair.access_token}", "10.9.9.9")
        assert "Origin mismatch" in caplog.text

    def test_latest_session_decides_origin(self, authorizer, issuer, user):
        first = issuer.issue_tokens(user, "10.0.0.1")
        issuer.issue_tokens(user, "10.0.0.2")
        # An older access token is accepted only from the newest session's origin.
        assert authorizer.authorize(f"Bearer {first.access_token}", "10.0.0.2").id == user.id
        with pytest.raises(Forbidden):
            authorizer.authorize(f"Bearer {first.access_token}", "10.0.0.1")

    def test_no_refresh_token_skips_origin_check(self, authorizer, issuer, user, store):
        pair = issuer.issue_tokens(user, "10.0.0.1")
        store.delete_refresh_tokens_for_user(user.id)
        assert authorizer.authorize(f"Bearer {pair.access_token}", "10.9.9.9").id == user.id

    def test_disallowed_algorithm_is_403(self, signer, store, key_pair, user):
        private_pem, _ = key_pair
        token = jwt.encode({"sub": user.id, "exp": 9999999999}, private_pem, algorithm="RS512")
        with pytest.raises(Forbidden):
            Authorizer(signer, store, algorithms=["RS256"]).authorize(f"Bearer {token}", "")
