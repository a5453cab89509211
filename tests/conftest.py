"""
tests/conftest.py -- Shared test fixtures for storekeep.

This module provides:
  - key_pair / signer: one throw-away RSA key pair per test session
  - store: an isolated in-memory UserStore per test
  - make_client: factory yielding a TestClient wired to isolated services,
    with per-test logout / rotation policy
  - api: make_client() with the default (baseline) policies

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares one
in-memory instance across all connections in the same process.

The login rate limit is raised before any app import: get_settings() is cached
on first call and the integration tests log in far more than 10 times a minute.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import ExitStack, asynccontextmanager, contextmanager
from dataclasses import dataclass

# CRITICAL: set before any api/core import so get_settings() sees it.
os.environ.setdefault("LOGIN_RATE_LIMIT", "10000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.dependencies import Authorizer
from auth.service import AuthService
from auth.signing import TokenSigner
from auth.store import UserStore
from auth.tokens import RefreshValidator, TokenIssuer
from helpers import generate_key_pair

# bcrypt's minimum cost; production settings refuse anything below 10.
TEST_BCRYPT_ROUNDS = 4

# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def key_pair() -> tuple[str, str]:
    return generate_key_pair()


@pytest.fixture(scope="session")
def signer(key_pair: tuple[str, str]) -> TokenSigner:
    private_pem, public_pem = key_pair
    return TokenSigner(private_pem, public_pem)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_store() -> UserStore:
    """Create an isolated named shared-memory SQLite store."""
    return UserStore(f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = make_store()
    yield s
    s.close()


# ---------------------------------------------------------------------------
# App wiring
# ---------------------------------------------------------------------------


@dataclass
class RunningApp:
    client: TestClient
    store: UserStore
    service: AuthService
    signer: TokenSigner


def _patch_lifespan(store: UserStore, signer: TokenSigner, service: AuthService, authorizer: Authorizer):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-built test services into app.state so TestClient routes see
    isolated stores instead of reading key files and the production database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = store
        app.state.signer = signer
        app.state.auth_service = service
        app.state.authorizer = authorizer
        yield

    return test_lifespan


@contextmanager
def running_app(
    signer: TokenSigner,
    logout_policy: str = "expired",
    rotate_refresh_tokens: bool = False,
    bind_refresh_to_origin: bool = True,
) -> Generator[RunningApp, None, None]:
    store = make_store()
    issuer = TokenIssuer(signer, store)
    service = AuthService(
        store,
        issuer,
        RefreshValidator(store),
        bcrypt_rounds=TEST_BCRYPT_ROUNDS,
        logout_policy=logout_policy,
        rotate_refresh_tokens=rotate_refresh_tokens,
        bind_refresh_to_origin=bind_refresh_to_origin,
    )
    # Trusting X-Forwarded-For lets tests simulate requests from other networks.
    authorizer = Authorizer(signer, store, trust_forwarded_for=True)
    app.router.lifespan_context = _patch_lifespan(store, signer, service, authorizer)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield RunningApp(client=client, store=store, service=service, signer=signer)
    store.close()


@pytest.fixture
def make_client(signer: TokenSigner):
    """Factory fixture: make_client(logout_policy="all", rotate_refresh_tokens=True, bind_refresh_to_origin=False)."""
    with ExitStack() as stack:

        def _make(**policy) -> RunningApp:
            return stack.enter_context(running_app(signer, **policy))

        yield _make


@pytest.fixture
def api(make_client) -> RunningApp:
    return make_client()

