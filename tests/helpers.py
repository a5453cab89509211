"""Helpers shared by the test modules: key generation and API request shortcuts."""

from __future__ import annotations

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient


def generate_key_pair() -> tuple[str, str]:
    """Return (private_pem, public_pem) for a fresh 2048-bit RSA key."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public_pem = (
        key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode()
    )
    return private_pem, public_pem


ALICE = {"email": "alice@example.com", "password": "Secret@123", "name": "Alice"}


def register(client: TestClient, **overrides) -> dict:
    body = {**ALICE, **overrides}
    resp = client.post("/api/auth/register", json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]["user"]


def login(client: TestClient, email: str = ALICE["email"], password: str = ALICE["password"], headers=None) -> dict:
    resp = client.post("/api/auth/login", json={"email": email, "password": password}, headers=headers or {})
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


def bearer(token: str, **extra: str) -> dict:
    return {"Authorization": f"Bearer {token}", **extra}
