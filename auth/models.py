"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and services do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    user = "user"
    admin = "admin"


@dataclass
class Identity:
    """A registered user of the store application.

    id is a uuid4 hex string assigned by the store on insert; it is the JWT
    subject and never changes. email is stored lower-cased and is unique.

    hashed_password is a bcrypt hash. It never leaves the auth package --
    API response models are built field by field and omit it.
    """

    email: str
    name: str
    hashed_password: str
    role: str = Role.user.value
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.admin.value


@dataclass
class RefreshToken:
    """A persisted, opaque, long-lived credential bound to a network origin.

    token is a random hex string and is the lookup key. created_by_ip is the
    client origin at issue time; every request presenting an access token for
    this identity must come from the same origin (see auth.dependencies).

    expires_at / created_at are UTC ISO-8601 strings with fixed microsecond
    precision so the store can compare them lexically.
    """

    user_id: str
    token: str
    expires_at: str
    created_by_ip: str
    id: int | None = None
    created_at: str | None = None
