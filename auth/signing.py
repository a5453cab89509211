"""
auth/signing.py -- Asymmetric JWT signing and verification.

Security design decisions:
  Keys: an RSA (or EC) key pair read from PEM files once, at startup. The
       private key signs; only the public key is used to verify. A key pair
       that cannot be read, parsed, or does not match is a SigningKeyError and
       the process refuses to start -- sign()/verify() never fail because of
       keys at request time.

  Algorithm allow-list: verify() passes an explicit algorithms list to
       python-jose. A token whose header names any other algorithm (HS256
       signed with a guessed secret, "none", or another RSA variant) is
       rejected before the signature is even checked. This blocks
       algorithm-downgrade / key-confusion attacks.

  Expiry: verify() reports an expired token separately from an otherwise
       invalid one so the caller can tell the client to refresh instead of
       forcing a full login.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from jose import ExpiredSignatureError, JOSEError, jwt

from auth.errors import SigningKeyError

logger = logging.getLogger("storekeep.auth.signing")

DEFAULT_ALGORITHM = "RS256"


@dataclass(frozen=True)
class VerifyResult:
    """Outcome of TokenSigner.verify().

    valid and expired are never both True. claims is None unless valid.
    """

    valid: bool
    expired: bool
    claims: Optional[dict[str, Any]] = None


class TokenSigner:
    """Signs and verifies access-token claims with an asymmetric key pair.

    Stateless after construction; one instance is shared by every request.

    Usage:
        signer = TokenSigner.from_files(Path("private.key"), Path("public.key"))
        token = signer.sign({"sub": user_id, "id": user_id}, expires_in=3600)
        result = signer.verify(token)
    """

    def __init__(self, private_key: str, public_key: str, algorithm: str = DEFAULT_ALGORITHM) -> None:
        self._private_key = private_key
        self._public_key = public_key
        self.algorithm = algorithm
        self._check_key_pair()

    @classmethod
    def from_files(
        cls, private_key_path: Path, public_key_path: Path, algorithm: str = DEFAULT_ALGORITHM
    ) -> "TokenSigner":
        """Load PEM keys from disk. Raises SigningKeyError if either file is unreadable."""
        try:
            private_key = Path(private_key_path).read_text(encoding="utf-8")
            public_key = Path(public_key_path).read_text(encoding="utf-8")
        except OSError as exc:
            raise SigningKeyError(f"Cannot read signing keys: {exc}") from exc
        signer = cls(private_key, public_key, algorithm=algorithm)
        logger.info("Signing keys loaded from %s / %s (%s)", private_key_path, public_key_path, algorithm)
        return signer

    def _check_key_pair(self) -> None:
        """Sign and verify a probe token so a bad or mismatched key pair fails now, not per request."""
        try:
            probe = jwt.encode({"probe": True}, self._private_key, algorithm=self.algorithm)
            jwt.decode(probe, self._public_key, algorithms=[self.algorithm])
        except (JOSEError, ValueError, TypeError) as exc:
            raise SigningKeyError(f"Signing key pair is unusable for {self.algorithm}: {exc}") from exc

    def sign(
        self,
        claims: dict[str, Any],
        expires_in: int | timedelta,
        algorithm: Optional[str] = None,
    ) -> str:
        """Return a signed JWT carrying claims plus iat/exp.

        expires_in is seconds (int) or a timedelta measured from now.
        """
        if isinstance(expires_in, int):
            expires_in = timedelta(seconds=expires_in)
        now = datetime.now(timezone.utc)
        payload = dict(claims)
        payload["iat"] = now
        payload["exp"] = now + expires_in
        return jwt.encode(payload, self._private_key, algorithm=algorithm or self.algorithm)

    def verify(self, token: str, algorithms: Optional[Iterable[str]] = None) -> VerifyResult:
        """Verify signature and expiry. Never raises for a bad token.

        algorithms defaults to the signer's own algorithm. Any token whose
        header algorithm is not in the list is invalid.
        """
        allowed = list(algorithms) if algorithms is not None else [self.algorithm]
        try:
            claims = jwt.decode(token, self._public_key, algorithms=allowed)
        except ExpiredSignatureError:
            return VerifyResult(valid=False, expired=True)
        except JOSEError as exc:
            logger.debug("Token rejected: %s", exc)
            return VerifyResult(valid=False, expired=False)
        return VerifyResult(valid=True, expired=False, claims=claims)
