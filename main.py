#!/usr/bin/env python3
"""
storekeep -- operator commands for the auth backend.

Usage:
  python main.py keygen
  python main.py keygen --private-key keys/private.key --public-key keys/public.key --bits 4096
  python main.py create-user --email admin@example.com --name Admin --password 'S3cret!pass' --role admin
  python main.py purge-tokens

Key paths and the database URL default to the values from the environment /
.env (PRIVATE_KEY_PATH, PUBLIC_KEY_PATH, DATABASE_URL).
"""

import argparse
import os
import sys
from pathlib import Path
from typing import Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from pydantic import ValidationError

from api.models import RegisterRequest
from auth.errors import EmailAlreadyExists
from auth.models import Identity, Role
from auth.passwords import hash_password
from auth.store import UserStore
from core.config import get_settings


def _write_key_pair(private_path: Path, public_path: Path, bits: int) -> None:
    """Generate an RSA key pair; private key PKCS8 PEM with mode 0600."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    private_path.parent.mkdir(parents=True, exist_ok=True)
    public_path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(private_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(private_pem)
    public_path.write_bytes(public_pem)


def cmd_keygen(args: argparse.Namespace) -> int:
    settings = get_settings()
    private_path = Path(args.private_key or settings.private_key_path)
    public_path = Path(args.public_key or settings.public_key_path)
    existing = [p for p in (private_path, public_path) if p.exists()]
    if existing and not args.force:
        print(f"  [!] {', '.join(str(p) for p in existing)} already exists. Use --force to overwrite.")
        return 1
    _write_key_pair(private_path, public_path, args.bits)
    print(f"  Wrote {private_path} and {public_path} ({args.bits}-bit RSA).")
    return 0


def cmd_create_user(args: argparse.Namespace) -> int:
    """Seed an identity under the same email and password rules as POST /api/auth/register."""
    try:
        body = RegisterRequest(email=args.email, name=args.name, password=args.password)
    except ValidationError as exc:
        for err in exc.errors():
            field = ".".join(str(p) for p in err["loc"]) or "body"
            print(f"  [!] {field}: {str(err['msg']).removeprefix('Value error, ')}")
        return 1
    settings = get_settings()
    store = UserStore(args.database_url or settings.database_url)
    try:
        if store.get_by_email(body.email) is not None:
            raise EmailAlreadyExists()
        user_id = store.create_user(
            Identity(
                email=body.email,
                name=body.name,
                role=args.role,
                hashed_password=hash_password(body.password, rounds=settings.bcrypt_rounds),
            )
        )
    except EmailAlreadyExists as exc:
        print(f"  [!] {exc.message}: {body.email}")
        return 1
    finally:
        store.close()
    print(f"  Created {args.role} {body.email} (id {user_id}).")
    return 0


def cmd_purge_tokens(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = UserStore(args.database_url or settings.database_url)
    try:
        removed = store.purge_expired_refresh_tokens()
    finally:
        store.close()
    print(f"  Purged {removed} expired refresh token(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="storekeep",
        description="Operator commands for the storekeep auth backend.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    keygen = sub.add_parser("keygen", help="Generate the RSA key pair used to sign access tokens")
    keygen.add_argument("--private-key", metavar="PATH", help="Private key output path")
    keygen.add_argument("--public-key", metavar="PATH", help="Public key output path")
    keygen.add_argument("--bits", type=int, choices=[2048, 3072, 4096], default=2048, help="RSA key size")
    keygen.add_argument("--force", action="store_true", help="Overwrite existing key files")
    keygen.set_defaults(func=cmd_keygen)

    create = sub.add_parser("create-user", help="Create a user (e.g. the first admin)")
    create.add_argument("--email", required=True)
    create.add_argument("--name", required=True)
    create.add_argument("--password", required=True)
    create.add_argument("--role", choices=[r.value for r in Role], default=Role.user.value)
    create.add_argument("--database-url", metavar="URL", help="Override DATABASE_URL")
    create.set_defaults(func=cmd_create_user)

    purge = sub.add_parser("purge-tokens", help="Delete expired refresh tokens")
    purge.add_argument("--database-url", metavar="URL", help="Override DATABASE_URL")
    purge.set_defaults(func=cmd_purge_tokens)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 2
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
