"""Password hashing and access tokens.

New hashes use pbkdf2_sha256. bcrypt is accepted for verification only: the
first (Node) backend wrote bcrypt hashes, and those are replaced on the user's
next successful login. Verifying bcrypt needs the `legacy` extra.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from passlib.context import CryptContext
from passlib.exc import MissingBackendError


_pwd = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")
_JWT_ALG = "HS256"


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("password_blank")
    return _pwd.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """False on mismatch, and also on empty input or an unrecognized hash."""
    if not (password and password_hash):
        return False
    try:
        return bool(_pwd.verify(password, password_hash))
    except (ValueError, TypeError, MissingBackendError):
        return False


def password_needs_rehash(password_hash: str) -> bool:
    try:
        return bool(_pwd.needs_update(password_hash))
    except (ValueError, TypeError):
        return False


def generate_temp_password(nbytes: int = 6) -> str:
    """One-time password for accounts the Patreon sync creates."""
    return secrets.token_urlsafe(nbytes)


def create_access_token(
    *,
    secret: str,
    user_id: int,
    username: str,
    email: str,
    is_admin: bool,
    expires_minutes: int,
) -> str:
    if not secret:
        raise ValueError("jwt_secret_blank")

    issued = datetime.now(timezone.utc)
    claims: Dict[str, Any] = {
        "sub": str(user_id),
        "username": username,
        "email": email,
        "is_admin": bool(is_admin),
        "iat": int(issued.timestamp()),
        "exp": int((issued + timedelta(minutes=max(1, int(expires_minutes)))).timestamp()),
    }
    return jwt.encode(claims, secret, algorithm=_JWT_ALG)


def decode_access_token(*, token: str, secret: str) -> Dict[str, Any]:
    """Verify signature and expiry. Raises jwt.InvalidTokenError subclasses."""
    if not token or not secret:
        raise ValueError("token_or_secret_blank")
    return jwt.decode(token, secret, algorithms=[_JWT_ALG])
