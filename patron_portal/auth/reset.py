"""Password reset tokens.

The raw token is only ever handed to the mailer. The users row stores its sha256,
so a leaked database cannot be used to reset passwords.
"""

from __future__ import annotations

import hashlib
import secrets
from typing import Any, Optional

from patron_portal.util.time import utc_in_minutes, utcnow_iso

from .crud import get_user_by_email, set_password


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_password_reset(conn: Any, email: str, *, expires_minutes: int) -> Optional[str]:
    """Create a reset token for `email`. Returns None for unknown or inactive users."""
    row = get_user_by_email(conn, email)
    if row is None or int(row["is_active"] or 0) != 1:
        return None

    token = secrets.token_hex(32)
    conn.execute(
        "UPDATE users SET password_reset_token=?, password_reset_expires=? WHERE id=?",
        (hash_reset_token(token), utc_in_minutes(expires_minutes), int(row["id"])),
    )
    return token


def get_user_by_reset_token(conn: Any, token: str) -> Optional[Any]:
    t = (token or "").strip()
    if not t:
        return None
    return conn.execute(
        """
        SELECT * FROM users
        WHERE password_reset_token=? AND password_reset_expires > ?
        """,
        (hash_reset_token(t), utcnow_iso()),
    ).fetchone()


def consume_password_reset(conn: Any, token: str, new_password: str) -> int:
    """Set a new password using a reset token. Returns the user id.

    The token is single-use: it is cleared together with the password change.
    """
    row = get_user_by_reset_token(conn, token)
    if row is None:
        raise ValueError("reset_token_invalid")

    user_id = int(row["id"])
    set_password(conn, user_id, new_password)
    conn.execute(
        "UPDATE users SET password_reset_token=NULL, password_reset_expires=NULL WHERE id=?",
        (user_id,),
    )
    return user_id
