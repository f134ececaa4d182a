from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from patron_portal.config import Config
from patron_portal.db import connect
from patron_portal.util.time import utcnow_iso

from .security import hash_password, password_needs_rehash, verify_password


# Stored as INTEGER 0/1, exposed as booleans.
BOOL_FIELDS = ("is_mixcloud", "is_free", "is_admin", "is_active", "subscription_alert_sent")

# Never leave the server.
_PRIVATE_FIELDS = ("password_hash", "password_reset_token", "password_reset_expires")

# Columns update_user() is allowed to touch.
UPDATABLE_FIELDS = (
    "username",
    "email",
    "whatsapp_number",
    "patreon_id",
    "is_mixcloud",
    "is_free",
    "is_admin",
    "is_active",
    "patreon_subscription_status",
    "last_patreon_sync",
    "subscription_alert_sent",
)


def normalize_username(username: str | None) -> str:
    return (username or "").strip()


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def public_user(row: Any | Dict[str, Any]) -> Dict[str, Any]:
    d = dict(row)
    for k in _PRIVATE_FIELDS:
        d.pop(k, None)
    for k in BOOL_FIELDS:
        if k in d:
            d[k] = bool(d[k])
    return d


def get_user_by_id(conn: Any, user_id: int) -> Optional[Any]:
    return conn.execute(
        "SELECT * FROM users WHERE id=?",
        (int(user_id),),
    ).fetchone()


def get_user_by_email(conn: Any, email: str) -> Optional[Any]:
    e = normalize_email(email)
    if not e:
        return None
    return conn.execute(
        "SELECT * FROM users WHERE email=?",
        (e,),
    ).fetchone()


def get_user_by_username(conn: Any, username: str) -> Optional[Any]:
    u = normalize_username(username)
    if not u:
        return None
    return conn.execute(
        "SELECT * FROM users WHERE username=?",
        (u,),
    ).fetchone()


def get_user_by_patreon_id(conn: Any, patreon_id: str) -> Optional[Any]:
    pid = (patreon_id or "").strip()
    if not pid:
        return None
    return conn.execute(
        "SELECT * FROM users WHERE patreon_id=?",
        (pid,),
    ).fetchone()


def list_users(conn: Any) -> List[Dict[str, Any]]:
    rows = conn.execute("SELECT * FROM users ORDER BY id ASC").fetchall()
    return [public_user(r) for r in rows]


def _check_unique(conn: Any, *, username: str | None, email: str | None, exclude_id: int | None = None) -> None:
    if email is not None:
        row = get_user_by_email(conn, email)
        if row is not None and int(row["id"]) != (exclude_id or 0):
            raise ValueError("email_exists")
    if username is not None:
        row = get_user_by_username(conn, username)
        if row is not None and int(row["id"]) != (exclude_id or 0):
            raise ValueError("username_exists")


def create_user(
    conn: Any,
    *,
    username: str,
    email: str,
    password: str | None = None,
    password_hash: str | None = None,
    whatsapp_number: str | None = None,
    patreon_id: str | None = None,
    is_mixcloud: bool = False,
    is_free: bool = True,
    is_admin: bool = False,
    is_active: bool = True,
    patreon_subscription_status: str | None = None,
    last_patreon_sync: str | None = None,
) -> Dict[str, Any]:
    u = normalize_username(username)
    e = normalize_email(email)
    if not u:
        raise ValueError("username_blank")
    if not e or "@" not in e:
        raise ValueError("invalid_email")

    if password_hash is None:
        password_hash = hash_password(password or "")

    _check_unique(conn, username=u, email=e)

    now = utcnow_iso()
    conn.execute(
        """
        INSERT INTO users (
            username, email, password_hash, whatsapp_number, patreon_id,
            is_mixcloud, is_free, is_admin, is_active,
            patreon_subscription_status, last_patreon_sync,
            created_at, updated_at
        )
        VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)
        """,
        (
            u,
            e,
            password_hash,
            (whatsapp_number or None),
            (patreon_id or None),
            1 if is_mixcloud else 0,
            1 if is_free else 0,
            1 if is_admin else 0,
            1 if is_active else 0,
            patreon_subscription_status or "unknown",
            last_patreon_sync,
            now,
            now,
        ),
    )
    row = get_user_by_email(conn, e)
    assert row is not None
    return public_user(row)


def update_user(conn: Any, user_id: int, fields: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """Partial update: only the given fields are written.

    Returns the updated public user, or None if the user does not exist.
    Raises ValueError for unknown fields, blank/duplicate username or email.
    """
    row = get_user_by_id(conn, user_id)
    if row is None:
        return None

    updates: list[tuple[str, Any]] = []
    for k, v in fields.items():
        if k not in UPDATABLE_FIELDS:
            raise ValueError(f"unknown_field: {k}")
        if k == "username":
            if v is None:
                continue
            v = normalize_username(v)
            if not v:
                raise ValueError("username_blank")
        elif k == "email":
            if v is None:
                continue
            v = normalize_email(v)
            if not v or "@" not in v:
                raise ValueError("invalid_email")
        elif k in BOOL_FIELDS:
            if v is None:
                continue
            v = 1 if v else 0
        elif isinstance(v, str):
            v = v.strip() or None
        updates.append((k, v))

    if not updates:
        return public_user(row)

    new_values = dict(updates)
    _check_unique(
        conn,
        username=new_values.get("username"),
        email=new_values.get("email"),
        exclude_id=int(user_id),
    )

    updates.append(("updated_at", utcnow_iso()))
    sets = ", ".join([f"{k}=?" for k, _ in updates])
    params = [v for _, v in updates] + [int(user_id)]
    conn.execute(f"UPDATE users SET {sets} WHERE id=?", params)

    updated = get_user_by_id(conn, user_id)
    assert updated is not None
    return public_user(updated)


def set_password(conn: Any, user_id: int, password: str) -> None:
    now = utcnow_iso()
    conn.execute(
        "UPDATE users SET password_hash=?, updated_at=? WHERE id=?",
        (hash_password(password), now, int(user_id)),
    )


def delete_user(conn: Any, user_id: int) -> bool:
    cur = conn.execute("DELETE FROM users WHERE id=?", (int(user_id),))
    return int(cur.rowcount or 0) > 0


def touch_last_login(conn: Any, user_id: int) -> None:
    now = utcnow_iso()
    conn.execute(
        "UPDATE users SET last_login_at=?, updated_at=? WHERE id=?",
        (now, now, int(user_id)),
    )


def verify_user_credentials(conn: Any, login: str, password: str) -> Optional[Any]:
    """Check a login (email, or username when it has no '@') and password.

    Legacy hashes are re-hashed with the current scheme on success.
    """
    login = (login or "").strip()
    if "@" in login:
        row = get_user_by_email(conn, login)
    else:
        row = get_user_by_username(conn, login)
    if row is None:
        return None
    if int(row["is_active"] or 0) != 1:
        return None
    if not verify_password(password, str(row["password_hash"])):
        return None
    if password_needs_rehash(str(row["password_hash"])):
        set_password(conn, int(row["id"]), password)
    return row


def bootstrap_admin_if_needed(cfg: Config) -> Optional[Dict[str, Any]]:
    """Create the first admin user if the users table is empty.

    Controlled via environment variables so a new install has a deterministic way to log in.

    - AUTH_BOOTSTRAP_ADMIN_USERNAME (default: admin)
    - AUTH_BOOTSTRAP_ADMIN_EMAIL (default: admin@example.com)
    - AUTH_BOOTSTRAP_ADMIN_PASSWORD (default: admin)

    This only runs when there are 0 rows in `users`.
    """

    with connect(cfg.DB_DSN) as conn:
        n = conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"]
        if int(n) > 0:
            return None

        username = normalize_username(cfg.AUTH_BOOTSTRAP_ADMIN_USERNAME)
        email = normalize_email(cfg.AUTH_BOOTSTRAP_ADMIN_EMAIL)
        password = cfg.AUTH_BOOTSTRAP_ADMIN_PASSWORD

        # If env explicitly clears these, don't create anything.
        if not username or not email or not password:
            return None

        return create_user(
            conn,
            username=username,
            email=email,
            password=password,
            is_admin=True,
            is_free=False,
        )
