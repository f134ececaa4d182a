"""Reconcile Patreon members against local users.

One pass over the campaign's members:
- known users (matched by email, then by patreon_id) get their Patreon status,
  patreon_id and free/premium flag refreshed;
- unknown patrons get a local account with a one-time temporary password;
- a premium user whose tracked status drops from active_patron raises a
  subscription alert exactly once, until an admin clears it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from patron_portal.auth.crud import (
    create_user,
    get_user_by_email,
    get_user_by_id,
    get_user_by_patreon_id,
    get_user_by_username,
    normalize_username,
    public_user,
    update_user,
)
from patron_portal.auth.security import generate_temp_password
from patron_portal.config import Config
from patron_portal.db import connect, get_app_config, savepoint, upsert_app_config
from patron_portal.util.time import utcnow_iso

from .client import ACTIVE_PATRON, PatreonClient, is_active_patron


def _debug(msg: str) -> None:
    print(f"[sync] {msg}")


@dataclass
class SyncResult:
    synced_users: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    subscription_alerts: List[Dict[str, Any]] = field(default_factory=list)
    skipped: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": "Patreon sync completed with subscription tracking",
            "synced": len(self.synced_users),
            "errors": len(self.errors),
            "subscriptionAlerts": len(self.subscription_alerts),
            "skipped": self.skipped,
            "details": {
                "syncedUsers": self.synced_users,
                "errors": self.errors,
                "subscriptionAlerts": self.subscription_alerts,
            },
        }


def _unique_username(conn: Any, base: str) -> str:
    base = normalize_username(base) or "patron"
    candidate = base
    n = 2
    while get_user_by_username(conn, candidate) is not None:
        candidate = f"{base}-{n}"
        n += 1
    return candidate


def _find_local_user(conn: Any, patron_user: Dict[str, Any]) -> Optional[Any]:
    row = get_user_by_email(conn, patron_user.get("email") or "")
    if row is None and patron_user.get("id"):
        row = get_user_by_patreon_id(conn, str(patron_user["id"]))
    return row


def _sync_existing(
    conn: Any,
    row: Any,
    patron: Dict[str, Any],
    *,
    now: str,
    result: SyncResult,
) -> None:
    is_active = is_active_patron(patron)
    status = ACTIVE_PATRON if is_active else (patron.get("patron_status") or "unknown")

    was_premium = not bool(row["is_free"])
    was_active = (row["patreon_subscription_status"] or "") == ACTIVE_PATRON
    now_inactive = was_active and not is_active
    alert_sent = bool(row["subscription_alert_sent"])

    raise_alert = was_premium and now_inactive and not alert_sent
    if raise_alert:
        alert_sent = True
        result.subscription_alerts.append(
            {
                "user": public_user(row),
                "patron": patron,
                "action": "unsubscribed",
                "message": (
                    f"Premium user {row['username']} ({row['email']}) has unsubscribed from Patreon"
                ),
            }
        )
        _debug(f"Subscription alert raised for user_id={row['id']}")

    updated = update_user(
        conn,
        int(row["id"]),
        {
            "patreon_id": str(patron["user"]["id"]),
            "is_free": not is_active,
            "patreon_subscription_status": status,
            "last_patreon_sync": now,
            "subscription_alert_sent": alert_sent,
        },
    )

    if was_active == is_active:
        change = "none"
    else:
        change = "subscribed" if is_active else "unsubscribed"

    result.synced_users.append(
        {"action": "updated", "user": updated, "patron": patron, "subscriptionChange": change}
    )


def _sync_new(conn: Any, patron: Dict[str, Any], *, now: str, result: SyncResult) -> None:
    puser = patron["user"]
    is_active = is_active_patron(patron)
    status = ACTIVE_PATRON if is_active else (patron.get("patron_status") or "unknown")
    email = str(puser["email"])

    temp_password = generate_temp_password()
    user = create_user(
        conn,
        username=_unique_username(conn, puser.get("full_name") or email.split("@")[0]),
        email=email,
        password=temp_password,
        patreon_id=str(puser["id"]) if puser.get("id") else None,
        is_free=not is_active,
        patreon_subscription_status=status,
        last_patreon_sync=now,
    )
    result.synced_users.append(
        {
            "action": "created",
            "user": user,
            "patron": patron,
            "tempPassword": temp_password,
            "subscriptionStatus": status,
        }
    )


def sync_patrons(conn: Any, patrons: Iterable[Dict[str, Any]], *, now: str | None = None) -> SyncResult:
    """Apply one batch of Patreon members to the users table.

    Each patron runs in its own savepoint, so one bad row (e.g. a username clash)
    is reported in `errors` without undoing the rest of the batch.
    """
    now = now or utcnow_iso()
    result = SyncResult()

    for patron in patrons:
        puser = patron.get("user") or {}
        if not puser.get("email"):
            result.skipped += 1
            continue

        try:
            with savepoint(conn, "patron_sync"):
                row = _find_local_user(conn, puser)
                if row is not None:
                    _sync_existing(conn, row, patron, now=now, result=result)
                else:
                    _sync_new(conn, patron, now=now, result=result)
        except Exception as e:
            _debug(f"Patron {patron.get('id')} failed: {e}")
            result.errors.append({"patron": patron, "error": str(e)})

    _debug(
        f"Synced {len(result.synced_users)} users, {len(result.errors)} errors, "
        f"{len(result.subscription_alerts)} alerts, {result.skipped} skipped"
    )
    return result


def run_sync(cfg: Config, client: PatreonClient) -> SyncResult:
    """Fetch every campaign member and reconcile them in a single connection."""
    page = client.get_members()
    now = utcnow_iso()
    with connect(cfg.DB_DSN) as conn:
        result = sync_patrons(conn, page.patrons, now=now)
        upsert_app_config(conn, "patreon_last_sync_at", now)
        if client.campaign_id:
            upsert_app_config(conn, "patreon_campaign_id", client.campaign_id)
    return result


def get_sync_status(conn: Any) -> Dict[str, Optional[str]]:
    return {
        "last_sync_at": get_app_config(conn, "patreon_last_sync_at"),
        "campaign_id": get_app_config(conn, "patreon_campaign_id"),
    }


def list_subscription_alerts(conn: Any) -> List[Dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT id, username, email, patreon_id, is_free, patreon_subscription_status,
               last_patreon_sync, subscription_alert_sent
        FROM users
        WHERE subscription_alert_sent=1
          AND COALESCE(patreon_subscription_status, '') != ?
        ORDER BY last_patreon_sync DESC, id ASC
        """,
        (ACTIVE_PATRON,),
    ).fetchall()
    return [
        {
            "id": int(r["id"]),
            "username": r["username"],
            "email": r["email"],
            "patreon_id": r["patreon_id"],
            "is_free": bool(r["is_free"]),
            "subscription_status": r["patreon_subscription_status"],
            "last_sync": r["last_patreon_sync"],
            "alert_sent": bool(r["subscription_alert_sent"]),
        }
        for r in rows
    ]


def clear_subscription_alert(conn: Any, user_id: int) -> Optional[Dict[str, Any]]:
    if get_user_by_id(conn, user_id) is None:
        return None
    return update_user(conn, user_id, {"subscription_alert_sent": False})
