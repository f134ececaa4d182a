"""Shared helpers for the test suite: temp-DB config and a fake Patreon HTTP session."""

from __future__ import annotations

import dataclasses
import os
from typing import Any, Dict, List, Optional

from patron_portal.config import Config


def make_config(tmpdir: str, **overrides: Any) -> Config:
    base = dict(
        DB_DSN=os.path.join(tmpdir, "users.sqlite"),
        API_PREFIX="/api",
        AUTH_JWT_SECRET="test-secret-0123456789abcdef0123",
        AUTH_TOKEN_EXPIRE_MINUTES=60,
        AUTH_COOKIE_SECURE=False,
        AUTH_BOOTSTRAP_ADMIN_USERNAME="admin",
        AUTH_BOOTSTRAP_ADMIN_EMAIL="admin@example.com",
        AUTH_BOOTSTRAP_ADMIN_PASSWORD="admin-pass",
        PASSWORD_MIN_LENGTH=6,
        PASSWORD_RESET_EXPIRE_MINUTES=60,
        PUBLIC_APP_URL="http://localhost:3000",
        CORS_ALLOW_ORIGINS="",
        SMTP_HOST=None,
        PATREON_BASE_URL="https://patreon.test/api/oauth2/v2",
        PATREON_CREATOR_ACCESS_TOKEN=None,
        PATREON_CAMPAIGN_ID=None,
        PATREON_MAX_PAGES=10,
    )
    base.update(overrides)
    return dataclasses.replace(Config(), **base)


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None):
        self.status_code = status_code
        self._payload = payload
        self.text = "" if payload is None else str(payload)

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    """Stands in for requests.Session: serves canned responses keyed by URL.

    Lookup tries the full URL first (pagination links carry a query string), then
    the URL without its query.
    """

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes: Dict[str, Any] = dict(routes or {})
        self.calls: List[Dict[str, Any]] = []

    def get(self, url: str, params: Any = None, headers: Any = None, timeout: Any = None) -> FakeResponse:
        self.calls.append({"url": url, "params": params, "headers": headers})
        resp = self.routes.get(url)
        if resp is None:
            resp = self.routes.get(url.split("?", 1)[0])
        if resp is None:
            return FakeResponse(404, {"errors": [{"detail": f"no route for {url}"}]})
        if isinstance(resp, list):
            return resp.pop(0)
        return resp


BASE = "https://patreon.test/api/oauth2/v2"


def campaigns_payload(campaign_id: str = "777") -> Dict[str, Any]:
    return {
        "data": [
            {
                "id": campaign_id,
                "type": "campaign",
                "attributes": {
                    "creation_name": "Night Mixes",
                    "url": "https://www.patreon.com/nightmixes",
                    "patron_count": 3,
                    "pledge_sum": 1500,
                },
            }
        ]
    }


def member(
    member_id: str,
    user_id: str,
    email: Optional[str],
    status: Optional[str],
    *,
    full_name: str = "",
    tier_ids: Optional[List[str]] = None,
) -> Dict[str, Any]:
    return {
        "id": member_id,
        "type": "member",
        "attributes": {
            "patron_status": status,
            "full_name": full_name,
            "email": email,
            "currently_entitled_amount_cents": 500 if status == "active_patron" else 0,
        },
        "relationships": {
            "user": {"data": {"id": user_id, "type": "user"}},
            "currently_entitled_tiers": {"data": [{"id": t, "type": "tier"} for t in (tier_ids or [])]},
        },
    }


def user_resource(user_id: str, email: Optional[str], full_name: str = "") -> Dict[str, Any]:
    return {
        "id": user_id,
        "type": "user",
        "attributes": {"email": email, "full_name": full_name, "first_name": full_name.split(" ")[0]},
    }


def tier_resource(tier_id: str, title: str, amount_cents: int) -> Dict[str, Any]:
    return {"id": tier_id, "type": "tier", "attributes": {"title": title, "amount_cents": amount_cents}}


def members_payload(
    members: List[Dict[str, Any]],
    included: Optional[List[Dict[str, Any]]] = None,
    next_url: Optional[str] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"data": members, "included": included or []}
    if next_url:
        payload["links"] = {"next": next_url}
    return payload


def patron(user_id: str, email: Optional[str], status: Optional[str], full_name: str = "") -> Dict[str, Any]:
    """A patron dict as produced by parse_members (for sync tests)."""
    return {
        "id": f"m-{user_id}",
        "patron_status": status,
        "user": {"id": user_id, "email": email, "full_name": full_name},
        "tier": None,
    }
