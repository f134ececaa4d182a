from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import requests

from patron_portal.config import Config


DEFAULT_BASE_URL = "https://www.patreon.com/api/oauth2/v2"

ACTIVE_PATRON = "active_patron"

_MEMBER_FIELDS = ",".join(
    [
        "full_name",
        "email",
        "patron_status",
        "pledge_relationship_start",
        "currently_entitled_amount_cents",
        "will_pay_amount_cents",
        "last_charge_date",
        "last_charge_status",
        "lifetime_support_cents",
        "pledge_cadence",
    ]
)
_USER_FIELDS = "email,first_name,last_name,full_name,vanity,url,image_url,created"
_TIER_FIELDS = "title,amount_cents,description,created_at,url,patron_count"


def _debug(msg: str) -> None:
    print(f"[patreon] {msg}")


class PatreonError(RuntimeError):
    """A Patreon API call failed.

    `upstream` is True when Patreon itself (or the network) failed, as opposed to
    a rejected token or missing campaign.
    """

    def __init__(self, detail: str, *, status_code: int | None = None, upstream: bool = False):
        super().__init__(detail)
        self.detail = str(detail)
        self.status_code = status_code
        self.upstream = bool(upstream)


@dataclass
class PatronPage:
    patrons: List[Dict[str, Any]] = field(default_factory=list)
    # Links object of the last page fetched (empty when everything was read).
    pagination: Dict[str, Any] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.patrons)


def _error_detail(r: requests.Response) -> str:
    """Pull the human-readable message out of a JSON:API error body."""
    try:
        body = r.json()
    except Exception:
        body = None
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            detail = errors[0].get("detail") or errors[0].get("title")
            if detail:
                return str(detail)
    return f"Patreon API error {r.status_code}"


def _index_included(payload: Dict[str, Any]) -> Dict[Tuple[str, str], Dict[str, Any]]:
    out: Dict[Tuple[str, str], Dict[str, Any]] = {}
    for item in payload.get("included") or []:
        if not isinstance(item, dict):
            continue
        out[(str(item.get("type") or ""), str(item.get("id") or ""))] = item
    return out


def parse_tier(tier: Dict[str, Any]) -> Dict[str, Any]:
    attrs = tier.get("attributes") or {}
    return {
        "id": str(tier.get("id") or ""),
        "title": attrs.get("title"),
        "description": attrs.get("description"),
        "amount_cents": attrs.get("amount_cents"),
        "created_at": attrs.get("created_at"),
        "url": attrs.get("url"),
        "patron_count": attrs.get("patron_count"),
    }


def parse_members(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Flatten a /campaigns/{id}/members JSON:API page into patron dicts.

    The related user and entitled tiers are resolved from `included`.
    `patron_status` is None for people who follow the campaign but never pledged.
    """
    included = _index_included(payload)
    patrons: List[Dict[str, Any]] = []

    for member in payload.get("data") or []:
        attrs = member.get("attributes") or {}
        rels = member.get("relationships") or {}

        patron: Dict[str, Any] = {
            "id": str(member.get("id") or ""),
            "patron_status": attrs.get("patron_status"),
            "full_name": attrs.get("full_name"),
            "pledge_relationship_start": attrs.get("pledge_relationship_start"),
            "pledge_amount_cents": attrs.get("currently_entitled_amount_cents"),
            "will_pay_amount_cents": attrs.get("will_pay_amount_cents"),
            "lifetime_support_cents": attrs.get("lifetime_support_cents"),
            "pledge_cadence": attrs.get("pledge_cadence"),
            "last_charge_date": attrs.get("last_charge_date"),
            "last_charge_status": attrs.get("last_charge_status"),
            "user": None,
            "tier": None,
        }

        user_ref = ((rels.get("user") or {}).get("data")) or None
        if isinstance(user_ref, dict) and user_ref.get("id"):
            user_id = str(user_ref["id"])
            uattrs = (included.get(("user", user_id)) or {}).get("attributes") or {}
            patron["user"] = {
                "id": user_id,
                # Member email is readable with the campaigns.members[email] scope even
                # when the user resource hides it.
                "email": uattrs.get("email") or attrs.get("email"),
                "first_name": uattrs.get("first_name"),
                "last_name": uattrs.get("last_name"),
                "full_name": uattrs.get("full_name") or attrs.get("full_name"),
                "vanity": uattrs.get("vanity"),
                "image_url": uattrs.get("image_url"),
                "created": uattrs.get("created"),
                "url": uattrs.get("url"),
            }

        tier_refs = ((rels.get("currently_entitled_tiers") or {}).get("data")) or []
        tiers = [
            parse_tier(included[("tier", str(t.get("id")))])
            for t in tier_refs
            if isinstance(t, dict) and ("tier", str(t.get("id"))) in included
        ]
        if tiers:
            patron["tier"] = tiers

        patrons.append(patron)

    return patrons


def is_active_patron(patron: Dict[str, Any]) -> bool:
    return (patron.get("patron_status") or "") == ACTIVE_PATRON


class PatreonClient:
    """Holds one creator access token and one campaign id.

    Calls are sequential GETs against the Patreon v2 API. The campaign id is
    discovered from /campaigns the first time it is needed.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        access_token: str | None = None,
        campaign_id: str | None = None,
        *,
        timeout: float = 30.0,
        max_pages: int = 50,
        page_size: int = 100,
        session: Any = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.access_token = (access_token or "").strip() or None
        self.campaign_id = (campaign_id or "").strip() or None
        self._default_campaign_id = self.campaign_id
        self.timeout = float(timeout)
        self.max_pages = max(1, int(max_pages))
        self.page_size = max(1, int(page_size))
        self._session = session or requests.Session()

    @classmethod
    def from_config(cls, cfg: Config, *, session: Any = None) -> "PatreonClient":
        return cls(
            cfg.PATREON_BASE_URL,
            cfg.PATREON_CREATOR_ACCESS_TOKEN,
            cfg.PATREON_CAMPAIGN_ID,
            timeout=cfg.PATREON_TIMEOUT_SECONDS,
            max_pages=cfg.PATREON_MAX_PAGES,
            page_size=cfg.PATREON_PAGE_SIZE,
            session=session,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token)

    def set_access_token(self, token: str) -> None:
        t = (token or "").strip()
        if not t:
            raise PatreonError("access_token_missing")
        if t != self.access_token:
            # A different token can belong to a different creator.
            self.campaign_id = self._default_campaign_id
        self.access_token = t

    def set_campaign_id(self, campaign_id: str | None) -> None:
        self.campaign_id = (campaign_id or "").strip() or None

    def _headers(self) -> Dict[str, str]:
        if not self.access_token:
            raise PatreonError("access_token_missing")
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "User-Agent": "PatronPortal/0.1",
        }

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = self._headers()
        try:
            r = self._session.get(url, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise PatreonError(f"patreon_request_failed: {e}", upstream=True) from e

        if r.status_code != 200:
            detail = _error_detail(r)
            _debug(f"GET {url} -> {r.status_code}: {detail}")
            raise PatreonError(detail, status_code=r.status_code, upstream=r.status_code >= 500)

        try:
            data = r.json()
        except ValueError as e:
            raise PatreonError("patreon_invalid_json", status_code=r.status_code, upstream=True) from e
        if not isinstance(data, dict):
            raise PatreonError("patreon_unexpected_payload", status_code=r.status_code, upstream=True)
        return data

    def test_connection(self) -> Dict[str, Any]:
        """Fetch the creator's campaigns and remember the first one."""
        data = self._get(
            f"{self.base_url}/campaigns",
            params={"fields[campaign]": "creation_name,vanity,url,patron_count,pledge_sum"},
        )
        campaigns = data.get("data") or []
        if not campaigns:
            raise PatreonError("no_campaigns")

        campaign = campaigns[0]
        attrs = campaign.get("attributes") or {}
        self.campaign_id = str(campaign.get("id"))
        _debug(f"Connected to campaign {self.campaign_id}")
        return {
            "id": self.campaign_id,
            "name": attrs.get("creation_name") or attrs.get("title") or "Untitled Campaign",
            "url": attrs.get("url") or "",
            "patron_count": attrs.get("patron_count"),
            "pledge_sum": attrs.get("pledge_sum"),
        }

    def ensure_campaign_id(self) -> str:
        if not self.campaign_id:
            self.test_connection()
        assert self.campaign_id is not None
        return self.campaign_id

    def get_members(self) -> PatronPage:
        """All members of the campaign (active, declined, former), following pagination."""
        campaign_id = self.ensure_campaign_id()
        url: Optional[str] = f"{self.base_url}/campaigns/{campaign_id}/members"
        params: Optional[Dict[str, Any]] = {
            "include": "user,currently_entitled_tiers",
            "fields[member]": _MEMBER_FIELDS,
            "fields[user]": _USER_FIELDS,
            "fields[tier]": _TIER_FIELDS,
            "page[count]": self.page_size,
        }

        out = PatronPage()
        pages = 0
        while url and pages < self.max_pages:
            data = self._get(url, params=params)
            out.patrons.extend(parse_members(data))
            links = data.get("links") or {}
            out.pagination = links if isinstance(links, dict) else {}
            # The next link already carries the query string.
            url = out.pagination.get("next")
            params = None
            pages += 1

        if url:
            _debug(f"Stopped after {pages} pages; more members remain")
        else:
            out.pagination = {}
        return out

    def get_active_patrons(self) -> PatronPage:
        page = self.get_members()
        return PatronPage(
            patrons=[p for p in page.patrons if is_active_patron(p)],
            pagination=page.pagination,
        )

    def get_campaign_tiers(self) -> List[Dict[str, Any]]:
        campaign_id = self.ensure_campaign_id()
        data = self._get(
            f"{self.base_url}/campaigns/{campaign_id}",
            params={"include": "tiers", "fields[tier]": _TIER_FIELDS},
        )
        return [
            parse_tier(item)
            for item in (data.get("included") or [])
            if isinstance(item, dict) and item.get("type") == "tier"
        ]
