"""Run one Patreon -> users sync from the command line (e.g. from cron).

Usage:
  PATREON_CREATOR_ACCESS_TOKEN=... python scripts/sync_patreon.py
  python scripts/sync_patreon.py --access-token ... --campaign-id 12345

Prints the sync summary as JSON. Temporary passwords of newly created users are
included, so treat the output as sensitive.
"""

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from patron_portal.config import load_config
from patron_portal.db import init_db
from patron_portal.patreon.client import PatreonClient, PatreonError
from patron_portal.patreon.sync import run_sync


def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--access-token", default=None, help="Creator access token (default: from env)")
    ap.add_argument("--campaign-id", default=None, help="Campaign id (default: discovered)")
    ap.add_argument("--summary-only", action="store_true", help="Print counts without per-user details")
    args = ap.parse_args()

    cfg = load_config()
    init_db(cfg.DB_DSN)

    client = PatreonClient.from_config(cfg)
    if args.access_token:
        client.set_access_token(args.access_token)
    if args.campaign_id:
        client.set_campaign_id(args.campaign_id)
    if not client.is_configured:
        print("No Patreon access token: set PATREON_CREATOR_ACCESS_TOKEN or pass --access-token")
        return 2

    try:
        result = run_sync(cfg, client).to_dict()
    except PatreonError as e:
        print(f"Patreon sync failed: {e.detail}")
        return 1

    if args.summary_only:
        result.pop("details", None)
    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
