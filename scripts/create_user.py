"""Create a user in the SQLite DB.

Usage:
  python scripts/create_user.py --username alice --email alice@example.com --password '...'
  python scripts/create_user.py --username bob --email bob@example.com --password '...' --premium

NOTE: This is intended for local/dev and support tasks.
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from patron_portal.config import load_config
from patron_portal.db import init_db, connect
from patron_portal.auth.crud import create_user


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--username", required=True)
    ap.add_argument("--email", required=True)
    ap.add_argument("--password", required=True)
    ap.add_argument("--admin", action="store_true", help="Grant admin rights")
    ap.add_argument("--premium", action="store_true", help="Create as a premium (non-free) user")
    args = ap.parse_args()

    cfg = load_config()
    init_db(cfg.DB_DSN)

    with connect(cfg.DB_DSN) as conn:
        u = create_user(
            conn,
            username=args.username,
            email=args.email,
            password=args.password,
            is_admin=args.admin,
            is_free=not (args.premium or args.admin),
        )

    print("Created user:")
    print(u)


if __name__ == "__main__":
    main()
