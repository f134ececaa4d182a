"""Create the admin account if it does not exist yet.

Usage:
  python scripts/create_admin.py --username admin --email admin@example.com --password '...'

Credentials default to AUTH_BOOTSTRAP_ADMIN_* from the environment / .env.
Exits 0 without changes when the username is already taken.

The schema is created or migrated first, so this also serves as the DB init
step of a deploy (`--init-only` stops there).
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from patron_portal.config import load_config
from patron_portal.db import init_db, connect
from patron_portal.auth.crud import create_user, get_user_by_username


def main() -> int:
    cfg = load_config()
    ap = argparse.ArgumentParser()
    ap.add_argument("--username", default=cfg.AUTH_BOOTSTRAP_ADMIN_USERNAME)
    ap.add_argument("--email", default=cfg.AUTH_BOOTSTRAP_ADMIN_EMAIL)
    ap.add_argument("--password", default=cfg.AUTH_BOOTSTRAP_ADMIN_PASSWORD)
    ap.add_argument("--init-only", action="store_true", help="Create/migrate the schema and exit")
    args = ap.parse_args()

    init_db(cfg.DB_DSN)
    if args.init_only:
        print(f"DB initialized: {cfg.DB_DSN}")
        return 0

    with connect(cfg.DB_DSN) as conn:
        if get_user_by_username(conn, args.username) is not None:
            print("Admin user already exists, skipping creation.")
            return 0
        try:
            u = create_user(
                conn,
                username=args.username,
                email=args.email,
                password=args.password,
                is_admin=True,
                is_free=False,
            )
        except ValueError as e:
            print(f"Error creating admin user: {e}")
            return 1

    print(f"Admin user created successfully. ID: {u['id']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
