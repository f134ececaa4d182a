"""Serve the Patron Portal API with uvicorn.

Usage:
  python scripts/run_api.py
  python scripts/run_api.py --port 5000 --reload

Host/port default to API_HOST and API_PORT (or PORT, as set by most PaaS hosts).
"""

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

import uvicorn


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--host", default=os.environ.get("API_HOST", "0.0.0.0"))
    ap.add_argument("--port", type=int, default=int(os.environ.get("API_PORT") or os.environ.get("PORT") or "5000"))
    ap.add_argument("--reload", action="store_true", help="Restart on code changes (dev)")
    args = ap.parse_args()

    # create_app() reads config itself and runs init_db + admin bootstrap on startup.
    uvicorn.run(
        "patron_portal.api.server:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
    )


if __name__ == "__main__":
    main()
