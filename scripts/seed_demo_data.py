"""
Load the demo customers, requests, subscriptions, locations and purchases
into the SQL store. Idempotent: rows whose ids already exist are skipped.

Usage:
  python scripts/seed_demo_data.py
"""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.csrdash.api import SqlAPI
from app.csrdash.seed import seed_data
from scripts._db_utils import database_url, script_session


def load_demo_data(*, database_url_override: str | None = None) -> None:
    data = seed_data()
    with script_session(database_url(database_url_override)) as s:
        SqlAPI(s).import_seed(data)
    print(
        f"Demo data loaded: {len(data.customers)} customers, {len(data.requests)} requests, "
        f"{len(data.subscriptions)} subscriptions, {len(data.purchases)} purchases.",
        flush=True,
    )


def main() -> None:
    load_demo_data()


if __name__ == "__main__":
    main()
