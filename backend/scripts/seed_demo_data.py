#!/usr/bin/env python3
import argparse
import json
import os
import sys
from dataclasses import asdict
from pathlib import Path

REPO_BACKEND = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_BACKEND))


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed the marketplace catalog and demo accounts.")
    parser.add_argument(
        "--db-path",
        default="",
        help="sqlite file to seed. Defaults to MARKETPLACE_DB_PATH or backend/data/marketplace.sqlite3.",
    )
    parser.add_argument("--json", action="store_true", help="Print the summary as JSON.")
    args = parser.parse_args()

    if args.db_path:
        # The store modules read the path at import time.
        os.environ["MARKETPLACE_DB_PATH"] = args.db_path

    from marketplace import config
    from marketplace.services.database import Database
    from marketplace.services.seed import seed_demo_data

    config.configure_logging()
    db = Database(db_path=config.DB_PATH)
    summary = seed_demo_data(db)

    if args.json:
        print(json.dumps({"db_path": db.db_path, **asdict(summary)}, indent=2))
    else:
        print(f"Database: {db.db_path}")
        print(f"Categories created: {summary.categories_created}")
        print(f"Users created: {summary.users_created}")
        print(f"Providers created: {summary.providers_created}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
