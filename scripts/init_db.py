#!/usr/bin/env python3
"""
Create (or recreate) every table in the configured database.

Usage:
    python3 scripts/init_db.py [--config settings.yaml] [--db-url URL] [--drop]

Examples:
    # Create missing tables in the database named by ERP_DATABASE_URL
    python3 scripts/init_db.py

    # Start from an empty schema
    python3 scripts/init_db.py --db-url sqlite:///erp.db --drop
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create every ERP table in the configured database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML settings file (default: defaults plus ERP_* environment).",
    )
    parser.add_argument(
        "--db-url",
        default=None,
        help="Database URL; overrides the settings file.",
    )
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop all tables before creating them.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()

    from erp_config import load_settings
    from erp_kernel.db.engine import create_tables, drop_tables, init_engine_from_url
    from erp_kernel.logging_config import configure_logging

    try:
        settings = load_settings(args.config)
    except (OSError, ValueError) as e:
        print(f"ERROR: Failed to load settings: {e}", file=sys.stderr)
        return 1

    configure_logging(level=settings.log_level.upper())
    db_url = args.db_url or settings.database_url
    engine = init_engine_from_url(db_url)

    if args.drop:
        print(f"Dropping tables in {db_url}...")
        drop_tables(engine)
    print(f"Creating tables in {db_url}...")
    create_tables(engine)
    print("Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
