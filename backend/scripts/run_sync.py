#!/usr/bin/env python3
"""Run one transaction sync for every linked institution.

Usage:
    python scripts/run_sync.py [--days N]
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import settings
from database import get_session_local, init_db
from logging_config import setup_logging
from services.sync_service import SyncService


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Sync transactions from Plaid")
    parser.add_argument(
        "--days",
        type=int,
        default=settings.SYNC_DEFAULT_DAYS,
        help="Window of transactions to report (default: %(default)s)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log at DEBUG level")
    args = parser.parse_args(argv)

    setup_logging("DEBUG" if args.verbose else None)
    init_db()

    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        result = SyncService().run_for_all_institutions(db, days=args.days)
    finally:
        db.close()

    summary = result.summary
    print(f"Institutions synced:  {len(result.succeeded)}")
    print(f"Institutions failed:  {len(result.failed)}")
    print(f"Institutions skipped: {len(result.skipped)}")
    print(f"Transactions:         {summary.transaction_count}")
    print(f"Total expenses:       {summary.total_expenses:.2f}")
    print(f"Total income:         {summary.total_income:.2f}")
    print(f"Net cash flow:        {summary.net_cash_flow:.2f}")
    return 1 if result.failed else 0


if __name__ == "__main__":
    sys.exit(main())
