#!/usr/bin/env python3
"""
Daily fee job: refresh term statuses, bill the current term, mark overdue items.

Safe to run repeatedly: students already billed for the term are skipped.

Usage:
  python3 scripts/run_daily_billing.py
  python3 scripts/run_daily_billing.py --date 2026-01-15
"""

import argparse
import asyncio
import logging
import sys
from datetime import date
from pathlib import Path

# Add project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from termfees.core.config import settings
from termfees.core.database.session import async_session
from termfees.modules.fees.jobs import run_daily_billing


async def main() -> int:
    parser = argparse.ArgumentParser(description="Run the daily fee billing job")
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Business date to run for (YYYY-MM-DD), defaults to today",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    result = await run_daily_billing(async_session, args.date)
    print(f"{result.outcome}: {result.message}")
    for error in result.errors:
        print(f"  - {error}")
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
