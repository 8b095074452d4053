#!/usr/bin/env python3
"""
Daily exchange rate job: stores today's SUNAT USD/PEN rate.

Schedule once a day (09:00 America/Lima), e.g. with cron:
    0 9 * * * cd /app && python scripts/fetch_exchange_rate.py

Usage:
    python scripts/fetch_exchange_rate.py            # today (Lima time)
    python scripts/fetch_exchange_rate.py 2026-10-15 # specific date
    python scripts/fetch_exchange_rate.py --history 7
"""

import argparse
import logging
import os
import sys
from datetime import date

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.exchange_rate_service import get_rate_history, refresh_daily_rate


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Fetch and store the SUNAT exchange rate")
    parser.add_argument("date", nargs="?", help="Date (YYYY-MM-DD), default today in Lima")
    parser.add_argument("--history", type=int, help="Print the last N stored rates and exit")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.history:
        for rate in get_rate_history(args.history):
            print(f"{rate.date}  compra={rate.buy_price}  venta={rate.sell_price}")
        return 0

    target = date.fromisoformat(args.date) if args.date else None
    result = refresh_daily_rate(target)

    if not result.success:
        print(f"ERROR: {result.error_message}")
        return 1
    if result.skipped:
        print(f"Exchange rate already exists for {result.rate.date}: {result.rate.sell_price}")
    else:
        print(f"Stored exchange rate for {result.rate.date}: compra={result.rate.buy_price} venta={result.rate.sell_price}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
