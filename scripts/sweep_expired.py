#!/usr/bin/env python3
"""Expire abandoned checkout sessions; meant for an external scheduler (cron, Cloud Scheduler).

Usage: scripts/sweep_expired.py [--purge] [--retention-days N] [--batch-size N]
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import timedelta

from flidesk_engines.checkout.errors import CheckoutError
from flidesk_engines.checkout.state import get_session_store
from flidesk_engines.checkout.sweep import ExpirationSweeper


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Expire pending checkout sessions past their deadline")
    parser.add_argument("--purge", action="store_true", help="Also delete expired sessions past retention")
    parser.add_argument("--retention-days", type=int, default=None, help="Override EXPIRED_RETENTION_DAYS")
    parser.add_argument("--batch-size", type=int, default=None, help="Max sessions handled per run")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    sweeper = ExpirationSweeper(get_session_store(), batch_size=args.batch_size)
    try:
        report = sweeper.sweep_expired()
        output = {"sweep": report.model_dump()}
        if args.purge:
            retention = timedelta(days=args.retention_days) if args.retention_days else None
            output["purge"] = sweeper.purge_expired(retention=retention).model_dump()
    except CheckoutError as exc:
        logging.getLogger(__name__).error("Sweep aborted: %s (%s)", exc.message, exc.code)
        return 2
    print(json.dumps(output, indent=2))
    failed = report.failed or output.get("purge", {}).get("failed")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
