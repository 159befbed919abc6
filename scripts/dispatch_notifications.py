#!/usr/bin/env python3
import argparse
import json
import logging
import sys
import time
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from acheiumpro import config  # noqa: E402
from acheiumpro.services.notification_dispatcher import notification_dispatcher  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description="Deliver queued AcheiUmPro notifications.")
    parser.add_argument("--limit", type=int, default=100, help="Maximum outbox rows per pass.")
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=config.NOTIFICATION_MAX_ATTEMPTS,
        help="Attempts before a row is marked failed.",
    )
    parser.add_argument("--loop", action="store_true", help="Keep polling instead of running one pass.")
    parser.add_argument("--interval", type=float, default=30.0, help="Seconds between passes with --loop.")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level.")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    while True:
        summary = notification_dispatcher.dispatch_pending(limit=args.limit, max_attempts=args.max_attempts)
        print(json.dumps(summary.as_dict()))
        if not args.loop:
            return 1 if summary.failed else 0
        time.sleep(args.interval)


if __name__ == "__main__":
    raise SystemExit(main())
