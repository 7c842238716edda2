"""
Deletes verification keys whose expiry has passed.

Expiry is enforced when a key is verified, so this sweep only keeps the
``verification_keys`` table small. Runs once by default, or in a loop.
"""

from __future__ import annotations

import argparse
import logging
import random
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from crowbackend.config import get_settings
from crowbackend.crowmail import CrowmailService
from crowbackend.dependencies import build_db_client, build_mailer, build_token_store
from crowbackend.errors import UpstreamError

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Purge expired crowmail keys")
    parser.add_argument(
        "--interval-seconds",
        type=int,
        default=3600,
        help="Seconds between sweeps when --loop is set",
    )
    parser.add_argument(
        "--jitter-seconds",
        type=int,
        default=60,
        help="Max random jitter added to sleep",
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep sweeping instead of exiting after one pass",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    settings = get_settings()
    db = build_db_client(settings)
    service = CrowmailService(
        db, build_token_store(settings, db), build_mailer(settings), settings
    )

    while True:
        try:
            purged = service.purge_expired()
            logger.info("Sweep complete, purged %d keys", purged)
        except UpstreamError as exc:
            logger.error("Sweep failed: %s", exc)
            if not args.loop:
                return 1

        if not args.loop:
            return 0

        sleep_for = args.interval_seconds + random.uniform(0, args.jitter_seconds)
        logger.info("Sleeping for %.1fs", sleep_for)
        time.sleep(sleep_for)


if __name__ == "__main__":
    raise SystemExit(main())
