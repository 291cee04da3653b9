"""Operator entry point: run a settlement cycle or resume its payouts.

Usage::

    python scripts/run_settlement.py                 # settle a new draw
    python scripts/run_settlement.py --resume 42     # retry unpaid prizes of draw 42
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys

from dotenv import load_dotenv

from powerpot.announce import LoggingAnnouncer, WebhookAnnouncer
from powerpot.db.engine import get_sessionmaker, make_engine
from powerpot.errors import SettlementError
from powerpot.workflows import resume_disbursement, run_settlement


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--resume",
        type=int,
        metavar="DRAW_ID",
        help="retry unpaid win records of an existing draw instead of drawing",
    )
    parser.add_argument(
        "--include-unreconciled",
        action="store_true",
        help="with --resume, also retry payouts that timed out (verify on-chain first)",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = _parse_args(argv)
    session_factory = get_sessionmaker(make_engine())

    try:
        if args.resume is not None:
            report = resume_disbursement(
                session_factory,
                args.resume,
                include_unreconciled=args.include_unreconciled,
            )
            print(
                json.dumps(
                    {
                        "draw_id": args.resume,
                        "total_disbursed": str(report.total_disbursed),
                        "outcomes": [o.as_dict() for o in report.outcomes],
                        "skipped": report.skipped,
                    },
                    indent=2,
                )
            )
            return 0 if not report.failed else 1

        announcer = (
            WebhookAnnouncer() if os.getenv("ANNOUNCE_WEBHOOK_URL") else LoggingAnnouncer()
        )
        result = run_settlement(session_factory, announcer=announcer)
    except (SettlementError, ValueError) as exc:
        logging.getLogger(__name__).error(f"Settlement not run: {exc}")
        return 2

    print(json.dumps(result.summary(), indent=2))
    return 0 if result.succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
