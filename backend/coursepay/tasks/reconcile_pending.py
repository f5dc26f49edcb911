"""
Stale Payment Sweep - re-verifies old pending payments with the gateway.

Checkouts the buyer abandoned leave pending records that no webhook will ever
finalize. This sweep asks the gateway about each one and runs the answer
through the normal reconciliation path: paid ones complete (and enroll),
failed or still-unresolved ones are expired to failed.

Usage:
    coursepay-reconcile
    coursepay-reconcile --older-than-minutes 120 --limit 500
    coursepay-reconcile --dry-run
"""
import argparse
import sys
from datetime import datetime, timedelta
from typing import Optional, Sequence

from coursepay.config import Settings, get_settings
from coursepay.database import SessionLocal, init_db
from coursepay.exceptions import PaymentError
from coursepay.services.gateway_client import PaystackClient
from coursepay.services.reconciliation_engine import ReconciliationEngine
from coursepay.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reconcile stale pending payments against the gateway")
    parser.add_argument(
        "--older-than-minutes",
        type=int,
        default=settings.PENDING_PAYMENT_TTL_MINUTES,
        help=f"Only pending payments older than this (default: {settings.PENDING_PAYMENT_TTL_MINUTES})",
    )
    parser.add_argument("--limit", type=int, default=100, help="Maximum payments per run (default: 100)")
    parser.add_argument("--dry-run", action="store_true", help="Report outcomes without writing")
    return parser


def run_sweep(
    session_factory,
    gateway: PaystackClient,
    older_than_minutes: int,
    limit: int = 100,
    dry_run: bool = False,
) -> dict:
    cutoff = datetime.utcnow() - timedelta(minutes=older_than_minutes)
    db = session_factory()
    try:
        return ReconciliationEngine(db).reconcile_stale(gateway, cutoff, limit=limit, dry_run=dry_run)
    finally:
        db.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    settings = get_settings()
    args = build_parser(settings).parse_args(argv)
    configure_logging(level=settings.LOG_LEVEL, log_dir=settings.LOG_DIR, filename="reconcile.log")

    if not settings.PAYSTACK_SECRET_KEY:
        logger.error("PAYSTACK_SECRET_KEY not configured; nothing can be verified")
        return 2

    init_db()
    try:
        with PaystackClient.from_settings(settings) as gateway:
            summary = run_sweep(SessionLocal, gateway, args.older_than_minutes, args.limit, args.dry_run)
    except PaymentError as e:
        logger.error("Sweep aborted: %s", e.message)
        return 1

    print(
        f"scanned={summary['scanned']} completed={summary['completed']} failed={summary['failed']} "
        f"unchanged={summary['unchanged']} skipped={summary['skipped']}"
        + (" (dry run)" if args.dry_run else "")
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
