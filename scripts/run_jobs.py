#!/usr/bin/env python
"""
Scheduled Jobs Runner

Runs the daily patrimoine snapshot and the stale-account refresh on their
schedules, or runs one of them once and exits.

Usage:
    python scripts/run_jobs.py [--once snapshots|refresh] [--date YYYY-MM-DD] [--user-id ID]

Options:
    --once: Run a single job now instead of starting the scheduler
    --date: Snapshot date (default: today). Only used with --once snapshots
    --user-id: Snapshot only this user. Only used with --once snapshots
"""
import signal
import sys
import threading
from datetime import date, datetime
from argparse import ArgumentParser

from konto.config import get_settings
from konto.db.core import Base, engine, session_local
from konto.jobs.monitor import JobMonitor
from konto.jobs.scheduler import build_scheduler
from konto.logging_config import setup_logging
from konto.services.currency import CurrencyNormalizer
from konto.services.provider import PowensClient
from konto.services.refresh import RefreshOrchestrator
from konto.services.snapshot_engine import run_daily_snapshots


def run_snapshots_once(snapshot_date: date, user_id: int = None) -> int:
    settings = get_settings()
    db = session_local()
    try:
        normalizer = CurrencyNormalizer.from_db(db, default_currency=settings.base_currency)
        result = run_daily_snapshots(db, snapshot_date=snapshot_date, normalizer=normalizer, user_id=user_id)
    finally:
        db.close()
    return 1 if result.users_failed else 0


def run_refresh_once() -> int:
    settings = get_settings()
    db = session_local()
    try:
        summary = RefreshOrchestrator(db, PowensClient.from_settings(settings), settings).run_once()
    finally:
        db.close()
    return 1 if summary.users_failed else 0


def run_scheduler() -> int:
    settings = get_settings()
    stop_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, stopping after the current user")
        stop_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    scheduler = build_scheduler(session_local, settings, monitor=JobMonitor())
    scheduler.run_forever(stop_event)
    return 0


def main():
    parser = ArgumentParser(description="Run the snapshot and refresh jobs")

    parser.add_argument(
        '--once',
        choices=['snapshots', 'refresh'],
        help='Run one job immediately and exit'
    )

    parser.add_argument(
        '--date',
        type=str,
        help='Snapshot date (YYYY-MM-DD), defaults to today'
    )

    parser.add_argument(
        '--user-id',
        type=int,
        help='Process only specific user ID'
    )

    args = parser.parse_args()

    # Parse date
    if args.date:
        try:
            snapshot_date = datetime.strptime(args.date, '%Y-%m-%d').date()
        except ValueError:
            parser.error(f"Invalid date format: {args.date}. Use YYYY-MM-DD")
    else:
        snapshot_date = date.today()

    Base.metadata.create_all(bind=engine)

    if args.once == 'snapshots':
        return run_snapshots_once(snapshot_date, args.user_id)
    if args.once == 'refresh':
        return run_refresh_once()
    return run_scheduler()


logger = setup_logging()

if __name__ == "__main__":
    sys.exit(main())
