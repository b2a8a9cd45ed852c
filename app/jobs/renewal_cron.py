"""
Scheduler entry point for budget renewal and housekeeping.

    python -m app.jobs.renewal_cron --manual     # one renewal batch
    python -m app.jobs.renewal_cron --start      # renew every RENEWAL_INTERVAL_HOURS until interrupted
    python -m app.jobs.renewal_cron --cleanup    # close expired budgets, prune ledger, purge old budgets
    python -m app.jobs.renewal_cron --report     # write the weekly renewal report
    python -m app.jobs.renewal_cron --health     # consistency checks
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
import time

from app.core.config import settings
from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.services import maintenance
from app.services.renewal import RenewalRunner, RenewalSummary
import app.models  # noqa: F401 - register models with Base.metadata

logger = logging.getLogger("app.jobs")


def run_renewal_cycle(runner: RenewalRunner | None = None) -> RenewalSummary:
    runner = runner or RenewalRunner()
    db = SessionLocal()
    try:
        summary = runner.run_scheduled(db)
        # Events left pending by an earlier interrupted run.
        runner.dispatcher.dispatch_pending(db)
    finally:
        db.close()
    for detail in summary.details:
        if detail.outcome == "renewed":
            logger.info("renewed budget=%s owner=%s", detail.name, detail.owner)
    return summary


def run_forever(interval_hours: float) -> None:
    runner = RenewalRunner()
    logger.info("renewal_scheduler_started interval_hours=%s", interval_hours)
    while True:
        try:
            run_renewal_cycle(runner)
        except Exception:
            # Keep the scheduler alive; the next cycle retries everything still eligible.
            logger.exception("renewal_cycle_failed")
        time.sleep(interval_hours * 3600)


def _with_session(fn, *args, **kwargs):
    db = SessionLocal()
    try:
        return fn(db, *args, **kwargs)
    finally:
        db.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Budget renewal scheduler")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--start", action="store_true", help="run renewals periodically until interrupted")
    group.add_argument("--manual", action="store_true", help="run one renewal batch and exit")
    group.add_argument("--cleanup", action="store_true", help="run the housekeeping passes")
    group.add_argument("--report", action="store_true", help="write the weekly renewal report")
    group.add_argument("--health", action="store_true", help="print consistency checks")
    parser.add_argument(
        "--interval-hours",
        type=float,
        default=settings.renewal_interval_hours,
        help="hours between batches with --start",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s %(message)s")
    args = build_parser().parse_args(argv)
    Base.metadata.create_all(bind=engine)

    if args.start:
        try:
            run_forever(args.interval_hours)
        except KeyboardInterrupt:
            logger.info("renewal_scheduler_stopped")
        return 0
    if args.manual:
        summary = run_renewal_cycle()
        print(json.dumps({"renewed": summary.renewed, "errors": summary.errors, "skipped": summary.skipped}))
        return 0 if summary.errors == 0 else 1
    if args.cleanup:
        print(json.dumps(_with_session(maintenance.run_cleanup)))
        return 0
    if args.report:
        report = _with_session(maintenance.weekly_report, write_to=settings.reports_dir)
        print(report.get("file"))
        return 0
    result = _with_session(maintenance.health_check)
    print(json.dumps(result))
    return 0 if result["ok"] else 1


if __name__ == "__main__":
    sys.exit(main())
