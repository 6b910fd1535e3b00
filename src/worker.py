"""Periodic background jobs for the commerce domain.

Runs the reservation expiry sweeper and the tracking reconciliation job on
the intervals configured in domain.toml (``sweeper_interval_seconds``,
``tracking_interval_seconds``). Several workers may run at once; both jobs
only communicate through stored state and every step they take is
idempotent.

Usage:
    python src/worker.py                  # Run both jobs forever
    python src/worker.py --job sweeper    # Run only the expiry sweeper
    python src/worker.py --once           # Run each job once and exit
"""

import argparse
import time

import structlog

from commerce.domain import commerce
from commerce.reservation.expiry import cancel_abandoned_orders, expire_stale_reservations
from commerce.tracking.reconciliation import reconcile_tracking
from commerce.utils.logging import add_context, clear_context, configure_logging
from commerce.utils.settings import setting

logger = structlog.get_logger(__name__)


def sweep():
    expire_stale_reservations()
    cancel_abandoned_orders()


JOBS = {
    "sweeper": (sweep, "sweeper_interval_seconds"),
    "tracking": (reconcile_tracking, "tracking_interval_seconds"),
}


def run_job(name):
    job, _ = JOBS[name]
    add_context(job=name)
    with commerce.domain_context():
        try:
            job()
        except Exception:
            # The next run picks up whatever this one left behind
            logger.exception("Background job failed")
        finally:
            clear_context()


def run_forever(names):
    with commerce.domain_context():
        intervals = {name: float(setting(JOBS[name][1])) for name in names}

    next_run = dict.fromkeys(names, time.monotonic())
    logger.info("Worker started", jobs=names, intervals=intervals)
    while True:
        now = time.monotonic()
        for name in names:
            if now >= next_run[name]:
                run_job(name)
                next_run[name] = now + intervals[name]
        time.sleep(max(0.0, min(next_run.values()) - time.monotonic()))


def main():
    parser = argparse.ArgumentParser(description="Commerce background jobs")
    parser.add_argument(
        "--job",
        choices=sorted(JOBS),
        help="Run a single job (default: run all)",
    )
    parser.add_argument("--once", action="store_true", help="Run the selected jobs once and exit")
    args = parser.parse_args()

    configure_logging()
    commerce.init()

    names = [args.job] if args.job else sorted(JOBS)
    if args.once:
        for name in names:
            run_job(name)
        return

    try:
        run_forever(names)
    except KeyboardInterrupt:
        logger.info("Worker stopped")


if __name__ == "__main__":
    main()
