"""
Budget Reconciliation Runner

Recomputes every budget's spent total from its live transactions and
repairs drift. Run it once after an incident, or leave it running on an
interval as the safety net for the ledger.

Usage:
    python -m app.reconcile --once
    python -m app.reconcile --interval 600
    python -m app.reconcile --backend google_sheets --once
"""

import argparse
import asyncio
import signal
import sys
from typing import Optional

import structlog

from abaco.config import get_settings
from abaco.orchestrator import create_app_components


logger = structlog.get_logger("abaco.reconcile")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="abaco-reconcile",
        description="Recompute budget spent totals and repair drift.",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--once",
        action="store_true",
        help="Run a single reconciliation pass and exit",
    )
    mode.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between passes (default: LEDGER_RECONCILIATION_INTERVAL_SECONDS)",
    )
    parser.add_argument(
        "--backend",
        choices=["memory", "google_sheets"],
        default=None,
        help="Storage backend (default: STORAGE_BACKEND)",
    )
    return parser


async def run(once: bool, interval: Optional[int], backend: Optional[str]) -> int:
    service = create_app_components(backend=backend)
    job = service.reconciliation

    if once:
        report = await job.run_once()
        logger.info(
            "reconciliation_finished",
            budgets_checked=report.budgets_checked,
            repaired=len(report.repaired),
            failed=[str(b) for b in report.failed],
        )
        return 0 if not report.failed else 1

    interval = interval or get_settings().ledger.reconciliation_interval_seconds
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass

    logger.info("reconciliation_loop_started", interval_seconds=interval)
    runs = await job.run_periodically(interval_seconds=interval, stop_event=stop_event)
    logger.info("reconciliation_loop_stopped", runs=runs)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(run(args.once, args.interval, args.backend))


if __name__ == "__main__":
    sys.exit(main())
