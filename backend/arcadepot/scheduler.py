#!/usr/bin/env python3
"""
Daily settlement worker.

Settles the previous UTC day once it has ended, polling every SETTLE_POLL_SEC.
Runs as its own process next to the API (same POT_DB):

    python -m arcadepot.scheduler            # loop forever
    python -m arcadepot.scheduler --day 2025-01-15   # settle one day and exit
"""
import argparse
import json
import logging
import time
from typing import Any, Callable, Dict, Optional

from .app import build_services
from .config import configure_logging, day_key, load_settings, now_unix
from .errors import AlreadySettled, NoScores
from .payout import PAID, PayoutOrchestrator

log = logging.getLogger(__name__)


def previous_day_key(ts: int) -> str:
    return day_key(ts - 86400)


def run_daily_settlement(payout: PayoutOrchestrator, day: str) -> Optional[Dict[str, Any]]:
    """
    Settle one day. Returns the settlement report, or None when there is
    nothing to do (no scores, or already paid).
    """
    log.info("[scheduler] starting daily payout for %s", day)
    try:
        report = payout.settle(day)
    except NoScores:
        log.info("[scheduler] %s: no scores, nothing to settle", day)
        return None
    except AlreadySettled:
        log.info("[scheduler] %s: already paid", day)
        return None
    out = report.to_dict()
    log.info("[scheduler] payout result: %s", json.dumps(out, indent=2))
    return out


class DailyScheduler:
    def __init__(self, payout: PayoutOrchestrator, clock: Callable[[], int] = now_unix):
        self.payout = payout
        self._clock = clock
        self.last_day: Optional[str] = None

    def tick(self) -> Optional[Dict[str, Any]]:
        """Settle yesterday once; a day left partial is only retried on demand."""
        day = previous_day_key(self._clock())
        if day == self.last_day:
            return None
        try:
            report = run_daily_settlement(self.payout, day)
        except Exception:
            # keep last_day unset so the next tick tries again
            log.exception("[scheduler] payout failed for %s", day)
            return None
        self.last_day = day
        if report and report["status"] != PAID:
            log.warning("[scheduler] %s needs operator action: %s", day, report["needsAction"])
        return report


def main() -> None:
    ap = argparse.ArgumentParser(description="Daily prize settlement worker")
    ap.add_argument("--day", help="settle this UTC day (YYYY-MM-DD) once and exit")
    args = ap.parse_args()

    settings = load_settings()
    configure_logging(settings.log_level)
    services = build_services(settings)

    if args.day:
        run_daily_settlement(services.payout, args.day)
        return

    sched = DailyScheduler(services.payout)
    log.info("[scheduler] daily payout worker active, polling every %ss", settings.settle_poll_sec)
    while True:
        sched.tick()
        time.sleep(settings.settle_poll_sec)


if __name__ == "__main__":
    main()
