"""Maintenance sweeps: expired offers, lapsed win claims, stuck settlements.

Nothing here runs on its own. sweep() is called from the admin endpoint or
from the optional background thread started by run_server.py.
"""

import logging
import threading

from protocol import BetStatus
from betting.errors import BetError

log = logging.getLogger(__name__)


def sweep(lifecycle, limit: int = 100) -> dict:
    """Run one maintenance pass. Returns what was done, by bet id."""
    report = {"recovered": [], "expired": [], "timed_out": [], "failed": []}

    for outcome in lifecycle.recover_in_flight():
        report["recovered"].append(outcome)

    now = lifecycle.clock()
    hours = lifecycle.config.win_claim_timeout_hours

    for bet in lifecycle.store.list_by_status(BetStatus.OPEN, limit=limit):
        if now < bet["expires_at"]:
            continue
        try:
            lifecycle.expire_bet(bet["id"])
            report["expired"].append(bet["id"])
        except BetError as e:
            log.warning("expiry of bet %s failed: %s", bet["id"], e.message)
            report["failed"].append({"bet_id": bet["id"], "error": e.message})

    for bet in lifecycle.store.list_by_status(BetStatus.WIN_CLAIMED, limit=limit):
        if now < bet["win_claimed_at"] + hours * 3600:
            continue
        try:
            lifecycle.resolve_claim_timeout(bet["id"])
            report["timed_out"].append(bet["id"])
        except BetError as e:
            log.warning("claim timeout of bet %s failed: %s", bet["id"], e.message)
            report["failed"].append({"bet_id": bet["id"], "error": e.message})

    if report["expired"] or report["timed_out"] or report["recovered"]:
        log.info("sweep: %d expired, %d timed out, %d recovered",
                 len(report["expired"]), len(report["timed_out"]), len(report["recovered"]))
    return report


def start_sweeper(lifecycle, interval: float, stop: threading.Event | None = None) -> threading.Thread:
    """Run sweep() every `interval` seconds on a daemon thread until `stop` is set."""
    stop = stop or threading.Event()

    def run():
        while not stop.wait(interval):
            try:
                sweep(lifecycle)
            except Exception:
                log.exception("sweep failed")

    thread = threading.Thread(target=run, name="bet-sweeper", daemon=True)
    thread.stop_event = stop
    thread.start()
    return thread
