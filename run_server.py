#!/usr/bin/env python3
"""Betting platform server.

Configuration comes from BET_* env vars (see betting/config.py). Without
BET_FACILITATOR_URL payouts go to the in-memory stub settlement.
"""

import logging
import os
import sys
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import uvicorn
from betting.app import create_app
from betting.config import Config
from betting.settlement import FacilitatorSettlement, StubSettlement
from betting.store import LedgerStore
from betting.sweeper import start_sweeper

log = logging.getLogger("run_server")


def build_settlement(config: Config):
    if config.facilitator_url:
        return FacilitatorSettlement(config.facilitator_url, config.facilitator_key)
    log.warning("BET_FACILITATOR_URL not set, using stub settlement (no funds move)")
    return StubSettlement()


def main():
    config = Config.from_env()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if config.db_path != ":memory:" and os.path.dirname(config.db_path):
        os.makedirs(os.path.dirname(config.db_path), exist_ok=True)

    store = LedgerStore(config.db_path)
    app = create_app(store=store, settlement=build_settlement(config), config=config)

    recovered = app.state.lifecycle.recover_in_flight(stale_after=0)
    if recovered:
        log.warning("recovered %d in-flight settlements at startup", len(recovered))

    if config.sweep_interval > 0:
        start_sweeper(app.state.lifecycle, config.sweep_interval)
        log.info("sweeper running every %ds", config.sweep_interval)
    if not config.admin_token:
        log.warning("BET_ADMIN_TOKEN not set, admin routes disabled")

    log.info("listening on :%d", config.port)
    uvicorn.run(app, host="0.0.0.0", port=config.port)


if __name__ == "__main__":
    main()
