"""Runtime configuration, read once from BET_* environment variables."""

import os
from dataclasses import dataclass

from protocol import (
    BET_ACTION_LIMIT, BET_ACTION_WINDOW, DEFAULT_EXPIRY_HOURS, SETTLEMENT_LEASE_SECONDS,
    WIN_CLAIM_TIMEOUT_HOURS, ZERO_ADDRESS,
)


@dataclass(frozen=True)
class Config:
    db_path: str = ":memory:"
    port: int = 8000
    admin_token: str = ""  # empty disables the admin routes
    facilitator_url: str = ""  # empty selects the in-memory stub settlement
    facilitator_key: str = ""
    facilitator_address: str = ZERO_ADDRESS
    action_limit: int = BET_ACTION_LIMIT
    action_window: int = BET_ACTION_WINDOW
    win_claim_timeout_hours: int = WIN_CLAIM_TIMEOUT_HOURS
    default_expiry_hours: int = DEFAULT_EXPIRY_HOURS
    sweep_interval: int = 0  # seconds; 0 disables the background sweeper
    settlement_lease: int = SETTLEMENT_LEASE_SECONDS  # seconds before recovery may take over
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ=None) -> "Config":
        env = os.environ if environ is None else environ
        return cls(
            db_path=env.get("BET_DB", ":memory:"),
            port=int(env.get("BET_PORT", "8000")),
            admin_token=env.get("BET_ADMIN_TOKEN", ""),
            facilitator_url=env.get("BET_FACILITATOR_URL", ""),
            facilitator_key=env.get("BET_FACILITATOR_KEY", ""),
            facilitator_address=env.get("BET_FACILITATOR_ADDRESS", ZERO_ADDRESS),
            action_limit=int(env.get("BET_ACTION_LIMIT", BET_ACTION_LIMIT)),
            action_window=int(env.get("BET_ACTION_WINDOW", BET_ACTION_WINDOW)),
            win_claim_timeout_hours=int(env.get("BET_WIN_CLAIM_TIMEOUT_HOURS", WIN_CLAIM_TIMEOUT_HOURS)),
            default_expiry_hours=int(env.get("BET_DEFAULT_EXPIRY_HOURS", DEFAULT_EXPIRY_HOURS)),
            sweep_interval=int(env.get("BET_SWEEP_INTERVAL", "0")),
            settlement_lease=int(env.get("BET_SETTLEMENT_LEASE", SETTLEMENT_LEASE_SECONDS)),
            log_level=env.get("BET_LOG_LEVEL", "INFO").upper(),
        )
