"""Shared constants and state machine for the 1v1 betting protocol.

All modules import from here to avoid circular dependencies.
"""

from decimal import Decimal
from enum import Enum

# --- Protocol Constants ---

# Stake token: 6 fractional digits (USDC-style)
STAKE_DECIMALS = 6
STAKE_QUANTUM = Decimal("0.000001")
STAKE_PATTERN = r"^\d{1,12}(\.\d{1,6})?$"  # fits decimal(18,6)
DEFAULT_CURRENCY = "USDC"

# Text limits for proposals and resolution paths
TITLE_MIN, TITLE_MAX = 5, 200
DESCRIPTION_MIN, DESCRIPTION_MAX = 10, 2000
TERMS_MIN, TERMS_MAX = 10, 1000
EVIDENCE_MIN, EVIDENCE_MAX = 10, 2000
REASON_MIN, REASON_MAX = 10, 1000
ADMIN_NOTES_MAX = 2000

# Offer lifetime
DEFAULT_EXPIRY_HOURS = 168  # 7 days
MIN_EXPIRY_HOURS = 1
MAX_EXPIRY_HOURS = 720

# A pending settlement untouched for this long is presumed abandoned by a
# crashed caller and may be taken over by recovery. Must exceed the
# settlement client timeout.
SETTLEMENT_LEASE_SECONDS = 300

# Win-claim dispute window, communicated to the counter-party
WIN_CLAIM_TIMEOUT_HOURS = 24

# Action rate limit: successful propose/counter actions per rolling window
BET_ACTION_LIMIT = 10
BET_ACTION_WINDOW = 3600  # seconds

# Query caps
FEED_DEFAULT_LIMIT = 20
FEED_MAX_LIMIT = 50
MY_BETS_LIMIT = 50
NOTIFICATIONS_MAX_LIMIT = 100

# Payments land at the facilitator; zero address until configured
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Marker for admin-resolved disputes
ADMIN_ACTOR = "admin"


# --- State Machine ---

class BetStatus(Enum):
    OPEN = "open"              # awaiting counter
    COUNTERED = "countered"    # both stakes locked
    WIN_CLAIMED = "win_claimed"
    DISPUTED = "disputed"      # under admin review
    RESOLVING = "resolving"    # payout in flight
    RESOLVED = "resolved"
    CANCELLING = "cancelling"  # refund in flight
    CANCELLED = "cancelled"    # refunded (also used for expired offers)


# Valid state transitions: current_state -> set of valid next states.
# Settlement-bearing transitions pass through a transitional marker and may
# fall back to the prior state when the settlement call fails.
STATE_TRANSITIONS = {
    BetStatus.OPEN: {BetStatus.COUNTERED, BetStatus.CANCELLING},
    BetStatus.COUNTERED: {BetStatus.WIN_CLAIMED, BetStatus.RESOLVING},
    BetStatus.WIN_CLAIMED: {BetStatus.DISPUTED, BetStatus.RESOLVING},
    BetStatus.DISPUTED: {BetStatus.RESOLVING},
    BetStatus.RESOLVING: {
        BetStatus.RESOLVED,
        BetStatus.COUNTERED,
        BetStatus.WIN_CLAIMED,
        BetStatus.DISPUTED,
    },
    BetStatus.CANCELLING: {BetStatus.CANCELLED, BetStatus.OPEN},
    BetStatus.RESOLVED: set(),
    BetStatus.CANCELLED: set(),
}

# Statuses in which counter_id must be set
MATCHED_STATES = {
    BetStatus.COUNTERED, BetStatus.WIN_CLAIMED, BetStatus.DISPUTED,
    BetStatus.RESOLVING, BetStatus.RESOLVED,
}

CONCEDABLE_STATES = {BetStatus.COUNTERED, BetStatus.WIN_CLAIMED}


class DisputeStatus(Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


class AgentStatus(Enum):
    PENDING_CLAIM = "pending_claim"
    VERIFIED = "verified"
    SUSPENDED = "suspended"


class Category(Enum):
    CRYPTO = "crypto"
    SPORTS = "sports"
    POLITICS = "politics"
    ENTERTAINMENT = "entertainment"
    TECH = "tech"
    FINANCE = "finance"
    WEATHER = "weather"
    CUSTOM = "custom"


# --- Audit Log ---

class EventType(Enum):
    CREATED = "created"
    MATCHED = "matched"
    WIN_CLAIMED = "win_claimed"
    CONCEDED = "conceded"
    DISPUTED = "disputed"
    DISPUTE_RESPONSE = "dispute_response"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class NotificationType(Enum):
    BET_COUNTERED = "bet_countered"
    WIN_CLAIMED = "win_claimed"
    DISPUTE_RAISED = "dispute_raised"
    DISPUTE_RESPONSE = "dispute_response"
    DISPUTE_RESOLVED = "dispute_resolved"
    PAYOUT_READY = "payout_ready"
    BET_EXPIRED = "bet_expired"


# --- Resolution ---

class ResolutionMode(Enum):
    CONCEDE = "concede"
    DISPUTE = "dispute"
    TIMEOUT = "timeout"


# mode -> (winner delta, loser delta)
REPUTATION_DELTAS = {
    ResolutionMode.CONCEDE: (5, -2),
    ResolutionMode.DISPUTE: (3, -5),
    ResolutionMode.TIMEOUT: (5, -5),
}


# --- Settlement ---

class SettlementKind(Enum):
    PAYOUT = "payout"
    REFUND = "refund"


class SettlementState(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
