"""Typed metadata payloads for the bet audit log.

Each BetEvent type has exactly one payload shape. The store only accepts a
payload whose class matches the event type, and serialises it as JSON.
"""

from dataclasses import asdict, dataclass

from protocol import EventType


@dataclass(frozen=True)
class Created:
    stake: str
    title: str


@dataclass(frozen=True)
class Matched:
    stake: str
    payment_ref: str | None = None


@dataclass(frozen=True)
class WinClaimed:
    evidence: str


@dataclass(frozen=True)
class Conceded:
    winner_id: str
    settlement_ref: str


@dataclass(frozen=True)
class Disputed:
    dispute_id: str
    reason: str
    evidence: str | None = None


@dataclass(frozen=True)
class DisputeResponse:
    dispute_id: str
    reason: str
    evidence: str | None = None


@dataclass(frozen=True)
class Resolved:
    winner_id: str
    settlement_ref: str
    mode: str
    dispute_id: str | None = None
    resolution: str | None = None


@dataclass(frozen=True)
class Cancelled:
    settlement_ref: str
    reason: str = "cancelled by proposer"


PAYLOAD_TYPES = {
    EventType.CREATED: Created,
    EventType.MATCHED: Matched,
    EventType.WIN_CLAIMED: WinClaimed,
    EventType.CONCEDED: Conceded,
    EventType.DISPUTED: Disputed,
    EventType.DISPUTE_RESPONSE: DisputeResponse,
    EventType.RESOLVED: Resolved,
    EventType.CANCELLED: Cancelled,
}


def encode_payload(event_type: EventType, payload) -> dict:
    """Check the payload matches the event type and return it as a plain dict."""
    expected = PAYLOAD_TYPES[event_type]
    if not isinstance(payload, expected):
        raise TypeError(
            f"{event_type.value} event needs a {expected.__name__} payload, "
            f"got {type(payload).__name__}"
        )
    return asdict(payload)

