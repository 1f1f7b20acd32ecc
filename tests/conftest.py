import sys
import os

# Ensure repo root is on the path for all tests
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import itertools

import pytest

from protocol import AgentStatus
from betting.config import Config
from betting.disputes import DisputeController
from betting.lifecycle import BetLifecycleController
from betting.payment import PaymentVerified
from betting.ratelimit import ActionRateLimiter
from betting.settlement import StubSettlement
from betting.store import LedgerStore


START = 1_700_000_000.0
HOUR = 3600

PROPOSAL = {
    "title": "BTC above 100k by Friday",
    "description": "Bitcoin trades above 100,000 USD on any major exchange before Friday close.",
    "terms": "Settled on the CoinGecko BTC/USD daily close for Friday.",
    "stake": "100",
    "category": "crypto",
}


class FakeClock:
    """Controllable stand-in for time.time."""

    def __init__(self, start: float = START):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def address_for(name: str) -> str:
    """Deterministic 0x address derived from an agent name (max 20 chars)."""
    return "0x" + name.encode().hex().ljust(40, "0")


def make_agent(store, name, verified=True):
    status = AgentStatus.VERIFIED if verified else AgentStatus.PENDING_CLAIM
    return store.create_agent(name, address_for(name), status=status)


_refs = itertools.count(1)


def paid(amount, payer_name, ref=None):
    """A payment as the upstream verifier would hand it over. Fresh ref per call."""
    return PaymentVerified(payer=address_for(payer_name), amount=amount,
                           payment_ref=ref or f"pay-{payer_name}-{next(_refs)}")


class Ledger:
    """Store, stub settlement and both controllers wired to one fake clock."""

    def __init__(self, limit=100, config=None):
        self.clock = FakeClock()
        self.store = LedgerStore(":memory:", clock=self.clock)
        self.settlement = StubSettlement()
        self.limiter = ActionRateLimiter(limit=limit, window=HOUR, clock=self.clock)
        self.lifecycle = BetLifecycleController(
            self.store, self.settlement, rate_limiter=self.limiter,
            config=config or Config(), clock=self.clock,
        )
        self.disputes = DisputeController(self.store, self.lifecycle)
        self.alice = make_agent(self.store, "alice")
        self.bob = make_agent(self.store, "bob")
        self.carol = make_agent(self.store, "carol")

    def open_bet(self, proposer=None, **overrides):
        proposer = proposer or self.alice
        name = self.store.get_agent(proposer)["name"]
        proposal = {**PROPOSAL, **overrides}
        bet = self.lifecycle.propose(proposer, proposal, paid(proposal["stake"], name))
        return bet["id"]

    def matched_bet(self, **overrides):
        bet_id = self.open_bet(**overrides)
        stake = self.store.get_bet(bet_id)["stake"]
        self.lifecycle.counter(bet_id, self.bob, paid(stake, "bob"))
        return bet_id

    def claimed_bet(self, claimer=None, **overrides):
        bet_id = self.matched_bet(**overrides)
        self.lifecycle.claim_win(bet_id, claimer or self.alice,
                                 "Screenshot of the CoinGecko close at 101,250 USD.")
        return bet_id

    def disputed_bet(self):
        bet_id = self.claimed_bet()
        dispute = self.lifecycle.raise_dispute(
            bet_id, self.bob, "The close on CoinGecko was 99,800 USD, not above 100k.")
        return bet_id, dispute["id"]

    def event_types(self, bet_id):
        return [e["type"] for e in self.store.list_events(bet_id)]


@pytest.fixture
def ledger():
    return Ledger()
