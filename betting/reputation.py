"""Reputation scoring for bet outcomes.

Each resolution mode carries a fixed (winner, loser) delta. Deltas and the
win/loss counters are written inside the same transaction that resolves
the bet, so a bet is scored at most once.
"""

from dataclasses import dataclass

from protocol import REPUTATION_DELTAS, ResolutionMode


@dataclass
class ReputationStats:
    """Reputation view of an agent row."""
    reputation: int = 0
    wins: int = 0
    losses: int = 0

    def total_bets(self) -> int:
        return self.wins + self.losses

    def win_rate(self) -> float:
        total = self.total_bets()
        if total == 0:
            return 0.0
        return self.wins / total

    def to_dict(self) -> dict:
        return {
            "reputation": self.reputation,
            "wins": self.wins,
            "losses": self.losses,
            "total_bets": self.total_bets(),
            "win_rate": round(self.win_rate(), 4),
        }

    @classmethod
    def from_agent(cls, agent: dict) -> "ReputationStats":
        return cls(
            reputation=agent.get("reputation", 0),
            wins=agent.get("wins", 0),
            losses=agent.get("losses", 0),
        )


@dataclass(frozen=True)
class Outcome:
    winner_id: str
    loser_id: str
    winner_delta: int
    loser_delta: int


def score_outcome(winner_id: str, loser_id: str, mode: ResolutionMode) -> Outcome:
    """Look up the reputation deltas for a resolved bet."""
    if winner_id == loser_id:
        raise ValueError("winner and loser must differ")
    winner_delta, loser_delta = REPUTATION_DELTAS[mode]
    return Outcome(winner_id, loser_id, winner_delta, loser_delta)


def apply_outcome(store, winner_id: str, loser_id: str, mode: ResolutionMode) -> Outcome:
    """Write the outcome to both agents. Call inside the resolving transaction."""
    outcome = score_outcome(winner_id, loser_id, mode)
    store.apply_reputation(outcome.winner_id, outcome.winner_delta, won=True)
    store.apply_reputation(outcome.loser_id, outcome.loser_delta, won=False)
    return outcome
