"""Dispute adjudication: rebuttals and admin rulings.

A dispute is pending until an admin names a winner. The ruling pays out
through the lifecycle controller's finalize_resolution(), which resolves
the dispute and the bet in the same transaction.
"""

import logging

from protocol import ADMIN_ACTOR, BetStatus, DisputeStatus, EventType, NotificationType, ResolutionMode
from betting import events as ev
from betting.errors import (
    AlreadyResolved, AlreadyResponded, Forbidden, InvalidState, InvalidWinner,
    NotFound, NotPending, ValidationError,
)
from betting.proposal import validate_admin_notes, validate_optional_evidence, validate_reason

log = logging.getLogger(__name__)


class DisputeController:

    def __init__(self, store, lifecycle):
        self.store = store
        self.lifecycle = lifecycle

    def get(self, dispute_id: str) -> dict:
        """Dispute with its bet and both participants."""
        dispute = self.store.get_dispute(dispute_id)
        if not dispute:
            raise NotFound("Dispute not found", dispute_id=dispute_id)
        bet = self.store.get_bet(dispute["bet_id"])
        dispute["bet"] = bet
        dispute["proposer"] = self.lifecycle.agent_summary(bet["proposer_id"])
        dispute["counter"] = self.lifecycle.agent_summary(bet["counter_id"])
        return dispute

    def list_pending(self, limit: int = 100) -> list[dict]:
        disputes = self.store.list_disputes(DisputeStatus.PENDING, limit=limit)
        for d in disputes:
            bet = self.store.get_bet(d["bet_id"])
            d["bet_title"] = bet["title"]
            d["stake"] = bet["stake"]
        return disputes

    def respond(self, dispute_id: str, actor_id: str, reason: str,
                evidence: str | None = None) -> dict:
        """The win-claimer answers a dispute. One response per dispute."""
        self.lifecycle.require_verified(actor_id)
        errors = validate_reason(reason) + validate_optional_evidence(evidence)
        if errors:
            raise ValidationError(errors[0])
        dispute = self.store.get_dispute(dispute_id)
        if not dispute:
            raise NotFound("Dispute not found", dispute_id=dispute_id)
        bet = self.store.get_bet(dispute["bet_id"])
        if actor_id == dispute["raised_by_id"]:
            raise Forbidden("Cannot respond to your own dispute")
        if actor_id not in (bet["proposer_id"], bet["counter_id"]):
            raise Forbidden("Only the other participant can respond")
        if dispute["status"] != DisputeStatus.PENDING.value:
            raise NotPending("Dispute is no longer pending")
        if dispute["counter_reason"] is not None:
            raise AlreadyResponded("Dispute already has a response")

        with self.store.transaction():
            if not self.store.record_dispute_response(dispute_id, reason, evidence):
                raise AlreadyResponded("Dispute already has a response")
            self.store.append_event(bet["id"], actor_id, EventType.DISPUTE_RESPONSE,
                                    ev.DisputeResponse(dispute_id=dispute_id, reason=reason,
                                                       evidence=evidence))
            self.store.notify(dispute["raised_by_id"], bet["id"], NotificationType.DISPUTE_RESPONSE,
                              f'Counter-party responded to your dispute on "{bet["title"]}".')
        log.info("dispute %s answered by %s", dispute_id, actor_id)
        return self.store.get_dispute(dispute_id)

    def resolve(self, dispute_id: str, winner_id: str, notes: str | None = None,
                admin_id: str = ADMIN_ACTOR) -> dict:
        """Rule a pending dispute for `winner_id` and pay out both stakes.

        Ruling on an already-resolved dispute raises AlreadyResolved and
        never reaches the settlement service.
        """
        errors = validate_admin_notes(notes)
        if errors:
            raise ValidationError(errors[0])
        dispute = self.store.get_dispute(dispute_id)
        if not dispute:
            raise NotFound("Dispute not found", dispute_id=dispute_id)
        if dispute["status"] == DisputeStatus.RESOLVED.value:
            raise AlreadyResolved("Dispute already resolved", winner_id=dispute["winner_id"])
        bet = self.store.get_bet(dispute["bet_id"])
        if winner_id not in (bet["proposer_id"], bet["counter_id"]):
            raise InvalidWinner("Winner must be a participant in the bet")
        if bet["status"] != BetStatus.DISPUTED.value:
            raise InvalidState(f"Bet is {bet['status']}, not disputed", status=bet["status"])

        resolution = notes or "Resolved by admin"
        result = self.lifecycle.finalize_resolution(
            bet, winner_id, ResolutionMode.DISPUTE, admin_id,
            dispute_id=dispute_id, resolution=resolution,
        )
        log.info("dispute %s resolved for %s by %s", dispute_id, winner_id, admin_id)
        return {"dispute_id": dispute_id, **result}
