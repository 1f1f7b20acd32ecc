"""Bet lifecycle controller.

The only writer of bet status. Every transition loads the bet, checks the
actor and the current status, and commits its rows (bet, events,
notifications, reputation) in one store transaction.

Transitions that move money go through a transitional marker:

    1. CAS the bet into RESOLVING / CANCELLING and record a pending
       settlement with the intended outcome. The pending record is the
       caller's lease on the settlement.
    2. Call the settlement service with an idempotency key.
    3. On success, finish the transition in one transaction. On failure,
       put the bet back where it was and raise SettlementFailure.

A second caller racing the first hits the marker and is rejected before
any money moves. Bets left in a marker by a crash are finished or rolled
back by recover_in_flight(), which leaves leases younger than
Config.settlement_lease alone.

Each payment reference is spent once. A paid action that is rejected gets
its payment refunded under a key derived from the reference alone.
"""

import logging
import time
from decimal import Decimal, InvalidOperation

from protocol import (
    BetStatus, AgentStatus, EventType, NotificationType, ResolutionMode,
    SettlementKind, SettlementState, CONCEDABLE_STATES,
    FEED_DEFAULT_LIMIT, FEED_MAX_LIMIT, MY_BETS_LIMIT,
)
from betting import events as ev
from betting.config import Config
from betting.errors import (
    BetError, Conflict, Forbidden, InvalidState, NotFound, PaymentRequired,
    SettlementFailure, ValidationError,
)
from betting.payment import PaymentVerified, PaymentChallenge, build_challenge
from betting.proposal import (
    validate_proposal, validate_evidence, validate_reason, validate_optional_evidence,
    parse_stake, format_amount, payout_amount,
)
from betting.ratelimit import ActionRateLimiter
from betting.reputation import apply_outcome

log = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


def payout_key(bet_id: str) -> str:
    return f"{bet_id}:payout"


def refund_key(bet_id: str) -> str:
    return f"{bet_id}:refund"


def payment_refund_key(payment_ref: str) -> str:
    return f"payment-refund:{payment_ref}"


def other_party(bet: dict, agent_id: str) -> str:
    return bet["counter_id"] if agent_id == bet["proposer_id"] else bet["proposer_id"]


class BetLifecycleController:

    def __init__(self, store, settlement, rate_limiter=None, config: Config | None = None,
                 clock=time.time):
        self.store = store
        self.settlement = settlement
        self.config = config or Config()
        self.clock = clock
        self.rate_limiter = rate_limiter or ActionRateLimiter(
            self.config.action_limit, self.config.action_window, clock=clock)

    # --- Lookups ---

    def _load(self, bet_id: str) -> dict:
        bet = self.store.get_bet(bet_id)
        if not bet:
            raise NotFound("Bet not found", bet_id=bet_id)
        return bet

    def require_verified(self, agent_id: str) -> dict:
        agent = self.store.get_agent(agent_id) if agent_id else None
        if not agent:
            raise NotFound("Agent not found")
        if agent["status"] != AgentStatus.VERIFIED.value:
            raise Forbidden("Agent must be verified to perform this action")
        return agent

    @staticmethod
    def _require_participant(bet: dict, agent_id: str, action: str):
        if agent_id not in (bet["proposer_id"], bet["counter_id"]):
            raise Forbidden(f"Only participants can {action}")

    @staticmethod
    def _require_status(bet: dict, allowed, action: str):
        if BetStatus(bet["status"]) not in allowed:
            raise InvalidState(f"Cannot {action} a bet in status {bet['status']}",
                               status=bet["status"])

    def get_bet(self, bet_id: str) -> dict:
        """Bet with participant summaries, disputes and event timeline."""
        bet = self._load(bet_id)
        bet["proposer"] = self.agent_summary(bet["proposer_id"])
        bet["counter"] = self.agent_summary(bet["counter_id"]) if bet["counter_id"] else None
        bet["disputes"] = self.store.disputes_for_bet(bet_id)
        bet["events"] = self.store.list_events(bet_id)
        return bet

    def agent_summary(self, agent_id: str) -> dict | None:
        agent = self.store.get_agent(agent_id)
        if not agent:
            return None
        return {"id": agent["id"], "name": agent["name"], "reputation": agent["reputation"]}

    def feed(self, status: str | None = "open", agent_id: str | None = None,
             sort: str = "recent", limit: int = FEED_DEFAULT_LIMIT) -> list[dict]:
        if sort not in ("recent", "high_stakes"):
            raise ValidationError("sort must be 'recent' or 'high_stakes'")
        if status in (None, "", "all"):
            status_filter = None
        else:
            try:
                status_filter = BetStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown bet status: {status}")
        limit = max(1, min(limit, FEED_MAX_LIMIT))
        return self.store.list_bets(status=status_filter, agent_id=agent_id, sort=sort, limit=limit)

    def my_bets(self, agent_id: str) -> list[dict]:
        return self.store.list_bets(agent_id=agent_id, limit=MY_BETS_LIMIT)

    # --- Propose / counter ---

    def _challenge(self, payment, amount: str, description: str) -> dict:
        if isinstance(payment, PaymentChallenge) and payment.challenge:
            return payment.challenge
        return build_challenge(amount, description, pay_to=self.config.facilitator_address)

    def _check_payment(self, payment, amount: str, description: str):
        if not isinstance(payment, PaymentVerified):
            reason = payment.reason if isinstance(payment, PaymentChallenge) else "Stake payment required"
            raise PaymentRequired(reason, challenge=self._challenge(payment, amount, description))
        try:
            exact = Decimal(payment.amount) == Decimal(amount)
        except InvalidOperation:
            exact = False
        if not exact:
            raise PaymentRequired(
                f"Payment of {payment.amount} does not match stake {amount}",
                challenge=self._challenge(None, amount, description),
            )

    def _consume_payment(self, payment: PaymentVerified, agent_id: str, purpose: str,
                         bet_id: str | None = None):
        if not self.store.consume_payment(payment.payment_ref, agent_id, purpose,
                                          payment.amount, bet_id):
            log.warning("payment %s replayed by %s for %s", payment.payment_ref, agent_id, purpose)
            raise Conflict("Payment reference already used", payment_ref=payment.payment_ref)

    def _refund_payment(self, bet_id: str, agent: dict | None,
                        payment: PaymentVerified) -> str | None:
        """Return a collected stake to a payer whose action was rejected."""
        key = payment_refund_key(payment.payment_ref)
        address = agent["address"] if agent else payment.payer
        if not address:
            log.error("cannot refund payment %s: no payer address", payment.payment_ref)
            return None
        record = self.store.begin_settlement(
            key, bet_id, SettlementKind.REFUND, address, payment.amount,
            {"reason": "rejected action", "payment_ref": payment.payment_ref},
        )
        if record["status"] == SettlementState.SUCCEEDED.value:
            return record["tx_ref"]
        result = self.settlement.refund(address, payment.amount, key)
        if result.success:
            self.store.finish_settlement(key, SettlementState.SUCCEEDED, tx_ref=result.tx_ref)
            log.warning("refunded rejected payment %s on bet %s: %s",
                        payment.payment_ref, bet_id, result.tx_ref)
            return result.tx_ref
        self.store.finish_settlement(key, SettlementState.FAILED, error=result.error)
        log.error("compensating refund failed for payment %s on bet %s: %s",
                  payment.payment_ref, bet_id, result.error)
        return None

    def _attach_refund(self, error: BetError, refund_ref: str | None):
        if refund_ref:
            error.details["refund_ref"] = refund_ref
            if isinstance(error, Conflict):
                error.refund_ref = refund_ref
        else:
            error.details["refund_failed"] = True

    def propose(self, agent_id: str, proposal: dict, payment=None) -> dict:
        """Create an open bet once the proposer's stake payment is verified."""
        paid = isinstance(payment, PaymentVerified)
        if paid:
            self._consume_payment(payment, agent_id or "", "propose")
        agent = self.store.get_agent(agent_id) if agent_id else None
        try:
            self.rate_limiter.check_limit(agent_id)
            self.require_verified(agent_id)
            ok, errors = validate_proposal(proposal)
            if not ok:
                raise ValidationError("Invalid bet proposal", errors=errors)
            stake = format_amount(parse_stake(proposal["stake"]))
            self._check_payment(payment, stake, f"Stake for bet: {proposal['title']}")
        except BetError as e:
            if paid:
                self._attach_refund(e, self._refund_payment("", agent, payment))
            raise

        hours = proposal.get("expires_in_hours") or self.config.default_expiry_hours
        expires_at = self.clock() + hours * 3600
        with self.store.transaction():
            bet_id = self.store.create_bet(
                agent_id, proposal["title"], proposal["description"], proposal["terms"],
                stake, expires_at, category=proposal.get("category"),
                escrow_tx_hash=payment.payment_ref,
            )
            self.store.append_event(bet_id, agent_id, EventType.CREATED,
                                    ev.Created(stake=stake, title=proposal["title"]))
        self.rate_limiter.record_action(agent_id)
        log.info("bet %s proposed by %s, stake %s", bet_id, agent_id, stake)
        return self.store.get_bet(bet_id)

    def counter(self, bet_id: str, agent_id: str, payment=None) -> dict:
        """Take the other side of an open bet.

        A verified payment that arrives for a bet this agent cannot counter
        (already matched, expired, own bet) is refunded and the error says so.
        A payment reference that was already spent is rejected outright.
        """
        paid = isinstance(payment, PaymentVerified)
        if paid:
            self._consume_payment(payment, agent_id or "", "counter", bet_id)
        agent = self.store.get_agent(agent_id) if agent_id else None
        try:
            self.rate_limiter.check_limit(agent_id)
            self.require_verified(agent_id)
            bet = self._load(bet_id)
            if bet["status"] != BetStatus.OPEN.value:
                if paid:
                    raise Conflict("Bet is no longer open", status=bet["status"])
                raise InvalidState(f"Cannot counter a bet in status {bet['status']}",
                                   status=bet["status"])
            if bet["proposer_id"] == agent_id:
                raise Forbidden("Cannot counter your own bet")
            if self.clock() >= bet["expires_at"]:
                raise InvalidState("Bet has expired")
            self._check_payment(payment, bet["stake"], f"Counter stake for bet: {bet['title']}")

            now = self.clock()
            with self.store.transaction():
                if not self.store.transition_bet(
                        bet_id, BetStatus.OPEN, BetStatus.COUNTERED,
                        counter_id=agent_id, countered_at=now):
                    raise Conflict("Bet was countered by someone else")
                self.store.append_event(bet_id, agent_id, EventType.MATCHED,
                                        ev.Matched(stake=bet["stake"], payment_ref=payment.payment_ref))
                self.store.notify(bet["proposer_id"], bet_id, NotificationType.BET_COUNTERED,
                                  f'Your bet "{bet["title"]}" has been countered!')
        except BetError as e:
            if paid:
                self._attach_refund(e, self._refund_payment(bet_id, agent, payment))
            raise

        self.rate_limiter.record_action(agent_id)
        log.info("bet %s countered by %s", bet_id, agent_id)
        return self.store.get_bet(bet_id)

    # --- Claim / dispute ---

    def claim_win(self, bet_id: str, agent_id: str, evidence: str) -> dict:
        self.require_verified(agent_id)
        errors = validate_evidence(evidence)
        if errors:
            raise ValidationError(errors[0])
        bet = self._load(bet_id)
        self._require_participant(bet, agent_id, "claim a win")
        self._require_status(bet, {BetStatus.COUNTERED}, "claim a win on")

        hours = self.config.win_claim_timeout_hours
        with self.store.transaction():
            if not self.store.transition_bet(
                    bet_id, BetStatus.COUNTERED, BetStatus.WIN_CLAIMED,
                    win_claimer_id=agent_id, win_claim_evidence=evidence,
                    win_claimed_at=self.clock()):
                raise Conflict("Bet changed while claiming the win")
            self.store.append_event(bet_id, agent_id, EventType.WIN_CLAIMED,
                                    ev.WinClaimed(evidence=evidence))
            self.store.notify(other_party(bet, agent_id), bet_id, NotificationType.WIN_CLAIMED,
                              f'Win claimed on "{bet["title"]}". You have {hours}h to dispute.')
        log.info("win claimed on bet %s by %s", bet_id, agent_id)
        return self.store.get_bet(bet_id)

    def raise_dispute(self, bet_id: str, agent_id: str, reason: str,
                      evidence: str | None = None) -> dict:
        self.require_verified(agent_id)
        errors = validate_reason(reason) + validate_optional_evidence(evidence)
        if errors:
            raise ValidationError(errors[0])
        bet = self._load(bet_id)
        self._require_participant(bet, agent_id, "dispute")
        self._require_status(bet, {BetStatus.WIN_CLAIMED}, "dispute")
        if bet["win_claimer_id"] == agent_id:
            raise Forbidden("Cannot dispute your own win claim")

        with self.store.transaction():
            if not self.store.transition_bet(bet_id, BetStatus.WIN_CLAIMED, BetStatus.DISPUTED):
                raise Conflict("Bet changed while raising the dispute")
            dispute_id = self.store.create_dispute(bet_id, agent_id, reason, evidence)
            self.store.append_event(bet_id, agent_id, EventType.DISPUTED,
                                    ev.Disputed(dispute_id=dispute_id, reason=reason, evidence=evidence))
            self.store.notify(bet["win_claimer_id"], bet_id, NotificationType.DISPUTE_RAISED,
                              f'Your win claim on "{bet["title"]}" has been disputed.')
        log.info("dispute %s raised on bet %s by %s", dispute_id, bet_id, agent_id)
        return self.store.get_dispute(dispute_id)

    # --- Money-moving transitions ---

    def concede(self, bet_id: str, agent_id: str) -> dict:
        """Give up; the other participant is paid both stakes."""
        self.require_verified(agent_id)
        bet = self._load(bet_id)
        self._require_participant(bet, agent_id, "concede")
        self._require_status(bet, CONCEDABLE_STATES, "concede")
        winner_id = other_party(bet, agent_id)
        return self.finalize_resolution(bet, winner_id, ResolutionMode.CONCEDE, agent_id)

    def resolve_claim_timeout(self, bet_id: str) -> dict:
        """Pay the win-claimer once the dispute window has passed unanswered."""
        bet = self._load(bet_id)
        self._require_status(bet, {BetStatus.WIN_CLAIMED}, "time out")
        deadline = bet["win_claimed_at"] + self.config.win_claim_timeout_hours * 3600
        if self.clock() < deadline:
            raise InvalidState("Dispute window has not elapsed yet", deadline=deadline)
        return self.finalize_resolution(bet, bet["win_claimer_id"], ResolutionMode.TIMEOUT,
                                        SYSTEM_ACTOR)

    def finalize_resolution(self, bet: dict, winner_id: str, mode: ResolutionMode,
                            actor_id: str, dispute_id: str | None = None,
                            resolution: str | None = None) -> dict:
        """Pay the winner both stakes and resolve the bet.

        Shared by concede, dispute adjudication and claim timeout. `bet` is
        the snapshot the caller validated; if it changed since, nothing is
        paid and Conflict is raised.
        """
        bet_id = bet["id"]
        prior = BetStatus(bet["status"])
        winner = self.store.get_agent(winner_id)
        amount = payout_amount(bet["stake"])
        key = payout_key(bet_id)
        intent = {
            "winner_id": winner_id,
            "mode": mode.value,
            "actor_id": actor_id,
            "prior_status": prior.value,
            "prior_updated_at": bet["updated_at"],
            "dispute_id": dispute_id,
            "resolution": resolution,
        }

        with self.store.transaction():
            if not self.store.transition_bet(bet_id, prior, BetStatus.RESOLVING):
                raise Conflict("Bet is already being resolved")
            record = self.store.begin_settlement(
                key, bet_id, SettlementKind.PAYOUT, winner["address"], amount, intent)

        tx_ref = self._run_settlement(bet, record, BetStatus.RESOLVING, self.settlement.payout,
                                      self._apply_resolution, "Payout failed")
        log.info("bet %s resolved (%s), %s paid %s: %s", bet_id, mode.value, winner_id, amount, tx_ref)
        return {"bet_id": bet_id, "winner_id": winner_id, "settlement_ref": tx_ref}

    def cancel(self, bet_id: str, agent_id: str) -> dict:
        """Proposer withdraws an open bet and gets the stake back."""
        self.require_verified(agent_id)
        bet = self._load(bet_id)
        if bet["proposer_id"] != agent_id:
            raise Forbidden("Only the proposer can cancel")
        self._require_status(bet, {BetStatus.OPEN}, "cancel")
        return self._refund_and_cancel(bet, agent_id, "cancelled by proposer")

    def expire_bet(self, bet_id: str) -> dict:
        """Refund and cancel an open bet nobody countered before it expired."""
        bet = self._load(bet_id)
        self._require_status(bet, {BetStatus.OPEN}, "expire")
        if self.clock() < bet["expires_at"]:
            raise InvalidState("Bet has not expired yet", expires_at=bet["expires_at"])
        return self._refund_and_cancel(bet, SYSTEM_ACTOR, "expired")

    def _refund_and_cancel(self, bet: dict, actor_id: str, reason: str) -> dict:
        bet_id = bet["id"]
        proposer = self.store.get_agent(bet["proposer_id"])
        key = refund_key(bet_id)
        intent = {
            "actor_id": actor_id,
            "reason": reason,
            "prior_status": BetStatus.OPEN.value,
            "prior_updated_at": bet["updated_at"],
        }

        with self.store.transaction():
            if not self.store.transition_bet(bet_id, BetStatus.OPEN, BetStatus.CANCELLING):
                raise Conflict("Bet is no longer open")
            record = self.store.begin_settlement(
                key, bet_id, SettlementKind.REFUND, proposer["address"], bet["stake"], intent)

        tx_ref = self._run_settlement(bet, record, BetStatus.CANCELLING, self.settlement.refund,
                                      self._apply_cancellation, "Refund failed")
        log.info("bet %s cancelled (%s), refunded %s: %s", bet_id, reason, bet["stake"], tx_ref)
        return {"bet_id": bet_id, "settlement_ref": tx_ref}

    def _run_settlement(self, bet: dict, record: dict, marker: BetStatus, send, apply,
                        failure: str) -> str:
        """Send a leased settlement and finish the transition. Returns the tx ref.

        If recovery took the lease over meanwhile, whatever it recorded for
        the key is the outcome.
        """
        bet_id, key, intent = bet["id"], record["key"], record["intent"]
        if record["status"] == SettlementState.SUCCEEDED.value:
            with self.store.transaction():
                apply(bet, intent, record["tx_ref"])
            return record["tx_ref"]

        result = send(record["address"], record["amount"], key)
        if result.success:
            with self.store.transaction():
                finished = self.store.finish_settlement(
                    key, SettlementState.SUCCEEDED, tx_ref=result.tx_ref)
                if finished:
                    apply(bet, intent, result.tx_ref)
            if finished:
                return result.tx_ref
        elif self._abort(bet_id, key, marker, intent, result.error):
            raise SettlementFailure(failure, error=result.error)

        final = self.store.get_settlement(key)
        log.warning("settlement %s for bet %s was finished by recovery: %s",
                    key, bet_id, final["status"])
        if final["status"] == SettlementState.SUCCEEDED.value:
            return final["tx_ref"]
        if final["status"] == SettlementState.PENDING.value and result.success:
            return result.tx_ref
        raise SettlementFailure(failure, error=final["error"] or result.error)

    def _revert(self, bet_id: str, marker: BetStatus, intent: dict):
        if not self.store.transition_bet(bet_id, marker, BetStatus(intent["prior_status"]),
                                         updated_at=intent["prior_updated_at"]):
            raise InvalidState(f"Bet left the {marker.value} state during settlement",
                               bet_id=bet_id)

    def _abort(self, bet_id: str, key: str, marker: BetStatus, intent: dict,
               error: str | None) -> bool:
        """Put a bet back in its prior status after a failed settlement call.

        Returns False, changing nothing, if the record was already finished
        by someone else.
        """
        with self.store.transaction():
            if not self.store.finish_settlement(key, SettlementState.FAILED, error=error):
                return False
            self._revert(bet_id, marker, intent)
        log.error("settlement %s failed, bet %s back to %s: %s",
                  key, bet_id, intent["prior_status"], error)
        return True

    def _apply_resolution(self, bet: dict, intent: dict, tx_ref: str):
        bet_id = bet["id"]
        winner_id = intent["winner_id"]
        loser_id = other_party(bet, winner_id)
        mode = ResolutionMode(intent["mode"])
        actor_id = intent["actor_id"]
        dispute_id = intent.get("dispute_id")
        title = bet["title"]

        if not self.store.transition_bet(
                bet_id, BetStatus.RESOLVING, BetStatus.RESOLVED,
                winner_id=winner_id, resolved_at=self.clock(), resolution_tx_hash=tx_ref):
            raise InvalidState("Bet left the resolving state during settlement")

        if dispute_id and not self.store.resolve_dispute(
                dispute_id, winner_id, intent.get("resolution") or "", actor_id):
            raise InvalidState("Dispute is no longer pending", dispute_id=dispute_id)

        if mode == ResolutionMode.CONCEDE:
            self.store.append_event(bet_id, actor_id, EventType.CONCEDED,
                                    ev.Conceded(winner_id=winner_id, settlement_ref=tx_ref))
        self.store.append_event(bet_id, actor_id, EventType.RESOLVED, ev.Resolved(
            winner_id=winner_id, settlement_ref=tx_ref, mode=mode.value,
            dispute_id=dispute_id, resolution=intent.get("resolution"),
        ))
        apply_outcome(self.store, winner_id, loser_id, mode)

        if mode == ResolutionMode.DISPUTE:
            self.store.notify(winner_id, bet_id, NotificationType.DISPUTE_RESOLVED,
                              f'Dispute resolved in your favor for "{title}". Payout sent.')
            self.store.notify(loser_id, bet_id, NotificationType.DISPUTE_RESOLVED,
                              f'Dispute resolved against you for "{title}".')
        else:
            self.store.notify(winner_id, bet_id, NotificationType.PAYOUT_READY,
                              f'You won "{title}"! Payout sent.')

    def _apply_cancellation(self, bet: dict, intent: dict, tx_ref: str):
        bet_id = bet["id"]
        if not self.store.transition_bet(bet_id, BetStatus.CANCELLING, BetStatus.CANCELLED,
                                         resolution_tx_hash=tx_ref):
            raise InvalidState("Bet left the cancelling state during settlement")
        self.store.append_event(bet_id, intent["actor_id"], EventType.CANCELLED,
                                ev.Cancelled(settlement_ref=tx_ref, reason=intent["reason"]))
        if intent["reason"] == "expired":
            self.store.notify(bet["proposer_id"], bet_id, NotificationType.BET_EXPIRED,
                              f'Your bet "{bet["title"]}" expired without a counter. Stake refunded.')

    # --- Crash recovery ---

    def recover_in_flight(self, stale_after: float | None = None) -> list[dict]:
        """Finish or roll back bets stuck in RESOLVING / CANCELLING.

        Only settlements whose lease is older than `stale_after` seconds
        (Config.settlement_lease by default) are touched; younger ones still
        belong to a live caller. Taken-over settlements are re-submitted
        under the same idempotency key, so a payout that already went
        through is not sent twice. Pass stale_after=0 at startup, when no
        caller can be live.
        """
        lease = self.config.settlement_lease if stale_after is None else stale_after
        cutoff = self.clock() - lease
        outcomes = []
        for marker, key_for, send, apply in (
            (BetStatus.RESOLVING, payout_key, self.settlement.payout, self._apply_resolution),
            (BetStatus.CANCELLING, refund_key, self.settlement.refund, self._apply_cancellation),
        ):
            for bet in self.store.list_by_status(marker):
                try:
                    outcome = self._recover_one(bet, marker, key_for(bet["id"]), send, apply, cutoff)
                except InvalidState as e:
                    # its own caller finished it after the listing
                    log.info("bet %s left %s during recovery: %s", bet["id"], marker.value, e.message)
                    continue
                if outcome:
                    outcomes.append({"bet_id": bet["id"], "outcome": outcome})
        return outcomes

    def _recover_one(self, bet: dict, marker: BetStatus, key: str, send, apply,
                     cutoff: float) -> str | None:
        bet_id = bet["id"]
        record = self.store.get_settlement(key)
        if record is None:
            log.error("bet %s is %s with no settlement record", bet_id, marker.value)
            return "orphaned"
        intent = record["intent"]

        if record["status"] == SettlementState.SUCCEEDED.value:
            with self.store.transaction():
                apply(bet, intent, record["tx_ref"])
            return "completed"
        if record["status"] == SettlementState.FAILED.value:
            with self.store.transaction():
                self._revert(bet_id, marker, intent)
            return "reverted"
        if not self.store.take_over_settlement(key, cutoff):
            log.debug("settlement %s still leased, leaving bet %s", key, bet_id)
            return None

        result = send(record["address"], record["amount"], key)
        if not result.success:
            return "reverted" if self._abort(bet_id, key, marker, intent, result.error) else None
        with self.store.transaction():
            if not self.store.finish_settlement(key, SettlementState.SUCCEEDED, tx_ref=result.tx_ref):
                return None
            apply(bet, intent, result.tx_ref)
        log.warning("recovered bet %s from %s: %s", bet_id, marker.value, result.tx_ref)
        return "completed"
