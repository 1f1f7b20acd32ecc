"""Stake payment pre-check.

Payment proofs are verified upstream (a facilitator-backed middleware or a
reverse proxy). The gate only reads the verified result off the request and
turns it into a typed value the controller consumes before proceeding:
PaymentVerified when an exact-amount payment is attached, otherwise
PaymentChallenge describing what the payer has to send.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from protocol import DEFAULT_CURRENCY, STAKE_DECIMALS, ZERO_ADDRESS

# Headers set by the upstream verifier once a payment has settled to escrow
PAYMENT_REF_HEADER = "x-payment-ref"
PAYMENT_AMOUNT_HEADER = "x-payment-amount"
PAYMENT_PAYER_HEADER = "x-payment-payer"


@dataclass(frozen=True)
class PaymentVerified:
    payer: str
    amount: str
    payment_ref: str


@dataclass(frozen=True)
class PaymentChallenge:
    reason: str
    challenge: dict = field(default_factory=dict)


def build_challenge(amount: str, description: str, pay_to: str = ZERO_ADDRESS,
                    currency: str = DEFAULT_CURRENCY) -> dict:
    """Payment requirements for an exact-amount stake, in token base units."""
    units = int(Decimal(amount).scaleb(STAKE_DECIMALS))
    return {
        "accepts": [{
            "scheme": "exact",
            "payTo": pay_to,
            "amount": str(units),
            "currency": currency,
        }],
        "description": description,
        "mimeType": "application/json",
    }


class HeaderPaymentGate:
    """Reads a pre-verified payment off request headers and checks the amount."""

    def __init__(self, pay_to: str = ZERO_ADDRESS, currency: str = DEFAULT_CURRENCY):
        self.pay_to = pay_to
        self.currency = currency

    def check(self, headers, amount: str, description: str):
        """Return PaymentVerified or PaymentChallenge for a stake of `amount`."""
        challenge = build_challenge(amount, description, self.pay_to, self.currency)
        ref = headers.get(PAYMENT_REF_HEADER)
        paid = headers.get(PAYMENT_AMOUNT_HEADER)
        if not ref or not paid:
            return PaymentChallenge("Stake payment required", challenge)
        try:
            exact = Decimal(paid) == Decimal(amount)
        except InvalidOperation:
            exact = False
        if not exact:
            return PaymentChallenge(
                f"Payment of {paid} does not match stake {amount}", challenge)
        return PaymentVerified(
            payer=headers.get(PAYMENT_PAYER_HEADER, ""),
            amount=amount,
            payment_ref=ref,
        )
