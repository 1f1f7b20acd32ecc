"""Error taxonomy for bet and dispute transitions.

Controllers raise these; the HTTP layer turns them into
{"success": false, "error": ...} responses with the matching status code.
"""


class BetError(Exception):
    """Base class. Carries the HTTP status the API surfaces it as."""

    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        out = {"success": False, "error": self.message}
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(BetError):
    status_code = 400


class NotFound(BetError):
    status_code = 404


class InvalidState(BetError):
    status_code = 400


class Unauthorized(BetError):
    status_code = 401


class Forbidden(BetError):
    status_code = 403


class RateLimited(BetError):
    status_code = 429


class PaymentRequired(BetError):
    """Stake payment missing or invalid. `challenge` tells the payer what to send."""

    status_code = 402

    def __init__(self, message: str, challenge: dict | None = None, **details):
        super().__init__(message, **details)
        self.challenge = challenge or {}

    def to_dict(self) -> dict:
        out = super().to_dict()
        if self.challenge:
            out["payment"] = self.challenge
        return out


class SettlementFailure(BetError):
    status_code = 500


class Conflict(BetError):
    """Lost a race. If the caller had already paid, `refund_ref` points at the refund."""

    status_code = 409

    def __init__(self, message: str, refund_ref: str | None = None, **details):
        if refund_ref:
            details["refund_ref"] = refund_ref
        super().__init__(message, **details)
        self.refund_ref = refund_ref


# --- Dispute-side refinements ---

class AlreadyResolved(InvalidState):
    pass


class NotPending(InvalidState):
    pass


class AlreadyResponded(InvalidState):
    pass


class InvalidWinner(ValidationError):
    pass
