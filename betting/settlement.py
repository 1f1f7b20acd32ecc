"""Settlement services: move stake tokens out of the platform escrow.

SettlementService is the abstract seam; the controllers call payout() and
refund() with an idempotency key and never talk to a chain directly.
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass

import requests

log = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    success: bool
    tx_ref: str | None = None
    error: str | None = None


class SettlementService(ABC):
    """Abstract settlement backend. The app injects one of these into the controllers."""

    @abstractmethod
    def payout(self, address: str, amount: str, idempotency_key: str) -> SettlementResult:
        """Send `amount` to the winner. Repeating a key must not pay twice."""
        ...

    @abstractmethod
    def refund(self, address: str, amount: str, idempotency_key: str) -> SettlementResult:
        """Return `amount` to a payer. Repeating a key must not refund twice."""
        ...


class StubSettlement(SettlementService):
    """In-memory backend for testing. Every call succeeds unless `fail` is set."""

    def __init__(self):
        self.sends: list[dict] = []  # log of settled transfers for test assertions
        self.calls: list[dict] = []  # every call, including failed and repeated ones
        self.fail = False
        self._by_key: dict[str, SettlementResult] = {}

    def _settle(self, kind: str, address: str, amount: str, key: str) -> SettlementResult:
        self.calls.append({"kind": kind, "to": address, "amount": amount, "key": key})
        if key in self._by_key:
            return self._by_key[key]
        if self.fail:
            return SettlementResult(success=False, error="stub settlement failure")
        self.sends.append({"kind": kind, "to": address, "amount": amount, "key": key})
        result = SettlementResult(success=True, tx_ref=f"0xstub{len(self.sends):060x}")
        self._by_key[key] = result
        return result

    def payout(self, address: str, amount: str, idempotency_key: str) -> SettlementResult:
        return self._settle("payout", address, amount, idempotency_key)

    def refund(self, address: str, amount: str, idempotency_key: str) -> SettlementResult:
        return self._settle("refund", address, amount, idempotency_key)


class FacilitatorSettlement(SettlementService):
    """Settle through an HTTP payment facilitator.

    POSTs {"to", "amount", "currency"} to <url>/payout or <url>/refund with an
    Idempotency-Key header. Transport errors and non-2xx replies become a
    failed SettlementResult; the controller decides what to do with it.
    """

    def __init__(self, url: str | None = None, api_key: str | None = None,
                 currency: str = "USDC", timeout: float = 30):
        self.url = (url or os.environ.get("BET_FACILITATOR_URL", "")).rstrip("/")
        if not self.url:
            raise ValueError("Facilitator URL required: set BET_FACILITATOR_URL or pass url=")
        self.api_key = api_key if api_key is not None else os.environ.get("BET_FACILITATOR_KEY", "")
        self.currency = currency
        self.timeout = timeout
        self.session = requests.Session()

    def _post(self, action: str, address: str, amount: str, key: str) -> SettlementResult:
        headers = {"Idempotency-Key": key}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            resp = self.session.post(
                f"{self.url}/{action}",
                json={"to": address, "amount": amount, "currency": self.currency},
                headers=headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as e:
            log.warning("facilitator %s failed for key %s: %s", action, key, e)
            return SettlementResult(success=False, error=str(e))

        if not body.get("success", False):
            return SettlementResult(success=False, error=body.get("error", "facilitator declined"))
        return SettlementResult(success=True, tx_ref=body.get("tx_hash") or body.get("tx_ref"))

    def payout(self, address: str, amount: str, idempotency_key: str) -> SettlementResult:
        return self._post("payout", address, amount, idempotency_key)

    def refund(self, address: str, amount: str, idempotency_key: str) -> SettlementResult:
        return self._post("refund", address, amount, idempotency_key)
