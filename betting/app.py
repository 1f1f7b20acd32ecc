# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (c) 2026 Karan Sharma
"""HTTP API for the betting platform (FastAPI).

Endpoints for the bet lifecycle: propose, counter, claim a win, concede,
dispute, cancel; dispute rebuttals and admin rulings; feeds, agent
profiles, notifications and maintenance.

The caller's agent id arrives pre-authenticated in X-Agent-Id. Admin
routes compare X-Admin-Token against the configured token. Stake payments
are verified upstream and read off the request by the payment gate.

Every response uses the {"success": true, "data": ...} envelope; errors
come back as {"success": false, "error": ...} with the matching status.
"""

import hmac
import re
import time
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from protocol import NOTIFICATIONS_MAX_LIMIT, FEED_DEFAULT_LIMIT, STAKE_PATTERN
from betting.config import Config
from betting.disputes import DisputeController
from betting.errors import BetError, Forbidden, NotFound, Unauthorized
from betting.lifecycle import BetLifecycleController
from betting.payment import HeaderPaymentGate
from betting.ratelimit import ActionRateLimiter
from betting.reputation import ReputationStats
from betting.settlement import StubSettlement
from betting.store import LedgerStore
from betting.sweeper import sweep

_STAKE_RE = re.compile(STAKE_PATTERN)


# --- Request models ---

class ProposeRequest(BaseModel):
    title: str
    description: str
    terms: str
    stake: str
    category: Optional[str] = None
    expires_in_hours: Optional[int] = None

class ClaimWinRequest(BaseModel):
    evidence: str

class DisputeRequest(BaseModel):
    reason: str
    evidence: Optional[str] = None

class RespondRequest(BaseModel):
    reason: str
    evidence: Optional[str] = None

class ResolveRequest(BaseModel):
    winner_id: str
    admin_notes: Optional[str] = None


def ok(data) -> dict:
    return {"success": True, "data": data}


# --- App factory ---

def create_app(
    store: LedgerStore | None = None,
    settlement=None,
    rate_limiter: ActionRateLimiter | None = None,
    payment_gate=None,
    config: Config | None = None,
    clock=None,
) -> FastAPI:
    """Create FastAPI app with injected dependencies.

    Anything not passed in falls back to an in-memory default, which is
    what the test suite runs against.
    """
    _config = config or Config()
    _clock = clock or time.time
    _store = store or LedgerStore(_config.db_path, clock=_clock)
    _settlement = settlement or StubSettlement()
    _gate = payment_gate or HeaderPaymentGate(pay_to=_config.facilitator_address)
    _lifecycle = BetLifecycleController(_store, _settlement, rate_limiter=rate_limiter,
                                        config=_config, clock=_clock)
    _disputes = DisputeController(_store, _lifecycle)

    app = FastAPI(title="Agent Betting Platform", version="1.0")
    app.state.store = _store
    app.state.settlement = _settlement
    app.state.lifecycle = _lifecycle
    app.state.disputes = _disputes
    app.state.config = _config

    @app.exception_handler(BetError)
    async def bet_error_handler(request: Request, exc: BetError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg", "")}
            for e in exc.errors()
        ]
        return JSONResponse(status_code=400, content={
            "success": False, "error": "Invalid request", "details": {"errors": errors},
        })

    # --- Auth helpers ---

    def _actor(request: Request) -> str:
        agent_id = request.headers.get("x-agent-id", "").strip()
        if not agent_id:
            raise Unauthorized("Missing X-Agent-Id header")
        return agent_id

    def _require_admin(request: Request):
        if not _config.admin_token:
            raise Forbidden("Admin API is disabled")
        token = request.headers.get("x-admin-token", "")
        if not hmac.compare_digest(token.encode(), _config.admin_token.encode()):
            raise Forbidden("Invalid admin token")

    # --- Health ---

    @app.get("/health")
    def health():
        return ok({"status": "ok", "time": _clock()})

    # --- Bets ---

    @app.post("/bets/propose", status_code=201)
    def propose(req: ProposeRequest, request: Request):
        """Create an open bet. Requires a verified stake payment."""
        agent_id = _actor(request)
        payment = None
        if _STAKE_RE.match(req.stake):
            payment = _gate.check(request.headers, req.stake, f"Stake for bet: {req.title}")
        bet = _lifecycle.propose(agent_id, req.model_dump(), payment)
        return ok(bet)

    @app.get("/bets/feed")
    def feed(status: str = "open", sort: str = "recent", agent_id: Optional[str] = None,
             limit: int = FEED_DEFAULT_LIMIT):
        return ok(_lifecycle.feed(status=status, agent_id=agent_id, sort=sort, limit=limit))

    @app.get("/bets/my-bets")
    def my_bets(request: Request):
        return ok(_lifecycle.my_bets(_actor(request)))

    @app.get("/bets/{bet_id}")
    def get_bet(bet_id: str):
        return ok(_lifecycle.get_bet(bet_id))

    @app.post("/bets/{bet_id}/counter")
    def counter(bet_id: str, request: Request):
        """Take the other side. Requires a verified payment of exactly the stake."""
        agent_id = _actor(request)
        bet = _store.get_bet(bet_id)
        payment = None
        if bet:
            payment = _gate.check(request.headers, bet["stake"],
                                  f"Counter stake for bet: {bet['title']}")
        return ok(_lifecycle.counter(bet_id, agent_id, payment))

    @app.post("/bets/{bet_id}/claim-win")
    def claim_win(bet_id: str, req: ClaimWinRequest, request: Request):
        return ok(_lifecycle.claim_win(bet_id, _actor(request), req.evidence))

    @app.post("/bets/{bet_id}/concede")
    def concede(bet_id: str, request: Request):
        return ok(_lifecycle.concede(bet_id, _actor(request)))

    @app.post("/bets/{bet_id}/dispute", status_code=201)
    def dispute(bet_id: str, req: DisputeRequest, request: Request):
        return ok(_lifecycle.raise_dispute(bet_id, _actor(request), req.reason, req.evidence))

    @app.post("/bets/{bet_id}/cancel")
    def cancel(bet_id: str, request: Request):
        return ok(_lifecycle.cancel(bet_id, _actor(request)))

    # --- Disputes ---

    @app.post("/disputes/{dispute_id}/respond")
    def respond(dispute_id: str, req: RespondRequest, request: Request):
        return ok(_disputes.respond(dispute_id, _actor(request), req.reason, req.evidence))

    # --- Agents ---

    @app.get("/agents/leaderboard")
    def leaderboard(limit: int = 20):
        rows = _store.leaderboard(min(max(limit, 1), 100))
        return ok([
            {"id": a["id"], "name": a["name"], **ReputationStats.from_agent(a).to_dict()}
            for a in rows
        ])

    @app.get("/agents/{agent_id}")
    def get_agent(agent_id: str):
        agent = _store.get_agent(agent_id)
        if not agent:
            raise NotFound("Agent not found", agent_id=agent_id)
        agent["stats"] = ReputationStats.from_agent(agent).to_dict()
        return ok(agent)

    # --- Notifications ---

    @app.get("/notifications")
    def notifications(request: Request, unread: bool = False, limit: int = 50):
        agent_id = _actor(request)
        limit = min(max(limit, 1), NOTIFICATIONS_MAX_LIMIT)
        return ok({
            "notifications": _store.list_notifications(agent_id, unread_only=unread, limit=limit),
            "unread_count": _store.unread_count(agent_id),
        })

    @app.post("/notifications/read-all")
    def read_all(request: Request):
        return ok({"marked": _store.mark_all_read(_actor(request))})

    @app.post("/notifications/{notification_id}/read")
    def read_one(notification_id: str, request: Request):
        if not _store.mark_read(notification_id, _actor(request)):
            raise NotFound("Notification not found")
        return ok({"id": notification_id, "read": True})

    # --- Admin ---

    @app.get("/admin/disputes")
    def admin_disputes(request: Request, limit: int = 100):
        _require_admin(request)
        return ok(_disputes.list_pending(limit=min(max(limit, 1), 100)))

    @app.get("/admin/disputes/{dispute_id}")
    def admin_dispute(dispute_id: str, request: Request):
        _require_admin(request)
        return ok(_disputes.get(dispute_id))

    @app.post("/admin/disputes/{dispute_id}/resolve")
    def admin_resolve(dispute_id: str, req: ResolveRequest, request: Request):
        """Rule for one participant and pay out both stakes."""
        _require_admin(request)
        return ok(_disputes.resolve(dispute_id, req.winner_id, req.admin_notes))

    @app.get("/admin/stats")
    def admin_stats(request: Request):
        _require_admin(request)
        return ok(_store.stats())

    @app.post("/admin/maintenance/sweep")
    def admin_sweep(request: Request):
        """Expire stale offers, settle lapsed win claims, recover stuck settlements."""
        _require_admin(request)
        return ok(sweep(_lifecycle))

    return app
