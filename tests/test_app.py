"""Tests for the HTTP API: envelope, status codes, auth headers, payments.

Covers: propose/counter with payment headers, claim/concede, dispute and
admin ruling over HTTP, notifications, agent profiles, admin stats/sweep.
"""

import sys, os
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))
sys.path.insert(0, os.path.dirname(__file__))

import itertools

import pytest
from starlette.testclient import TestClient
from betting.app import create_app
from betting.config import Config
from betting.settlement import StubSettlement
from betting.store import LedgerStore
from conftest import FakeClock, HOUR, PROPOSAL, address_for, make_agent

ADMIN = {"X-Admin-Token": "admin-secret"}
EVIDENCE = "Screenshot of the CoinGecko close at 101,250 USD."
REASON = "The close on CoinGecko was 99,800 USD, not above 100k."


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settlement():
    return StubSettlement()


@pytest.fixture
def app(clock, settlement):
    store = LedgerStore(":memory:", clock=clock)
    return create_app(store=store, settlement=settlement,
                      config=Config(admin_token="admin-secret"), clock=clock)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def agents(app):
    store = app.state.store
    return {name: make_agent(store, name) for name in ("alice", "bob", "carol")}


_refs = itertools.count(1)


def as_agent(agent_id, payment_amount=None, ref=None, payer=None):
    headers = {"X-Agent-Id": agent_id}
    if payment_amount is not None:
        headers["X-Payment-Ref"] = ref or f"0xpay{next(_refs)}"
        headers["X-Payment-Amount"] = payment_amount
        headers["X-Payment-Payer"] = payer or ""
    return headers


def _propose(client, agent_id, **overrides):
    body = {**PROPOSAL, **overrides}
    resp = client.post("/bets/propose", json=body,
                       headers=as_agent(agent_id, body["stake"]))
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["id"]


def _matched(client, agents):
    bet_id = _propose(client, agents["alice"])
    resp = client.post(f"/bets/{bet_id}/counter", headers=as_agent(agents["bob"], "100"))
    assert resp.status_code == 200, resp.text
    return bet_id


def _disputed(client, agents):
    bet_id = _matched(client, agents)
    client.post(f"/bets/{bet_id}/claim-win", json={"evidence": EVIDENCE},
                headers=as_agent(agents["alice"]))
    resp = client.post(f"/bets/{bet_id}/dispute", json={"reason": REASON},
                       headers=as_agent(agents["bob"]))
    assert resp.status_code == 201, resp.text
    return bet_id, resp.json()["data"]["id"]


class TestEnvelope:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert resp.json()["data"]["status"] == "ok"

    def test_not_found(self, client):
        resp = client.get("/bets/nope")
        assert resp.status_code == 404
        assert resp.json() == {"success": False, "error": "Bet not found", "details": {"bet_id": "nope"}}

    def test_missing_agent_header(self, client):
        resp = client.post("/bets/propose", json=PROPOSAL)
        assert resp.status_code == 401
        assert resp.json()["success"] is False

    def test_malformed_body_is_400(self, client, agents):
        resp = client.post("/bets/propose", json={"title": "only a title"},
                           headers=as_agent(agents["alice"]))
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["details"]["errors"]


class TestProposeAndCounter:
    def test_propose_without_payment_is_402(self, client, agents):
        resp = client.post("/bets/propose", json=PROPOSAL, headers=as_agent(agents["alice"]))
        assert resp.status_code == 402
        body = resp.json()
        assert body["success"] is False
        assert body["payment"]["accepts"][0]["amount"] == "100000000"

    def test_propose_invalid_proposal_is_400(self, client, agents):
        resp = client.post("/bets/propose", json={**PROPOSAL, "stake": "1.1234567"},
                           headers=as_agent(agents["alice"]))
        assert resp.status_code == 400

    def test_propose(self, client, agents):
        resp = client.post("/bets/propose", json=PROPOSAL,
                           headers=as_agent(agents["alice"], "100", ref="0xescrow"))
        assert resp.status_code == 201
        bet = resp.json()["data"]
        assert bet["status"] == "open"
        assert bet["stake"] == "100.000000"
        assert bet["escrow_tx_hash"] == "0xescrow"

    def test_replayed_payment_is_409(self, client, agents, settlement):
        headers = as_agent(agents["alice"], "100", ref="0xonce")
        assert client.post("/bets/propose", json=PROPOSAL, headers=headers).status_code == 201
        resp = client.post("/bets/propose", json=PROPOSAL, headers=headers)
        assert resp.status_code == 409
        assert resp.json()["details"]["payment_ref"] == "0xonce"
        assert len(client.get("/bets/feed").json()["data"]) == 1
        assert settlement.sends == []

    def test_oversized_stake_is_400(self, client, agents):
        stake = "1" * 13
        resp = client.post("/bets/propose", json={**PROPOSAL, "stake": stake},
                           headers=as_agent(agents["alice"], stake))
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    def test_unverified_agent_is_403(self, client, app):
        dave = make_agent(app.state.store, "dave", verified=False)
        resp = client.post("/bets/propose", json=PROPOSAL, headers=as_agent(dave, "100"))
        assert resp.status_code == 403

    def test_counter(self, client, agents):
        bet_id = _matched(client, agents)
        bet = client.get(f"/bets/{bet_id}").json()["data"]
        assert bet["status"] == "countered"
        assert bet["counter"]["name"] == "bob"
        assert [e["type"] for e in bet["events"]] == ["created", "matched"]

    def test_counter_wrong_amount_is_402(self, client, agents, settlement):
        bet_id = _propose(client, agents["alice"])
        resp = client.post(f"/bets/{bet_id}/counter", headers=as_agent(agents["bob"], "50"))
        assert resp.status_code == 402
        assert settlement.sends == []

    def test_counter_own_bet_is_403(self, client, agents):
        bet_id = _propose(client, agents["alice"])
        resp = client.post(f"/bets/{bet_id}/counter", headers=as_agent(agents["alice"]))
        assert resp.status_code == 403

    def test_late_counter_is_409_with_refund(self, client, agents, settlement):
        bet_id = _matched(client, agents)
        resp = client.post(f"/bets/{bet_id}/counter", headers=as_agent(agents["carol"], "100"))
        assert resp.status_code == 409
        body = resp.json()
        assert body["details"]["refund_ref"]
        assert settlement.sends[-1]["to"] == address_for("carol")

    def test_expired_counter_is_400(self, client, agents, clock):
        bet_id = _propose(client, agents["alice"], expires_in_hours=1)
        clock.advance(HOUR)
        resp = client.post(f"/bets/{bet_id}/counter", headers=as_agent(agents["bob"], "100"))
        assert resp.status_code == 400
        assert "expired" in resp.json()["error"]


class TestResolution:
    def test_claim_and_concede(self, client, agents, settlement):
        bet_id = _matched(client, agents)
        resp = client.post(f"/bets/{bet_id}/claim-win", json={"evidence": EVIDENCE},
                           headers=as_agent(agents["alice"]))
        assert resp.json()["data"]["status"] == "win_claimed"

        resp = client.post(f"/bets/{bet_id}/concede", headers=as_agent(agents["bob"]))
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["winner_id"] == agents["alice"]
        assert data["settlement_ref"].startswith("0xstub")
        assert settlement.sends[-1] == {
            "kind": "payout", "to": address_for("alice"),
            "amount": "200.000000", "key": f"{bet_id}:payout",
        }

        profile = client.get(f"/agents/{agents['alice']}").json()["data"]
        assert profile["stats"]["reputation"] == 5
        assert profile["stats"]["wins"] == 1

    def test_claim_on_open_is_400(self, client, agents):
        bet_id = _propose(client, agents["alice"])
        resp = client.post(f"/bets/{bet_id}/claim-win", json={"evidence": EVIDENCE},
                           headers=as_agent(agents["alice"]))
        assert resp.status_code == 400

    def test_cancel(self, client, agents, settlement):
        bet_id = _propose(client, agents["alice"])
        resp = client.post(f"/bets/{bet_id}/cancel", headers=as_agent(agents["alice"]))
        assert resp.status_code == 200
        assert settlement.sends[-1]["kind"] == "refund"
        assert client.get(f"/bets/{bet_id}").json()["data"]["status"] == "cancelled"

    def test_settlement_failure_is_500(self, client, agents, settlement):
        bet_id = _matched(client, agents)
        settlement.fail = True
        resp = client.post(f"/bets/{bet_id}/concede", headers=as_agent(agents["bob"]))
        assert resp.status_code == 500
        assert resp.json()["success"] is False
        assert client.get(f"/bets/{bet_id}").json()["data"]["status"] == "countered"


class TestDisputesOverHttp:
    def test_round_trip(self, client, agents, settlement):
        bet_id, dispute_id = _disputed(client, agents)

        resp = client.post(f"/disputes/{dispute_id}/respond",
                           json={"reason": "Binance printed 100,400 USD at the close."},
                           headers=as_agent(agents["alice"]))
        assert resp.status_code == 200

        pending = client.get("/admin/disputes", headers=ADMIN).json()["data"]
        assert [d["id"] for d in pending] == [dispute_id]

        resp = client.post(f"/admin/disputes/{dispute_id}/resolve",
                           json={"winner_id": agents["bob"], "admin_notes": "Close below 100k."},
                           headers=ADMIN)
        assert resp.status_code == 200
        assert resp.json()["data"]["winner_id"] == agents["bob"]
        assert settlement.sends[-1]["to"] == address_for("bob")

        resp = client.post(f"/admin/disputes/{dispute_id}/resolve",
                           json={"winner_id": agents["alice"]}, headers=ADMIN)
        assert resp.status_code == 400
        assert resp.json()["error"] == "Dispute already resolved"
        assert len([s for s in settlement.sends if s["kind"] == "payout"]) == 1

        detail = client.get(f"/admin/disputes/{dispute_id}", headers=ADMIN).json()["data"]
        assert detail["status"] == "resolved"
        assert detail["resolved_by_id"] == "admin"

    def test_disputer_cannot_respond(self, client, agents):
        _, dispute_id = _disputed(client, agents)
        resp = client.post(f"/disputes/{dispute_id}/respond",
                           json={"reason": "Answering my own dispute here."},
                           headers=as_agent(agents["bob"]))
        assert resp.status_code == 403

    def test_invalid_winner_is_400(self, client, agents):
        _, dispute_id = _disputed(client, agents)
        resp = client.post(f"/admin/disputes/{dispute_id}/resolve",
                           json={"winner_id": agents["carol"]}, headers=ADMIN)
        assert resp.status_code == 400


class TestAdminAuth:
    def test_missing_token(self, client):
        assert client.get("/admin/stats").status_code == 403

    def test_wrong_token(self, client):
        assert client.get("/admin/stats", headers={"X-Admin-Token": "guess"}).status_code == 403

    def test_disabled_without_configured_token(self):
        client = TestClient(create_app())
        assert client.get("/admin/stats", headers={"X-Admin-Token": ""}).status_code == 403

    def test_stats(self, client, agents):
        _propose(client, agents["alice"])
        stats = client.get("/admin/stats", headers=ADMIN).json()["data"]
        assert stats["active_bets"] == 1
        assert stats["verified_agents"] == 3
        assert stats["volume_24h"] == "100.000000"

    def test_sweep(self, client, agents, clock):
        bet_id = _propose(client, agents["alice"], expires_in_hours=1)
        clock.advance(HOUR)
        report = client.post("/admin/maintenance/sweep", headers=ADMIN).json()["data"]
        assert report["expired"] == [bet_id]


class TestFeedsAndNotifications:
    def test_feed_and_my_bets(self, client, agents):
        open_id = _propose(client, agents["alice"])
        matched_id = _matched(client, agents)
        feed = client.get("/bets/feed").json()["data"]
        assert [b["id"] for b in feed] == [open_id]
        mine = client.get("/bets/my-bets", headers=as_agent(agents["bob"])).json()["data"]
        assert [b["id"] for b in mine] == [matched_id]

    def test_feed_bad_status_is_400(self, client):
        assert client.get("/bets/feed?status=bogus").status_code == 400

    def test_notifications(self, client, agents):
        _matched(client, agents)
        alice = as_agent(agents["alice"])
        data = client.get("/notifications", headers=alice).json()["data"]
        assert data["unread_count"] == 1
        note = data["notifications"][0]
        assert note["type"] == "bet_countered"

        resp = client.post(f"/notifications/{note['id']}/read", headers=alice)
        assert resp.status_code == 200
        assert client.get("/notifications?unread=true", headers=alice).json()["data"]["notifications"] == []

    def test_read_all(self, client, agents):
        _matched(client, agents)
        alice = as_agent(agents["alice"])
        assert client.post("/notifications/read-all", headers=alice).json()["data"]["marked"] == 1
        assert client.get("/notifications", headers=alice).json()["data"]["unread_count"] == 0

    def test_cannot_read_others_notification(self, client, agents):
        _matched(client, agents)
        note = client.get("/notifications", headers=as_agent(agents["alice"])).json()["data"]["notifications"][0]
        resp = client.post(f"/notifications/{note['id']}/read", headers=as_agent(agents["bob"]))
        assert resp.status_code == 404

    def test_leaderboard(self, client, agents):
        bet_id = _matched(client, agents)
        client.post(f"/bets/{bet_id}/concede", headers=as_agent(agents["alice"]))
        board = client.get("/agents/leaderboard").json()["data"]
        assert board[0]["name"] == "bob"
        assert board[0]["reputation"] == 5
        assert board[-1]["name"] == "alice"

    def test_unknown_agent_is_404(self, client):
        assert client.get("/agents/nobody").status_code == 404
