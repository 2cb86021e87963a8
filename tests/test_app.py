import pytest
from fastapi.testclient import TestClient

from arcadepot.app import build_services, create_app
from arcadepot.config import Network
from arcadepot.errors import NotFound

from conftest import DAY, SOL_WALLET, FakeOracle, FakeVerifier, sol_sig

ADMIN = {"X-Admin-Token": "admin-token"}


@pytest.fixture
def verifiers():
    return {Network.SOLANA: FakeVerifier(Network.SOLANA), Network.BASE: FakeVerifier(Network.BASE, amount=10**14)}


@pytest.fixture
def client(settings, verifiers, clock):
    svc = build_services(settings, verifiers=verifiers, transfers={}, oracle=FakeOracle(), clock=clock)
    return TestClient(create_app(services=svc))


def _verify(client, i=1):
    return client.post("/api/payment/verify", json={
        "chain": "solana", "tx_signature": sol_sig(i), "wallet_address": SOL_WALLET,
    })


def _submit(client, token, score=1200, frames=5000):
    return client.post("/api/score/submit", json={
        "token": token, "score": score, "frames": frames, "game_mode": "pacman", "turbo_mode": False,
    })


def test_health(client):
    assert client.get("/api/health").json()["status"] == "ok"


def test_payment_info(client, settings):
    info = client.get("/api/payment/info").json()
    assert info["entry_fee_usd"] == 0.25
    assert info["networks"]["solana"] == {"address": settings.house_wallet_solana, "amount": "0.001000", "price": 250.0}
    assert info["networks"]["base"]["amount"] == "0.00010000"


def test_play_flow(client):
    r = _verify(client)
    assert r.status_code == 200
    token = r.json()["token"]
    assert r.json()["expires_in"] == 7200

    assert client.get(f"/api/payment/session/{token}").json() == {"valid": True, "reason": None}

    r = _submit(client, token)
    assert r.status_code == 200
    assert r.json() == {"success": True, "rank": 1, "day_key": DAY}

    r = _submit(client, token)
    assert r.status_code == 409

    board = client.get("/api/leaderboard").json()
    assert board["day_key"] == DAY
    assert board["scores"][0]["score"] == 1200
    assert board["scores"][0]["wallet"] == "9WzDXw...AWWM"
    assert board["pot"]["totals"]["solana"] == "1.000000 SOL"
    assert board["pot"]["player_count"] == 1


def test_verify_errors(client, verifiers):
    assert _verify(client).status_code == 200
    r = _verify(client)
    assert r.status_code == 409
    assert "already been used" in r.json()["detail"]

    verifiers[Network.SOLANA].errors[sol_sig(2)] = NotFound("still confirming")
    r = _verify(client, 2)
    assert r.status_code == 404
    assert r.headers["retry-after"] == "5"

    r = client.post("/api/payment/verify", json={"chain": "doge", "tx_signature": "x", "wallet_address": "y"})
    assert r.status_code == 400


def test_submit_errors(client):
    assert _submit(client, "").status_code == 400
    assert _submit(client, "forged.token").status_code == 401
    assert _submit(client, "forged.token", score=500, frames=1000).status_code == 400
    assert _submit(client, "forged.token", score="lots").status_code == 400


def test_pot_endpoint(client):
    _verify(client)
    r = client.get(f"/api/pot/{DAY}")
    assert r.status_code == 200
    assert r.json()["totals_base_units"] == {"solana": str(10**9), "base": "0"}
    assert r.json()["prize_estimate"]["solana"] == "0.900000 SOL"
    assert client.get("/api/pot/yesterday").status_code == 400


def test_admin_requires_token(client):
    assert client.post(f"/api/admin/payout/{DAY}").status_code == 401
    assert client.post(f"/api/admin/payout/{DAY}", headers={"X-Admin-Token": "wrong"}).status_code == 401
    assert client.get("/api/admin/payments").status_code == 401


def test_admin_settlement_flow(client):
    assert client.post(f"/api/admin/payout/{DAY}", headers=ADMIN).json()["status"] == "no_scores"

    _submit(client, _verify(client).json()["token"])

    day = client.get(f"/api/admin/day/{DAY}", headers=ADMIN).json()
    assert day["leader"]["wallet"] == SOL_WALLET
    assert day["pot"]["house_estimate"] == {"solana": "0.100000 SOL", "base": "0.00000000 ETH"}
    assert day["pot"]["prize_estimate"]["solana"] == "0.900000 SOL"
    assert day["payout_record"] is None

    r = client.post(f"/api/admin/payout/{DAY}", headers=ADMIN)
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "partial_or_manual"
    assert body["legs"]["solana"]["status"] == "manual_required"
    assert body["needsAction"] == ["solana"]

    day = client.get(f"/api/admin/day/{DAY}", headers=ADMIN).json()
    assert day["leader"]["score"] == 1200
    assert day["payout_record"]["status"] == "partial_or_manual"

    r = client.patch(f"/api/admin/payout/{DAY}/mark-paid", headers=ADMIN, json={"notes": "sent from cold wallet"})
    assert r.json() == {"success": True}
    assert client.post(f"/api/admin/payout/{DAY}", headers=ADMIN).status_code == 409

    history = client.get("/api/leaderboard/history").json()
    assert history[0]["day_key"] == DAY
    assert history[0]["payout_status"] == "paid"
    assert history[0]["prizes"]["solana"] == "900000000"

    assert client.patch("/api/admin/payout/2020-01-01/mark-paid", headers=ADMIN).status_code == 404


def test_admin_payments_page(client):
    for i in range(3):
        _verify(client, i + 1)
    page = client.get("/api/admin/payments?limit=2&page=1", headers=ADMIN).json()
    assert page["limit"] == 2
    assert len(page["payments"]) == 2
    assert page["payments"][0]["chain"] == "solana"
    page = client.get("/api/admin/payments?limit=2&page=2", headers=ADMIN).json()
    assert len(page["payments"]) == 1
