"""Shared fixtures: temp sqlite db, fixed clock, fake chain/price/transfer collaborators."""

import threading
import time
from typing import Dict, List, Optional, Tuple

import pytest

from arcadepot.chains import Verified
from arcadepot.config import Network, Settings
from arcadepot.errors import InputError, TransferFailed
from arcadepot.ledger import PotLedger, WinnerSelector
from arcadepot.payments import PaymentDesk
from arcadepot.payout import PayoutOrchestrator
from arcadepot.prices import PaymentAmount
from arcadepot.scores import ScoreAdmission
from arcadepot.sessions import SessionIssuer
from arcadepot.store import db_factory, init_db

# 2025-01-15 12:00:00 UTC
T0 = 1736942400
DAY = "2025-01-15"

SOL_WALLET = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
SOL_WALLET_2 = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
SOL_HOUSE = "H8sMJSCQxfKiFTCfDR3DUMLPwcRbM61LGFJ8N4dK3WjS"
BASE_WALLET = "0x" + "ab" * 20
BASE_HOUSE = "0x" + "C0" * 20


def sol_sig(i: int) -> str:
    return "5" * 80 + format(i, "08d").replace("0", "z")


def base_hash(i: int) -> str:
    return "0x" + format(i, "064x")


# ============================================================================
# FAKES
# ============================================================================

class Clock:
    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, sec: int) -> None:
        self.now += sec


class FakeVerifier:
    """Stands in for a ChainVerifier: raises the error set for a tx id, else reports a fixed amount."""

    def __init__(self, network: Network, amount: int = 10**9, delay: float = 0.0):
        self.network = network
        self.amount = amount
        self.delay = delay
        self.calls: List[Tuple[str, int]] = []
        self.errors: Dict[str, Exception] = {}
        self._lock = threading.Lock()

    def check_tx_id(self, tx_id: str) -> str:
        tx_id = (tx_id or "").strip()
        if not tx_id:
            raise InputError("empty tx")
        return tx_id.lower() if self.network == Network.BASE else tx_id

    def verify(self, tx_id: str, expected_native: int) -> Verified:
        with self._lock:
            self.calls.append((tx_id, expected_native))
        if self.delay:
            time.sleep(self.delay)
        err = self.errors.get(tx_id)
        if err is not None:
            raise err
        return Verified(amount_native=self.amount, confirmed_at=T0 - 60)


class FakeOracle:
    def __init__(self, prices: Optional[Dict[Network, float]] = None):
        self.prices = prices or {Network.SOLANA: 250.0, Network.BASE: 2500.0}

    def price(self, network: Network) -> float:
        return self.prices[network]

    def payment_amount(self, network: Network, fee_usd: float) -> PaymentAmount:
        usd = self.prices[network]
        return PaymentAmount(network=network, price=usd, amount=fee_usd / usd)


class FakeTransfer:
    def __init__(self, network: Network, fail_with: Optional[str] = None):
        self.network = network
        self.fail_with = fail_with
        self.calls: List[Tuple[str, int]] = []

    def transfer(self, to_address: str, native_amount: int) -> str:
        self.calls.append((to_address, native_amount))
        if self.fail_with:
            raise TransferFailed(self.fail_with)
        return f"{self.network.value}-tx-{len(self.calls)}"


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        session_secret="test-secret",
        admin_token="admin-token",
        house_wallet_solana=SOL_HOUSE,
        house_wallet_base=BASE_HOUSE,
        db_path=str(tmp_path / "pot.db"),
    )


@pytest.fixture
def db(settings):
    factory = db_factory(settings.db_path)
    con = factory()
    try:
        init_db(con)
    finally:
        con.close()
    return factory


@pytest.fixture
def issuer(db, clock):
    return SessionIssuer(db, "test-secret", ttl_sec=7200, fee_usd=0.25, clock=clock)


@pytest.fixture
def verifiers():
    return {Network.SOLANA: FakeVerifier(Network.SOLANA), Network.BASE: FakeVerifier(Network.BASE, amount=10**14)}


@pytest.fixture
def desk(db, verifiers, issuer, clock):
    return PaymentDesk(db, verifiers, FakeOracle(), issuer, fee_usd=0.25, claim_ttl_sec=120, clock=clock)


@pytest.fixture
def admission(db, issuer, clock):
    return ScoreAdmission(db, issuer, clock=clock)


@pytest.fixture
def ledger(db):
    return PotLedger(db)


@pytest.fixture
def selector(db):
    return WinnerSelector(db)


@pytest.fixture
def make_orchestrator(db, selector, ledger, clock):
    def make(transfers=None) -> PayoutOrchestrator:
        return PayoutOrchestrator(db, selector, ledger, transfers or {}, leg_lock_sec=300, clock=clock)
    return make


@pytest.fixture
def pay(issuer):
    """Record a payment directly and return its credential."""
    counter = {"n": 0}

    def _pay(network: Network = Network.SOLANA, wallet: str = SOL_WALLET,
             amount: int = 10**9, price: float = 250.0) -> str:
        counter["n"] += 1
        tx = sol_sig(counter["n"]) if network == Network.SOLANA else base_hash(counter["n"])
        return issuer.issue(wallet, network, tx, amount, price)
    return _pay
