# payments.py
import logging
import re
import sqlite3
from typing import Callable, Dict

from .chains import ChainVerifier
from .config import Network, now_unix, parse_network, to_base_units
from .errors import DuplicateTransaction, InputError
from .prices import PriceOracle
from .sessions import SessionIssuer
from .store import ConnFactory, rollback_quietly

log = logging.getLogger(__name__)

WALLET_RE: Dict[Network, "re.Pattern[str]"] = {
    Network.SOLANA: re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$"),
    Network.BASE: re.compile(r"^0x[0-9a-fA-F]{40}$"),
}


def check_wallet(network: Network, wallet: str) -> str:
    w = (wallet or "").strip()
    if not WALLET_RE[network].match(w):
        raise InputError(f"Invalid {network.value} wallet address.")
    return w


# ---------------------------
# Transaction claims
# ---------------------------
def claim_tx(con: sqlite3.Connection, tx_id: str, network: Network, now: int, ttl_sec: int) -> bool:
    """
    Atomically reserve tx_id before any chain call.

    Returns False when the tx already funded a payment or another request is
    verifying it. An unfinished claim older than ttl_sec (crashed request) may
    be taken over.
    """
    con.execute("BEGIN IMMEDIATE;")
    try:
        if con.execute("SELECT 1 FROM payments WHERE tx_signature=?", (tx_id,)).fetchone():
            con.execute("ROLLBACK;")
            return False
        cur = con.execute(
            """
            INSERT INTO tx_claims(tx_signature, network, claimed_at, state)
            VALUES(?,?,?,'verifying')
            ON CONFLICT(tx_signature) DO UPDATE
              SET claimed_at=excluded.claimed_at, network=excluded.network
              WHERE tx_claims.state='verifying' AND tx_claims.claimed_at < ?
            """,
            (tx_id, network.value, now, now - ttl_sec),
        )
        if cur.rowcount != 1:
            con.execute("ROLLBACK;")
            return False
        con.execute("COMMIT;")
        return True
    except Exception:
        rollback_quietly(con)
        raise


def release_claim(con: sqlite3.Connection, tx_id: str) -> None:
    con.execute("DELETE FROM tx_claims WHERE tx_signature=? AND state='verifying'", (tx_id,))


class PaymentDesk:
    """verifyPayment: duplicate gate, price lookup, chain verification, credential issue."""

    def __init__(
        self,
        db_func: ConnFactory,
        verifiers: Dict[Network, ChainVerifier],
        oracle: PriceOracle,
        issuer: SessionIssuer,
        fee_usd: float = 0.25,
        claim_ttl_sec: int = 120,
        clock: Callable[[], int] = now_unix,
    ):
        self._db = db_func
        self.verifiers = verifiers
        self.oracle = oracle
        self.issuer = issuer
        self.fee_usd = float(fee_usd)
        self.claim_ttl_sec = int(claim_ttl_sec)
        self._clock = clock

    def verify_payment(self, network: str, tx_id: str, wallet: str) -> str:
        net = parse_network(network)
        verifier = self.verifiers.get(net)
        if verifier is None:
            raise InputError(f"Payments on {net.value} are not enabled.")
        sig = verifier.check_tx_id(tx_id)
        wallet = check_wallet(net, wallet)

        con = self._db()
        try:
            if not claim_tx(con, sig, net, self._clock(), self.claim_ttl_sec):
                used = con.execute("SELECT 1 FROM payments WHERE tx_signature=?", (sig,)).fetchone()
                log.info("[verify] duplicate tx %s on %s (%s)", sig, net.value, "used" if used else "in flight")
                if used:
                    raise DuplicateTransaction("This transaction has already been used for a game session.")
                raise DuplicateTransaction("This transaction is already being verified. Try again in a moment.")
        finally:
            con.close()

        try:
            quote = self.oracle.payment_amount(net, self.fee_usd)
            expected = to_base_units(net, quote.amount)
            verified = verifier.verify(sig, expected)
            token = self.issuer.issue(wallet, net, sig, verified.amount_native, quote.price)
        except Exception as e:
            log.info("[verify] %s %s rejected: %s", net.value, sig, e)
            con = self._db()
            try:
                release_claim(con, sig)
            finally:
                con.close()
            raise

        log.info("[verify] %s %s accepted for %s", net.value, sig, wallet)
        return token
