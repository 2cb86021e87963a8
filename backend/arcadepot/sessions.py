# sessions.py
"""
Single-use play credentials.

A credential is a self-contained, HMAC-signed stamp carrying the session id,
wallet, network and expiry. Signature and expiry are checked without any
lookup; single use is enforced by the payment row's score_submitted flag.
"""
import base64
import hashlib
import hmac
import logging
import secrets
import sqlite3
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .config import Network, day_key, now_unix
from .errors import DuplicateTransaction, InvalidSession
from .store import ConnFactory, get_payment_by_token, rollback_quietly

log = logging.getLogger(__name__)


# ---------------------------
# Helpers: encoding / crypto
# ---------------------------
def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def b64url_bytes(s: str) -> bytes:
    pad = "=" * ((4 - len(s) % 4) % 4)
    return base64.urlsafe_b64decode((s + pad).encode())


def hmac_sha256(key: bytes, msg: str) -> str:
    return b64url(hmac.new(key, msg.encode(), hashlib.sha256).digest())


def consteq(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


# ---------------------------
# Stamp
# ---------------------------
def make_stamp(session_id: str, wallet: str, network: Network, exp: int) -> str:
    rnd = b64url(secrets.token_bytes(12))
    return f"v1|sid={session_id}|wallet={wallet}|net={network.value}|exp={exp}|rand={rnd}"


def parse_stamp(stamp: str) -> Dict[str, str]:
    parts = stamp.split("|")
    if not parts or parts[0] != "v1":
        raise ValueError("bad version")
    kv = {}
    for p in parts[1:]:
        if "=" not in p:
            continue
        k, v = p.split("=", 1)
        kv[k] = v
    for k in ("sid", "wallet", "net", "exp", "rand"):
        if k not in kv:
            raise ValueError(f"missing {k}")
    return kv


@dataclass
class Claims:
    session_id: str
    wallet: str
    network: Network
    expires_at: int


@dataclass
class SessionStatus:
    valid: bool
    reason: Optional[str] = None


class SessionIssuer:
    def __init__(
        self,
        db_func: ConnFactory,
        secret: str,
        ttl_sec: int = 7200,
        fee_usd: float = 0.25,
        clock: Callable[[], int] = now_unix,
    ):
        if not secret:
            raise ValueError("session secret is required")
        self._db = db_func
        self._key = secret.encode()
        self.ttl_sec = int(ttl_sec)
        self.fee_usd = float(fee_usd)
        self._clock = clock

    def sign(self, wallet: str, network: Network) -> str:
        exp = self._clock() + self.ttl_sec
        stamp = make_stamp(str(uuid.uuid4()), wallet, network, exp)
        return f"{b64url(stamp.encode())}.{hmac_sha256(self._key, stamp)}"

    def decode(self, token: str) -> Claims:
        """Check signature and expiry; raises InvalidSession."""
        try:
            body, sig = (token or "").strip().split(".", 1)
            stamp = b64url_bytes(body).decode()
        except (ValueError, UnicodeDecodeError):
            raise InvalidSession("Session token is invalid or has expired.")

        if not consteq(hmac_sha256(self._key, stamp), sig):
            raise InvalidSession("Session token is invalid or has expired.")

        try:
            kv = parse_stamp(stamp)
            claims = Claims(
                session_id=kv["sid"],
                wallet=kv["wallet"],
                network=Network(kv["net"]),
                expires_at=int(kv["exp"]),
            )
        except ValueError:
            raise InvalidSession("Session token is invalid or has expired.")

        if claims.expires_at < self._clock():
            raise InvalidSession("Session token is invalid or has expired.")
        return claims

    def issue(self, wallet: str, network: Network, tx_id: str, native_amount: int, usd_price: float) -> str:
        """
        Record the payment and return its credential.

        The payment row is committed before the token leaves this function, so
        every credential handed out is redeemable. A second payment for the
        same tx_id fails on the UNIQUE constraint with DuplicateTransaction.
        """
        token = self.sign(wallet, network)
        ts = self._clock()

        con = self._db()
        try:
            con.execute("BEGIN IMMEDIATE;")
            con.execute(
                """
                INSERT INTO payments(wallet_address, chain, tx_signature, amount_native, amount_usd,
                                     price_at_payment, session_token, created_at, day_key)
                VALUES(?,?,?,?,?,?,?,?,?)
                """,
                (wallet, network.value, tx_id, str(int(native_amount)), self.fee_usd,
                 float(usd_price), token, ts, day_key(ts)),
            )
            con.execute("UPDATE tx_claims SET state='used' WHERE tx_signature=?", (tx_id,))
            con.execute("COMMIT;")
        except sqlite3.IntegrityError:
            rollback_quietly(con)
            log.info("[session] duplicate tx %s on %s", tx_id, network.value)
            raise DuplicateTransaction("This transaction has already been used for a game session.")
        except Exception:
            rollback_quietly(con)
            raise
        finally:
            con.close()

        log.info("[session] issued for %s on %s (tx %s)", wallet, network.value, tx_id)
        return token

    def validate(self, token: str) -> SessionStatus:
        try:
            self.decode(token)
        except InvalidSession as e:
            return SessionStatus(valid=False, reason=str(e))

        con = self._db()
        try:
            payment = get_payment_by_token(con, token.strip())
        finally:
            con.close()

        if not payment:
            return SessionStatus(valid=False, reason="Session not found.")
        if payment["score_submitted"]:
            return SessionStatus(valid=False, reason="Score already submitted for this session.")
        return SessionStatus(valid=True)
