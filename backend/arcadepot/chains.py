# chains.py
"""
Per-network payment verification.

Each verifier confirms that a claimed transaction paid the house wallet at
least the expected amount (minus tolerance) and is recent enough. Anything
that looks incomplete (pending tx, missing receipt, RPC timeout) is reported
as NotFound so the player can simply retry; only definite on-chain facts
produce a rejection.
"""
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import requests
from web3 import Web3
from web3.exceptions import BlockNotFound, TransactionNotFound, Web3Exception

from .config import Network, fmt_native, now_unix
from .errors import (
    InputError,
    InsufficientAmount,
    NotFound,
    Reverted,
    Stale,
    WrongRecipient,
    ZeroValue,
)

log = logging.getLogger(__name__)

SOLANA_SIG_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{64,90}$")
EVM_TX_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


@dataclass
class Verified:
    amount_native: int   # base units (lamports / wei)
    confirmed_at: int    # unix seconds


class ChainVerifier:
    network: Network

    def __init__(
        self,
        house_address: str,
        tolerance: float = 0.10,
        max_age_sec: int = 7200,
        timeout_sec: float = 15.0,
        clock: Callable[[], int] = now_unix,
    ):
        if not house_address:
            raise ValueError(f"{self.network.value}: house address is not configured")
        self.house_address = self.normalize(house_address)
        self.tolerance = Decimal(str(tolerance))
        self.max_age_sec = int(max_age_sec)
        self.timeout_sec = timeout_sec
        self._clock = clock

    def normalize(self, address: str) -> str:
        return (address or "").strip()

    def check_tx_id(self, tx_id: str) -> str:
        return (tx_id or "").strip()

    def verify(self, tx_id: str, expected_native: int) -> Verified:
        raise NotImplementedError

    # shared rules, applied in a fixed order by subclasses
    def _check_amount(self, received: int, expected_native: int) -> None:
        if received <= 0:
            raise ZeroValue("No native value was transferred to the house wallet.")
        minimum = int(Decimal(int(expected_native)) * (Decimal(1) - self.tolerance))
        if received < minimum:
            raise InsufficientAmount(
                f"Insufficient amount: received {fmt_native(self.network, received)}, "
                f"minimum required {fmt_native(self.network, minimum)}."
            )

    def _check_age(self, confirmed_at: int) -> None:
        age = self._clock() - int(confirmed_at)
        if age > self.max_age_sec:
            hours = self.max_age_sec / 3600
            raise Stale(f"Transaction is too old (must be within {hours:g} hours).")


# ---------------------------
# Solana (JSON-RPC over HTTP)
# ---------------------------
class SolanaVerifier(ChainVerifier):
    network = Network.SOLANA

    def __init__(self, house_address: str, rpc_url: str = "https://api.mainnet-beta.solana.com", **kw):
        super().__init__(house_address, **kw)
        self.rpc_url = rpc_url

    def check_tx_id(self, tx_id: str) -> str:
        sig = (tx_id or "").strip()
        if not SOLANA_SIG_RE.match(sig):
            raise InputError("Malformed Solana transaction signature.")
        return sig

    def rpc_call(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        try:
            r = requests.post(self.rpc_url, json=payload, timeout=self.timeout_sec)
            j = r.json()
        except (requests.RequestException, ValueError) as e:
            log.warning("[verify] solana %s failed: %s", method, e)
            raise NotFound("Solana RPC unavailable. Try again in a moment.") from e

        if isinstance(j, dict) and j.get("error"):
            err = j.get("error")
            msg = err.get("message") if isinstance(err, dict) else err
            log.warning("[verify] solana %s rpc error: %s", method, msg)
            raise NotFound(f"Solana RPC error: {msg}")
        if not isinstance(j, dict):
            raise NotFound("Solana RPC returned an invalid response.")
        return j.get("result")

    @staticmethod
    def _account_keys(tx: Dict[str, Any]) -> List[str]:
        message = (tx.get("transaction") or {}).get("message") or {}
        keys = []
        for k in message.get("accountKeys") or []:
            keys.append(k.get("pubkey") if isinstance(k, dict) else k)
        # v0 transactions append lookup-table addresses after the static keys
        loaded = (tx.get("meta") or {}).get("loadedAddresses") or {}
        keys.extend(loaded.get("writable") or [])
        keys.extend(loaded.get("readonly") or [])
        return [str(k) for k in keys]

    def verify(self, tx_id: str, expected_native: int) -> Verified:
        sig = self.check_tx_id(tx_id)

        tx = self.rpc_call(
            "getTransaction",
            [sig, {"encoding": "json", "commitment": "confirmed", "maxSupportedTransactionVersion": 0}],
        )
        statuses = self.rpc_call("getSignatureStatuses", [[sig], {"searchTransactionHistory": True}])

        status = None
        if isinstance(statuses, dict):
            values = statuses.get("value") or []
            status = values[0] if values else None

        if not tx or not status:
            raise NotFound("Transaction not found; it may still be confirming. Try again in a moment.")
        if status.get("confirmationStatus") not in ("confirmed", "finalized"):
            raise NotFound("Transaction is not confirmed yet. Try again in a moment.")

        meta = tx.get("meta")
        block_time = tx.get("blockTime")
        if meta is None or block_time is None:
            raise NotFound("Transaction details are incomplete. Try again in a moment.")
        if meta.get("err") is not None or status.get("err") is not None:
            raise Reverted("Transaction failed on-chain.")

        keys = self._account_keys(tx)
        try:
            idx = keys.index(self.house_address)
        except ValueError:
            raise WrongRecipient("Payment not sent to the house wallet.")

        pre = meta.get("preBalances") or []
        post = meta.get("postBalances") or []
        if idx >= len(pre) or idx >= len(post):
            raise NotFound("Transaction balances are incomplete. Try again in a moment.")

        received = int(post[idx]) - int(pre[idx])
        self._check_amount(received, expected_native)
        self._check_age(int(block_time))
        return Verified(amount_native=received, confirmed_at=int(block_time))


# ---------------------------
# Base (EVM, via web3)
# ---------------------------
class BaseVerifier(ChainVerifier):
    network = Network.BASE

    def __init__(self, house_address: str, rpc_url: str = "https://mainnet.base.org", w3: Optional[Web3] = None, **kw):
        super().__init__(house_address, **kw)
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": self.timeout_sec}))

    def normalize(self, address: str) -> str:
        return (address or "").strip().lower()

    def check_tx_id(self, tx_id: str) -> str:
        h = (tx_id or "").strip()
        if not EVM_TX_RE.match(h):
            raise InputError("Malformed Base transaction hash.")
        return h.lower()

    def _read(self, fn: Callable[..., Any], *args) -> Any:
        try:
            return fn(*args)
        except (TransactionNotFound, BlockNotFound):
            return None
        except (Web3Exception, requests.RequestException, TimeoutError, ConnectionError, ValueError) as e:
            log.warning("[verify] base %s failed: %s", getattr(fn, "__name__", "rpc"), e)
            raise NotFound("Base RPC unavailable. Try again in a moment.") from e

    def verify(self, tx_id: str, expected_native: int) -> Verified:
        tx_hash = self.check_tx_id(tx_id)
        eth = self.w3.eth

        tx = self._read(eth.get_transaction, tx_hash)
        receipt = self._read(eth.get_transaction_receipt, tx_hash)

        if not tx or tx.get("blockHash") is None:
            raise NotFound("Transaction not found; it may still be pending. Try again in a moment.")
        if not receipt or receipt.get("status") is None:
            raise NotFound("Transaction receipt not found; it may still be pending.")
        if int(receipt["status"]) != 1:
            raise Reverted("Transaction failed or was reverted on-chain.")

        to = tx.get("to")
        if not to or self.normalize(to) != self.house_address:
            raise WrongRecipient("Payment not sent to the house wallet.")

        value = int(tx.get("value") or 0)
        if value == 0:
            raise ZeroValue("Transaction value is zero. Did you send an ERC-20 token instead of ETH?")
        self._check_amount(value, expected_native)

        block = self._read(eth.get_block, receipt.get("blockHash") or tx.get("blockHash"))
        if not block or block.get("timestamp") is None:
            raise NotFound("Could not fetch block details. Try again in a moment.")
        confirmed_at = int(block["timestamp"])
        self._check_age(confirmed_at)
        return Verified(amount_native=value, confirmed_at=confirmed_at)
