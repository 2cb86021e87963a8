# transfers.py
"""
Prize transfers from the house wallets.

A transfer collaborator exists for a network only when its house private key
is configured; without one, that network's prizes are paid manually.
Every failure surfaces as TransferFailed(reason).
"""
import json
import logging
import time
from typing import Dict, Optional

from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus
from web3 import Web3

from .config import Network, Settings
from .errors import TransferFailed

log = logging.getLogger(__name__)

# Gas multiplier for the estimate
GAS_MULT = 1.15

CONFIRMED = (TransactionConfirmationStatus.Confirmed, TransactionConfirmationStatus.Finalized)


class Transfer:
    network: Network

    def transfer(self, to_address: str, native_amount: int) -> str:
        raise NotImplementedError


def _short(e: Exception) -> str:
    msg = f"{type(e).__name__}: {e}"
    if len(msg) > 300:
        msg = msg[:300] + "..."
    return msg


def load_solana_keypair(secret: str) -> Keypair:
    # either a JSON array of 64 bytes (solana-keygen file format) or base58
    secret = secret.strip()
    if secret.startswith("["):
        return Keypair.from_bytes(bytes(json.loads(secret)))
    return Keypair.from_base58_string(secret)


class SolanaTransfer(Transfer):
    network = Network.SOLANA

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        timeout_sec: float = 15.0,
        client: Optional[Client] = None,
        poll_sec: float = 0.5,
    ):
        self.keypair = load_solana_keypair(private_key)
        self.client = client or Client(rpc_url, timeout=timeout_sec)
        self.timeout_sec = timeout_sec
        self.poll_sec = poll_sec

    @property
    def address(self) -> str:
        return str(self.keypair.pubkey())

    def _wait_confirmed(self, sig: Signature) -> None:
        """Poll the signature status until it settles or timeout_sec runs out."""
        deadline = time.monotonic() + self.timeout_sec
        while True:
            status = self.client.get_signature_statuses([sig]).value[0]
            if status is not None:
                if status.err is not None:
                    raise TransferFailed(f"transfer {sig} failed on-chain: {status.err}")
                if status.confirmation_status in CONFIRMED:
                    return
            if time.monotonic() >= deadline:
                raise TransferFailed(f"broadcast {sig} but not confirmed within {self.timeout_sec:g}s")
            time.sleep(self.poll_sec)

    def transfer(self, to_address: str, native_amount: int) -> str:
        lamports = int(native_amount)
        if lamports <= 0:
            raise TransferFailed(f"amount must be > 0 (got {lamports})")
        try:
            to_pk = Pubkey.from_string(to_address)
        except ValueError:
            raise TransferFailed(f"invalid to_address: {to_address}")

        try:
            ix = transfer(TransferParams(from_pubkey=self.keypair.pubkey(), to_pubkey=to_pk, lamports=lamports))
            blockhash = self.client.get_latest_blockhash(commitment=Confirmed).value.blockhash
            msg = Message.new_with_blockhash([ix], self.keypair.pubkey(), blockhash)
            tx = Transaction([self.keypair], msg, blockhash)
            sig = self.client.send_transaction(
                tx, opts=TxOpts(skip_confirmation=True, preflight_commitment=Confirmed)
            ).value
        except Exception as e:
            raise TransferFailed(_short(e)) from e

        try:
            self._wait_confirmed(sig)
        except TransferFailed:
            raise
        except Exception as e:
            # broadcast but not confirmed: the operator must check before any retry
            raise TransferFailed(f"broadcast {sig} but not confirmed: {_short(e)}") from e
        log.info("[payout] solana sent %d lamports to %s sig=%s", lamports, to_address, sig)
        return str(sig)


class BaseTransfer(Transfer):
    network = Network.BASE

    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        private_key: str,
        timeout_sec: float = 15.0,
        w3: Optional[Web3] = None,
    ):
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout_sec}))
        self.chain_id = int(chain_id)
        self.timeout_sec = timeout_sec
        self.account = self.w3.eth.account.from_key(private_key)

    @property
    def address(self) -> str:
        return self.account.address

    def transfer(self, to_address: str, native_amount: int) -> str:
        w3 = self.w3
        amt_wei = int(native_amount)
        if amt_wei <= 0:
            raise TransferFailed(f"amount must be > 0 (got {amt_wei})")
        try:
            to_addr = w3.to_checksum_address(to_address)
        except ValueError:
            raise TransferFailed(f"invalid to_address: {to_address}")

        tx_hash = None
        try:
            nonce = w3.eth.get_transaction_count(self.account.address, "pending")
            tx = {
                "chainId": self.chain_id,
                "from": self.account.address,
                "to": to_addr,
                "nonce": nonce,
                "value": amt_wei,
            }

            # Gas estimate + bump
            est = w3.eth.estimate_gas(tx)
            tx["gas"] = max(21000, int(est * GAS_MULT))

            # EIP-1559 vs legacy
            latest = w3.eth.get_block("latest")
            base_fee = latest.get("baseFeePerGas")
            if base_fee is not None:
                prio = w3.to_wei(1, "gwei")
                tx["maxPriorityFeePerGas"] = prio
                tx["maxFeePerGas"] = int(base_fee * 2 + prio)
            else:
                tx["gasPrice"] = w3.eth.gas_price

            signed = self.account.sign_transaction(tx)
            tx_hash = Web3.to_hex(w3.eth.send_raw_transaction(signed.raw_transaction))
            receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.timeout_sec)
        except Exception as e:
            if tx_hash:
                # broadcast but not confirmed in time: the operator must check before any retry
                raise TransferFailed(f"broadcast {tx_hash} but not confirmed: {_short(e)}") from e
            raise TransferFailed(_short(e)) from e

        if int(receipt.get("status", 0)) != 1:
            raise TransferFailed(f"transfer {tx_hash} reverted")
        log.info("[payout] base sent %d wei to %s tx=%s", amt_wei, to_addr, tx_hash)
        return tx_hash


def build_transfers(settings: Settings) -> Dict[Network, Transfer]:
    """Transfer collaborators for every network with a configured house key."""
    out: Dict[Network, Transfer] = {}
    if settings.house_private_key_solana:
        sol = SolanaTransfer(settings.solana_rpc_url, settings.house_private_key_solana, settings.rpc_timeout_sec)
        if sol.address != settings.house_wallet_solana:
            raise SystemExit("[fatal] HOUSE_PRIVATE_KEY_SOLANA does not match HOUSE_WALLET_SOLANA.")
        out[Network.SOLANA] = sol
    if settings.house_private_key_base:
        base = BaseTransfer(
            settings.base_rpc_url, settings.base_chain_id, settings.house_private_key_base, settings.rpc_timeout_sec
        )
        if base.address.lower() != settings.house_wallet_base.lower():
            raise SystemExit("[fatal] HOUSE_PRIVATE_KEY_BASE does not match HOUSE_WALLET_BASE.")
        out[Network.BASE] = base
    return out
