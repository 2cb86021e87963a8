import json
from unittest.mock import Mock

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.signature import Signature
from solders.transaction_status import TransactionConfirmationStatus

from arcadepot.config import Network
from arcadepot.errors import TransferFailed
from arcadepot.transfers import BaseTransfer, SolanaTransfer, build_transfers, load_solana_keypair

from conftest import BASE_WALLET, SOL_WALLET


# ============================================================================
# SOLANA
# ============================================================================

def test_load_keypair_formats():
    kp = Keypair()
    assert load_solana_keypair(str(kp)).pubkey() == kp.pubkey()
    assert load_solana_keypair(json.dumps(list(bytes(kp)))).pubkey() == kp.pubkey()


def _sol_client(status=None):
    client = Mock()
    client.get_latest_blockhash.return_value.value.blockhash = Hash.default()
    client.send_transaction.return_value.value = Signature.default()
    if status is None:
        status = Mock(err=None, confirmation_status=TransactionConfirmationStatus.Confirmed)
    client.get_signature_statuses.return_value.value = [status]
    return client


def test_solana_transfer_sends_lamports():
    client = _sol_client()
    t = SolanaTransfer("http://rpc.invalid", str(Keypair()), client=client)
    sig = t.transfer(SOL_WALLET, 900_000_000)
    assert sig == str(Signature.default())
    client.send_transaction.assert_called_once()
    assert client.send_transaction.call_args.kwargs["opts"].skip_confirmation is True


def test_solana_transfer_waits_for_confirmation():
    client = _sol_client()
    pending = Mock(err=None, confirmation_status=TransactionConfirmationStatus.Processed)
    confirmed = Mock(err=None, confirmation_status=TransactionConfirmationStatus.Finalized)
    client.get_signature_statuses.side_effect = [Mock(value=[None]), Mock(value=[pending]), Mock(value=[confirmed])]
    t = SolanaTransfer("http://rpc.invalid", str(Keypair()), client=client, poll_sec=0)
    t.transfer(SOL_WALLET, 1)
    assert client.get_signature_statuses.call_count == 3


def test_solana_transfer_unconfirmed_is_bounded_and_names_signature():
    client = _sol_client()
    client.get_signature_statuses.return_value.value = [None]
    t = SolanaTransfer("http://rpc.invalid", str(Keypair()), timeout_sec=0.05, client=client, poll_sec=0.01)
    with pytest.raises(TransferFailed) as ei:
        t.transfer(SOL_WALLET, 1)
    assert ei.value.reason.startswith(f"broadcast {Signature.default()}")


def test_solana_transfer_failed_on_chain():
    client = _sol_client(Mock(err="InsufficientFundsForRent", confirmation_status=None))
    t = SolanaTransfer("http://rpc.invalid", str(Keypair()), client=client)
    with pytest.raises(TransferFailed) as ei:
        t.transfer(SOL_WALLET, 1)
    assert str(Signature.default()) in ei.value.reason
    assert "failed on-chain" in ei.value.reason


def test_solana_status_rpc_error_after_broadcast():
    client = _sol_client()
    client.get_signature_statuses.side_effect = RuntimeError("429 Too Many Requests")
    t = SolanaTransfer("http://rpc.invalid", str(Keypair()), client=client)
    with pytest.raises(TransferFailed) as ei:
        t.transfer(SOL_WALLET, 1)
    assert ei.value.reason.startswith(f"broadcast {Signature.default()} but not confirmed")


def test_solana_transfer_failures():
    client = _sol_client()
    t = SolanaTransfer("http://rpc.invalid", str(Keypair()), client=client)
    with pytest.raises(TransferFailed):
        t.transfer("not-an-address", 1)
    with pytest.raises(TransferFailed):
        t.transfer(SOL_WALLET, 0)

    client.send_transaction.side_effect = RuntimeError("blockhash not found")
    with pytest.raises(TransferFailed) as ei:
        t.transfer(SOL_WALLET, 1)
    assert "blockhash not found" in ei.value.reason


# ============================================================================
# BASE
# ============================================================================

def _w3(receipt_status=1):
    w3 = Mock()
    w3.eth.account.from_key.return_value.address = "0x" + "11" * 20
    w3.to_checksum_address.side_effect = lambda a: a
    w3.to_wei.return_value = 10**9
    w3.eth.get_transaction_count.return_value = 7
    w3.eth.estimate_gas.return_value = 21000
    w3.eth.get_block.return_value = {"baseFeePerGas": 100}
    w3.eth.send_raw_transaction.return_value = b"\x12" * 32
    w3.eth.wait_for_transaction_receipt.return_value = {"status": receipt_status}
    return w3


def test_base_transfer_builds_eip1559_tx():
    w3 = _w3()
    t = BaseTransfer("http://rpc.invalid", 8453, "0xkey", w3=w3)
    tx_hash = t.transfer(BASE_WALLET, 9 * 10**14)
    assert tx_hash == "0x" + "12" * 32

    tx = t.account.sign_transaction.call_args[0][0]
    assert tx["chainId"] == 8453
    assert tx["to"] == BASE_WALLET
    assert tx["value"] == 9 * 10**14
    assert tx["nonce"] == 7
    assert tx["gas"] == int(21000 * 1.15)
    assert tx["maxFeePerGas"] == 200 + 10**9


def test_base_transfer_reverted():
    t = BaseTransfer("http://rpc.invalid", 8453, "0xkey", w3=_w3(receipt_status=0))
    with pytest.raises(TransferFailed) as ei:
        t.transfer(BASE_WALLET, 1)
    assert "reverted" in ei.value.reason


def test_base_transfer_unconfirmed_mentions_broadcast():
    w3 = _w3()
    w3.eth.wait_for_transaction_receipt.side_effect = TimeoutError("120s")
    t = BaseTransfer("http://rpc.invalid", 8453, "0xkey", w3=w3)
    with pytest.raises(TransferFailed) as ei:
        t.transfer(BASE_WALLET, 1)
    assert ei.value.reason.startswith("broadcast 0x1212")


def test_base_transfer_send_error():
    w3 = _w3()
    w3.eth.send_raw_transaction.side_effect = ValueError("insufficient funds for gas")
    t = BaseTransfer("http://rpc.invalid", 8453, "0xkey", w3=w3)
    with pytest.raises(TransferFailed) as ei:
        t.transfer(BASE_WALLET, 1)
    assert "insufficient funds" in ei.value.reason
    assert not ei.value.reason.startswith("broadcast")


def test_build_transfers_only_for_configured_keys(settings):
    assert build_transfers(settings) == {}


def test_build_transfers_rejects_mismatched_key(settings):
    from dataclasses import replace

    with pytest.raises(SystemExit):
        build_transfers(replace(settings, house_private_key_solana=str(Keypair())))
