from decimal import Decimal

import pytest

from arcadepot.config import (
    Network,
    day_key,
    fmt_native,
    from_base_units,
    load_settings,
    parse_network,
    to_base_units,
)
from arcadepot.errors import UnsupportedNetwork

REQUIRED = {
    "SESSION_SECRET": "s",
    "ADMIN_TOKEN": "a",
    "HOUSE_WALLET_SOLANA": "H8sMJSCQxfKiFTCfDR3DUMLPwcRbM61LGFJ8N4dK3WjS",
    "HOUSE_WALLET_BASE": "0x" + "c0" * 20,
}


def test_missing_required_keys_are_fatal():
    env = dict(REQUIRED, SESSION_SECRET="", ADMIN_TOKEN="  ")
    with pytest.raises(SystemExit) as ei:
        load_settings(env)
    msg = str(ei.value)
    assert msg.startswith("[fatal]")
    assert "SESSION_SECRET" in msg and "ADMIN_TOKEN" in msg
    assert "HOUSE_WALLET_BASE" not in msg


def test_bad_number_is_fatal():
    with pytest.raises(SystemExit):
        load_settings(dict(REQUIRED, ENTRY_FEE_USD="quarter"))


def test_defaults():
    s = load_settings(REQUIRED)
    assert s.entry_fee_usd == 0.25
    assert s.price_ttl_sec == 300
    assert s.session_ttl_sec == 7200
    assert s.max_tx_age_sec == 7200
    assert s.price_tolerance == 0.10
    assert s.base_chain_id == 8453
    assert s.allowed_origins == ("*",)
    assert s.house_wallet(Network.BASE) == REQUIRED["HOUSE_WALLET_BASE"]


def test_overrides():
    s = load_settings(dict(REQUIRED, ALLOWED_ORIGINS="https://a.example, https://b.example",
                           POT_DB="/tmp/x.db", LOG_LEVEL="debug", SETTLE_POLL_SEC="0"))
    assert s.allowed_origins == ("https://a.example", "https://b.example")
    assert s.db_path == "/tmp/x.db"
    assert s.log_level == "DEBUG"
    assert s.settle_poll_sec == 1


def test_parse_network():
    assert parse_network(" Solana ") == Network.SOLANA
    assert parse_network("base") == Network.BASE
    with pytest.raises(UnsupportedNetwork):
        parse_network("ethereum")


def test_units():
    assert to_base_units(Network.SOLANA, 0.001) == 1_000_000
    assert to_base_units(Network.BASE, 0.0001) == 10**14
    assert to_base_units(Network.SOLANA, "0.0000000019") == 1
    assert from_base_units(Network.BASE, 10**18) == Decimal(1)
    assert fmt_native(Network.SOLANA, 12_000_000) == "0.012000 SOL"
    assert fmt_native(Network.BASE, 10**14) == "0.00010000 ETH"
    assert fmt_native(Network.BASE, 0) == "0.00000000 ETH"
    assert fmt_native(Network.BASE, 10**10) == "0.00000001 ETH"


def test_day_key_is_utc():
    assert day_key(1736942400) == "2025-01-15"
    assert day_key(1736985599) == "2025-01-15"
    assert day_key(1736985600) == "2025-01-16"
