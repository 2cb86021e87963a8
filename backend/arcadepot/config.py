# config.py
import logging
import os
import time
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv

from .errors import UnsupportedNetwork

BACKEND_DIR = Path(__file__).resolve().parent.parent

# Load backend/.env for local runs. In production env vars come from systemd / the container.
load_dotenv(BACKEND_DIR / ".env")


# ---------------------------
# Networks and units
# ---------------------------
class Network(str, Enum):
    SOLANA = "solana"
    BASE = "base"


NETWORKS: Tuple[Network, ...] = (Network.SOLANA, Network.BASE)

# base units per native coin: lamports per SOL, wei per ETH
DECIMALS: Dict[Network, int] = {Network.SOLANA: 9, Network.BASE: 18}
SYMBOLS: Dict[Network, str] = {Network.SOLANA: "SOL", Network.BASE: "ETH"}
# display precision used in reports
DISPLAY_PLACES: Dict[Network, int] = {Network.SOLANA: 6, Network.BASE: 8}


def parse_network(value: str) -> Network:
    try:
        return Network((value or "").strip().lower())
    except ValueError:
        raise UnsupportedNetwork(f'Invalid chain "{value}". Must be "solana" or "base".')


def to_base_units(network: Network, amount) -> int:
    d = Decimal(str(amount)) * (Decimal(10) ** DECIMALS[network])
    return int(d.to_integral_value(rounding=ROUND_DOWN))


def from_base_units(network: Network, units: int) -> Decimal:
    return Decimal(int(units)) / (Decimal(10) ** DECIMALS[network])


def fmt_native(network: Network, units: int) -> str:
    places = DISPLAY_PLACES[network]
    d = from_base_units(network, units).quantize(Decimal(1).scaleb(-places), rounding=ROUND_DOWN)
    return f"{d:f} {SYMBOLS[network]}"


# ---------------------------
# Time helpers
# ---------------------------
def now_unix() -> int:
    return int(time.time())


def day_key(ts: Optional[int] = None) -> str:
    # UTC day key YYYY-MM-DD
    ts = now_unix() if ts is None else ts
    return time.strftime("%Y-%m-%d", time.gmtime(ts))


# ---------------------------
# Settings
# ---------------------------
REQUIRED_KEYS = ("SESSION_SECRET", "ADMIN_TOKEN", "HOUSE_WALLET_SOLANA", "HOUSE_WALLET_BASE")


@dataclass(frozen=True)
class Settings:
    session_secret: str
    admin_token: str
    house_wallet_solana: str
    house_wallet_base: str

    db_path: str = "pot.db"
    solana_rpc_url: str = "https://api.mainnet-beta.solana.com"
    base_rpc_url: str = "https://mainnet.base.org"
    base_chain_id: int = 8453

    entry_fee_usd: float = 0.25
    price_ttl_sec: int = 300
    price_timeout_sec: float = 8.0
    rpc_timeout_sec: float = 15.0

    session_ttl_sec: int = 7200     # credential lifetime
    max_tx_age_sec: int = 7200      # recency window for payments
    price_tolerance: float = 0.10   # accept up to 10% below expected
    claim_ttl_sec: int = 120        # unfinished tx claims older than this may be re-taken
    leg_lock_sec: int = 300         # a 'sending' leg older than this may be retried

    house_private_key_solana: str = ""
    house_private_key_base: str = ""

    allowed_origins: Tuple[str, ...] = ("*",)
    settle_poll_sec: int = 60
    log_level: str = "INFO"

    def house_wallet(self, network: Network) -> str:
        if network == Network.SOLANA:
            return self.house_wallet_solana
        return self.house_wallet_base


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from the environment.

    Missing required keys abort startup: a server without signing secret or
    house wallets must not run.
    """
    env = os.environ if env is None else env

    def get(key: str, default: str = "") -> str:
        return (env.get(key) or default).strip()

    missing = [k for k in REQUIRED_KEYS if not get(k)]
    if missing:
        raise SystemExit(
            f"[fatal] missing required env vars: {', '.join(missing)} "
            f"(copy backend/.env.example to backend/.env and fill in the values)"
        )

    try:
        origins = tuple(o.strip() for o in get("ALLOWED_ORIGINS", "*").split(",") if o.strip()) or ("*",)
        return Settings(
            session_secret=get("SESSION_SECRET"),
            admin_token=get("ADMIN_TOKEN"),
            house_wallet_solana=get("HOUSE_WALLET_SOLANA"),
            house_wallet_base=get("HOUSE_WALLET_BASE"),
            db_path=get("POT_DB", "pot.db"),
            solana_rpc_url=get("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com"),
            base_rpc_url=get("BASE_RPC_URL", "https://mainnet.base.org"),
            base_chain_id=int(get("BASE_CHAIN_ID", "8453")),
            entry_fee_usd=float(get("ENTRY_FEE_USD", "0.25")),
            price_ttl_sec=int(get("PRICE_TTL_SEC", "300")),
            price_timeout_sec=float(get("PRICE_TIMEOUT_SEC", "8")),
            rpc_timeout_sec=float(get("RPC_TIMEOUT_SEC", "15")),
            session_ttl_sec=int(get("SESSION_TTL_SEC", "7200")),
            max_tx_age_sec=int(get("MAX_TX_AGE_SEC", "7200")),
            price_tolerance=float(get("PRICE_TOLERANCE", "0.10")),
            claim_ttl_sec=int(get("CLAIM_TTL_SEC", "120")),
            leg_lock_sec=int(get("LEG_LOCK_SEC", "300")),
            house_private_key_solana=get("HOUSE_PRIVATE_KEY_SOLANA"),
            house_private_key_base=get("HOUSE_PRIVATE_KEY_BASE"),
            allowed_origins=origins,
            settle_poll_sec=max(1, int(get("SETTLE_POLL_SEC", "60"))),
            log_level=get("LOG_LEVEL", "INFO").upper(),
        )
    except ValueError as e:
        raise SystemExit(f"[fatal] invalid numeric setting: {e}")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
