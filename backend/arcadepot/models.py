# models.py
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .config import NETWORKS, fmt_native
from .ledger import Pot, house_of, prize_of


# Input models
class VerifyPaymentIn(BaseModel):
    chain: str                     # "solana" or "base"
    tx_signature: str
    wallet_address: str


class SubmitScoreIn(BaseModel):
    token: str
    # validated by the anti-cheat rules, not by pydantic coercion
    score: Any = None
    frames: Any = None
    game_mode: str = ""
    turbo_mode: bool = False


class MarkPaidIn(BaseModel):
    notes: Optional[str] = None


# Output models
class VerifyPaymentOut(BaseModel):
    token: str
    expires_in: int


class SessionOut(BaseModel):
    valid: bool
    reason: Optional[str] = None


class SubmitScoreOut(BaseModel):
    success: bool
    rank: int
    day_key: str


class NetworkInfoOut(BaseModel):
    address: str
    amount: str
    price: float


class PaymentInfoOut(BaseModel):
    entry_fee_usd: float
    networks: Dict[str, NetworkInfoOut]


class PotOut(BaseModel):
    day_key: str
    totals: Dict[str, str]            # formatted, e.g. "0.012000 SOL"
    totals_base_units: Dict[str, str]
    usd_total: float
    player_count: int
    prize_estimate: Dict[str, str]
    prize_usd_estimate: float
    house_estimate: Dict[str, str] = Field(default_factory=dict)


class LeaderboardEntryOut(BaseModel):
    wallet: str
    chain: str
    score: int
    game_mode: str
    turbo: bool
    submitted_at: int


class LeaderboardOut(BaseModel):
    day_key: str
    scores: List[LeaderboardEntryOut]
    pot: PotOut


class HistoryEntryOut(BaseModel):
    day_key: str
    wallet: str
    chain: str
    score: int
    payout_status: str
    prizes: Dict[str, str] = Field(default_factory=dict)


class PaymentRowOut(BaseModel):
    id: int
    wallet_address: str
    chain: str
    tx_signature: str
    amount_native: str
    amount_usd: float
    price_at_payment: float
    session_used: bool
    score_submitted: bool
    created_at: int
    day_key: str


class PaymentsPageOut(BaseModel):
    page: int
    limit: int
    payments: List[PaymentRowOut]


def pot_out(pot: Pot) -> PotOut:
    return PotOut(
        day_key=pot.day_key,
        totals={n.value: fmt_native(n, pot.totals.get(n, 0)) for n in NETWORKS},
        totals_base_units={n.value: str(pot.totals.get(n, 0)) for n in NETWORKS},
        usd_total=round(pot.usd_total, 2),
        player_count=pot.player_count,
        prize_estimate={n.value: fmt_native(n, prize_of(pot.totals.get(n, 0))) for n in NETWORKS},
        prize_usd_estimate=round(pot.prize_usd, 2),
        house_estimate={n.value: fmt_native(n, house_of(pot.totals.get(n, 0))) for n in NETWORKS},
    )
