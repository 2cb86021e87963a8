# ledger.py
"""Daily pot totals and winner selection (read-only)."""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict

from .config import NETWORKS, Network
from .errors import NoScores
from .store import ConnFactory

PRIZE_SHARE = (9, 10)   # winner gets 90% of each pool, the house keeps the rest


def prize_of(pool: int) -> int:
    num, den = PRIZE_SHARE
    return int(pool) * num // den


def house_of(pool: int) -> int:
    return int(pool) - prize_of(pool)


@dataclass
class Pot:
    day_key: str
    totals: Dict[Network, int] = field(default_factory=dict)   # base units per network
    usd_total: float = 0.0
    player_count: int = 0

    @property
    def prize_usd(self) -> float:
        num, den = PRIZE_SHARE
        return self.usd_total * num / den


class PotLedger:
    def __init__(self, db_func: ConnFactory):
        self._db = db_func

    def pot_for(self, day: str) -> Pot:
        """
        Sum the day's payments per network.

        USD is the sum of the fees recorded at payment time, so the figure does
        not move with the market after the fact.
        """
        con = self._db()
        try:
            rows = con.execute(
                "SELECT chain, amount_native, amount_usd FROM payments WHERE day_key=?",
                (day,),
            ).fetchall()
        finally:
            con.close()

        totals = {net: 0 for net in NETWORKS}
        usd = Decimal(0)
        for r in rows:
            totals[Network(r["chain"])] += int(r["amount_native"])
            usd += Decimal(str(r["amount_usd"]))
        return Pot(day_key=day, totals=totals, usd_total=float(usd), player_count=len(rows))


@dataclass
class WinningScore:
    score_id: int
    payment_id: int
    wallet_address: str
    network: Network
    score: int
    submitted_at: int


class WinnerSelector:
    def __init__(self, db_func: ConnFactory):
        self._db = db_func

    def select_winner(self, day: str) -> WinningScore:
        # highest score; first submission wins a tie
        con = self._db()
        try:
            r = con.execute(
                """
                SELECT id, payment_id, wallet_address, chain, score, submitted_at
                FROM scores
                WHERE day_key=?
                ORDER BY score DESC, submitted_at ASC, id ASC
                LIMIT 1
                """,
                (day,),
            ).fetchone()
        finally:
            con.close()
        if not r:
            raise NoScores(f"No scores found for {day}.")
        return WinningScore(
            score_id=int(r["id"]),
            payment_id=int(r["payment_id"]),
            wallet_address=str(r["wallet_address"]),
            network=Network(r["chain"]),
            score=int(r["score"]),
            submitted_at=int(r["submitted_at"]),
        )
