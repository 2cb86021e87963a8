# payout.py
"""
Daily settlement.

Prize split: 90% of each network's pool to the winner, 10% stays with the house.
Pools are tracked per network and never mix: SOL payments fund the SOL prize,
ETH payments fund the ETH prize, and each network is a separate leg with its
own status and retries.

Settlement of a day:
  absent -> pending -> paid
                    -> partial_or_manual -> (retry) -> paid

The winner row and its legs are written before any transfer. A retry reads the
prize figures back from those rows instead of recomputing them, so payments
arriving late for the same day never change what is owed.
"""
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .config import NETWORKS, Network, SYMBOLS, fmt_native, now_unix
from .errors import AlreadySettled, NoWinnerRecord, TransferFailed
from .ledger import Pot, PotLedger, WinnerSelector, WinningScore, house_of, prize_of
from .store import ConnFactory, get_legs, get_winner, rollback_quietly
from .transfers import Transfer

log = logging.getLogger(__name__)

# winner payout_status
PENDING = "pending"
PARTIAL = "partial_or_manual"
PAID = "paid"

# leg status
LEG_PENDING = "pending"
LEG_SENDING = "sending"
LEG_SENT = "sent"
LEG_FAILED = "failed"
LEG_MANUAL = "manual_required"
LEG_NO_POOL = "no_pool"

RESOLVED = (LEG_SENT, LEG_NO_POOL)
RETRYABLE = (LEG_PENDING, LEG_FAILED, LEG_MANUAL)


@dataclass
class LegReport:
    network: Network
    pool: int
    prize: int
    house: int
    status: str
    transfer_id: Optional[str] = None
    detail: Optional[str] = None
    attempts: int = 0

    @property
    def resolved(self) -> bool:
        return self.status in RESOLVED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pool": fmt_native(self.network, self.pool),
            "prize": fmt_native(self.network, self.prize),
            "house": fmt_native(self.network, self.house),
            "status": self.status,
            "transferId": self.transfer_id,
            "detail": self.detail,
            "attempts": self.attempts,
        }


@dataclass
class SettlementReport:
    day_key: str
    status: str
    wallet_address: str
    network: Network
    score: int
    usd_total: float
    player_count: int
    legs: Dict[Network, LegReport] = field(default_factory=dict)

    @property
    def unresolved(self) -> List[Network]:
        return [n for n, leg in self.legs.items() if not leg.resolved]

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "dayKey": self.day_key,
            "status": self.status,
            "winner": {
                "walletAddress": self.wallet_address,
                "chain": self.network.value,
                "score": self.score,
            },
            "pots": {
                "usdEstimate": round(self.usd_total, 2),
                "prizeUsdEstimate": round(self.usd_total * 0.9, 2),
                "playerCount": self.player_count,
            },
            "legs": {n.value: leg.to_dict() for n, leg in self.legs.items()},
            "needsAction": [n.value for n in self.unresolved],
        }
        if self.status != PAID:
            out["note"] = (
                "Complete any manual transfers listed above, then call "
                f"PATCH /api/admin/payout/{self.day_key}/mark-paid."
            )
        return out


def _leg_from_row(row: sqlite3.Row) -> LegReport:
    return LegReport(
        network=Network(row["network"]),
        pool=int(row["pool_native"]),
        prize=int(row["prize_native"]),
        house=int(row["house_native"]),
        status=str(row["status"]),
        transfer_id=row["transfer_id"],
        detail=row["detail"],
        attempts=int(row["attempts"]),
    )


class PayoutOrchestrator:
    def __init__(
        self,
        db_func: ConnFactory,
        selector: WinnerSelector,
        ledger: PotLedger,
        transfers: Optional[Dict[Network, Transfer]] = None,
        leg_lock_sec: int = 300,
        clock: Callable[[], int] = now_unix,
    ):
        self._db = db_func
        self.selector = selector
        self.ledger = ledger
        self.transfers = transfers or {}
        self.leg_lock_sec = int(leg_lock_sec)
        self._clock = clock

    # ---------------------------
    # checkpoint
    # ---------------------------
    def _checkpoint(self, day: str, winner: WinningScore, pot: Pot) -> None:
        ts = self._clock()
        con = self._db()
        try:
            con.execute("BEGIN IMMEDIATE;")
            con.execute(
                """
                INSERT INTO winners(day_key, wallet_address, chain, score, usd_total, player_count,
                                    payout_status, notes, created_at, updated_at)
                VALUES(?,?,?,?,?,?,?,?,?,?)
                """,
                (day, winner.wallet_address, winner.network.value, winner.score,
                 pot.usd_total, pot.player_count, PENDING, None, ts, ts),
            )
            for net in NETWORKS:
                pool = int(pot.totals.get(net, 0))
                prize = prize_of(pool)
                status, detail = LEG_PENDING, None
                if prize == 0:
                    status, detail = LEG_NO_POOL, f"no_{SYMBOLS[net].lower()}_pot"
                con.execute(
                    """
                    INSERT INTO payout_legs(day_key, network, pool_native, prize_native, house_native,
                                            status, transfer_id, detail, attempts, updated_at)
                    VALUES(?,?,?,?,?,?,?,?,0,?)
                    """,
                    (day, net.value, str(pool), str(prize), str(house_of(pool)), status, None, detail, ts),
                )
            con.execute("COMMIT;")
        except sqlite3.IntegrityError:
            # a concurrent settle() checkpointed first; its figures win
            rollback_quietly(con)
            log.info("[payout] %s already checkpointed by another run", day)
            return
        except Exception:
            rollback_quietly(con)
            raise
        finally:
            con.close()
        log.info("[payout] %s checkpoint: winner %s (%s) score %d, pools %s",
                 day, winner.wallet_address, winner.network.value, winner.score,
                 {n.value: pot.totals.get(n, 0) for n in NETWORKS})

    def _load(self, day: str) -> SettlementReport:
        con = self._db()
        try:
            w = get_winner(con, day)
            legs = get_legs(con, day)
        finally:
            con.close()
        if not w:
            raise NoWinnerRecord(f"No winner record found for {day}.")
        return SettlementReport(
            day_key=day,
            status=str(w["payout_status"]),
            wallet_address=str(w["wallet_address"]),
            network=Network(w["chain"]),
            score=int(w["score"]),
            usd_total=float(w["usd_total"]),
            player_count=int(w["player_count"]),
            legs={Network(n): _leg_from_row(r) for n, r in legs.items()},
        )

    # ---------------------------
    # legs
    # ---------------------------
    def _update_leg(self, day: str, network: Network, status: str, transfer_id: Optional[str], detail: str) -> None:
        con = self._db()
        try:
            con.execute(
                "UPDATE payout_legs SET status=?, transfer_id=?, detail=?, updated_at=? WHERE day_key=? AND network=?",
                (status, transfer_id, detail[:500], self._clock(), day, network.value),
            )
        finally:
            con.close()

    def _lock_leg(self, day: str, network: Network) -> bool:
        """Move a leg to 'sending' unless another run holds a fresh lock on it."""
        now = self._clock()
        con = self._db()
        try:
            cur = con.execute(
                """
                UPDATE payout_legs
                SET status=?, attempts=attempts+1, updated_at=?
                WHERE day_key=? AND network=?
                  AND (status IN (?,?,?)
                       OR (status=? AND updated_at < ?))
                """,
                (LEG_SENDING, now, day, network.value, *RETRYABLE, LEG_SENDING, now - self.leg_lock_sec),
            )
            return cur.rowcount == 1
        finally:
            con.close()

    def _settle_leg(self, report: SettlementReport, leg: LegReport) -> None:
        day, net = report.day_key, leg.network

        if leg.prize == 0:
            self._update_leg(day, net, LEG_NO_POOL, None, f"no_{SYMBOLS[net].lower()}_pot")
            return

        if net != report.network:
            # the winner has no wallet on this network; the pool waits for the operator
            self._update_leg(
                day, net, LEG_MANUAL, None,
                f"manual_required: winner played on {report.network.value}, "
                f"{fmt_native(net, leg.prize)} held for operator decision",
            )
            log.info("[payout] %s %s leg held: winner played on %s", day, net.value, report.network.value)
            return

        transfer = self.transfers.get(net)
        if transfer is None:
            self._update_leg(day, net, LEG_MANUAL, None, "manual_required")
            log.info("[payout] %s %s leg needs manual transfer of %s to %s",
                     day, net.value, fmt_native(net, leg.prize), report.wallet_address)
            return

        if not self._lock_leg(day, net):
            log.info("[payout] %s %s leg is being sent by another run; skipping", day, net.value)
            return

        try:
            transfer_id = transfer.transfer(report.wallet_address, leg.prize)
        except TransferFailed as e:
            self._update_leg(day, net, LEG_FAILED, None, f"FAILED: {e.reason}")
            log.warning("[payout] %s %s transfer failed: %s", day, net.value, e.reason)
            return
        except Exception as e:
            self._update_leg(day, net, LEG_FAILED, None, f"FAILED: {type(e).__name__}: {e}")
            log.exception("[payout] %s %s transfer crashed", day, net.value)
            return

        self._update_leg(day, net, LEG_SENT, transfer_id, f"sent tx: {transfer_id}")
        log.info("[payout] %s %s leg sent %s tx=%s", day, net.value, fmt_native(net, leg.prize), transfer_id)

    # ---------------------------
    # public operations
    # ---------------------------
    def settle(self, day: str) -> SettlementReport:
        con = self._db()
        try:
            existing = get_winner(con, day)
        finally:
            con.close()

        if existing and existing["payout_status"] == PAID:
            raise AlreadySettled(f"Day {day} has already been paid out.")

        if not existing:
            winner = self.selector.select_winner(day)   # NoScores propagates
            pot = self.ledger.pot_for(day)
            self._checkpoint(day, winner, pot)

        report = self._load(day)
        if report.status == PAID:
            raise AlreadySettled(f"Day {day} has already been paid out.")

        for net in NETWORKS:
            leg = report.legs.get(net)
            if leg is None or leg.resolved:
                continue
            self._settle_leg(report, leg)

        report = self._load(day)
        status = PAID if not report.unresolved else PARTIAL

        con = self._db()
        try:
            con.execute(
                "UPDATE winners SET payout_status=?, updated_at=? WHERE day_key=? AND payout_status<>?",
                (status, self._clock(), day, PAID),
            )
        finally:
            con.close()

        report.status = status
        if status == PAID:
            log.info("[payout] %s settled: paid", day)
        else:
            log.warning("[payout] %s settled partially; legs needing action: %s",
                        day, [n.value for n in report.unresolved])
        return report

    def mark_paid_manually(self, day: str, notes: Optional[str] = None) -> None:
        con = self._db()
        try:
            cur = con.execute(
                "UPDATE winners SET payout_status=?, notes=?, updated_at=? WHERE day_key=?",
                (PAID, notes or "marked paid manually", self._clock(), day),
            )
            changed = cur.rowcount
        finally:
            con.close()
        if changed == 0:
            raise NoWinnerRecord("No winner record found for that day.")
        log.info("[payout] %s marked paid manually", day)

    def record(self, day: str) -> Optional[SettlementReport]:
        try:
            return self._load(day)
        except NoWinnerRecord:
            return None
