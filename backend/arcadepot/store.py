# store.py
import sqlite3
from typing import Any, Callable, Dict, List, Optional

ConnFactory = Callable[[], sqlite3.Connection]


# ---------------------------
# DB
# ---------------------------
def db(path: str) -> sqlite3.Connection:
    con = sqlite3.connect(path, timeout=30, isolation_level=None, check_same_thread=False)  # autocommit
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA journal_mode=WAL;")
    con.execute("PRAGMA synchronous=NORMAL;")
    con.execute("PRAGMA busy_timeout=30000;")
    con.execute("PRAGMA foreign_keys=ON;")
    return con


def db_factory(path: str) -> ConnFactory:
    return lambda: db(path)


def init_db(con: sqlite3.Connection) -> None:
    con.execute("""
    CREATE TABLE IF NOT EXISTS payments (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      wallet_address TEXT NOT NULL,
      chain TEXT NOT NULL CHECK(chain IN ('solana','base')),
      tx_signature TEXT NOT NULL UNIQUE,
      amount_native TEXT NOT NULL,
      amount_usd REAL NOT NULL,
      price_at_payment REAL NOT NULL,
      session_token TEXT NOT NULL UNIQUE,
      session_used INTEGER NOT NULL DEFAULT 0,
      score_submitted INTEGER NOT NULL DEFAULT 0,
      created_at INTEGER NOT NULL,
      day_key TEXT NOT NULL
    );
    """)
    con.execute("CREATE INDEX IF NOT EXISTS idx_payments_day ON payments(day_key);")
    con.execute("""
    CREATE TABLE IF NOT EXISTS scores (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      payment_id INTEGER NOT NULL UNIQUE REFERENCES payments(id),
      wallet_address TEXT NOT NULL,
      chain TEXT NOT NULL,
      score INTEGER NOT NULL,
      game_frames INTEGER NOT NULL,
      game_mode TEXT NOT NULL,
      turbo_mode INTEGER NOT NULL DEFAULT 0,
      submitted_at INTEGER NOT NULL,
      day_key TEXT NOT NULL
    );
    """)
    con.execute("CREATE INDEX IF NOT EXISTS idx_scores_day ON scores(day_key, score DESC, submitted_at ASC);")
    con.execute("""
    CREATE TABLE IF NOT EXISTS winners (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      day_key TEXT NOT NULL UNIQUE,
      wallet_address TEXT NOT NULL,
      chain TEXT NOT NULL,
      score INTEGER NOT NULL,
      usd_total REAL NOT NULL DEFAULT 0,
      player_count INTEGER NOT NULL DEFAULT 0,
      payout_status TEXT NOT NULL DEFAULT 'pending',
      notes TEXT,
      created_at INTEGER NOT NULL,
      updated_at INTEGER NOT NULL
    );
    """)
    con.execute("""
    CREATE TABLE IF NOT EXISTS payout_legs (
      day_key TEXT NOT NULL,
      network TEXT NOT NULL,
      pool_native TEXT NOT NULL,
      prize_native TEXT NOT NULL,
      house_native TEXT NOT NULL,
      status TEXT NOT NULL,
      transfer_id TEXT,
      detail TEXT,
      attempts INTEGER NOT NULL DEFAULT 0,
      updated_at INTEGER NOT NULL,
      PRIMARY KEY(day_key, network)
    );
    """)
    con.execute("""
    CREATE TABLE IF NOT EXISTS tx_claims (
      tx_signature TEXT PRIMARY KEY,
      network TEXT NOT NULL,
      claimed_at INTEGER NOT NULL,
      state TEXT NOT NULL
    );
    """)


def rollback_quietly(con: sqlite3.Connection) -> None:
    try:
        con.execute("ROLLBACK;")
    except sqlite3.Error:
        pass


# ---------------------------
# Reads
# ---------------------------
def get_payment_by_token(con: sqlite3.Connection, token: str) -> Optional[sqlite3.Row]:
    return con.execute("SELECT * FROM payments WHERE session_token=?", (token,)).fetchone()


def get_winner(con: sqlite3.Connection, day: str) -> Optional[sqlite3.Row]:
    return con.execute("SELECT * FROM winners WHERE day_key=?", (day,)).fetchone()


def get_legs(con: sqlite3.Connection, day: str) -> Dict[str, sqlite3.Row]:
    rows = con.execute("SELECT * FROM payout_legs WHERE day_key=? ORDER BY network", (day,)).fetchall()
    return {str(r["network"]): r for r in rows}


def shorten_wallet(addr: str) -> str:
    # public display: first6...last4
    if not addr or len(addr) < 12:
        return addr
    return addr[:6] + "..." + addr[-4:]


def fetch_top_scores(con: sqlite3.Connection, day: str, limit: int = 10, shorten: bool = True) -> List[Dict[str, Any]]:
    rows = con.execute(
        """
        SELECT wallet_address, chain, score, game_mode, turbo_mode, submitted_at
        FROM scores
        WHERE day_key=?
        ORDER BY score DESC, submitted_at ASC, id ASC
        LIMIT ?
        """,
        (day, int(limit)),
    ).fetchall()
    out: List[Dict[str, Any]] = []
    for r in rows:
        out.append(
            dict(
                wallet=shorten_wallet(str(r["wallet_address"])) if shorten else str(r["wallet_address"]),
                chain=str(r["chain"]),
                score=int(r["score"]),
                game_mode=str(r["game_mode"]),
                turbo=bool(r["turbo_mode"]),
                submitted_at=int(r["submitted_at"]),
            )
        )
    return out


def fetch_winner_history(con: sqlite3.Connection, limit: int = 7) -> List[Dict[str, Any]]:
    rows = con.execute(
        "SELECT day_key, wallet_address, chain, score, payout_status FROM winners ORDER BY day_key DESC LIMIT ?",
        (int(limit),),
    ).fetchall()
    out: List[Dict[str, Any]] = []
    for r in rows:
        legs = get_legs(con, str(r["day_key"]))
        out.append(
            dict(
                day_key=str(r["day_key"]),
                wallet=shorten_wallet(str(r["wallet_address"])),
                chain=str(r["chain"]),
                score=int(r["score"]),
                payout_status=str(r["payout_status"]),
                prizes={net: str(leg["prize_native"]) for net, leg in legs.items()},
            )
        )
    return out


def fetch_payments(con: sqlite3.Connection, limit: int = 50, page: int = 1) -> List[Dict[str, Any]]:
    limit = int(limit)
    page = int(page)
    if limit < 1:
        limit = 1
    if limit > 200:
        limit = 200
    if page < 1:
        page = 1

    rows = con.execute(
        """
        SELECT id, wallet_address, chain, tx_signature, amount_native, amount_usd,
               price_at_payment, session_used, score_submitted, created_at, day_key
        FROM payments
        ORDER BY created_at DESC, id DESC
        LIMIT ? OFFSET ?
        """,
        (limit, (page - 1) * limit),
    ).fetchall()
    out: List[Dict[str, Any]] = []
    for r in rows:
        out.append(
            dict(
                id=int(r["id"]),
                wallet_address=str(r["wallet_address"]),
                chain=str(r["chain"]),
                tx_signature=str(r["tx_signature"]),
                amount_native=str(r["amount_native"]),
                amount_usd=float(r["amount_usd"]),
                price_at_payment=float(r["price_at_payment"]),
                session_used=bool(r["session_used"]),
                score_submitted=bool(r["score_submitted"]),
                created_at=int(r["created_at"]),
                day_key=str(r["day_key"]),
            )
        )
    return out
