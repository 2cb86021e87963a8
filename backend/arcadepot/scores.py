# scores.py
import logging
from dataclasses import dataclass
from typing import Any, Callable

from .config import day_key, now_unix
from .errors import (
    AlreadySubmitted,
    ImpossibleScore,
    InvalidFrames,
    InvalidGameMode,
    InvalidScore,
    SessionNotFound,
    TooFast,
)
from .sessions import SessionIssuer
from .store import ConnFactory, get_payment_by_token, rollback_quietly

log = logging.getLogger(__name__)

# Anti-cheat thresholds
MAX_SCORE = 999990          # absolute ceiling of the game
MIN_FRAMES = 1800           # 30 seconds at 60 fps
FAST_GAME_MAX_SCORE = 100   # best score allowed for a game shorter than MIN_FRAMES
MAX_PTS_PER_FRAME = 50      # generous upper bound on scoring rate
VALID_MODES = ("pacman", "mspacman", "cookie", "otto")


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def check_score(score: Any, frames: Any, game_mode: Any) -> None:
    """Structural and rate checks, first failing rule wins."""
    if not _is_int(score) or score < 0 or score > MAX_SCORE:
        raise InvalidScore("Invalid score value.")
    if not _is_int(frames) or frames < 0:
        raise InvalidFrames("Invalid frames value.")
    if game_mode not in VALID_MODES:
        raise InvalidGameMode("Invalid gameMode.")

    if frames < MIN_FRAMES and score > FAST_GAME_MAX_SCORE:
        raise TooFast("Game ended too quickly for that score.")
    if score > frames * MAX_PTS_PER_FRAME:
        raise ImpossibleScore("Score exceeds maximum possible for the reported game duration.")


@dataclass
class Admitted:
    rank: int
    day_key: str
    score_id: int


class ScoreAdmission:
    def __init__(self, db_func: ConnFactory, issuer: SessionIssuer, clock: Callable[[], int] = now_unix):
        self._db = db_func
        self.issuer = issuer
        self._clock = clock

    def admit(self, token: str, score: int, frames: int, game_mode: str, turbo: bool = False) -> Admitted:
        check_score(score, frames, game_mode)
        token = (token or "").strip()
        self.issuer.decode(token)

        ts = self._clock()
        dk = day_key(ts)

        con = self._db()
        try:
            # Score insert and consumed flag commit together or not at all.
            con.execute("BEGIN IMMEDIATE;")
            payment = get_payment_by_token(con, token)
            if not payment:
                con.execute("ROLLBACK;")
                raise SessionNotFound("Session not found.")
            if payment["score_submitted"]:
                con.execute("ROLLBACK;")
                raise AlreadySubmitted("A score has already been submitted for this session.")

            cur = con.execute(
                "UPDATE payments SET score_submitted=1, session_used=1 WHERE id=? AND score_submitted=0",
                (payment["id"],),
            )
            if cur.rowcount != 1:
                con.execute("ROLLBACK;")
                raise AlreadySubmitted("A score has already been submitted for this session.")

            cur = con.execute(
                """
                INSERT INTO scores(payment_id, wallet_address, chain, score, game_frames, game_mode,
                                   turbo_mode, submitted_at, day_key)
                VALUES(?,?,?,?,?,?,?,?,?)
                """,
                (payment["id"], payment["wallet_address"], payment["chain"], score, frames,
                 game_mode, 1 if turbo else 0, ts, dk),
            )
            score_id = int(cur.lastrowid)
            con.execute("COMMIT;")

            row = con.execute(
                "SELECT COUNT(*) FROM scores WHERE day_key=? AND score>?",
                (dk, score),
            ).fetchone()
            rank = int(row[0]) + 1
        except (SessionNotFound, AlreadySubmitted):
            raise
        except Exception:
            rollback_quietly(con)
            raise
        finally:
            con.close()

        log.info("[score] %s scored %d (%s, %d frames) rank %d on %s",
                 payment["wallet_address"], score, game_mode, frames, rank, dk)
        return Admitted(rank=rank, day_key=dk, score_id=score_id)
