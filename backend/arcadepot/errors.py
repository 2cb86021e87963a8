# errors.py
"""
Error taxonomy for payment verification, sessions, scoring and settlement.

Core modules raise these; only the HTTP layer turns them into HTTPException.
"""
from typing import Optional


class PotError(Exception):
    code = "error"
    status_code = 400
    retryable = False

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.code)

    @property
    def message(self) -> str:
        return str(self)


# ---------------------------
# Input validation
# ---------------------------
class InputError(PotError):
    code = "invalid_input"


class InvalidScore(InputError):
    code = "invalid_score"


class InvalidFrames(InputError):
    code = "invalid_frames"


class InvalidGameMode(InputError):
    code = "invalid_game_mode"


class UnsupportedNetwork(InputError):
    code = "unsupported_network"


# ---------------------------
# Duplicate / conflict
# ---------------------------
class ConflictError(PotError):
    code = "conflict"
    status_code = 409


class DuplicateTransaction(ConflictError):
    code = "duplicate_transaction"


class AlreadySubmitted(ConflictError):
    code = "already_submitted"


class AlreadySettled(ConflictError):
    code = "already_settled"


# ---------------------------
# External dependencies
# ---------------------------
class NotFound(PotError):
    """Transaction absent, unconfirmed, partially visible or the RPC timed out."""
    code = "not_found"
    status_code = 404
    retryable = True


class PriceUnavailable(PotError):
    code = "price_unavailable"
    status_code = 503
    retryable = True


# ---------------------------
# On-chain rejections (need a new transaction)
# ---------------------------
class ChainRejection(PotError):
    code = "chain_rejection"


class Reverted(ChainRejection):
    code = "reverted"


class WrongRecipient(ChainRejection):
    code = "wrong_recipient"


class ZeroValue(ChainRejection):
    code = "zero_value"


class InsufficientAmount(ChainRejection):
    code = "insufficient_amount"


class Stale(ChainRejection):
    code = "stale"


# ---------------------------
# Sessions and anti-cheat
# ---------------------------
class InvalidSession(PotError):
    code = "invalid_session"
    status_code = 401


class SessionNotFound(PotError):
    code = "session_not_found"
    status_code = 404


class TooFast(PotError):
    code = "too_fast"


class ImpossibleScore(PotError):
    code = "impossible_score"


# ---------------------------
# Settlement
# ---------------------------
class NoScores(PotError):
    code = "no_scores"
    status_code = 404


class NoWinnerRecord(PotError):
    code = "no_winner_record"
    status_code = 404


class TransferFailed(PotError):
    code = "transfer_failed"
    status_code = 502

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
