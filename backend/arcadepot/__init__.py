"""Paid-entry arcade backend: payment verification, play sessions, scores and daily payouts."""

__version__ = "0.1.0"
