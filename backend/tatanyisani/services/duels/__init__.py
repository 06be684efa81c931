"""Duel domain services: ledger, challenges, countdown and settlement.

This package holds the stake-escrow duel logic. HTTP routes and socket
handlers import from here and stay free of currency and state-machine
rules.
"""

from .errors import (
    DuelError,
    InsufficientFunds,
    ChallengeNotFound,
    ChallengeFull,
    ChallengeNotActive,
    ChallengeStillRunning,
    NotAParticipant,
    WriteFailed,
)
