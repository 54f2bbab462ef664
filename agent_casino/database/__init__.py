"""Database module for Agent Casino."""
from .models import (
    GameType,
    GameStatus,
    RoundState,
    CoinSide,
    RandomnessRound,
    SettledGame,
    PaymentProof,
)
from .repo import Database

__all__ = [
    "GameType",
    "GameStatus",
    "RoundState",
    "CoinSide",
    "RandomnessRound",
    "SettledGame",
    "PaymentProof",
    "Database",
]
