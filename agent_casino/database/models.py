"""
Data models for Agent Casino.
"""
from dataclasses import dataclass, field
from typing import Optional, List
from datetime import datetime
from enum import Enum

from solders.keypair import Keypair
from solders.pubkey import Pubkey


class GameType(Enum):
    """Game types known to the casino ledger."""
    COIN_FLIP = "CoinFlip"
    DICE_ROLL = "DiceRoll"
    LIMBO = "Limbo"
    PVP_CHALLENGE = "PvPChallenge"
    CRASH = "Crash"

    @property
    def code(self) -> int:
        """On-chain u8 enum code."""
        return GAME_TYPE_CODES.index(self)

    @classmethod
    def from_code(cls, code: int) -> "GameType":
        return GAME_TYPE_CODES[code]


# Order matches the ledger's on-chain enum
GAME_TYPE_CODES = (
    GameType.COIN_FLIP,
    GameType.DICE_ROLL,
    GameType.LIMBO,
    GameType.PVP_CHALLENGE,
    GameType.CRASH,
)


class GameStatus(Enum):
    """Status of a game request."""
    PENDING = "Pending"      # Wager locked, waiting for randomness
    COMMITTED = "Committed"  # Randomness committed, settlement outstanding (local only)
    SETTLED = "Settled"      # Reveal consumed and payout fixed
    EXPIRED = "Expired"      # Oracle never revealed

    @classmethod
    def from_code(cls, code: int) -> "GameStatus":
        return ON_CHAIN_STATUS_CODES[code]


ON_CHAIN_STATUS_CODES = (GameStatus.PENDING, GameStatus.SETTLED, GameStatus.EXPIRED)


class RoundState(Enum):
    """State of one randomness oracle round."""
    CREATED = "created"
    COMMITTED = "committed"
    REVEALED = "revealed"
    EXPIRED = "expired"


class CoinSide(Enum):
    """Side of the coin."""
    HEADS = "heads"
    TAILS = "tails"


@dataclass
class RandomnessRound:
    """One oracle interaction, owned by exactly one game."""
    handle: Pubkey  # Oracle randomness account
    queue: Pubkey
    state: RoundState = RoundState.CREATED
    attempts: int = 0  # Reveal polls spent so far

    # Keypairs needed to create the handle; never persisted
    signers: List[Keypair] = field(default_factory=list, repr=False)

    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class SettledGame:
    """A game request as recorded by the ledger."""
    address: Optional[Pubkey]  # VrfRequest account
    game_index: int
    game_type: GameType

    player: Pubkey
    house: Pubkey
    randomness_account: Pubkey

    amount: int  # lamports
    choice: int
    target_multiplier: int = 0  # hundredths, limbo/crash only
    status: GameStatus = GameStatus.PENDING

    result: int = 0
    payout: int = 0  # lamports, 0 if lost

    created_at: int = 0  # unix seconds
    settled_at: int = 0
    request_slot: int = 0

    # Combined reveal+settle transaction
    tx_signature: Optional[str] = None

    @property
    def won(self) -> bool:
        return self.payout > 0


@dataclass
class PaymentProof:
    """Evidence of payment for one gated call."""
    payer: str  # Fee payer of the transfer transaction
    asset: str  # Mint address
    amount: int  # Smallest units, read from the transfer instruction
    signature: str
    consumed_at: datetime = field(default_factory=datetime.utcnow)
