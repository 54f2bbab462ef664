"""
Oracle-settled game variants.

Each playable GameType maps to exactly one variant carrying its own
request/settle instruction pair, PDA seed prefix and choice encoding.
"""
import hashlib
import struct
from dataclasses import dataclass
from typing import Dict, Union

from agent_casino.database.models import CoinSide, GameType
from agent_casino.errors import UnsupportedGameType

MIN_MULTIPLIER = 1.01
MAX_MULTIPLIER = 100.0
DICE_TARGETS = range(1, 6)


def anchor_discriminator(instruction_name: str) -> bytes:
    """First 8 bytes of sha256("global:<name>"), as Anchor computes it."""
    return hashlib.sha256(f"global:{instruction_name}".encode()).digest()[:8]


@dataclass(frozen=True)
class GameVariant:
    """Base for one oracle-settled game."""
    game_type: GameType
    seed_prefix: bytes
    request_instruction: str
    settle_instruction: str

    def encode_choice(self, choice_param) -> int:
        raise NotImplementedError

    def pack_choice(self, choice: int) -> bytes:
        return struct.pack("<B", choice)

    def request_data(self, amount: int, choice_param) -> bytes:
        """Anchor instruction data for the request: discriminator, u64 amount, choice."""
        if not isinstance(amount, int) or amount <= 0:
            raise ValueError(f"Bet amount must be a positive integer of lamports, got {amount!r}")
        choice = self.encode_choice(choice_param)
        return (
            anchor_discriminator(self.request_instruction)
            + struct.pack("<Q", amount)
            + self.pack_choice(choice)
        )

    def settle_data(self) -> bytes:
        return anchor_discriminator(self.settle_instruction)


@dataclass(frozen=True)
class CoinFlipVariant(GameVariant):
    """heads (0) or tails (1)."""

    def encode_choice(self, choice_param) -> int:
        if isinstance(choice_param, CoinSide):
            return 0 if choice_param == CoinSide.HEADS else 1
        if choice_param in (0, 1) and not isinstance(choice_param, bool):
            return int(choice_param)
        if isinstance(choice_param, str) and choice_param.lower() in ("heads", "tails"):
            return 0 if choice_param.lower() == "heads" else 1
        raise ValueError(f"Coin flip choice must be 'heads' or 'tails', got {choice_param!r}")


@dataclass(frozen=True)
class DiceRollVariant(GameVariant):
    """Win if roll <= target (1-5)."""

    def encode_choice(self, choice_param) -> int:
        try:
            target = int(choice_param)
        except (TypeError, ValueError):
            raise ValueError(f"Dice target must be an integer 1-5, got {choice_param!r}")
        if target != choice_param and not isinstance(choice_param, str):
            raise ValueError(f"Dice target must be an integer 1-5, got {choice_param!r}")
        if target not in DICE_TARGETS:
            raise ValueError(f"Dice target must be between 1 and 5, got {target}")
        return target


@dataclass(frozen=True)
class MultiplierVariant(GameVariant):
    """Limbo and crash: target multiplier 1.01x-100x, sent as u16 hundredths."""

    def encode_choice(self, choice_param) -> int:
        try:
            multiplier = float(choice_param)
        except (TypeError, ValueError):
            raise ValueError(f"Multiplier must be a number, got {choice_param!r}")
        if not MIN_MULTIPLIER <= multiplier <= MAX_MULTIPLIER:
            raise ValueError(f"Multiplier must be between {MIN_MULTIPLIER} and {MAX_MULTIPLIER}, got {multiplier}")
        return round(multiplier * 100)

    def pack_choice(self, choice: int) -> bytes:
        return struct.pack("<H", choice)


PlayableVariant = Union[CoinFlipVariant, DiceRollVariant, MultiplierVariant]

VARIANTS: Dict[GameType, PlayableVariant] = {
    GameType.COIN_FLIP: CoinFlipVariant(
        GameType.COIN_FLIP, b"vrf_request", "vrf_coin_flip_request", "vrf_coin_flip_settle"
    ),
    GameType.DICE_ROLL: DiceRollVariant(
        GameType.DICE_ROLL, b"vrf_dice", "vrf_dice_roll_request", "vrf_dice_roll_settle"
    ),
    GameType.LIMBO: MultiplierVariant(
        GameType.LIMBO, b"vrf_limbo", "vrf_limbo_request", "vrf_limbo_settle"
    ),
    GameType.CRASH: MultiplierVariant(
        GameType.CRASH, b"vrf_crash", "vrf_crash_request", "vrf_crash_settle"
    ),
}

# Settled by the ledger's challenge accept path, not by the oracle flow
NON_ORACLE_GAME_TYPES = frozenset({GameType.PVP_CHALLENGE})

if set(VARIANTS) | NON_ORACLE_GAME_TYPES != set(GameType):
    raise RuntimeError("Every GameType needs a variant or an explicit non-oracle entry")


def variant_for(game_type: GameType) -> PlayableVariant:
    """Look up the variant for a game type."""
    if game_type in NON_ORACLE_GAME_TYPES:
        raise UnsupportedGameType(f"{game_type.value} is not settled through the oracle flow")
    return VARIANTS[game_type]
