"""
Input validation and normalization for HTTP query parameters.
"""
import math
import re
from typing import Optional, Tuple

import base58

from agent_casino.database.models import CoinSide
from agent_casino.game.variants import MAX_MULTIPLIER, MIN_MULTIPLIER

MIN_DICE_TARGET = 1
MAX_DICE_TARGET = 5
DEFAULT_DICE_TARGET = 3
DEFAULT_LIMBO_MULTIPLIER = 2.0
DEFAULT_CRASH_MULTIPLIER = 1.5

BASE58_CHARS = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

# Leading numeric prefix, so "4abc" reads as 4 and "3.7" as 3 for integers
LEADING_INT = re.compile(r"\s*([+-]?\d+)")
LEADING_FLOAT = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def is_valid_solana_address(address: str) -> Tuple[bool, str]:
    """Validate Solana public key format.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not address:
        return False, "Address is required"

    if not isinstance(address, str):
        return False, "Address must be a string"

    # base58, 32-44 characters
    if len(address) < 32 or len(address) > 44:
        return False, "Invalid address length"

    if not all(c in BASE58_CHARS for c in address):
        return False, "Address contains invalid characters"

    try:
        decoded = base58.b58decode(address)
    except ValueError as e:
        return False, f"Failed to decode address: {e}"
    if len(decoded) != 32:
        return False, "Invalid address format (must be 32 bytes when decoded)"

    return True, ""


def parse_coin_choice(choice: Optional[str]) -> CoinSide:
    """Anything but 'tails' plays heads."""
    return CoinSide.TAILS if (choice or "").strip().lower() == CoinSide.TAILS.value else CoinSide.HEADS


def clamp_dice_target(raw: Optional[str]) -> int:
    """Parse a dice target from its leading digits, clamped to 1-5 (3 if absent or 0)."""
    match = LEADING_INT.match(raw or "")
    if not match:
        return DEFAULT_DICE_TARGET
    target = int(match.group(1))
    if target == 0:
        return DEFAULT_DICE_TARGET
    return min(MAX_DICE_TARGET, max(MIN_DICE_TARGET, target))


def clamp_multiplier(raw: Optional[str], default: float) -> float:
    """Parse a target multiplier, falling back to default and clamping to 1.01-100."""
    match = LEADING_FLOAT.match(raw or "")
    if not match:
        return default
    multiplier = float(match.group(1))
    if not math.isfinite(multiplier) or multiplier == 0:
        return default
    return min(MAX_MULTIPLIER, max(MIN_MULTIPLIER, multiplier))
