"""Utility functions for Agent Casino."""
from .formatting import format_sol, format_usdc, format_tx_link, truncate_address
from .validation import (
    is_valid_solana_address,
    parse_coin_choice,
    clamp_dice_target,
    clamp_multiplier,
    DEFAULT_LIMBO_MULTIPLIER,
    DEFAULT_CRASH_MULTIPLIER,
)

__all__ = [
    "format_sol",
    "format_usdc",
    "format_tx_link",
    "truncate_address",
    "is_valid_solana_address",
    "parse_coin_choice",
    "clamp_dice_target",
    "clamp_multiplier",
    "DEFAULT_LIMBO_MULTIPLIER",
    "DEFAULT_CRASH_MULTIPLIER",
]
