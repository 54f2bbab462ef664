"""x402 payment gating for Agent Casino."""
from .replay_cache import ReplayCache
from .x402 import (
    PAYMENT_HEADER,
    PaymentGateway,
    PaymentTerms,
    PaidRequest,
    ChallengeResponse,
    build_challenge,
    decode_payment_header,
    find_transfer_amount,
    get_associated_token_address,
)

__all__ = [
    "ReplayCache",
    "PAYMENT_HEADER",
    "PaymentGateway",
    "PaymentTerms",
    "PaidRequest",
    "ChallengeResponse",
    "build_challenge",
    "decode_payment_header",
    "find_transfer_amount",
    "get_associated_token_address",
]
