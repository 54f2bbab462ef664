"""
Exception hierarchy for Agent Casino.

Every error carries a short public ``code``. The HTTP layer only ever returns
that code, never the message, so internal detail does not leak to callers.
"""
from typing import List, Optional


class CasinoError(Exception):
    """Base class for all casino errors."""

    code = "internal_error"
    status_code = 500


# === Oracle / settlement ===

class OracleUnavailable(CasinoError):
    """Reveal was not obtainable within the retry budget."""

    code = "oracle_unavailable"
    status_code = 503

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"VRF oracle unavailable after {attempts} attempts: {last_error}")


class RoundNotFound(CasinoError):
    """Randomness account is missing on chain."""

    code = "oracle_unavailable"
    status_code = 503


class SettlementTransactionFailed(CasinoError):
    """Combined reveal+settle transaction was rejected."""

    code = "settlement_failed"
    status_code = 502

    def __init__(self, message: str, retryable: bool = False, logs: Optional[List[str]] = None):
        self.retryable = retryable
        self.logs = logs or []
        super().__init__(message)


class UnsupportedGameType(CasinoError):
    code = "invalid_request"
    status_code = 400


class TransactionFailed(CasinoError):
    """A transaction was rejected by the RPC node or failed on chain."""

    def __init__(
        self,
        message: str,
        logs: Optional[List[str]] = None,
        already_processed: bool = False,
        signature: Optional[str] = None,
    ):
        self.logs = logs or []
        self.already_processed = already_processed
        self.signature = signature
        super().__init__(message)


# === Payments ===

class InvalidPayment(CasinoError):
    """Payment evidence is malformed or under-value."""

    code = "invalid_payment"
    status_code = 400


class PaymentReplayed(CasinoError):
    """Payment signature was already consumed."""

    code = "payment_replayed"
    status_code = 400


class PaymentFailed(CasinoError):
    """Payment transaction could not be submitted or failed on chain."""

    code = "payment_failed"
    status_code = 402


# === Attestations ===

class AttestationMismatch(CasinoError):
    """Recomputed attestation hash disagrees with the sealed one."""

    code = "invalid_request"
    status_code = 400


class UnsupportedAttestationVersion(CasinoError):
    code = "invalid_request"
    status_code = 400


class RecordLayoutError(CasinoError):
    """Raw on-chain record does not match the expected byte layout."""

    code = "not_found"
    status_code = 404
