"""Attestation formatting and verification."""
from .formatter import (
    ATTESTATION_VERSION,
    ATTESTATION_PROTOCOL,
    VRF_REQUEST_LAYOUT,
    RecordLayout,
    AttestationService,
    format_attestation,
    verify_attestation,
    check_attestation,
    compute_attestation_hash,
    canonical_json,
    parse_raw_record,
)

__all__ = [
    "ATTESTATION_VERSION",
    "ATTESTATION_PROTOCOL",
    "VRF_REQUEST_LAYOUT",
    "RecordLayout",
    "AttestationService",
    "format_attestation",
    "verify_attestation",
    "check_attestation",
    "compute_attestation_hash",
    "canonical_json",
    "parse_raw_record",
]
