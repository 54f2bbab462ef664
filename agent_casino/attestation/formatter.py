"""
Execution attestations for settled games.

An attestation is a flat JSON document sealed with the SHA-256 of its own
canonical serialization (sorted keys, no whitespace). Anyone can recompute
the hash from the other fields and compare, without calling back into the
casino.
"""
import hashlib
import json
import logging
import struct
from dataclasses import dataclass
from typing import Optional, Tuple

from solders.pubkey import Pubkey

from agent_casino.database.models import GameStatus, GameType, SettledGame
from agent_casino.errors import (
    AttestationMismatch,
    RecordLayoutError,
    UnsupportedAttestationVersion,
)

logger = logging.getLogger(__name__)

ATTESTATION_VERSION = "1.0.0"
ATTESTATION_PROTOCOL = "agent-casino"
HASH_FIELD = "attestation_hash"

# Field set per version. Consumers reject versions they do not know.
REQUIRED_FIELDS = {
    "1.0.0": frozenset({
        "version", "protocol", "network", "program_id",
        "game_index", "game_type",
        "player", "house",
        "bet_lamports", "choice",
        "result", "payout_lamports", "won",
        "created_at", "settled_at", "request_slot",
        "vrf_randomness_account", "vrf_status",
    }),
}
OPTIONAL_FIELDS = {
    "1.0.0": frozenset({"target_multiplier"}),
}


@dataclass(frozen=True)
class RecordLayout:
    """Fixed-offset binary layout of a ledger record."""
    header_size: int
    body: struct.Struct
    fields: Tuple[str, ...]

    @property
    def size(self) -> int:
        return self.header_size + self.body.size


# VrfRequest account, 159 bytes: 8-byte Anchor discriminator, then
# player, house, randomness_account (32 each), game_type u8, amount u64,
# choice u8, target_multiplier u16, status u8, created_at i64, settled_at i64,
# result u8, payout u64, game_index u64, request_slot u64, bump u8.
# Must track the program's field order exactly.
VRF_REQUEST_LAYOUT = RecordLayout(
    header_size=8,
    body=struct.Struct("<32s32s32sBQBHBqqBQQQB"),
    fields=(
        "player", "house", "randomness_account", "game_type", "amount",
        "choice", "target_multiplier", "status", "created_at", "settled_at",
        "result", "payout", "game_index", "request_slot", "bump",
    ),
)


def parse_raw_record(
    data: bytes,
    layout: RecordLayout = VRF_REQUEST_LAYOUT,
    address: Optional[Pubkey] = None,
) -> SettledGame:
    """Decode a raw VrfRequest account into a SettledGame.

    Raises:
        RecordLayoutError: if the buffer is short or an enum code is unknown
    """
    if len(data) < layout.size:
        raise RecordLayoutError(f"Record too short: {len(data)} bytes, layout needs {layout.size}")

    values = dict(zip(layout.fields, layout.body.unpack_from(data, layout.header_size)))

    try:
        game_type = GameType.from_code(values["game_type"])
        status = GameStatus.from_code(values["status"])
    except IndexError:
        raise RecordLayoutError(
            f"Unknown enum code in record (game_type={values['game_type']}, status={values['status']})"
        )

    return SettledGame(
        address=address,
        game_index=values["game_index"],
        game_type=game_type,
        player=Pubkey.from_bytes(values["player"]),
        house=Pubkey.from_bytes(values["house"]),
        randomness_account=Pubkey.from_bytes(values["randomness_account"]),
        amount=values["amount"],
        choice=values["choice"],
        target_multiplier=values["target_multiplier"],
        status=status,
        result=values["result"],
        payout=values["payout"],
        created_at=values["created_at"],
        settled_at=values["settled_at"],
        request_slot=values["request_slot"],
    )


def canonical_json(document: dict) -> str:
    """Sorted keys, no whitespace."""
    return json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_attestation_hash(document: dict) -> str:
    """SHA-256 over every field except the hash itself."""
    body = {k: v for k, v in document.items() if k != HASH_FIELD}
    return hashlib.sha256(canonical_json(body).encode("utf-8")).hexdigest()


def _multiplier(raw: int):
    # 250 -> 2.5, 200 -> 2 (matches JSON.stringify output)
    value = raw / 100
    return int(value) if value.is_integer() else value


def format_attestation(game: SettledGame, network: str, program_id: str) -> dict:
    """Seal a settled game into an attestation document."""
    document = {
        "version": ATTESTATION_VERSION,
        "protocol": ATTESTATION_PROTOCOL,
        "network": network,
        "program_id": str(program_id),
        "game_index": game.game_index,
        "game_type": game.game_type.value,
        "player": str(game.player),
        "house": str(game.house),
        "bet_lamports": game.amount,
        "choice": game.choice,
        "result": game.result,
        "payout_lamports": game.payout,
        "won": game.payout > 0,
        "created_at": game.created_at,
        "settled_at": game.settled_at,
        "request_slot": game.request_slot,
        "vrf_randomness_account": str(game.randomness_account),
        "vrf_status": game.status.value,
    }

    # Omitted rather than null so every verifier hashes the same bytes
    if game.target_multiplier > 0:
        document["target_multiplier"] = _multiplier(game.target_multiplier)

    document[HASH_FIELD] = compute_attestation_hash(document)
    return document


def check_attestation(attestation: dict) -> None:
    """Strict verification.

    Raises:
        UnsupportedAttestationVersion: unknown version
        AttestationMismatch: wrong field set or hash disagreement
    """
    if not isinstance(attestation, dict):
        raise UnsupportedAttestationVersion(f"Attestation must be a JSON object, got {type(attestation).__name__}")

    version = attestation.get("version")
    if not isinstance(version, str) or version not in REQUIRED_FIELDS:
        raise UnsupportedAttestationVersion(f"Unsupported attestation version: {version!r}")

    keys = set(attestation) - {HASH_FIELD}
    missing = REQUIRED_FIELDS[version] - keys
    unknown = keys - REQUIRED_FIELDS[version] - OPTIONAL_FIELDS[version]
    if missing or unknown:
        raise AttestationMismatch(
            f"Field set does not match version {version}: missing={sorted(missing)} unknown={sorted(unknown)}"
        )

    sealed = attestation.get(HASH_FIELD)
    recomputed = compute_attestation_hash(attestation)
    if sealed != recomputed:
        raise AttestationMismatch(f"Attestation hash mismatch: sealed={sealed} recomputed={recomputed}")


def verify_attestation(attestation: dict) -> bool:
    """Recompute the hash and compare. Never raises on bad input."""
    try:
        check_attestation(attestation)
    except (AttestationMismatch, UnsupportedAttestationVersion) as e:
        logger.warning(f"[ATTEST] Verification failed: {e}")
        return False
    return True


class AttestationService:
    """Formats and verifies attestations for one deployment."""

    def __init__(self, network: str, program_id: str):
        self.network = network
        self.program_id = str(program_id)

    def format(self, game: SettledGame) -> dict:
        if game.status != GameStatus.SETTLED:
            raise AttestationMismatch(f"Game #{game.game_index} is {game.status.value}, only settled games are attested")
        return format_attestation(game, self.network, self.program_id)

    def verify(self, attestation: dict) -> bool:
        return verify_attestation(attestation)

    def check(self, attestation: dict) -> None:
        check_attestation(attestation)

    def parse_raw_record(self, data: bytes, layout: RecordLayout = VRF_REQUEST_LAYOUT) -> SettledGame:
        return parse_raw_record(data, layout)
