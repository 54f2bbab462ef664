"""
x402 payment gate for Solana USDC.

Implements the HTTP 402 Payment Required protocol:

  1. Caller hits a gated route without payment -> 402 with exact terms
  2. Caller signs an SPL token transfer and base64-encodes it
  3. Caller retries with the X-Payment header carrying the signed transfer
  4. We inspect the transfer, submit it, confirm it, consume its signature
     in the replay cache and only then run the gated operation

SECURITY:
  - Amount, mint and destination are read from the compiled transfer
    instruction, never from caller-supplied fields
  - Payer is the transaction's fee payer, not anything the caller claims
  - Malformed evidence is rejected before any chain interaction
  - A signature unlocks at most one call, even though a replayed transfer
    is already confirmed on chain
"""
import base64
import binascii
import json
import logging
import struct
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction, VersionedTransaction

from agent_casino.config import NETWORK_IDS, USDC_DECIMALS, USDC_MINTS
from agent_casino.database.models import PaymentProof
from agent_casino.errors import InvalidPayment, PaymentFailed, PaymentReplayed, TransactionFailed
from agent_casino.security.audit import AuditEventType, AuditLogger, AuditSeverity
from agent_casino.utils.formatting import truncate_address
from .replay_cache import ReplayCache

logger = logging.getLogger(__name__)

X402_VERSION = 1
PAYMENT_HEADER = "X-Payment"

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")

# SPL Token instruction tags
SPL_TRANSFER = 3           # [u8, u64]      accounts: source, destination, owner
SPL_TRANSFER_CHECKED = 12  # [u8, u64, u8]  accounts: source, mint, destination, owner

AnyTransaction = Union[VersionedTransaction, Transaction]


def get_associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    """ATA = PDA of [owner, TOKEN_PROGRAM_ID, mint]."""
    ata, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return ata


@dataclass(frozen=True)
class PaymentTerms:
    """What a gated route charges."""
    pay_to: Pubkey
    mint: Pubkey
    amount_raw: int  # smallest units
    network_id: str
    description: str
    price: float
    decimals: int = USDC_DECIMALS

    @property
    def destination_ata(self) -> Pubkey:
        return get_associated_token_address(self.pay_to, self.mint)

    @classmethod
    def for_network(cls, network: str, pay_to: Pubkey, price_usdc: float, description: str) -> "PaymentTerms":
        """USDC terms for devnet or mainnet-beta."""
        if network not in NETWORK_IDS:
            raise ValueError(f"Unsupported network: {network}")
        return cls(
            pay_to=pay_to,
            mint=Pubkey.from_string(USDC_MINTS[network]),
            amount_raw=round(price_usdc * 10 ** USDC_DECIMALS),
            network_id=NETWORK_IDS[network],
            description=description,
            price=price_usdc,
        )


@dataclass
class ChallengeResponse:
    """402 body telling the caller exactly how to pay."""
    body: dict
    status_code: int = 402


@dataclass
class PaidRequest:
    """A gated call whose payment was verified and consumed."""
    resource: str
    proof: PaymentProof


def build_challenge(terms: PaymentTerms, resource: str) -> dict:
    mint = str(terms.mint)
    return {
        "x402Version": X402_VERSION,
        "accepts": [{
            "scheme": "exact",
            "network": terms.network_id,
            "maxAmountRequired": str(terms.amount_raw),
            "asset": f"solana:{mint}",
            "payTo": str(terms.pay_to),
            "resource": resource,
            "description": terms.description,
            "mimeType": "application/json",
            "extra": {
                "mint": mint,
                "decimals": terms.decimals,
                "price": terms.price,
            },
        }],
    }


def _b64decode(value, what: str) -> bytes:
    if not isinstance(value, str) or not value:
        raise InvalidPayment(f"{what} is missing or not a string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidPayment(f"{what} is not valid base64") from e


def decode_payment_header(header: str) -> Tuple[bytes, AnyTransaction]:
    """X-Payment header -> (raw transaction bytes, transaction).

    Accepts ``{"payload": {"serializedTransaction": ...}}`` and the flat
    ``{"serializedTransaction": ...}`` form.
    """
    try:
        payment = json.loads(_b64decode(header, "X-Payment header"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidPayment("X-Payment header is not base64 JSON") from e
    if not isinstance(payment, dict):
        raise InvalidPayment("X-Payment payload must be a JSON object")

    payload = payment.get("payload")
    serialized = payload.get("serializedTransaction") if isinstance(payload, dict) else None
    serialized = serialized or payment.get("serializedTransaction")
    raw = _b64decode(serialized, "serializedTransaction")

    # Versioned encoding first, legacy second
    try:
        return raw, VersionedTransaction.from_bytes(raw)
    except Exception:
        pass
    try:
        return raw, Transaction.from_bytes(raw)
    except Exception as e:
        raise InvalidPayment("serializedTransaction is not a Solana transaction") from e


def transaction_signature(tx: AnyTransaction) -> str:
    if not tx.signatures or tx.signatures[0] == Signature.default():
        raise InvalidPayment("Payment transaction is not signed")
    return str(tx.signatures[0])


def find_transfer_amount(tx: AnyTransaction, terms: PaymentTerms) -> int:
    """Inspect compiled instructions for a qualifying USDC transfer.

    Returns:
        Transferred amount in smallest units

    Raises:
        InvalidPayment: no transfer to us of the right asset and amount
    """
    message = tx.message
    keys = list(message.account_keys)
    destination_ata = terms.destination_ata

    def key_at(indexes: bytes, position: int) -> Optional[Pubkey]:
        if position >= len(indexes) or indexes[position] >= len(keys):
            return None  # missing, or resolved through a lookup table
        return keys[indexes[position]]

    for ix in message.instructions:
        if ix.program_id_index >= len(keys) or keys[ix.program_id_index] != TOKEN_PROGRAM_ID:
            continue

        data = bytes(ix.data)
        accounts = bytes(ix.accounts)
        if not data:
            continue

        if data[0] == SPL_TRANSFER and len(data) >= 9:
            (amount,) = struct.unpack_from("<Q", data, 1)
            # No mint in a plain Transfer; the destination ATA pins it
            destination = key_at(accounts, 1)
            if destination == destination_ata and amount >= terms.amount_raw:
                return amount

        elif data[0] == SPL_TRANSFER_CHECKED and len(data) >= 10:
            amount, decimals = struct.unpack_from("<QB", data, 1)
            mint = key_at(accounts, 1)
            destination = key_at(accounts, 2)
            if (
                mint == terms.mint
                and destination in (destination_ata, terms.pay_to)
                and decimals == terms.decimals
                and amount >= terms.amount_raw
            ):
                return amount

    raise InvalidPayment("No valid USDC transfer found in transaction")


class PaymentGateway:
    """Verifies x402 payments against one replay cache."""

    def __init__(self, chain, replay_cache: ReplayCache, audit: Optional[AuditLogger] = None):
        self.chain = chain
        self.replay_cache = replay_cache
        self.audit = audit

    def _audit(self, event_type: AuditEventType, severity: AuditSeverity, details: str,
               ip_address: Optional[str], wallet: Optional[str] = None):
        if self.audit:
            self.audit.log(
                event_type=event_type, severity=severity, wallet=wallet, ip_address=ip_address, details=details
            )

    async def gate(
        self,
        resource: str,
        payment_header: Optional[str],
        terms: PaymentTerms,
        ip_address: Optional[str] = None,
    ) -> Union[PaidRequest, ChallengeResponse]:
        """Challenge, or verify and consume a payment.

        Raises:
            InvalidPayment: malformed or under-value evidence (no chain calls made)
            PaymentFailed: submission or on-chain execution failed
            PaymentReplayed: signature already consumed
        """
        if not payment_header:
            return ChallengeResponse(build_challenge(terms, resource))

        try:
            raw, tx = decode_payment_header(payment_header)
            signature = transaction_signature(tx)
            amount = find_transfer_amount(tx, terms)
        except InvalidPayment as e:
            logger.warning(f"[X402] Payment validation failed for {resource}: {e}")
            self._audit(AuditEventType.INVALID_PAYMENT, AuditSeverity.WARNING, str(e), ip_address)
            raise

        payer = str(tx.message.account_keys[0])

        try:
            submitted = await self.chain.submit_raw_transaction(raw, signature)
        except TransactionFailed as e:
            if not e.already_processed:
                logger.error(f"[X402] Payment submission failed for {signature[:16]}...: {e}")
                raise PaymentFailed("Payment transaction was rejected") from e
            # Landed before; confirmation and the replay cache decide
            submitted = signature
        except Exception as e:
            logger.error(f"[X402] Payment submission error for {signature[:16]}...: {e}", exc_info=True)
            raise PaymentFailed("Payment transaction could not be submitted") from e

        try:
            await self.chain.confirm(submitted)
        except TransactionFailed as e:
            logger.error(f"[X402] Payment tx failed on-chain {submitted[:16]}...: {e}")
            raise PaymentFailed("Payment transaction failed") from e

        proof = PaymentProof(payer=payer, asset=str(terms.mint), amount=amount, signature=submitted)

        if not self.replay_cache.claim(proof):
            logger.warning(f"[X402] Replayed payment {submitted[:16]}... from {truncate_address(payer)}")
            self._audit(
                AuditEventType.PAYMENT_REPLAYED,
                AuditSeverity.CRITICAL,
                f"signature={submitted}",
                ip_address,
                wallet=payer,
            )
            raise PaymentReplayed("Payment already processed")

        logger.info(f"[X402] Verified {amount} raw units of {terms.mint} from {truncate_address(payer)} (tx: {submitted})")
        self._audit(
            AuditEventType.PAYMENT_VERIFIED,
            AuditSeverity.INFO,
            f"signature={submitted} amount={amount} resource={resource}",
            ip_address,
            wallet=payer,
        )
        return PaidRequest(resource=resource, proof=proof)
