import asyncio
import base64
import json
import struct
from typing import Dict, List, Optional

import pytest
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import Transaction, VersionedTransaction

from agent_casino.attestation.formatter import VRF_REQUEST_LAYOUT, parse_raw_record
from agent_casino.config import DEFAULT_PROGRAM_ID, USDC_MINT_DEVNET
from agent_casino.database.models import ON_CHAIN_STATUS_CODES, GameStatus, SettledGame
from agent_casino.errors import TransactionFailed
from agent_casino.game.ledger import AGENT_STATS_LAYOUT, HOUSE_LAYOUT, CasinoLedger
from agent_casino.game.oracle import OracleClient
from agent_casino.game.orchestrator import GameSettlementOrchestrator
from agent_casino.game.randomness import RandomnessCoordinator, RetryPolicy
from agent_casino.game.variants import VARIANTS, MultiplierVariant, anchor_discriminator
from agent_casino.payments.x402 import TOKEN_PROGRAM_ID, PaymentTerms, get_associated_token_address

PROGRAM_ID = Pubkey.from_string(DEFAULT_PROGRAM_ID)
ORACLE_PROGRAM_ID = Pubkey.from_string("SBondMDrcV3K4kxZR1HNVT7osZxAHVHgYXL5Ze1oMUv")
USDC_MINT = Pubkey.from_string(USDC_MINT_DEVNET)
QUEUE = Pubkey.from_string("EYiAmGSdsQTuCw413V5BzaruWuCCSDgTPtBGvLkXHbe7")

REQUESTS = {anchor_discriminator(v.request_instruction): v for v in VARIANTS.values()}
SETTLES = {anchor_discriminator(v.settle_instruction): v for v in VARIANTS.values()}

FAST_POLICY = RetryPolicy(interval=0, max_attempts=3, attempt_timeout=0.05)


def house_account(total_games: int = 0, pool: int = 50_000_000_000) -> bytes:
    return bytes(8) + HOUSE_LAYOUT.pack(
        bytes(Keypair().pubkey()), pool, 100, 1_000_000, 10, total_games, 0, 0, 254
    )


def record_account(game: SettledGame, bump: int = 255) -> bytes:
    return bytes(8) + VRF_REQUEST_LAYOUT.body.pack(
        bytes(game.player),
        bytes(game.house),
        bytes(game.randomness_account),
        game.game_type.code,
        game.amount,
        game.choice,
        game.target_multiplier,
        ON_CHAIN_STATUS_CODES.index(game.status),
        game.created_at,
        game.settled_at,
        game.result,
        game.payout,
        game.game_index,
        game.request_slot,
        bump,
    )


class FakeChain:
    """In-memory chain running a tiny simulation of the casino program.

    ``next_result`` is the revealed game result; ``win`` forces the outcome
    (None means coin flips win when the result equals the choice).
    """

    def __init__(self, total_games: int = 0):
        self.payer = Keypair()
        self.accounts: Dict[Pubkey, bytes] = {}
        self.transactions: List[dict] = []
        self.house_pda, _ = Pubkey.find_program_address([b"house"], PROGRAM_ID)
        self.accounts[self.house_pda] = house_account(total_games)

        self.next_result = 0
        self.win: Optional[bool] = None
        self.settle_failures: List[TransactionFailed] = []
        self.drop_randomness_accounts = False

        self.landed_payments: List[str] = []
        self.submit_error: Optional[Exception] = None
        self.confirm_error: Optional[TransactionFailed] = None
        self.submitted: List[bytes] = []
        self.confirmed: List[str] = []

    @property
    def address(self) -> Pubkey:
        return self.payer.pubkey()

    async def get_account_data(self, address: Pubkey) -> Optional[bytes]:
        return self.accounts.get(address)

    async def send_and_confirm(self, instructions, extra_signers=(), compute_unit_price=None, compute_unit_limit=None):
        instructions = list(instructions)
        self._execute(instructions)
        signature = str(self.payer.sign_message(f"tx-{len(self.transactions)}".encode()))
        self.transactions.append({
            "instructions": instructions,
            "extra_signers": list(extra_signers),
            "compute_unit_price": compute_unit_price,
            "compute_unit_limit": compute_unit_limit,
            "signature": signature,
        })
        return signature

    def _execute(self, instructions: List[Instruction]):
        revealed = False
        for ix in instructions:
            if ix.program_id == ORACLE_PROGRAM_ID:
                randomness = ix.accounts[0].pubkey
                if ix.data == b"create" and not self.drop_randomness_accounts:
                    self.accounts[randomness] = bytes(8)
                elif ix.data == b"reveal":
                    revealed = True
            elif ix.program_id == PROGRAM_ID:
                tag = bytes(ix.data[:8])
                if tag in REQUESTS:
                    self._request(REQUESTS[tag], ix)
                elif tag in SETTLES:
                    if self.settle_failures:
                        raise self.settle_failures.pop(0)
                    if not revealed:
                        raise TransactionFailed("RandomnessNotResolved", logs=["Program log: RandomnessNotResolved"])
                    self._settle(ix)

    def _request(self, variant, ix: Instruction):
        data = bytes(ix.data)
        (amount,) = struct.unpack_from("<Q", data, 8)
        if isinstance(variant, MultiplierVariant):
            choice, target = 0, struct.unpack_from("<H", data, 16)[0]
        else:
            choice, target = data[16], 0

        house = bytearray(self.accounts[self.house_pda])
        fields = list(HOUSE_LAYOUT.unpack_from(house, 8))
        game_index = fields[5]
        expected, _ = Pubkey.find_program_address(
            [variant.seed_prefix, bytes(ix.accounts[3].pubkey), struct.pack("<Q", game_index)], PROGRAM_ID
        )
        if ix.accounts[1].pubkey != expected:
            raise TransactionFailed(
                "ConstraintSeeds",
                logs=["Program log: AnchorError caused by account: vrf_request. Error Code: ConstraintSeeds."],
            )
        fields[5] += 1
        fields[6] += amount
        self.accounts[self.house_pda] = bytes(8) + HOUSE_LAYOUT.pack(*fields)

        game = SettledGame(
            address=ix.accounts[1].pubkey,
            game_index=game_index,
            game_type=variant.game_type,
            player=ix.accounts[3].pubkey,
            house=self.house_pda,
            randomness_account=ix.accounts[2].pubkey,
            amount=amount,
            choice=choice,
            target_multiplier=target,
            status=GameStatus.PENDING,
            created_at=1_700_000_000 + game_index,
            request_slot=300_000_000 + game_index,
        )
        self.accounts[game.address] = record_account(game)

    def _settle(self, ix: Instruction):
        address = ix.accounts[1].pubkey
        game = parse_raw_record(self.accounts[address], address=address)
        won = self.win if self.win is not None else self.next_result == game.choice
        game.status = GameStatus.SETTLED
        game.result = self.next_result
        game.payout = game.amount * 198 // 100 if won else 0
        game.settled_at = game.created_at + 5
        self.accounts[address] = record_account(game)

        stats_pda = ix.accounts[2].pubkey
        current = self.accounts.get(stats_pda)
        if current is None:
            fields = [bytes(game.player), 0, 0, 0, 0, 0, 255]
        else:
            fields = list(AGENT_STATS_LAYOUT.unpack_from(current, 8))
        fields[1] += 1
        fields[2] += game.amount
        fields[3] += game.payout
        if won:
            fields[4] += 1
        else:
            fields[5] += 1
        self.accounts[stats_pda] = bytes(8) + AGENT_STATS_LAYOUT.pack(*fields)

    async def submit_raw_transaction(self, raw: bytes, signature: str) -> str:
        if self.submit_error:
            raise self.submit_error
        self.submitted.append(raw)
        if signature in self.landed_payments:
            raise TransactionFailed(
                "Transaction simulation failed: This transaction has already been processed",
                already_processed=True,
                signature=signature,
            )
        self.landed_payments.append(signature)
        return signature

    async def confirm(self, signature: str) -> None:
        if self.confirm_error:
            raise self.confirm_error
        self.confirmed.append(signature)


class FakeOracle(OracleClient):
    """Oracle that reveals after ``pending_polls`` not-ready answers.

    ``pending_polls=None`` never reveals; ``hang`` blocks every reveal call.
    """

    def __init__(self, pending_polls: Optional[int] = 0, hang: bool = False, error: Optional[Exception] = None):
        self.pending_polls = pending_polls
        self.hang = hang
        self.error = error
        self.reveal_calls = 0

    async def create_round(self, randomness, queue, authority):
        return Instruction(ORACLE_PROGRAM_ID, b"create", [
            AccountMeta(randomness, is_signer=True, is_writable=True),
            AccountMeta(queue, is_signer=False, is_writable=False),
            AccountMeta(authority, is_signer=True, is_writable=True),
        ])

    async def commit(self, randomness, queue, authority):
        return Instruction(ORACLE_PROGRAM_ID, b"commit", [
            AccountMeta(randomness, is_signer=False, is_writable=True),
            AccountMeta(queue, is_signer=False, is_writable=False),
            AccountMeta(authority, is_signer=True, is_writable=False),
        ])

    async def build_reveal_instruction(self, randomness, authority):
        self.reveal_calls += 1
        if self.hang:
            await asyncio.sleep(60)
        if self.error:
            raise self.error
        if self.pending_polls is None or self.reveal_calls <= self.pending_polls:
            return None
        return Instruction(ORACLE_PROGRAM_ID, b"reveal", [
            AccountMeta(randomness, is_signer=False, is_writable=True),
            AccountMeta(authority, is_signer=True, is_writable=False),
        ])


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def ledger(chain):
    return CasinoLedger(chain, PROGRAM_ID)


@pytest.fixture
def coordinator(chain, oracle):
    return RandomnessCoordinator(chain, oracle, FAST_POLICY)


@pytest.fixture
def orchestrator(chain, ledger, coordinator):
    return GameSettlementOrchestrator(chain, ledger, coordinator, QUEUE, settle_attempts=2)


# === Payments ===

@pytest.fixture
def recipient():
    return Keypair().pubkey()


@pytest.fixture
def terms(recipient):
    return PaymentTerms(
        pay_to=recipient,
        mint=USDC_MINT,
        amount_raw=10_000,
        network_id="solana:EtWTRABZaYq6iMfeYKouRu166VU2xqa1",
        description="Play coin flip",
        price=0.01,
    )


def usdc_transfer(
    payer: Keypair,
    recipient: Pubkey,
    amount: int,
    checked: bool = False,
    versioned: bool = False,
    mint: Pubkey = USDC_MINT,
    decimals: int = 6,
    destination: Optional[Pubkey] = None,
):
    """A signed SPL token transfer from payer's ATA to recipient's ATA."""
    source = get_associated_token_address(payer.pubkey(), mint)
    destination = destination or get_associated_token_address(recipient, mint)

    if checked:
        ix = Instruction(TOKEN_PROGRAM_ID, struct.pack("<BQB", 12, amount, decimals), [
            AccountMeta(source, is_signer=False, is_writable=True),
            AccountMeta(mint, is_signer=False, is_writable=False),
            AccountMeta(destination, is_signer=False, is_writable=True),
            AccountMeta(payer.pubkey(), is_signer=True, is_writable=False),
        ])
    else:
        ix = Instruction(TOKEN_PROGRAM_ID, struct.pack("<BQ", 3, amount), [
            AccountMeta(source, is_signer=False, is_writable=True),
            AccountMeta(destination, is_signer=False, is_writable=True),
            AccountMeta(payer.pubkey(), is_signer=True, is_writable=False),
        ])

    if versioned:
        message = MessageV0.try_compile(payer.pubkey(), [ix], [], Hash.default())
        return VersionedTransaction(message, [payer])
    return Transaction.new_signed_with_payer([ix], payer.pubkey(), [payer], Hash.default())


def payment_header(tx, flat: bool = False) -> str:
    serialized = base64.b64encode(bytes(tx)).decode()
    if flat:
        body = {"serializedTransaction": serialized}
    else:
        body = {
            "x402Version": 1,
            "scheme": "exact",
            "network": "solana:EtWTRABZaYq6iMfeYKouRu166VU2xqa1",
            "payload": {"serializedTransaction": serialized},
        }
    return base64.b64encode(json.dumps(body).encode()).decode()
