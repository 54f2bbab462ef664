"""
Client for the on-chain casino ledger (Anchor program).

Only the parts the settlement flow needs are decoded here: the House
account's game counter and the VrfRequest record. Bet limits, house edge and
payout math stay inside the program.
"""
import logging
import struct
from dataclasses import dataclass
from typing import Optional

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from agent_casino.attestation.formatter import parse_raw_record
from agent_casino.database.models import SettledGame
from agent_casino.errors import RecordLayoutError
from .solana_ops import SolanaChain, LAMPORTS_PER_SOL
from .variants import PlayableVariant

logger = logging.getLogger(__name__)

ANCHOR_DISCRIMINATOR_SIZE = 8

# House: authority, pool, house_edge_bps, min_bet, max_bet_percent,
#        total_games, total_volume, total_payout, bump
HOUSE_LAYOUT = struct.Struct("<32sQHQBQQQB")

# AgentStats: agent, total_games, total_wagered, total_won, wins, losses, bump
AGENT_STATS_LAYOUT = struct.Struct("<32sQQQQQB")


@dataclass
class HouseState:
    authority: Pubkey
    pool: int
    house_edge_bps: int
    min_bet: int
    max_bet_percent: int
    total_games: int
    total_volume: int
    total_payout: int


@dataclass
class AgentStats:
    """Per-player totals kept by the casino program."""
    agent: Pubkey
    total_games: int = 0
    total_wagered: int = 0
    total_won: int = 0
    wins: int = 0
    losses: int = 0

    @property
    def win_rate(self) -> float:
        if self.total_games == 0:
            return 0.0
        return self.wins / self.total_games * 100

    @property
    def profit(self) -> int:
        return self.total_won - self.total_wagered

    @property
    def roi(self) -> float:
        if self.total_wagered == 0:
            return 0.0
        return self.profit / self.total_wagered * 100


@dataclass
class GameHandle:
    """Reference to a submitted wager."""
    address: Pubkey  # VrfRequest PDA
    game_index: int
    player: Pubkey
    randomness_account: Pubkey
    variant: PlayableVariant
    request_tx: Optional[str] = None


def parse_house(data: bytes) -> HouseState:
    end = ANCHOR_DISCRIMINATOR_SIZE + HOUSE_LAYOUT.size
    if len(data) < end:
        raise RecordLayoutError(f"House account too short: {len(data)} bytes, need {end}")
    fields = HOUSE_LAYOUT.unpack_from(data, ANCHOR_DISCRIMINATOR_SIZE)
    return HouseState(
        authority=Pubkey.from_bytes(fields[0]),
        pool=fields[1],
        house_edge_bps=fields[2],
        min_bet=fields[3],
        max_bet_percent=fields[4],
        total_games=fields[5],
        total_volume=fields[6],
        total_payout=fields[7],
    )


def parse_agent_stats(data: bytes) -> AgentStats:
    end = ANCHOR_DISCRIMINATOR_SIZE + AGENT_STATS_LAYOUT.size
    if len(data) < end:
        raise RecordLayoutError(f"AgentStats account too short: {len(data)} bytes, need {end}")
    agent, total_games, total_wagered, total_won, wins, losses, _bump = AGENT_STATS_LAYOUT.unpack_from(
        data, ANCHOR_DISCRIMINATOR_SIZE
    )
    return AgentStats(
        agent=Pubkey.from_bytes(agent),
        total_games=total_games,
        total_wagered=total_wagered,
        total_won=total_won,
        wins=wins,
        losses=losses,
    )


class CasinoLedger:
    """Builds and submits casino program instructions for one player wallet."""

    def __init__(self, chain: SolanaChain, program_id: Pubkey):
        self.chain = chain
        self.program_id = program_id
        self.house_pda, _ = Pubkey.find_program_address([b"house"], program_id)

    @property
    def player(self) -> Pubkey:
        return self.chain.address

    def agent_stats_pda(self, player: Pubkey) -> Pubkey:
        pda, _ = Pubkey.find_program_address([b"agent", bytes(player)], self.program_id)
        return pda

    def vrf_request_pda(self, variant: PlayableVariant, player: Pubkey, game_index: int) -> Pubkey:
        seeds = [variant.seed_prefix, bytes(player), struct.pack("<Q", game_index)]
        pda, _ = Pubkey.find_program_address(seeds, self.program_id)
        return pda

    async def fetch_house(self) -> HouseState:
        data = await self.chain.get_account_data(self.house_pda)
        if data is None:
            raise RecordLayoutError(f"House account {self.house_pda} not found")
        return parse_house(data)

    async def request_game(
        self,
        variant: PlayableVariant,
        amount: int,
        choice_param,
        randomness_account: Pubkey,
    ) -> GameHandle:
        """Lock the wager on chain and record the randomness account.

        The game index is read from the house account right before the
        instruction is built; a value read earlier may already be taken by a
        concurrent request.
        """
        data = variant.request_data(amount, choice_param)

        house = await self.fetch_house()
        game_index = house.total_games
        vrf_request = self.vrf_request_pda(variant, self.player, game_index)

        ix = Instruction(
            self.program_id,
            data,
            [
                AccountMeta(self.house_pda, is_signer=False, is_writable=True),
                AccountMeta(vrf_request, is_signer=False, is_writable=True),
                AccountMeta(randomness_account, is_signer=False, is_writable=False),
                AccountMeta(self.player, is_signer=True, is_writable=True),
                AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            ],
        )

        tx = await self.chain.send_and_confirm([ix])
        logger.info(
            f"[LEDGER] {variant.game_type.value} request #{game_index} "
            f"{amount / LAMPORTS_PER_SOL} SOL -> {vrf_request} (tx: {tx})"
        )
        return GameHandle(
            address=vrf_request,
            game_index=game_index,
            player=self.player,
            randomness_account=randomness_account,
            variant=variant,
            request_tx=tx,
        )

    def settle_game(self, handle: GameHandle) -> Instruction:
        """Build (not send) the settle instruction for a submitted wager."""
        return Instruction(
            self.program_id,
            handle.variant.settle_data(),
            [
                AccountMeta(self.house_pda, is_signer=False, is_writable=True),
                AccountMeta(handle.address, is_signer=False, is_writable=True),
                AccountMeta(self.agent_stats_pda(handle.player), is_signer=False, is_writable=True),
                AccountMeta(handle.randomness_account, is_signer=False, is_writable=False),
                AccountMeta(handle.player, is_signer=False, is_writable=True),
                AccountMeta(self.player, is_signer=True, is_writable=True),
                AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            ],
        )

    async def fetch_game_request(self, address: Pubkey) -> SettledGame:
        """Read and decode a VrfRequest record from chain."""
        data = await self.chain.get_account_data(address)
        if data is None:
            raise RecordLayoutError(f"Game request {address} not found")
        return parse_raw_record(data, address=address)

    async def get_house_stats(self) -> dict:
        house = await self.fetch_house()
        max_bet = house.pool * house.max_bet_percent // 100
        return {
            "pool": house.pool / LAMPORTS_PER_SOL,
            "houseEdgeBps": house.house_edge_bps,
            "minBet": house.min_bet / LAMPORTS_PER_SOL,
            "maxBet": max_bet / LAMPORTS_PER_SOL,
            "totalGames": house.total_games,
            "totalVolume": house.total_volume / LAMPORTS_PER_SOL,
            "totalPayout": house.total_payout / LAMPORTS_PER_SOL,
            "houseProfit": (house.total_volume - house.total_payout) / LAMPORTS_PER_SOL,
        }

    async def fetch_agent_stats(self, player: Pubkey) -> AgentStats:
        """Read a player's totals. A player with no settled games has no
        account yet and gets all zeroes."""
        data = await self.chain.get_account_data(self.agent_stats_pda(player))
        if data is None:
            return AgentStats(agent=player)
        return parse_agent_stats(data)

    async def get_agent_stats(self, player: Pubkey) -> dict:
        stats = await self.fetch_agent_stats(player)
        return {
            "agent": str(player),
            "totalGames": stats.total_games,
            "totalWagered": stats.total_wagered / LAMPORTS_PER_SOL,
            "totalWon": stats.total_won / LAMPORTS_PER_SOL,
            "wins": stats.wins,
            "losses": stats.losses,
            "winRate": stats.win_rate,
            "profit": stats.profit / LAMPORTS_PER_SOL,
            "roi": stats.roi,
        }
