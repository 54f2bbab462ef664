"""
Game settlement orchestration.

play() runs one game end to end:

    1. create + commit a randomness round     (two confirmed txs)
    2. submit the wager to the ledger         (confirmed tx)
    3. pre-build the settle instruction       (not sent)
    4. wait for the oracle reveal             (reads only)
    5. reveal + settle in ONE transaction     (confirmed tx)

Step 5 keeps the revealed value and the payout in the same atomic
transaction, so nobody can act on the randomness before the payout is fixed.
"""
import logging
from typing import Optional

from solders.pubkey import Pubkey

from agent_casino.config import SETTLE_ATTEMPTS, SETTLE_COMPUTE_UNIT_LIMIT, SETTLE_COMPUTE_UNIT_PRICE
from agent_casino.database.models import GameStatus, GameType, RandomnessRound, SettledGame
from agent_casino.errors import SettlementTransactionFailed, TransactionFailed
from .ledger import CasinoLedger, GameHandle
from .randomness import RandomnessCoordinator, RetryPolicy
from .solana_ops import SolanaChain, LAMPORTS_PER_SOL
from .variants import variant_for

logger = logging.getLogger(__name__)

# Ledger rejections that a fresh reveal cannot fix
FATAL_SETTLEMENT_ERRORS = (
    "InsufficientLiquidity",
    "InvalidAmount",
    "BetTooSmall",
    "BetTooLarge",
    "InvalidChoice",
    "AccountNotInitialized",
    "ConstraintSeeds",
    "insufficient lamports",
)


def is_retryable_settlement_failure(error: TransactionFailed) -> bool:
    """Stale reveals and transport hiccups are retryable, ledger rejections are not."""
    haystack = " ".join([str(error), *error.logs])
    return not any(marker in haystack for marker in FATAL_SETTLEMENT_ERRORS)


class GameSettlementOrchestrator:
    """Plays oracle-settled games for the chain's wallet."""

    def __init__(
        self,
        chain: SolanaChain,
        ledger: CasinoLedger,
        coordinator: RandomnessCoordinator,
        queue: Pubkey,
        settle_attempts: int = SETTLE_ATTEMPTS,
        compute_unit_price: int = SETTLE_COMPUTE_UNIT_PRICE,
        compute_unit_limit: int = SETTLE_COMPUTE_UNIT_LIMIT,
    ):
        if settle_attempts < 1:
            raise ValueError(f"settle_attempts must be >= 1, got {settle_attempts}")
        self.chain = chain
        self.ledger = ledger
        self.coordinator = coordinator
        self.queue = queue
        self.settle_attempts = settle_attempts
        self.compute_unit_price = compute_unit_price
        self.compute_unit_limit = compute_unit_limit

    async def play(
        self,
        game_type: GameType,
        bet_amount: int,
        choice_param,
        policy: Optional[RetryPolicy] = None,
    ) -> SettledGame:
        """Play one game and return the settled ledger record.

        Args:
            game_type: Which game to play
            bet_amount: Wager in lamports
            choice_param: heads/tails, dice target or target multiplier

        Raises:
            ValueError / UnsupportedGameType: bad input, nothing was sent
            OracleUnavailable: reveal never arrived
            SettlementTransactionFailed: combined reveal+settle rejected
        """
        variant = variant_for(game_type)
        # Validate before anything touches the chain
        variant.request_data(bet_amount, choice_param)

        logger.info(f"[GAME] {game_type.value} {bet_amount / LAMPORTS_PER_SOL} SOL choice={choice_param}")

        rng_round = await self.coordinator.begin_round(self.queue)
        await self.coordinator.commit(rng_round)

        handle = await self.ledger.request_game(variant, bet_amount, choice_param, rng_round.handle)
        settle_ix = self.ledger.settle_game(handle)

        tx = await self._reveal_and_settle(rng_round, handle, settle_ix, policy)

        game = await self.ledger.fetch_game_request(handle.address)
        if game.status != GameStatus.SETTLED:
            raise SettlementTransactionFailed(
                f"Game #{handle.game_index} is {game.status.value} after settlement tx {tx}"
            )
        game.tx_signature = tx

        outcome = f"WIN +{game.payout / LAMPORTS_PER_SOL} SOL" if game.won else "LOSS"
        logger.info(f"[GAME] #{game.game_index} {game_type.value} result={game.result} {outcome} (tx: {tx})")
        return game

    async def _reveal_and_settle(
        self,
        rng_round: RandomnessRound,
        handle: GameHandle,
        settle_ix,
        policy: Optional[RetryPolicy],
    ) -> str:
        for attempt in range(1, self.settle_attempts + 1):
            proof = await self.coordinator.await_reveal(rng_round, policy)

            try:
                tx = await self.chain.send_and_confirm(
                    [proof.instruction, settle_ix],
                    compute_unit_price=self.compute_unit_price,
                    compute_unit_limit=self.compute_unit_limit,
                )
            except TransactionFailed as e:
                retryable = is_retryable_settlement_failure(e)
                if not retryable or attempt == self.settle_attempts:
                    logger.error(f"[SETTLE] Game #{handle.game_index} settlement failed (attempt {attempt}): {e}")
                    raise SettlementTransactionFailed(str(e), retryable=retryable, logs=e.logs) from e

                logger.warning(
                    f"[SETTLE] Game #{handle.game_index} attempt {attempt}/{self.settle_attempts} "
                    f"rejected, re-polling reveal: {e}"
                )
                continue

            self.coordinator.mark_revealed(rng_round)
            return tx

        # settle_attempts >= 1, the loop always returns or raises
        raise SettlementTransactionFailed(f"Game #{handle.game_index} was never settled")
