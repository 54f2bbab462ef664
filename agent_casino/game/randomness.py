"""
Randomness round coordination.

One round = create a randomness account, commit it to an oracle queue, then
poll until the oracle can hand back a reveal instruction. State only moves
forward on confirmed on-chain writes.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from agent_casino.config import REVEAL_ATTEMPT_TIMEOUT, REVEAL_MAX_ATTEMPTS, REVEAL_POLL_INTERVAL
from agent_casino.database.models import RandomnessRound, RoundState
from agent_casino.errors import OracleUnavailable, RoundNotFound
from .oracle import OracleClient
from .solana_ops import SolanaChain

logger = logging.getLogger(__name__)

# Operating ranges the oracle network is tuned for
RECOMMENDED_INTERVAL = (2.5, 3.0)
RECOMMENDED_ATTEMPTS = (12, 20)


@dataclass(frozen=True)
class RetryPolicy:
    """Reveal polling budget.

    Only structurally impossible values are rejected. The recommended range
    (2.5-3 s between polls, 12-20 attempts) is advisory: values outside it,
    such as zero-interval polling, are accepted. from_settings() logs a
    warning when a configured policy falls outside the range.
    """
    interval: float = REVEAL_POLL_INTERVAL
    max_attempts: int = REVEAL_MAX_ATTEMPTS
    attempt_timeout: float = REVEAL_ATTEMPT_TIMEOUT

    def __post_init__(self):
        if self.interval < 0:
            raise ValueError(f"interval must be >= 0, got {self.interval}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.attempt_timeout <= 0:
            raise ValueError(f"attempt_timeout must be > 0, got {self.attempt_timeout}")

    @property
    def is_recommended(self) -> bool:
        lo, hi = RECOMMENDED_INTERVAL
        min_attempts, max_attempts = RECOMMENDED_ATTEMPTS
        return lo <= self.interval <= hi and min_attempts <= self.max_attempts <= max_attempts

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        policy = cls(
            interval=settings.reveal_poll_interval,
            max_attempts=settings.reveal_max_attempts,
            attempt_timeout=settings.reveal_attempt_timeout,
        )
        if not policy.is_recommended:
            logger.warning(
                f"[ORACLE] Reveal policy {policy.interval}s x {policy.max_attempts} is outside "
                f"{RECOMMENDED_INTERVAL[0]}-{RECOMMENDED_INTERVAL[1]}s x "
                f"{RECOMMENDED_ATTEMPTS[0]}-{RECOMMENDED_ATTEMPTS[1]}"
            )
        return policy


@dataclass
class RevealProof:
    """A reveal instruction the oracle was ready to hand out."""
    rng_round: RandomnessRound
    instruction: Instruction
    attempt: int


class RandomnessCoordinator:
    """Drives randomness rounds for one authority wallet."""

    def __init__(self, chain: SolanaChain, oracle: OracleClient, policy: Optional[RetryPolicy] = None):
        self.chain = chain
        self.oracle = oracle
        self.policy = policy or RetryPolicy()

    async def begin_round(self, queue: Pubkey) -> RandomnessRound:
        """Create a randomness account and wait for it to land."""
        randomness = Keypair()
        ix = await self.oracle.create_round(randomness.pubkey(), queue, self.chain.address)
        tx = await self.chain.send_and_confirm([ix], extra_signers=[randomness])

        logger.info(f"[ORACLE] Created randomness account {randomness.pubkey()} (tx: {tx})")
        return RandomnessRound(
            handle=randomness.pubkey(),
            queue=queue,
            state=RoundState.CREATED,
            signers=[randomness],
        )

    async def commit(self, rng_round: RandomnessRound) -> RandomnessRound:
        """Bind the round to a future oracle output."""
        if rng_round.state != RoundState.CREATED:
            raise ValueError(f"Cannot commit round {rng_round.handle} in state {rng_round.state.value}")

        # Re-read from chain, local state may be stale
        if await self.chain.get_account_data(rng_round.handle) is None:
            raise RoundNotFound(f"Randomness account {rng_round.handle} not found on chain")

        ix = await self.oracle.commit(rng_round.handle, rng_round.queue, self.chain.address)
        tx = await self.chain.send_and_confirm([ix])

        rng_round.state = RoundState.COMMITTED
        logger.info(f"[ORACLE] Committed {rng_round.handle} to queue {rng_round.queue} (tx: {tx})")
        return rng_round

    async def await_reveal(self, rng_round: RandomnessRound, policy: Optional[RetryPolicy] = None) -> RevealProof:
        """Poll until the oracle can build a reveal instruction.

        Each attempt has its own timeout; a hung oracle call cancels only that
        attempt. Reads only, no transactions are sent here.

        Raises:
            OracleUnavailable: budget exhausted (round is marked expired)
        """
        policy = policy or self.policy
        if rng_round.state != RoundState.COMMITTED:
            raise ValueError(f"Cannot reveal round {rng_round.handle} in state {rng_round.state.value}")

        last_error: Optional[BaseException] = None

        for attempt in range(1, policy.max_attempts + 1):
            await asyncio.sleep(policy.interval)
            rng_round.attempts += 1

            try:
                ix = await asyncio.wait_for(
                    self.oracle.build_reveal_instruction(rng_round.handle, self.chain.address),
                    timeout=policy.attempt_timeout,
                )
            except asyncio.TimeoutError as e:
                last_error = e
                logger.debug(f"[ORACLE] Reveal attempt {attempt}/{policy.max_attempts} timed out for {rng_round.handle}")
                continue
            except Exception as e:
                last_error = e
                logger.debug(f"[ORACLE] Reveal attempt {attempt}/{policy.max_attempts} failed for {rng_round.handle}: {e}")
                continue

            if ix is None:
                logger.debug(f"[ORACLE] Reveal attempt {attempt}/{policy.max_attempts}: {rng_round.handle} still pending")
                continue

            logger.info(f"[ORACLE] Reveal ready for {rng_round.handle} on attempt {attempt}")
            return RevealProof(rng_round=rng_round, instruction=ix, attempt=attempt)

        rng_round.state = RoundState.EXPIRED
        logger.warning(f"[ORACLE] No reveal for {rng_round.handle} after {policy.max_attempts} attempts")
        raise OracleUnavailable(policy.max_attempts, last_error)

    def mark_revealed(self, rng_round: RandomnessRound) -> None:
        """Record that a transaction consuming the reveal was confirmed."""
        rng_round.state = RoundState.REVEALED
        rng_round.signers.clear()
