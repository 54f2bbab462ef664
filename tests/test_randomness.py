import asyncio

import pytest

from agent_casino.config import Settings
from agent_casino.database.models import RoundState
from agent_casino.errors import OracleUnavailable, RoundNotFound
from agent_casino.game.randomness import RandomnessCoordinator, RetryPolicy

from conftest import QUEUE, FakeOracle


async def committed_round(coordinator):
    rng_round = await coordinator.begin_round(QUEUE)
    return await coordinator.commit(rng_round)


@pytest.mark.asyncio
async def test_begin_round_signs_with_new_randomness_account(chain, coordinator):
    rng_round = await coordinator.begin_round(QUEUE)

    assert rng_round.state == RoundState.CREATED
    assert rng_round.queue == QUEUE
    assert len(chain.transactions) == 1
    signers = chain.transactions[0]["extra_signers"]
    assert [s.pubkey() for s in signers] == [rng_round.handle]


@pytest.mark.asyncio
async def test_commit_moves_round_forward(chain, coordinator):
    rng_round = await committed_round(coordinator)

    assert rng_round.state == RoundState.COMMITTED
    assert len(chain.transactions) == 2


@pytest.mark.asyncio
async def test_commit_rejects_missing_randomness_account(chain, coordinator):
    chain.drop_randomness_accounts = True
    rng_round = await coordinator.begin_round(QUEUE)

    with pytest.raises(RoundNotFound):
        await coordinator.commit(rng_round)
    assert rng_round.state == RoundState.CREATED


@pytest.mark.asyncio
async def test_commit_twice_is_rejected(coordinator):
    rng_round = await committed_round(coordinator)

    with pytest.raises(ValueError):
        await coordinator.commit(rng_round)


@pytest.mark.asyncio
async def test_reveal_after_pending_polls(chain):
    oracle = FakeOracle(pending_polls=2)
    coordinator = RandomnessCoordinator(chain, oracle, RetryPolicy(interval=0, max_attempts=5, attempt_timeout=1))
    rng_round = await committed_round(coordinator)

    proof = await coordinator.await_reveal(rng_round)

    assert proof.attempt == 3
    assert oracle.reveal_calls == 3
    assert rng_round.attempts == 3


@pytest.mark.asyncio
async def test_exhausted_budget_raises_after_exact_attempts_with_no_writes(chain):
    oracle = FakeOracle(pending_polls=None)
    coordinator = RandomnessCoordinator(chain, oracle, RetryPolicy(interval=0, max_attempts=4, attempt_timeout=1))
    rng_round = await committed_round(coordinator)
    writes_before = len(chain.transactions)

    with pytest.raises(OracleUnavailable) as exc_info:
        await coordinator.await_reveal(rng_round)

    assert exc_info.value.attempts == 4
    assert exc_info.value.code == "oracle_unavailable"
    assert oracle.reveal_calls == 4
    assert len(chain.transactions) == writes_before
    assert rng_round.state == RoundState.EXPIRED


@pytest.mark.asyncio
async def test_hung_oracle_call_is_cancelled_per_attempt(chain):
    oracle = FakeOracle(hang=True)
    coordinator = RandomnessCoordinator(chain, oracle, RetryPolicy(interval=0, max_attempts=2, attempt_timeout=0.01))
    rng_round = await committed_round(coordinator)

    with pytest.raises(OracleUnavailable) as exc_info:
        await coordinator.await_reveal(rng_round)

    assert oracle.reveal_calls == 2
    assert isinstance(exc_info.value.last_error, asyncio.TimeoutError)


@pytest.mark.asyncio
async def test_oracle_errors_are_retried_until_budget(chain):
    oracle = FakeOracle(error=ConnectionError("gateway down"))
    coordinator = RandomnessCoordinator(chain, oracle, RetryPolicy(interval=0, max_attempts=3, attempt_timeout=1))
    rng_round = await committed_round(coordinator)

    with pytest.raises(OracleUnavailable) as exc_info:
        await coordinator.await_reveal(rng_round)

    assert oracle.reveal_calls == 3
    assert isinstance(exc_info.value.last_error, ConnectionError)


@pytest.mark.asyncio
async def test_reveal_requires_committed_round(coordinator):
    rng_round = await coordinator.begin_round(QUEUE)

    with pytest.raises(ValueError):
        await coordinator.await_reveal(rng_round)


def test_mark_revealed_drops_signers(coordinator):
    from agent_casino.database.models import RandomnessRound
    from solders.keypair import Keypair

    keypair = Keypair()
    rng_round = RandomnessRound(handle=keypair.pubkey(), queue=QUEUE, state=RoundState.COMMITTED, signers=[keypair])

    coordinator.mark_revealed(rng_round)

    assert rng_round.state == RoundState.REVEALED
    assert rng_round.signers == []


@pytest.mark.parametrize("kwargs", [
    {"interval": -1},
    {"max_attempts": 0},
    {"attempt_timeout": 0},
])
def test_retry_policy_rejects_bad_values(kwargs):
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)


def test_retry_policy_defaults_are_recommended():
    assert RetryPolicy().is_recommended
    assert not RetryPolicy(interval=0.1, max_attempts=3).is_recommended


def test_policy_outside_recommended_range_is_accepted_with_warning(caplog):
    settings = Settings(reveal_poll_interval=0.5, reveal_max_attempts=30, reveal_attempt_timeout=1.0)

    with caplog.at_level("WARNING", logger="agent_casino.game.randomness"):
        policy = RetryPolicy.from_settings(settings)

    assert (policy.interval, policy.max_attempts) == (0.5, 30)
    assert not policy.is_recommended
    assert "outside" in caplog.text
