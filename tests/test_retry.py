"""Tests for the RPC endpoint pool and the retry executor."""

import asyncio

import pytest

from azurobet.betting.config import RetrySettings
from azurobet.chain.retry import ErrorAction, RetryExecutor, classify_error, insufficient_funds_error
from azurobet.chain.rpc import RpcEndpointPool
from azurobet.errors import ExhaustedRetries, FeedError, InsufficientFunds, RelayerRejected

from fakes import Recorder


def _pool(n=3):
    return RpcEndpointPool([f"https://rpc-{i}" for i in range(n)], lambda url: url)


def _executor(pool, max_retries=3, recorder=None):
    recorder = recorder or Recorder()
    policy = RetrySettings(max_retries=max_retries, base_delay=1.0, max_delay=30.0, jitter=0.5)
    return RetryExecutor(pool, policy, sleep=recorder.sleep, rng=lambda: 0.0), recorder


class Script:
    """Operation that raises the queued errors, then returns the endpoint it ran on."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.endpoints = []

    async def __call__(self, ctx):
        self.endpoints.append(ctx.endpoint)
        if self.errors:
            raise self.errors.pop(0)
        return ctx.client


# ── Classification ───────────────────────────────────────────────────

@pytest.mark.parametrize("message,action", [
    ("insufficient funds for gas * price + value: have 1 want 2", ErrorAction.FATAL),
    ("nonce too low", ErrorAction.PERMANENT),
    ("replacement transaction underpriced", ErrorAction.PERMANENT),
    ("execution reverted: LP: bet expired", ErrorAction.PERMANENT),
    ("429 Too Many Requests", ErrorAction.ROTATE),
    ("daily request limit exceeded", ErrorAction.ROTATE),
    ("connection reset by peer", ErrorAction.RETRY),
])
def test_classify_error(message, action):
    assert classify_error(RuntimeError(message)) is action


def test_classify_error_for_own_errors():
    assert classify_error(FeedError("down")) is ErrorAction.RETRY
    assert classify_error(RelayerRejected("bad")) is ErrorAction.PERMANENT
    assert classify_error(ExhaustedRetries("x", 3)) is ErrorAction.PERMANENT
    assert classify_error(InsufficientFunds("broke")) is ErrorAction.FATAL


def test_insufficient_funds_message_names_amounts():
    err = insufficient_funds_error(
        RuntimeError("insufficient funds: have 100000000000000000 want 250000000000000000"), "POL"
    )
    assert "have 0.1000" in err.message
    assert "need 0.2500" in err.message
    assert "POL" in err.message


def test_insufficient_funds_message_without_amounts():
    err = insufficient_funds_error(RuntimeError("insufficient funds"), "xDAI")
    assert "0.15 xDAI" in err.message


# ── Executor ─────────────────────────────────────────────────────────

def test_rate_limit_rotates_to_next_endpoint_and_succeeds():
    pool = _pool(3)
    executor, _ = _executor(pool)
    op = Script(RuntimeError("429 too many requests"))

    result = asyncio.run(executor.execute(op, "balanceOf"))

    assert result == "https://rpc-1"
    assert op.endpoints == ["https://rpc-0", "https://rpc-1"]
    assert pool.current().index == 1


def test_fatal_error_is_not_retried():
    executor, recorder = _executor(_pool())
    op = Script(RuntimeError("insufficient funds for gas: have 1 want 2"))

    with pytest.raises(InsufficientFunds):
        asyncio.run(executor.execute(op, "send"))
    assert len(op.endpoints) == 1
    assert recorder.delays == []


def test_permanent_error_is_raised_unchanged():
    executor, _ = _executor(_pool())
    op = Script(RuntimeError("nonce too low"))

    with pytest.raises(RuntimeError, match="nonce too low"):
        asyncio.run(executor.execute(op, "send"))
    assert len(op.endpoints) == 1


def test_transient_errors_retry_on_same_endpoint_with_backoff():
    pool = _pool(3)
    executor, recorder = _executor(pool)
    op = Script(ConnectionError("reset"), ConnectionError("reset"))

    assert asyncio.run(executor.execute(op, "getNonce")) == "https://rpc-0"
    assert op.endpoints == ["https://rpc-0"] * 3
    assert recorder.delays == [2.0, 4.0]


def test_exhausted_after_max_retries_plus_one_attempts():
    executor, recorder = _executor(_pool(), max_retries=3)
    op = Script(*[ConnectionError("reset")] * 10)

    with pytest.raises(ExhaustedRetries) as info:
        asyncio.run(executor.execute(op, "getBalance"))
    assert info.value.attempts == 4
    assert len(op.endpoints) == 4
    assert len(recorder.delays) == 3


def test_full_rotation_cycle_gives_up_and_restores_start():
    pool = _pool(2)
    executor, _ = _executor(pool, max_retries=5)
    op = Script(*[RuntimeError("429")] * 10)

    with pytest.raises(ExhaustedRetries):
        asyncio.run(executor.execute(op, "getBalance"))
    assert op.endpoints == ["https://rpc-0", "https://rpc-1"]
    assert pool.current().index == 0


def test_delay_is_capped():
    executor, _ = _executor(_pool())
    executor._rng = lambda: 1.0
    assert executor.delay(1) == 2.5
    assert executor.delay(10) == 30.0


# ── Pool ─────────────────────────────────────────────────────────────

def test_rotate_is_compare_and_swap():
    pool = _pool(3)
    stale = pool.current()

    async def rotate_twice():
        return await asyncio.gather(pool.rotate(stale), pool.rotate(stale))

    first, second = asyncio.run(rotate_twice())
    assert first.index == second.index == 1
    assert pool.current().generation == 1


def test_rotation_builds_new_context():
    pool = _pool(2)
    before = pool.current()
    after = asyncio.run(pool.rotate(before))
    assert before.index == 0 and before.client == "https://rpc-0"
    assert after.index == 1 and after.client == "https://rpc-1"
    assert asyncio.run(pool.rotate(after)).index == 0


def test_pool_requires_endpoints():
    with pytest.raises(ValueError):
        RpcEndpointPool([], lambda url: url)
