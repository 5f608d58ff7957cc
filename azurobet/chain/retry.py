"""
Retry/backoff executor for RPC operations.

Every chain read and every broadcast runs through ``RetryExecutor.execute``,
which classifies failures and decides between giving up, rotating to the
next RPC endpoint, or retrying the same one after an exponential delay.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from .rpc import ConnectionContext, RpcEndpointPool
from ..betting.config import RetrySettings
from ..errors import AzuroBetError, ExhaustedRetries, InsufficientFunds

logger = logging.getLogger(__name__)

RECOMMENDED_GAS_RESERVE = 0.15

INSUFFICIENT_FUNDS_MARKERS = ("insufficient funds", "queued cost")

PERMANENT_MARKERS = (
    "nonce too low",
    "replacement transaction underpriced",
    "replacement underpriced",
    "already known",
    "execution reverted",
)

ROTATE_MARKERS = (
    "429",
    "too many requests",
    "rate limit",
    "batch size too large",
    "throttle",
    "exceeded",
    "capacity",
)


class ErrorAction(str, Enum):
    FATAL = "fatal"
    PERMANENT = "permanent"
    ROTATE = "rotate"
    RETRY = "retry"


def classify_error(exc: BaseException) -> ErrorAction:
    """Decide what the executor does with a failed attempt."""
    if isinstance(exc, InsufficientFunds):
        return ErrorAction.FATAL
    if isinstance(exc, AzuroBetError):
        return ErrorAction.RETRY if exc.kind == "transient" and not isinstance(exc, ExhaustedRetries) else ErrorAction.PERMANENT

    text = str(exc).lower()
    if any(m in text for m in INSUFFICIENT_FUNDS_MARKERS):
        return ErrorAction.FATAL
    if any(m in text for m in PERMANENT_MARKERS):
        return ErrorAction.PERMANENT

    status = getattr(exc, "status", None) or getattr(getattr(exc, "response", None), "status_code", None)
    if status == 429 or any(m in text for m in ROTATE_MARKERS):
        return ErrorAction.ROTATE
    return ErrorAction.RETRY


def insufficient_funds_error(exc: BaseException, native_symbol: str = "POL") -> InsufficientFunds:
    """Build a remediation message from the node's error text."""
    if isinstance(exc, InsufficientFunds):
        return exc
    text = str(exc)
    match = re.search(r"have (\d+) want (\d+)", text) or re.search(r"balance (\d+), tx cost (\d+)", text)
    if match:
        have, want = int(match.group(1)), int(match.group(2))
        shortfall = max(want - have, 0) / 1e18
        need = max(shortfall * 1.2, 0.01)
        return InsufficientFunds(
            f"Insufficient {native_symbol} for gas: have {have / 1e18:.4f}, need {want / 1e18:.4f}. "
            f"Send at least {need:.4f} {native_symbol} to the wallet."
        )
    return InsufficientFunds(
        f"Insufficient {native_symbol} for gas. "
        f"Send at least {RECOMMENDED_GAS_RESERVE} {native_symbol} to the wallet."
    )


class RetryExecutor:
    """
    Run an RPC operation against the pool with retries and endpoint rotation.

    ``operation`` receives the ``ConnectionContext`` for each attempt and
    must only use ``ctx.client`` (never a client captured earlier).
    """

    def __init__(
        self,
        pool: RpcEndpointPool,
        policy: Optional[RetrySettings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
        native_symbol: str = "POL",
    ):
        self.pool = pool
        self.policy = policy or RetrySettings()
        self._sleep = sleep
        self._rng = rng
        self.native_symbol = native_symbol

    def delay(self, retry: int) -> float:
        """Delay before retry number ``retry`` (1-based)."""
        p = self.policy
        return min(p.base_delay * 2 ** retry + self._rng() * p.jitter, p.max_delay)

    async def execute(self, operation: Callable[[ConnectionContext], Awaitable[Any]], name: str) -> Any:
        ctx = self.pool.current()
        start_index = ctx.index
        last_error: Optional[BaseException] = None
        attempts = 0

        for attempt in range(self.policy.max_retries + 1):
            attempts += 1
            try:
                return await operation(ctx)
            except Exception as e:
                action = classify_error(e)
                if action is ErrorAction.FATAL:
                    raise insufficient_funds_error(e, self.native_symbol) from e
                if action is ErrorAction.PERMANENT:
                    raise
                last_error = e

                if attempt == self.policy.max_retries:
                    break

                if action is ErrorAction.ROTATE and len(self.pool.endpoints) > 1:
                    rotated = await self.pool.rotate(ctx)
                    if rotated.index == start_index:
                        logger.error("%s: every RPC endpoint is rate limited", name)
                        await self.pool.restore(start_index)
                        raise ExhaustedRetries(name, attempts, e) from e

                wait = self.delay(attempt + 1)
                logger.warning(
                    "%s failed on %s (%s, attempt %d/%d), retrying in %.1fs: %s",
                    name, ctx.endpoint, action.value, attempts,
                    self.policy.max_retries + 1, wait, e,
                )
                await self._sleep(wait)
                ctx = self.pool.current()

        raise ExhaustedRetries(name, attempts, last_error) from last_error
