"""
Order status poller.

Drives one relayer order (bet or cashout) to a terminal state within a
fixed budget:

  Processing / Pending  -> keep polling
  Accepted              -> "accepted" with betId / txHash
  Rejected              -> "rejected" with the relayer's reason
  budget exhausted      -> "timeout"  (unknown; the order may still land)

Status-endpoint failures never end the loop early; they just wait for
the next tick.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

import httpx

from .models import PollResult
from ..azuro.models import OrderState

logger = logging.getLogger(__name__)

POLL_INTERVAL = 2.0
POLL_BUDGET = 30.0


class OrderPoller:
    def __init__(
        self,
        fetch: Callable[[str], Awaitable[OrderState]],
        interval: float = POLL_INTERVAL,
        budget: float = POLL_BUDGET,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fetch = fetch
        self.interval = interval
        self.budget = budget
        self._sleep = sleep
        self._clock = clock

    async def poll(self, order_id: str) -> PollResult:
        start = self._clock()
        deadline = start + self.budget
        attempts = 0
        logger.info("Polling order %s (budget %.0fs)", order_id, self.budget)

        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            await self._sleep(min(self.interval, remaining))

            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            attempts += 1
            try:
                state = await asyncio.wait_for(self.fetch(order_id), timeout=remaining)
            except asyncio.TimeoutError:
                logger.debug("Order %s: status request outlived the budget", order_id)
                break
            except (httpx.HTTPError, ValueError) as e:
                logger.debug("Order %s: status check failed (%s), retrying", order_id, e)
                continue

            logger.debug("Order %s state: %s", order_id, state.state)
            if state.state == "Accepted":
                elapsed = self._clock() - start
                logger.info("Order %s accepted: betId=%s tx=%s (%.1fs)", order_id, state.bet_id, state.tx_hash, elapsed)
                return PollResult(
                    status="accepted", order_id=order_id, bet_id=state.bet_id,
                    tx_hash=state.tx_hash, attempts=attempts, elapsed=elapsed,
                )
            if state.state == "Rejected":
                reason = state.error or "Order rejected by relayer"
                logger.info("Order %s rejected: %s", order_id, reason)
                return PollResult(
                    status="rejected", order_id=order_id, error=reason,
                    attempts=attempts, elapsed=self._clock() - start,
                )

        elapsed = self._clock() - start
        logger.warning("Order %s: no terminal state after %.0fs", order_id, elapsed)
        return PollResult(
            status="timeout", order_id=order_id,
            error=f"Order not confirmed within {self.budget:.0f}s",
            attempts=attempts, elapsed=elapsed,
        )
