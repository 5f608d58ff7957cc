"""
Relayer REST client for bet and cashout orders.

Endpoints used:
  POST {bet_api}/orders/ordinar            -- submit a single bet
  POST {bet_api}/orders/combo              -- submit a combo bet
  GET  {bet_api}/orders/{orderId}          -- bet order status
  POST {cashout_api}/get-available         -- cashout availability per condition
  POST {cashout_api}/get-calculation       -- cashout quote for one bet
  POST {cashout_api}/create                -- submit a signed cashout
  GET  {cashout_api}/{orderId}             -- cashout order status

A 4xx answer is a rejection (``RelayerRejected`` with the relayer's text);
5xx answers are retried with exponential backoff. A connection failure
is re-raised as-is only on the first attempt; after a 5xx it becomes
``ExhaustedRetries`` since the order may already have been received.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional

import httpx

from .models import OrderState
from ..betting.config import RelayerSettings, RetrySettings
from ..errors import ExhaustedRetries, MissingOrderId, RelayerRejected

logger = logging.getLogger(__name__)


def error_text(resp: httpx.Response) -> str:
    """Pull a human-readable reason out of a relayer error response."""
    try:
        data = resp.json()
    except ValueError:
        return resp.text.strip() or f"HTTP {resp.status_code}"
    if isinstance(data, dict):
        message = data.get("message")
        if isinstance(message, list) and message:
            return ", ".join(str(m) for m in message)
        for key in ("errorMessage", "error"):
            if data.get(key):
                return str(data[key])
        if message:
            return str(message)
    return resp.text.strip() or f"HTTP {resp.status_code}"


class RelayerClient:
    def __init__(
        self,
        settings: Optional[RelayerSettings] = None,
        retry: Optional[RetrySettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings or RelayerSettings()
        self.retry = retry or RetrySettings()
        self._client = client
        self._sleep = sleep

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get(self, url: str) -> Any:
        client = await self._get_client()
        logger.debug("GET %s", url)
        resp = await client.get(url)
        resp.raise_for_status()
        return resp.json()

    async def _post(self, url: str, body: dict[str, Any], operation: str) -> Any:
        """POST with 5xx retry; 4xx raises ``RelayerRejected``."""
        client = await self._get_client()
        attempts = 0
        last_error: Optional[str] = None
        for attempt in range(self.retry.max_retries + 1):
            attempts += 1
            logger.debug("POST %s (attempt %d)", url, attempts)
            try:
                resp = await client.post(url, json=body)
            except (httpx.ConnectError, httpx.ConnectTimeout) as e:
                if attempts == 1:
                    raise
                # An earlier attempt reached the relayer; the order may exist.
                raise ExhaustedRetries(operation, attempts, e) from e
            if resp.status_code < 400:
                return resp.json()
            reason = error_text(resp)
            if resp.status_code < 500:
                raise RelayerRejected(reason, resp.status_code)
            last_error = f"HTTP {resp.status_code}: {reason}"
            if attempt < self.retry.max_retries:
                delay = min(self.retry.base_delay * 2 ** (attempt + 1) + random.random() * self.retry.jitter,
                            self.retry.max_delay)
                logger.warning("%s: relayer %s, retrying in %.1fs", operation, last_error, delay)
                await self._sleep(delay)
        raise ExhaustedRetries(operation, attempts, RuntimeError(last_error))

    # ── Bets ─────────────────────────────────────────────────────────

    async def submit(self, body: dict[str, Any], combo: bool = False) -> str:
        """Submit a signed bet; returns the relayer order id."""
        path = "combo" if combo else "ordinar"
        data = await self._post(f"{self.settings.bet_api}/orders/{path}", body, "submit order")
        order_id = data.get("id") if isinstance(data, dict) else None
        if not order_id:
            raise MissingOrderId()
        logger.info("Relayer accepted %s order %s (state=%s)", path, order_id, data.get("state"))
        return str(order_id)

    async def get_order(self, order_id: str) -> OrderState:
        data = await self._get(f"{self.settings.bet_api}/orders/{order_id}")
        return OrderState.from_api(order_id, data)

    # ── Cashout ──────────────────────────────────────────────────────

    async def cashout_available(self, condition_ids: list[str]) -> list[dict[str, Any]]:
        data = await self._post(
            f"{self.settings.cashout_api}/get-available",
            {"conditionIds": condition_ids},
            "cashout availability",
        )
        if isinstance(data, dict):
            return data.get("availables") or data.get("conditions") or []
        return data or []

    async def cashout_calculation(self, environment: str, owner: str, bet_id: str) -> dict[str, Any]:
        data = await self._post(
            f"{self.settings.cashout_api}/get-calculation",
            {"environment": environment, "owner": owner.lower(), "betId": str(bet_id)},
            "cashout calculation",
        )
        if isinstance(data, list):
            data = data[0] if data else {}
        if not data or not data.get("calculationId"):
            raise RelayerRejected("Cashout not available for this bet")
        return data

    async def cashout_create(self, body: dict[str, Any]) -> str:
        data = await self._post(f"{self.settings.cashout_api}/create", body, "create cashout")
        order_id = data.get("id") if isinstance(data, dict) else None
        if not order_id:
            raise MissingOrderId("No cashout order ID returned by relayer")
        return str(order_id)

    async def get_cashout(self, order_id: str) -> OrderState:
        data = await self._get(f"{self.settings.cashout_api}/{order_id}")
        return OrderState.from_api(order_id, data)
