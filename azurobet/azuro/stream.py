"""
Live odds over the Azuro feed WebSocket.

Protocol:
  -> {"event": "SubscribeConditions", "data": {"conditionIds": [...], "environment": "PolygonUSDT"}}
  <- {"event": "ConditionUpdated", "id": "<conditionId>", "data": {"outcomes": [{outcomeId, currentOdds}]}}

Some messages nest the payload one level deeper (``data.data.outcomes``)
and carry the condition id in ``data.id``; both shapes are accepted.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from .models import OddsUpdate
from ..errors import FeedError

logger = logging.getLogger(__name__)

MAX_RECONNECTS = 5
RECONNECT_DELAY = 1.0
ODDS_EPSILON = Decimal("0.001")


def parse_message(raw: str | bytes, last_odds: dict[tuple[str, int], Decimal]) -> list[OddsUpdate]:
    """
    Turn one stream message into odds updates.

    ``last_odds`` is updated in place and used to compute the direction.
    Unknown events and malformed payloads yield nothing.
    """
    try:
        message = json.loads(raw)
    except (ValueError, TypeError):
        logger.debug("Unparseable stream message: %.100s", raw)
        return []
    if not isinstance(message, dict) or message.get("event") != "ConditionUpdated":
        return []

    data = message.get("data") or {}
    condition_id = message.get("id") or data.get("id")
    outcomes = data.get("outcomes") or (data.get("data") or {}).get("outcomes") or []
    if not condition_id:
        return []

    now = time.time()
    updates = []
    for outcome in outcomes:
        try:
            outcome_id = int(outcome["outcomeId"])
            odds = Decimal(str(outcome["currentOdds"]))
        except (KeyError, ValueError, TypeError, InvalidOperation):
            continue
        key = (str(condition_id), outcome_id)
        previous = last_odds.get(key)
        direction = "same"
        if previous is not None:
            if odds - previous > ODDS_EPSILON:
                direction = "up"
            elif previous - odds > ODDS_EPSILON:
                direction = "down"
        last_odds[key] = odds
        updates.append(OddsUpdate(
            condition_id=str(condition_id), outcome_id=outcome_id, odds=odds,
            previous=previous, direction=direction, timestamp=now,
        ))
    return updates


class OddsStream:
    """
    Async iterator of ``OddsUpdate`` for a set of conditions.

    Usage:
        stream = OddsStream(chain.websocket, chain.environment)
        async for update in stream.updates(["1001", "1002"]):
            print(update.condition_id, update.odds, update.direction)
    """

    def __init__(
        self,
        url: str,
        environment: str,
        connect: Callable[..., Any] = websockets.connect,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        max_reconnects: int = MAX_RECONNECTS,
        reconnect_delay: float = RECONNECT_DELAY,
    ):
        self.url = url
        self.environment = environment
        self._connect = connect
        self._sleep = sleep
        self.max_reconnects = max_reconnects
        self.reconnect_delay = reconnect_delay
        self.last_odds: dict[tuple[str, int], Decimal] = {}

    def subscribe_message(self, condition_ids: list[str]) -> str:
        return json.dumps({
            "event": "SubscribeConditions",
            "data": {"conditionIds": [str(c) for c in condition_ids], "environment": self.environment},
        })

    async def updates(self, condition_ids: list[str], limit: Optional[int] = None) -> AsyncIterator[OddsUpdate]:
        """Yield updates until ``limit`` is reached or reconnects are exhausted."""
        reconnects = 0
        emitted = 0
        while True:
            try:
                async with self._connect(self.url, ping_interval=30, ping_timeout=10) as ws:
                    await ws.send(self.subscribe_message(condition_ids))
                    logger.info("Subscribed to %d condition(s) on %s", len(condition_ids), self.url)
                    reconnects = 0
                    async for raw in ws:
                        for update in parse_message(raw, self.last_odds):
                            yield update
                            emitted += 1
                            if limit is not None and emitted >= limit:
                                return
                logger.info("Odds stream closed by server")
            except (ConnectionClosed, OSError) as e:
                logger.warning("Odds stream disconnected: %s", e)

            reconnects += 1
            if reconnects > self.max_reconnects:
                raise FeedError(f"Odds stream: gave up after {self.max_reconnects} reconnect attempts")
            delay = self.reconnect_delay * 2 ** (reconnects - 1)
            logger.info("Reconnecting odds stream in %.0fs (%d/%d)", delay, reconnects, self.max_reconnects)
            await self._sleep(delay)
