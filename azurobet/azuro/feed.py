"""
GraphQL client for the Azuro subgraphs.

Two endpoints per chain:
  data_feed  -- sports, games, conditions, outcomes, current odds
  client     -- bets placed by a wallet (v3Bets), with status and payout

Queries used:
  v3Bets(where: {actor, createdBlockTimestamp_gte})   -- wallet history, paginated
  v3Bet(id)                                            -- one bet by "{core}_{betId}"
  conditions(where: {conditionId_in})                  -- state / wonOutcomeIds
  sports / games                                       -- market discovery

Any transport failure, non-2xx answer or GraphQL ``errors`` entry raises
``FeedError`` so callers can abort without acting on partial data.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Optional

import httpx

from .models import ChainBet, Condition
from ..betting.config import GraphQLConfig
from ..errors import FeedError

logger = logging.getLogger(__name__)

FEED_TIMEOUT = 30.0
MAX_PAGES = 50

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

BET_FIELDS = """
    id
    betId
    amount
    odds
    status
    result
    isRedeemed
    isCashedOut
    payout
    createdTxHash
    createdBlockTimestamp
    selections {
      outcome {
        outcomeId
        condition {
          conditionId
        }
      }
    }
"""

CONDITION_FIELDS = """
    conditionId
    state
    isPrematchEnabled
    isLiveEnabled
    wonOutcomeIds
    outcomes {
      outcomeId
      currentOdds
      title
    }
"""


class DataFeed:
    def __init__(self, graphql: GraphQLConfig, client: Optional[httpx.AsyncClient] = None):
        self.graphql = graphql
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=FEED_TIMEOUT)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _query(self, url: str, query: str, variables: Optional[dict[str, Any]] = None) -> dict:
        client = await self._get_client()
        body: dict[str, Any] = {"query": query}
        if variables:
            body["variables"] = variables
        logger.debug("GraphQL %s vars=%s", url, variables)
        try:
            resp = await client.post(url, json=body)
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise FeedError(f"GraphQL request failed: {e}") from e

        if payload.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in payload["errors"])
            raise FeedError(f"GraphQL errors: {messages}")
        return payload.get("data") or {}

    # ── Bets (client subgraph) ───────────────────────────────────────

    async def bets_for_wallet(
        self,
        wallet: str,
        since: Optional[int] = None,
        page_size: int = 100,
    ) -> list[ChainBet]:
        """
        All bets by ``wallet`` created at or after ``since`` (unix seconds),
        newest first.  ``since=None`` walks the whole history.

        Raises ``FeedError`` rather than returning a truncated list.
        """
        if not _ADDRESS_RE.match(wallet):
            raise ValueError(f"Invalid wallet address: {wallet}")
        where = f'actor: "{wallet.lower()}"'
        if since is not None:
            where += f', createdBlockTimestamp_gte: "{int(since)}"'

        bets: list[ChainBet] = []
        for page in range(MAX_PAGES):
            query = f"""{{
  v3Bets(
    first: {page_size}
    skip: {page * page_size}
    where: {{ {where} }}
    orderBy: createdBlockTimestamp
    orderDirection: desc
  ) {{{BET_FIELDS}  }}
}}"""
            data = await self._query(self.graphql.client, query)
            rows = data.get("v3Bets") or []
            bets.extend(ChainBet.from_api(r) for r in rows)
            if len(rows) < page_size:
                logger.debug("Fetched %d chain bets for %s", len(bets), wallet)
                return bets
        raise FeedError(f"Bet history for {wallet} exceeds {MAX_PAGES * page_size} entries")

    async def recent_bets(self, wallet: str, lookback_hours: int = 24, page_size: int = 100) -> list[ChainBet]:
        since = int(time.time()) - lookback_hours * 3600
        return await self.bets_for_wallet(wallet, since=since, page_size=page_size)

    async def bet(self, bet_id: str, core: str) -> Optional[ChainBet]:
        """One bet by id; accepts either a bare bet id or the full "{core}_{betId}" id."""
        full_id = bet_id if "_" in bet_id else f"{core.lower()}_{bet_id}"
        query = f"""query GetBet($id: ID!) {{
  v3Bet(id: $id) {{{BET_FIELDS}  }}
}}"""
        data = await self._query(self.graphql.client, query, {"id": full_id})
        row = data.get("v3Bet")
        return ChainBet.from_api(row) if row else None

    # ── Conditions (data feed) ───────────────────────────────────────

    async def conditions(self, condition_ids: list[str]) -> list[Condition]:
        if not condition_ids:
            return []
        query = f"""query GetConditions($ids: [String!]!) {{
  conditions(where: {{ conditionId_in: $ids }}, first: {len(condition_ids)}) {{{CONDITION_FIELDS}  }}
}}"""
        data = await self._query(self.graphql.data_feed, query, {"ids": [str(c) for c in condition_ids]})
        return [Condition.from_api(c) for c in data.get("conditions") or []]

    async def condition(self, condition_id: str) -> Optional[Condition]:
        found = await self.conditions([condition_id])
        return found[0] if found else None

    # ── Discovery ────────────────────────────────────────────────────

    async def sports(self) -> list[dict]:
        data = await self._query(self.graphql.data_feed, "{ sports { sportId name slug } }")
        return data.get("sports") or []

    async def games(self, sport_slug: Optional[str] = None, hours: int = 48, limit: int = 50, live: bool = False) -> list[dict]:
        """Upcoming (or live) games with their open conditions and odds."""
        now = int(time.time())
        where = {"startsAt_gt": str(now - 4 * 3600), "startsAt_lt": str(now)} if live else {
            "startsAt_gt": str(now), "startsAt_lt": str(now + hours * 3600)}
        clauses = [f'{k}: {json.dumps(v)}' for k, v in where.items()]
        if sport_slug:
            clauses.append(f"sport_: {{ slug: {json.dumps(sport_slug)} }}")
        if live:
            clauses.append("state: Live")
        query = f"""{{
  games(
    where: {{ {", ".join(clauses)} }}
    first: {int(limit)}
    orderBy: startsAt
    orderDirection: {"desc" if live else "asc"}
  ) {{
    gameId
    title
    startsAt
    state
    sport {{ name slug }}
    league {{ name }}
    participants {{ name }}
    conditions {{{CONDITION_FIELDS}    }}
  }}
}}"""
        data = await self._query(self.graphql.data_feed, query)
        return data.get("games") or []
