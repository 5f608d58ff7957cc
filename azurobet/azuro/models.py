"""
Pydantic models for Azuro API data.

Shapes returned by the relayer, the GraphQL feeds and the odds stream,
normalised to snake_case and parsed from the raw JSON here so the rest
of the code never touches camelCase dicts.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field


# ── Relayer ──────────────────────────────────────────────────────────

class OrderState(BaseModel):
    """One poll of ``GET /orders/{id}`` (bet or cashout)."""
    order_id: str
    state: str = "Processing"
    bet_id: Optional[str] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_api(cls, order_id: str, data: dict[str, Any]) -> "OrderState":
        bet_id = data.get("betId")
        return cls(
            order_id=str(data.get("id") or order_id),
            state=data.get("state") or data.get("status") or "Processing",
            bet_id=str(bet_id) if bet_id is not None else None,
            tx_hash=data.get("txHash"),
            error=data.get("errorMessage") or data.get("error"),
            raw=data,
        )


# ── Client feed (bets) ───────────────────────────────────────────────

class ChainSelection(BaseModel):
    condition_id: str
    outcome_id: int


class ChainBet(BaseModel):
    """A bet as indexed by the client subgraph. Amounts are display units."""
    bet_id: str
    amount: Decimal
    odds: Decimal = Decimal(0)
    status: str
    result: Optional[str] = None
    tx_hash: Optional[str] = None
    created_at: int = 0
    is_redeemed: bool = False
    is_cashed_out: bool = False
    payout: Optional[Decimal] = None
    selections: list[ChainSelection] = Field(default_factory=list)

    @property
    def condition_ids(self) -> set[str]:
        return {s.condition_id for s in self.selections}

    @property
    def legs(self) -> set[tuple[str, int]]:
        return {(s.condition_id, s.outcome_id) for s in self.selections}

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ChainBet":
        selections = []
        for sel in data.get("selections") or []:
            outcome = sel.get("outcome") or {}
            condition = outcome.get("condition") or {}
            if condition.get("conditionId") is None or outcome.get("outcomeId") is None:
                continue
            selections.append(ChainSelection(
                condition_id=str(condition["conditionId"]),
                outcome_id=int(outcome["outcomeId"]),
            ))
        payout = data.get("payout")
        return cls(
            bet_id=str(data["betId"]),
            amount=Decimal(str(data.get("amount") or 0)),
            odds=Decimal(str(data.get("odds") or 0)),
            status=data.get("status") or "",
            result=data.get("result"),
            tx_hash=data.get("createdTxHash") or data.get("txHash"),
            created_at=int(data.get("createdBlockTimestamp") or 0),
            is_redeemed=bool(data.get("isRedeemed")),
            is_cashed_out=bool(data.get("isCashedOut")),
            payout=Decimal(str(payout)) if payout is not None else None,
            selections=selections,
        )


# ── Data feed (markets) ──────────────────────────────────────────────

class Outcome(BaseModel):
    outcome_id: int
    odds: Decimal
    title: str = ""


class Condition(BaseModel):
    condition_id: str
    state: str
    is_prematch_enabled: bool = True
    is_live_enabled: bool = True
    won_outcome_ids: list[int] = Field(default_factory=list)
    outcomes: list[Outcome] = Field(default_factory=list)
    game_title: str = ""

    @property
    def is_open(self) -> bool:
        return self.state in ("Created", "Active") and (self.is_prematch_enabled or self.is_live_enabled)

    def outcome(self, outcome_id: int) -> Optional[Outcome]:
        for o in self.outcomes:
            if o.outcome_id == outcome_id:
                return o
        return None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Condition":
        return cls(
            condition_id=str(data["conditionId"]),
            state=data.get("state") or "",
            is_prematch_enabled=data.get("isPrematchEnabled", True) is not False,
            is_live_enabled=data.get("isLiveEnabled", True) is not False,
            won_outcome_ids=[int(x) for x in data.get("wonOutcomeIds") or []],
            outcomes=[
                Outcome(
                    outcome_id=int(o["outcomeId"]),
                    odds=Decimal(str(o.get("currentOdds") or 0)),
                    title=o.get("title") or "",
                )
                for o in data.get("outcomes") or []
            ],
            game_title=(data.get("game") or {}).get("title", ""),
        )


# ── Odds stream ──────────────────────────────────────────────────────

class OddsUpdate(BaseModel):
    condition_id: str
    outcome_id: int
    odds: Decimal
    previous: Optional[Decimal] = None
    direction: str = "same"  # "up" | "down" | "same"
    timestamp: float = 0.0
