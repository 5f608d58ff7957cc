"""
Ledger-side models: what the user asked for and what became of it.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

# Lifecycle statuses
PENDING = "pending"
PROCESSING = "processing"
ACCEPTED = "accepted"
SETTLED = "settled"
CANCELED = "canceled"
REJECTED = "rejected"
FAILED = "failed"

# Results
WON = "won"
LOST = "lost"
CANCELED_RESULT = "canceled_result"
GHOST_BET_CLEANUP = "ghost_bet_cleanup"

OPEN_STATUSES = (PENDING, PROCESSING)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({PENDING, PROCESSING, ACCEPTED, REJECTED, FAILED, SETTLED, CANCELED}),
    PROCESSING: frozenset({PENDING, PROCESSING, ACCEPTED, REJECTED, FAILED, SETTLED, CANCELED}),
    ACCEPTED: frozenset({ACCEPTED, SETTLED, CANCELED}),
    SETTLED: frozenset(),
    CANCELED: frozenset(),
    REJECTED: frozenset(),
    FAILED: frozenset(),
}


class Selection(BaseModel):
    """One leg: a condition, the chosen outcome and the odds quoted for it."""
    condition_id: str
    outcome_id: int
    odds: Decimal

    def key(self) -> tuple[str, int]:
        return (self.condition_id, self.outcome_id)


class BetAttempt(BaseModel):
    """One user-initiated placement, as stored in the ``bets`` table."""
    local_id: str
    wallet: str
    chain: str = ""
    selections: list[Selection]
    amount: str
    odds: Decimal
    status: str = PENDING
    result: Optional[str] = None
    bet_id: Optional[str] = None
    tx_hash: Optional[str] = None
    order_id: Optional[str] = None
    payout: Optional[str] = None
    label: str = ""
    redeemed: bool = False
    created_at: int = 0
    updated_at: int = 0
    settled_at: Optional[int] = None

    @property
    def is_combo(self) -> bool:
        return len(self.selections) > 1

    @property
    def condition_ids(self) -> set[str]:
        return {s.condition_id for s in self.selections}

    @property
    def legs(self) -> set[tuple[str, int]]:
        return {s.key() for s in self.selections}


class BetFilter(BaseModel):
    wallet: Optional[str] = None
    statuses: list[str] = Field(default_factory=list)
    result: Optional[str] = None
    bet_id: Optional[str] = None
    tx_hash: Optional[str] = None
    order_id: Optional[str] = None
    has_chain_id: Optional[bool] = None
    created_before: Optional[int] = None
    limit: Optional[int] = None


class PollResult(BaseModel):
    status: str  # "accepted" | "rejected" | "timeout"
    order_id: str
    bet_id: Optional[str] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0
    elapsed: float = 0.0
