"""
Bet request builder.

Turns selections + stake into the EIP-712 document the bettor signs and
the relayer body that must mirror it field for field.

Odds bound:
  minOdds = 1 + (quoted - 1) * (100 - slippage) / 100

Slippage is applied to the premium above evens, so 10% on 5.0 allows
4.6 rather than 4.5.  For a combo, ``quoted`` is the product of all leg
odds.  Odds travel as 12-decimal fixed point.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any, Callable, Optional

from .config import ZERO_ADDRESS, ChainConfig
from .models import Selection
from ..errors import InvalidBetRequest, InvalidSelection

ODDS_DECIMALS = 12
DOMAIN_NAME = "Live Betting"
DOMAIN_VERSION = "1.0.0"

CLIENT_DATA_TYPE = [
    {"name": "attention", "type": "string"},
    {"name": "affiliate", "type": "address"},
    {"name": "core", "type": "address"},
    {"name": "expiresAt", "type": "uint256"},
    {"name": "chainId", "type": "uint256"},
    {"name": "relayerFeeAmount", "type": "uint256"},
    {"name": "isFeeSponsored", "type": "bool"},
    {"name": "isBetSponsored", "type": "bool"},
    {"name": "isSponsoredBetReturnable", "type": "bool"},
]

SINGLE_BET_TYPES = {
    "ClientBetData": [
        {"name": "clientData", "type": "ClientData"},
        {"name": "bets", "type": "SubBet[]"},
    ],
    "ClientData": CLIENT_DATA_TYPE,
    "SubBet": [
        {"name": "conditionId", "type": "uint256"},
        {"name": "outcomeId", "type": "uint128"},
        {"name": "minOdds", "type": "uint64"},
        {"name": "amount", "type": "uint128"},
        {"name": "nonce", "type": "uint256"},
    ],
}

COMBO_BET_TYPES = {
    "ClientComboBetData": [
        {"name": "clientData", "type": "ClientData"},
        {"name": "minOdds", "type": "uint64"},
        {"name": "amount", "type": "uint128"},
        {"name": "nonce", "type": "uint256"},
        {"name": "bets", "type": "ComboPart[]"},
    ],
    "ClientData": CLIENT_DATA_TYPE,
    "ComboPart": [
        {"name": "conditionId", "type": "uint256"},
        {"name": "outcomeId", "type": "uint128"},
    ],
}


# ── Odds & amounts ───────────────────────────────────────────────────

def _decimal(value: Any, what: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidBetRequest(f"Invalid {what}: {value!r}") from e
    if not result.is_finite():
        raise InvalidBetRequest(f"Invalid {what}: {value!r}")
    return result


def combo_odds(odds: list[Any]) -> Decimal:
    """Quoted odds of a combo: the product of the leg odds."""
    total = Decimal(1)
    for o in odds:
        total *= _decimal(o, "odds")
    return total


def calculate_min_odds(quoted: Any, slippage: Any) -> Decimal:
    quoted = _decimal(quoted, "odds")
    slippage = _decimal(slippage, "slippage")
    if quoted <= 0:
        raise InvalidSelection(f"Odds must be positive, got {quoted}")
    if not Decimal(0) <= slippage < Decimal(100):
        raise InvalidBetRequest(f"Slippage must be in [0, 100), got {slippage}")
    return 1 + (quoted - 1) * (100 - slippage) / 100


def encode_odds(odds: Decimal) -> int:
    return int((odds * 10 ** ODDS_DECIMALS).to_integral_value(rounding=ROUND_FLOOR))


def to_raw_amount(amount: Any, decimals: int) -> int:
    """Display-unit stake -> token base units (floor)."""
    value = _decimal(amount, "amount")
    return int((value * 10 ** decimals).to_integral_value(rounding=ROUND_FLOOR))


def from_raw_amount(raw: int, decimals: int) -> Decimal:
    return Decimal(raw) / (Decimal(10) ** decimals)


def make_nonce(now_ms: Optional[int] = None) -> int:
    """Millisecond timestamp with six random low digits."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return now_ms * 1_000_000 + secrets.randbelow(1_000_000)


# ── Request ──────────────────────────────────────────────────────────

@dataclass
class BetRequest:
    kind: str  # "single" | "combo"
    selections: list[Selection]
    amount: str
    raw_amount: int
    quoted_odds: Decimal
    min_odds: Decimal
    min_odds_raw: int
    nonce: int
    expires_at: int
    chain_id: int
    core: str
    environment: str
    affiliate: str = ZERO_ADDRESS
    typed_data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_combo(self) -> bool:
        return self.kind == "combo"

    def _client_data(self) -> dict[str, Any]:
        return {
            "attention": "",
            "affiliate": self.affiliate,
            "core": self.core,
            "expiresAt": self.expires_at,
            "chainId": self.chain_id,
            "relayerFeeAmount": "0",
            "isFeeSponsored": False,
            "isBetSponsored": False,
            "isSponsoredBetReturnable": False,
        }

    def request_body(self, bettor: str, signature: str) -> dict[str, Any]:
        """Relayer body; mirrors ``typed_data`` with big numbers as strings."""
        if self.is_combo:
            client_bet_data = {
                "clientData": self._client_data(),
                "minOdds": str(self.min_odds_raw),
                "amount": str(self.raw_amount),
                "nonce": str(self.nonce),
                "bets": [
                    {"conditionId": s.condition_id, "outcomeId": s.outcome_id}
                    for s in self.selections
                ],
            }
        else:
            leg = self.selections[0]
            client_bet_data = {
                "clientData": self._client_data(),
                "bet": {
                    "conditionId": leg.condition_id,
                    "outcomeId": leg.outcome_id,
                    "minOdds": str(self.min_odds_raw),
                    "amount": str(self.raw_amount),
                    "nonce": str(self.nonce),
                },
            }
        return {
            "environment": self.environment,
            "bettor": bettor.lower(),
            "betOwner": bettor.lower(),
            "clientBetData": client_bet_data,
            "bettorSignature": signature,
        }


def _typed_data(req: BetRequest) -> dict[str, Any]:
    client_data = {
        "attention": "",
        "affiliate": req.affiliate,
        "core": req.core,
        "expiresAt": req.expires_at,
        "chainId": req.chain_id,
        "relayerFeeAmount": 0,
        "isFeeSponsored": False,
        "isBetSponsored": False,
        "isSponsoredBetReturnable": False,
    }
    domain = {
        "name": DOMAIN_NAME,
        "version": DOMAIN_VERSION,
        "chainId": req.chain_id,
        "verifyingContract": req.core,
    }
    if req.is_combo:
        message = {
            "clientData": client_data,
            "minOdds": req.min_odds_raw,
            "amount": req.raw_amount,
            "nonce": req.nonce,
            "bets": [
                {"conditionId": int(s.condition_id), "outcomeId": s.outcome_id}
                for s in req.selections
            ],
        }
        return {"domain": domain, "types": COMBO_BET_TYPES, "primaryType": "ClientComboBetData", "message": message}

    leg = req.selections[0]
    message = {
        "clientData": client_data,
        "bets": [{
            "conditionId": int(leg.condition_id),
            "outcomeId": leg.outcome_id,
            "minOdds": req.min_odds_raw,
            "amount": req.raw_amount,
            "nonce": req.nonce,
        }],
    }
    return {"domain": domain, "types": SINGLE_BET_TYPES, "primaryType": "ClientBetData", "message": message}


def build_bet_request(
    selections: list[Selection],
    amount: str,
    chain: ChainConfig,
    slippage: Any = 10,
    affiliate: Optional[str] = None,
    expiry_seconds: int = 300,
    combo: Optional[bool] = None,
    clock: Callable[[], float] = time.time,
) -> BetRequest:
    """
    Build a signed-ready bet request.

    ``combo`` defaults to "more than one selection".  A combo needs at
    least two legs on distinct conditions.
    """
    if combo is None:
        combo = len(selections) > 1
    if not selections:
        raise InvalidSelection("At least one selection is required")
    if combo and len(selections) < 2:
        raise InvalidSelection("A combo bet needs at least 2 selections")
    if not combo and len(selections) != 1:
        raise InvalidSelection("A single bet takes exactly one selection")
    if combo and len({s.condition_id for s in selections}) != len(selections):
        raise InvalidSelection("A combo cannot contain two selections on the same condition")

    for s in selections:
        if s.odds <= 0:
            raise InvalidSelection(f"Odds must be positive (condition {s.condition_id}: {s.odds})")
        if not str(s.condition_id).isdigit():
            raise InvalidSelection(f"Invalid condition id: {s.condition_id!r}")

    stake = _decimal(amount, "amount")
    if stake <= 0:
        raise InvalidBetRequest(f"Stake must be positive, got {amount}")
    raw_amount = to_raw_amount(stake, chain.token.decimals)
    if raw_amount <= 0:
        raise InvalidBetRequest(f"Stake {amount} is below the token's smallest unit")

    quoted = combo_odds([s.odds for s in selections]) if combo else _decimal(selections[0].odds, "odds")
    min_odds = calculate_min_odds(quoted, slippage)
    now = clock()

    req = BetRequest(
        kind="combo" if combo else "single",
        selections=list(selections),
        amount=str(stake),
        raw_amount=raw_amount,
        quoted_odds=quoted,
        min_odds=min_odds,
        min_odds_raw=encode_odds(min_odds),
        nonce=make_nonce(int(now * 1000)),
        expires_at=int(now) + expiry_seconds,
        chain_id=chain.id,
        core=chain.contracts.core.lower(),
        environment=chain.environment,
        affiliate=(affiliate or ZERO_ADDRESS).lower(),
    )
    req.typed_data = _typed_data(req)
    return req
