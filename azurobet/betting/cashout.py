"""
Cashout: sell an accepted bet back before it settles.

  bet details (client subgraph) -> get-available for every leg
  -> get-calculation -> sign CashOutOrder (EIP-712) -> create -> poll

A combo can only be cashed out when every one of its conditions is
available.  The signed ``minOdds`` is the quoted cashout odds reduced by
the slippage percentage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from .builder import encode_odds
from .config import Settings
from .database import Ledger
from .models import LOST, SETTLED, WON, BetFilter
from .poller import OrderPoller
from ..azuro.feed import DataFeed
from ..azuro.relayer import RelayerClient
from ..chain.signer import Wallet
from ..errors import AzuroBetError, InvalidBetRequest, RelayerRejected

logger = logging.getLogger(__name__)

DOMAIN_NAME = "Cash Out"
DOMAIN_VERSION = "1.0.0"
ATTENTION = "By signing, I agree to cash out my bet on Azuro Protocol."

CASHOUT_TYPES = {
    "CashOutOrder": [
        {"name": "attention", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "items", "type": "CashOutItem[]"},
        {"name": "expiresAt", "type": "uint64"},
    ],
    "CashOutItem": [
        {"name": "betId", "type": "uint256"},
        {"name": "bettingContract", "type": "address"},
        {"name": "minOdds", "type": "uint64"},
    ],
}


@dataclass
class CashoutResult:
    bet_id: str
    status: str  # "accepted" | "rejected" | "timeout"
    order_id: Optional[str] = None
    amount: Optional[str] = None
    odds: Optional[str] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)


def cashout_min_odds(cashout_odds: Any, slippage: Any) -> Decimal:
    odds = Decimal(str(cashout_odds))
    return odds * (1 - Decimal(str(slippage)) / 100)


def build_cashout_typed_data(
    chain_id: int, cashout_contract: str, betting_contract: str,
    bet_id: str, min_odds_raw: int, expires_at: int,
) -> dict[str, Any]:
    return {
        "domain": {
            "name": DOMAIN_NAME,
            "version": DOMAIN_VERSION,
            "chainId": chain_id,
            "verifyingContract": cashout_contract.lower(),
        },
        "types": CASHOUT_TYPES,
        "primaryType": "CashOutOrder",
        "message": {
            "attention": ATTENTION,
            "chainId": chain_id,
            "items": [{
                "betId": int(bet_id),
                "bettingContract": betting_contract.lower(),
                "minOdds": min_odds_raw,
            }],
            "expiresAt": expires_at,
        },
    }


class CashoutService:
    def __init__(
        self,
        settings: Settings,
        relayer: RelayerClient,
        feed: DataFeed,
        wallet: Wallet,
        ledger: Optional[Ledger] = None,
        poller: Optional[OrderPoller] = None,
    ):
        self.settings = settings
        self.relayer = relayer
        self.feed = feed
        self.wallet = wallet
        self.ledger = ledger
        self.poller = poller or OrderPoller(
            relayer.get_cashout,
            interval=settings.betting.poll_interval,
            budget=settings.betting.cashout_poll_timeout,
        )

    async def quote(self, bet_id: str) -> dict[str, Any]:
        """Check the bet can be cashed out and return the relayer's calculation."""
        chain = self.settings.chain
        if not chain.contracts.cashout or not chain.contracts.azuro_bet:
            raise InvalidBetRequest(f"Cashout is not configured for {chain.name}")

        bet = await self.feed.bet(bet_id, chain.contracts.core)
        if bet is None:
            raise InvalidBetRequest(f"Bet {bet_id} not found")
        if bet.is_cashed_out:
            raise InvalidBetRequest(f"Bet {bet_id} already cashed out")
        if bet.status != "Accepted":
            raise InvalidBetRequest(f"Bet status is {bet.status}, cannot cash out")

        conditions = sorted(bet.condition_ids)
        available = await self.relayer.cashout_available(conditions)
        ok = {str(a.get("conditionId")) for a in available if a.get("available")}
        missing = [c for c in conditions if c not in ok]
        if missing:
            raise RelayerRejected(f"Cashout not available. Unavailable conditions: {', '.join(missing)}")

        return await self.relayer.cashout_calculation(chain.environment, self.wallet.owner, bet.bet_id)

    async def cashout(self, bet_id: str, slippage: float = 5) -> CashoutResult:
        chain = self.settings.chain
        calc = await self.quote(bet_id)

        min_odds = cashout_min_odds(calc["cashoutOdds"], slippage)
        typed = build_cashout_typed_data(
            chain.id, chain.contracts.cashout, chain.contracts.azuro_bet,
            calc.get("betId") or bet_id, encode_odds(min_odds), int(calc["expiredAt"]),
        )
        signature = self.wallet.sign_typed_data(typed)
        order_id = await self.relayer.cashout_create({
            "calculationId": calc["calculationId"],
            "signature": {
                "verifyingContract": chain.contracts.cashout.lower(),
                "bettingContract": chain.contracts.azuro_bet.lower(),
                "attention": ATTENTION,
                "chainId": chain.id,
                "ownerSignature": signature,
            },
        })
        logger.info("Cashout order %s for bet %s (amount %s)", order_id, bet_id, calc.get("cashoutAmount"))

        poll = await self.poller.poll(order_id)
        result = CashoutResult(
            bet_id=bet_id, status=poll.status, order_id=order_id, amount=calc.get("cashoutAmount"),
            odds=str(calc["cashoutOdds"]), tx_hash=poll.tx_hash, error=poll.error,
        )
        if poll.status == "accepted" and self.ledger is not None:
            await self._record(bet_id, result.amount)
        return result

    async def _record(self, bet_id: str, amount: Optional[str]) -> None:
        rows = await self.ledger.query(BetFilter(bet_id=bet_id))
        if not rows or amount is None:
            return
        bet = rows[0]
        outcome = WON if Decimal(amount) >= Decimal(bet.amount) else LOST
        try:
            await self.ledger.update_status(bet.local_id, SETTLED, outcome, str(amount))
        except AzuroBetError as e:
            logger.warning("Cashout of %s not recorded: %s", bet_id, e)
