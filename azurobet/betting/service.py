"""
BettingService — wires settings into the clients and exposes the
operations the CLI and MCP server call.

All methods return plain JSON-able dicts.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

from .cashout import CashoutService
from .config import Settings, build_settings, load_config
from .database import Ledger
from .models import BetFilter, Selection
from .placement import BetPlacer
from .reconciler import GhostBetReconciler
from .settlement import SettlementSync
from ..azuro.feed import DataFeed
from ..azuro.relayer import RelayerClient
from ..chain.retry import RetryExecutor
from ..chain.rpc import RpcEndpointPool
from ..chain.signer import Wallet
from ..chain.transactions import TransactionManager
from ..chain.withdrawal import WithdrawalEngine
from ..errors import WalletNotConfigured

logger = logging.getLogger(__name__)


class BettingService:
    def __init__(self, settings: Settings, wallet: Optional[Wallet] = None):
        self.settings = settings
        self.ledger = Ledger(settings.database_path)
        self.feed = DataFeed(settings.chain.graphql)
        self.relayer = RelayerClient(settings.relayer, settings.retry)
        self.pool = RpcEndpointPool.for_chain(settings.chain)
        self.executor = RetryExecutor(self.pool, settings.retry, native_symbol=settings.chain.native_symbol)
        if wallet is None and settings.private_key:
            wallet = Wallet(settings.private_key)
        self.wallet = wallet
        r = settings.reconciler
        self.reconciler = GhostBetReconciler(
            self.ledger, self.feed,
            staleness_seconds=r.staleness_seconds,
            lookback_hours=r.lookback_hours,
            amount_tolerance=r.amount_tolerance,
            page_size=r.page_size,
        )
        self.settlement = SettlementSync(self.ledger, self.feed, self.reconciler)

    @classmethod
    def from_config(cls, config_path: str = "config.yaml") -> "BettingService":
        return cls(build_settings(load_config(config_path)))

    async def start(self) -> None:
        await self.ledger.init_schema()
        logger.info("Ledger ready: %s (chain %s)", self.ledger.db_path, self.settings.chain.name)

    async def close(self) -> None:
        await self.relayer.close()
        await self.feed.close()

    # ── Wiring ───────────────────────────────────────────────────────

    def _wallet(self) -> Wallet:
        if self.wallet is None:
            raise WalletNotConfigured()
        return self.wallet

    def _txm(self) -> TransactionManager:
        return TransactionManager(self.executor, self._wallet(), self.settings.chain, self.settings.gas)

    def placer(self) -> BetPlacer:
        return BetPlacer(self.settings, self.ledger, self.relayer, self._wallet(), self._txm(), self.feed)

    def withdrawals(self) -> WithdrawalEngine:
        return WithdrawalEngine(self._txm(), self.ledger, self.settings.betting.min_submit_interval)

    def cashouts(self) -> CashoutService:
        return CashoutService(self.settings, self.relayer, self.feed, self._wallet(), self.ledger)

    # ── Operations ───────────────────────────────────────────────────

    async def wallet_info(self) -> dict[str, Any]:
        txm = self._txm()
        chain = self.settings.chain
        return {
            "address": self._wallet().address,
            "chain": chain.name,
            "rpc": self.pool.current().endpoint,
            "native_balance": f"{await txm.native_balance():.6f}",
            "native_symbol": chain.native_symbol,
            "token_balance": str(await txm.token_balance()),
            "token_symbol": chain.token.symbol,
        }

    async def place_bet(
        self,
        selections: list[dict[str, Any]],
        amount: str,
        slippage: Optional[float] = None,
        label: str = "",
        combo: Optional[bool] = None,
    ) -> dict[str, Any]:
        legs = [
            Selection(condition_id=str(s["condition_id"]), outcome_id=int(s["outcome_id"]),
                      odds=Decimal(str(s["odds"])))
            for s in selections
        ]
        result = await self.placer().place(legs, str(amount), slippage=slippage, label=label, combo=combo)
        return result.to_dict()

    async def order_status(self, order_id: str) -> dict[str, Any]:
        state = await self.relayer.get_order(order_id)
        return state.model_dump(exclude={"raw"})

    async def list_bets(self, statuses: Optional[list[str]] = None, limit: int = 50) -> list[dict[str, Any]]:
        bets = await self.ledger.query(BetFilter(
            wallet=self._wallet().owner, statuses=statuses or [], limit=limit,
        ))
        return [b.model_dump(mode="json") for b in bets]

    async def sync(self) -> dict[str, Any]:
        return (await self.settlement.sync(self._wallet().owner)).to_dict()

    async def reconcile(self) -> dict[str, Any]:
        return (await self.reconciler.reconcile(self._wallet().owner)).to_dict()

    async def recover(self) -> dict[str, Any]:
        return (await self.reconciler.recover_failed(self._wallet().owner)).to_dict()

    async def withdraw(self, bet_ids: list[str], force: bool = False) -> dict[str, Any]:
        return (await self.withdrawals().withdraw(bet_ids, force=force)).to_dict()

    async def cancel_pending(self) -> dict[str, Any]:
        return (await self.withdrawals().cancel_pending()).to_dict()

    async def cashout_quote(self, bet_id: str) -> dict[str, Any]:
        return await self.cashouts().quote(bet_id)

    async def cashout(self, bet_id: str, slippage: float = 5) -> dict[str, Any]:
        return (await self.cashouts().cashout(bet_id, slippage)).to_dict()

    async def stats(self) -> dict[str, Any]:
        return await self.ledger.stats(self._wallet().owner)

    async def games(self, sport: Optional[str] = None, live: bool = False, limit: int = 20) -> list[dict]:
        return await self.feed.games(sport_slug=sport, live=live, limit=limit)

    async def sports(self) -> list[dict]:
        return await self.feed.sports()
