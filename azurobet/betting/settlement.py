"""
Settlement sync: bring ledger rows in line with what the chain says.

  1. ghost reconciliation (rows without chain ids)
  2. fast path: single bets whose condition is already Resolved / Canceled
     in the data feed, before the client subgraph has caught up
  3. client subgraph: rows matched by bet_id, then tx_hash

Chain status mapping:
  Accepted            -> accepted
  Resolved + Won      -> settled / won   (payout from chain)
  Resolved + Lost     -> settled / lost
  Canceled            -> canceled / canceled_result (stake returned)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from .database import Ledger
from .models import (
    ACCEPTED,
    CANCELED,
    CANCELED_RESULT,
    LOST,
    PENDING,
    PROCESSING,
    SETTLED,
    WON,
    BetAttempt,
    BetFilter,
)
from .reconciler import GhostBetReconciler, ReconcileReport
from ..azuro.feed import DataFeed
from ..azuro.models import ChainBet
from ..errors import AzuroBetError, FeedError

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    checked: int = 0
    updated: list[dict] = field(default_factory=list)
    reconcile: Optional[ReconcileReport] = None
    aborted: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "updated": self.updated,
            "reconcile": self.reconcile.to_dict() if self.reconcile else None,
            "aborted": self.aborted,
            "error": self.error,
        }


def chain_outcome(bet: BetAttempt, chain_bet: ChainBet) -> tuple[str, Optional[str], Optional[str]]:
    """(status, result, payout) the ledger row should take for ``chain_bet``."""
    status = chain_bet.status
    if status == "Resolved":
        if (chain_bet.result or "").lower() == "won":
            payout = chain_bet.payout if chain_bet.payout else Decimal(bet.amount) * chain_bet.odds
            return SETTLED, WON, str(payout)
        return SETTLED, LOST, "0"
    if status == "Canceled":
        return CANCELED, CANCELED_RESULT, bet.amount
    if status == "Accepted":
        return ACCEPTED, None, None
    return bet.status, None, None


class SettlementSync:
    def __init__(self, ledger: Ledger, feed: DataFeed, reconciler: Optional[GhostBetReconciler] = None):
        self.ledger = ledger
        self.feed = feed
        self.reconciler = reconciler

    async def _apply(self, bet: BetAttempt, status: str, result: Optional[str], payout: Optional[str],
                     report: SyncReport, chain_bet: Optional[ChainBet] = None) -> None:
        if chain_bet is not None and (not bet.bet_id or not bet.tx_hash):
            await self.ledger.assign_chain_ids(bet.local_id, chain_bet.bet_id, chain_bet.tx_hash)
        if status == bet.status:
            return
        try:
            await self.ledger.update_status(bet.local_id, status, result, payout)
        except AzuroBetError as e:
            logger.warning("Bet %s: %s", bet.local_id, e)
            return
        report.updated.append({"local_id": bet.local_id, "status": status, "result": result, "payout": payout})

    async def _fast_path(self, open_bets: list[BetAttempt], report: SyncReport) -> None:
        singles = [b for b in open_bets if not b.is_combo]
        if not singles:
            return
        try:
            conditions = {c.condition_id: c for c in await self.feed.conditions(
                sorted({b.selections[0].condition_id for b in singles}))}
        except FeedError as e:
            logger.debug("Condition fast path skipped: %s", e)
            return
        for bet in singles:
            leg = bet.selections[0]
            cond = conditions.get(leg.condition_id)
            if cond is None or not (bet.bet_id or bet.tx_hash):
                continue
            if cond.state == "Resolved":
                if leg.outcome_id in cond.won_outcome_ids:
                    await self._apply(bet, SETTLED, WON, str(Decimal(bet.amount) * bet.odds), report)
                else:
                    await self._apply(bet, SETTLED, LOST, "0", report)
            elif cond.state == "Canceled":
                await self._apply(bet, CANCELED, CANCELED_RESULT, bet.amount, report)

    async def sync(self, wallet: str) -> SyncReport:
        report = SyncReport()
        if self.reconciler is not None:
            report.reconcile = await self.reconciler.reconcile(wallet)

        open_bets = await self.ledger.query(BetFilter(
            wallet=wallet, statuses=[PENDING, PROCESSING, ACCEPTED], has_chain_id=True,
        ))
        report.checked = len(open_bets)
        if not open_bets:
            return report

        await self._fast_path(open_bets, report)

        since = min(b.created_at for b in open_bets) - 3600
        try:
            chain_bets = await self.feed.bets_for_wallet(wallet, since=since)
        except FeedError as e:
            logger.warning("Settlement sync aborted, feed unavailable: %s", e)
            report.aborted, report.error = True, str(e)
            return report

        by_id = {cb.bet_id: cb for cb in chain_bets}
        by_tx = {cb.tx_hash.lower(): cb for cb in chain_bets if cb.tx_hash}

        for bet in await self.ledger.query(BetFilter(
            wallet=wallet, statuses=[PENDING, PROCESSING, ACCEPTED], has_chain_id=True,
        )):
            chain_bet = by_id.get(bet.bet_id or "") or by_tx.get((bet.tx_hash or "").lower())
            if chain_bet is None:
                continue
            status, result, payout = chain_outcome(bet, chain_bet)
            await self._apply(bet, status, result, payout, report, chain_bet)

        logger.info("Settlement sync for %s: %d checked, %d updated", wallet, report.checked, len(report.updated))
        return report
