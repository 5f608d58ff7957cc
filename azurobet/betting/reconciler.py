"""
Ghost bet reconciler.

A "ghost" is a ledger row that was created before submission but never
got chain ids: the submit call dropped, the poll timed out, the process
died.  The bet may or may not exist on chain.  This module compares
those rows with the wallet's bets in the client subgraph and either
attaches the chain ids or marks the row ``failed``/``ghost_bet_cleanup``.

Two passes:
  reconcile()       stale pending/processing rows vs. the last 24h on chain
  recover_failed()  ghost_bet_cleanup rows vs. the full history, exact match only

A feed error aborts a pass before anything is written.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Optional

from .database import Ledger
from .models import ACCEPTED, PENDING, BetAttempt
from ..azuro.feed import DataFeed
from ..azuro.models import ChainBet
from ..errors import FeedError

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    candidates: int = 0
    matched: list[dict] = field(default_factory=list)
    ghosted: list[str] = field(default_factory=list)
    aborted: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "candidates": self.candidates,
            "matched": self.matched,
            "ghosted": self.ghosted,
            "aborted": self.aborted,
            "error": self.error,
        }


def amount_matches(stake: Decimal, chain_amount: Decimal, tolerance: Decimal) -> bool:
    return abs(chain_amount - stake) <= stake * tolerance


def legs_match(bet: BetAttempt, chain_bet: ChainBet, strict: bool) -> bool:
    """
    Single: the chain bet has exactly one leg, same condition and same outcome.
    Combo:  the chain bet has several legs and includes our first leg's
            condition; ``strict`` requires the full (condition, outcome) set to be equal.
    """
    if not bet.is_combo:
        if len(chain_bet.selections) != 1:
            return False
        leg, ours = chain_bet.selections[0], bet.selections[0]
        return leg.condition_id == ours.condition_id and leg.outcome_id == ours.outcome_id

    if len(chain_bet.selections) < 2:
        return False
    if strict:
        return chain_bet.legs == bet.legs
    return bet.selections[0].condition_id in chain_bet.condition_ids


class GhostBetReconciler:
    def __init__(
        self,
        ledger: Ledger,
        feed: DataFeed,
        staleness_seconds: int = 300,
        lookback_hours: int = 24,
        amount_tolerance: float = 0.05,
        page_size: int = 100,
        clock: Callable[[], float] = time.time,
    ):
        self.ledger = ledger
        self.feed = feed
        self.staleness_seconds = staleness_seconds
        self.lookback_hours = lookback_hours
        self.amount_tolerance = Decimal(str(amount_tolerance))
        self.page_size = page_size
        self._clock = clock

    def _find_match(
        self,
        bet: BetAttempt,
        chain_bets: list[ChainBet],
        claimed: set[str],
        strict: bool,
    ) -> Optional[ChainBet]:
        stake = Decimal(bet.amount)
        found = [
            cb for cb in chain_bets
            if cb.bet_id not in claimed
            and amount_matches(stake, cb.amount, self.amount_tolerance)
            and legs_match(bet, cb, strict)
        ]
        if not found:
            return None
        # Closest amount first, then closest in time to our record.
        found.sort(key=lambda cb: (abs(cb.amount - stake), abs(cb.created_at - bet.created_at)))
        return found[0]

    async def reconcile(self, wallet: str) -> ReconcileReport:
        now = int(self._clock())
        candidates = await self.ledger.ghost_candidates(wallet, now - self.staleness_seconds)
        report = ReconcileReport(candidates=len(candidates))
        if not candidates:
            return report

        logger.info("Reconciling %d stale bet(s) for %s", len(candidates), wallet)
        try:
            chain_bets = await self.feed.bets_for_wallet(
                wallet, since=now - self.lookback_hours * 3600, page_size=self.page_size
            )
        except FeedError as e:
            logger.warning("Reconciliation aborted, feed unavailable: %s", e)
            report.aborted, report.error = True, str(e)
            return report

        claimed = await self.ledger.claimed_bet_ids()
        matches: list[tuple[str, str, Optional[str], str]] = []
        for bet in sorted(candidates, key=lambda b: b.created_at):
            chain_bet = self._find_match(bet, chain_bets, claimed, strict=False)
            if chain_bet is None:
                report.ghosted.append(bet.local_id)
                logger.info("Bet %s has no on-chain counterpart, marking ghost", bet.local_id)
                continue
            claimed.add(chain_bet.bet_id)
            status = ACCEPTED if chain_bet.status == "Accepted" else PENDING
            matches.append((bet.local_id, chain_bet.bet_id, chain_bet.tx_hash, status))
            report.matched.append({"local_id": bet.local_id, "bet_id": chain_bet.bet_id, "status": status})
            logger.info("Bet %s matched chain bet %s (%s)", bet.local_id, chain_bet.bet_id, chain_bet.status)

        await self.ledger.apply_reconciliation(matches, report.ghosted)
        return report

    async def recover_failed(self, wallet: str) -> ReconcileReport:
        """Re-check ghost_bet_cleanup rows against the full history, exact match only."""
        failures = await self.ledger.ghost_failures(wallet)
        report = ReconcileReport(candidates=len(failures))
        if not failures:
            return report

        try:
            chain_bets = await self.feed.bets_for_wallet(wallet, since=None, page_size=self.page_size)
        except FeedError as e:
            logger.warning("Recovery aborted, feed unavailable: %s", e)
            report.aborted, report.error = True, str(e)
            return report

        claimed = await self.ledger.claimed_bet_ids()
        matches: list[tuple[str, str, Optional[str], str]] = []
        for bet in sorted(failures, key=lambda b: b.created_at):
            chain_bet = self._find_match(bet, chain_bets, claimed, strict=True)
            if chain_bet is None:
                continue
            claimed.add(chain_bet.bet_id)
            status = ACCEPTED if chain_bet.status == "Accepted" else PENDING
            matches.append((bet.local_id, chain_bet.bet_id, chain_bet.tx_hash, status))
            report.matched.append({"local_id": bet.local_id, "bet_id": chain_bet.bet_id, "status": status})
            logger.info("Recovered bet %s as chain bet %s", bet.local_id, chain_bet.bet_id)

        await self.ledger.apply_reconciliation(matches, [], recovery=True)
        return report
