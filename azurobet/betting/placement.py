"""
Bet placement — the submit/confirm half of the bet lifecycle.

  validate -> build -> balances -> allowance (mined) -> sign
           -> ledger.create(pending) -> relayer.submit -> processing
           -> poll -> accepted | rejected | back to pending

The ledger row exists before the order leaves the process, so a crash
or a dropped connection leaves a ``pending`` row for the reconciler
rather than a bet nobody knows about.  Only outcomes that are known for
certain (relayer refusal, request never sent) end the row here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

import httpx

from .builder import BetRequest, build_bet_request
from .config import Settings
from .database import Ledger, new_attempt
from .models import ACCEPTED, FAILED, PENDING, PROCESSING, REJECTED, Selection
from .poller import OrderPoller
from ..azuro.feed import DataFeed
from ..azuro.relayer import RelayerClient
from ..chain.signer import Wallet
from ..chain.transactions import TransactionManager, wallet_guard
from ..errors import ExhaustedRetries, FeedError, InvalidSelection, MissingOrderId, RelayerRejected

logger = logging.getLogger(__name__)


@dataclass
class PlacementResult:
    local_id: str
    status: str
    order_id: Optional[str] = None
    bet_id: Optional[str] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    quoted_odds: Optional[Decimal] = None
    min_odds: Optional[Decimal] = None
    approval_tx: Optional[str] = None
    dropped: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "local_id": self.local_id,
            "status": self.status,
            "order_id": self.order_id,
            "bet_id": self.bet_id,
            "tx_hash": self.tx_hash,
            "error": self.error,
            "quoted_odds": str(self.quoted_odds) if self.quoted_odds is not None else None,
            "min_odds": str(self.min_odds) if self.min_odds is not None else None,
            "approval_tx": self.approval_tx,
            "dropped": self.dropped,
        }


class BetPlacer:
    def __init__(
        self,
        settings: Settings,
        ledger: Ledger,
        relayer: RelayerClient,
        wallet: Wallet,
        txm: Optional[TransactionManager] = None,
        feed: Optional[DataFeed] = None,
        poller: Optional[OrderPoller] = None,
    ):
        self.settings = settings
        self.ledger = ledger
        self.relayer = relayer
        self.wallet = wallet
        self.txm = txm
        self.feed = feed
        self.poller = poller or OrderPoller(
            relayer.get_order,
            interval=settings.betting.poll_interval,
            budget=settings.betting.poll_timeout,
        )

    async def _validate(self, selections: list[Selection]) -> tuple[list[Selection], list[dict]]:
        """Drop selections whose condition is closed or whose outcome is gone."""
        if self.feed is None:
            return selections, []
        try:
            conditions = {c.condition_id: c for c in await self.feed.conditions([s.condition_id for s in selections])}
        except FeedError as e:
            logger.warning("Condition check skipped, feed unavailable: %s", e)
            return selections, []

        valid, dropped = [], []
        for s in selections:
            cond = conditions.get(s.condition_id)
            if cond is None:
                dropped.append({"condition_id": s.condition_id, "reason": "condition not found"})
            elif not cond.is_open:
                dropped.append({"condition_id": s.condition_id, "reason": f"condition is {cond.state}"})
            elif cond.outcomes and cond.outcome(s.outcome_id) is None:
                dropped.append({"condition_id": s.condition_id, "reason": f"outcome {s.outcome_id} not offered"})
            else:
                valid.append(s)
        for d in dropped:
            logger.info("Dropping selection %s: %s", d["condition_id"], d["reason"])
        return valid, dropped

    async def place(
        self,
        selections: list[Selection],
        amount: str,
        slippage: Optional[float] = None,
        label: str = "",
        combo: Optional[bool] = None,
        validate: bool = True,
    ) -> PlacementResult:
        cfg = self.settings.betting
        dropped: list[dict] = []
        if validate:
            wants_combo = combo if combo is not None else len(selections) > 1
            selections, dropped = await self._validate(selections)
            if dropped and (not selections or wants_combo and len(selections) < 2):
                reasons = ", ".join(f"{d['condition_id']} ({d['reason']})" for d in dropped)
                raise InvalidSelection(f"Not enough valid selections left: {reasons}")

        req = build_bet_request(
            selections,
            amount,
            self.settings.chain,
            slippage=cfg.slippage if slippage is None else slippage,
            affiliate=cfg.affiliate,
            expiry_seconds=cfg.expiry_seconds,
            combo=combo,
        )

        async with wallet_guard(self.wallet.address, cfg.min_submit_interval):
            approval_tx = None
            if self.txm is not None:
                await self.txm.check_balances(req.raw_amount, cfg.min_native_balance)
                approval_tx = await self.txm.ensure_allowance(req.raw_amount)

            signature = self.wallet.sign_typed_data(req.typed_data)
            attempt = await self.ledger.create(new_attempt(
                wallet=self.wallet.owner,
                selections=req.selections,
                amount=req.amount,
                odds=req.quoted_odds,
                chain=self.settings.chain.key,
                label=label,
            ))
            result = PlacementResult(
                local_id=attempt.local_id, status=PENDING, quoted_odds=req.quoted_odds,
                min_odds=req.min_odds, approval_tx=approval_tx, dropped=dropped,
            )
            order_id = await self._submit(req, signature, result)

        if order_id is None:
            return result
        return await self._confirm(result, order_id)

    async def _submit(self, req: BetRequest, signature: str, result: PlacementResult) -> Optional[str]:
        body = req.request_body(self.wallet.owner, signature)
        try:
            order_id = await self.relayer.submit(body, combo=req.is_combo)
        except RelayerRejected as e:
            await self.ledger.update_status(result.local_id, REJECTED)
            result.status, result.error = REJECTED, e.reason
            return None
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            # First attempt never reached the relayer.
            await self.ledger.update_status(result.local_id, FAILED)
            result.status, result.error = FAILED, f"Relayer unreachable: {e}"
            return None
        except (httpx.TransportError, ExhaustedRetries, MissingOrderId) as e:
            logger.warning("Bet %s: submission outcome unknown (%s), left pending", result.local_id, e)
            result.error = f"Submission outcome unknown, will reconcile: {e}"
            return None

        await self.ledger.set_order_id(result.local_id, order_id)
        await self.ledger.update_status(result.local_id, PROCESSING)
        result.order_id, result.status = order_id, PROCESSING
        return order_id

    async def _confirm(self, result: PlacementResult, order_id: str) -> PlacementResult:
        poll = await self.poller.poll(order_id)
        if poll.status == "accepted":
            await self.ledger.confirm(result.local_id, poll.bet_id, poll.tx_hash, ACCEPTED)
            result.status, result.bet_id, result.tx_hash = ACCEPTED, poll.bet_id, poll.tx_hash
        elif poll.status == "rejected":
            await self.ledger.update_status(result.local_id, REJECTED)
            result.status, result.error = REJECTED, poll.error
        else:
            await self.ledger.update_status(result.local_id, PENDING)
            result.status, result.error = PENDING, poll.error
        return result
