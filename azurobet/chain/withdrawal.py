"""
Payout withdrawal and stuck-transaction cancellation.

Withdrawal
  1. bet NFTs must be approved for the LP (``setApprovalForAll``)
  2. ``LP.withdrawPayouts(core, tokenIds)`` at the latest nonce
  3. the payout reported is read from the token ``Transfer`` logs of the
     receipt, not from any pre-computed figure

Cancellation
  every nonce between "latest" and "pending" gets a zero-value
  self-transfer at a much higher gas price, evicting the stuck tx.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from .rpc import ConnectionContext
from .transactions import TransactionManager, wallet_guard
from ..betting.database import Ledger
from ..errors import InsufficientFunds, ReceiptTimeout

logger = logging.getLogger(__name__)

TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

APPROVAL_GAS_LIMIT = 100_000
CANCEL_GAS_LIMIT = 21_000
CANCEL_RECEIPT_TIMEOUT = 30.0
CANCEL_SPACING = 0.5


@dataclass
class WithdrawResult:
    tx_hash: str
    bet_ids: list[str]
    payout: Decimal
    approval_tx: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "tx_hash": self.tx_hash,
            "bet_ids": self.bet_ids,
            "payout": str(self.payout),
            "approval_tx": self.approval_tx,
        }


@dataclass
class CancelReport:
    latest_nonce: int = 0
    pending_nonce: int = 0
    cancelled: int = 0
    tx_hashes: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "latest_nonce": self.latest_nonce,
            "pending_nonce": self.pending_nonce,
            "stuck": self.pending_nonce - self.latest_nonce,
            "cancelled": self.cancelled,
            "tx_hashes": self.tx_hashes,
            "error": "; ".join(self.errors) or None,
        }


def _topic_address(topic: str) -> str:
    return "0x" + topic[-40:].lower()


def parse_transfer_total(receipt: dict, recipient: str, token: Optional[str] = None) -> int:
    """Sum ERC-20 ``Transfer`` amounts sent to ``recipient`` in a receipt."""
    recipient = recipient.lower()
    total = 0
    for log in receipt.get("logs", []):
        topics = [t.lower() for t in log.get("topics", [])]
        if len(topics) < 3 or topics[0] != TRANSFER_TOPIC:
            continue
        if token and str(log.get("address", "")).lower() != token.lower():
            continue
        if _topic_address(topics[2]) != recipient:
            continue
        data = log.get("data") or "0x0"
        total += int(data, 16) if data not in ("0x", "") else 0
    return total


class WithdrawalEngine:
    def __init__(
        self,
        txm: TransactionManager,
        ledger: Optional[Ledger] = None,
        min_interval: float = 0.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.txm = txm
        self.ledger = ledger
        self.min_interval = min_interval
        self._sleep = sleep

    @property
    def _address(self) -> str:
        return self.txm.wallet.address

    async def _ensure_nft_approval(self, force: bool) -> Optional[str]:
        lp = self.txm.chain.contracts.lp
        approved = await self.txm.executor.execute(
            lambda ctx: ctx.client.is_approved_for_all(self._address, lp), "read NFT approval"
        )
        if approved:
            return None
        logger.info("Approving LP %s to transfer bet NFTs", lp)
        tx_hash = await self.txm.send(
            lambda client, params: client.build_set_approval_for_all(self._address, lp, params),
            "approve bet NFTs",
            APPROVAL_GAS_LIMIT,
            await self._withdraw_fees(force),
        )
        await self.txm.wait_for_receipt(tx_hash, revert_reason="NFT approval reverted")
        return tx_hash

    async def _withdraw_fees(self, force: bool) -> dict[str, int]:
        g = self.txm.gas
        if force:
            return self.txm.fixed_fees(g.force_gas_gwei, g.force_priority_gwei)
        return await self.txm.fees(g.withdraw_multiplier, g.withdraw_floor_gwei, g.withdraw_priority_gwei)

    async def withdraw(self, bet_ids: list[str], force: bool = False) -> WithdrawResult:
        """Redeem winning / canceled bets; ``force`` uses fixed emergency gas."""
        if not bet_ids:
            raise ValueError("No bet ids to withdraw")
        token_ids = [int(b) for b in bet_ids]

        async with wallet_guard(self._address, self.min_interval):
            approval_tx = await self._ensure_nft_approval(force)
            fees = await self._withdraw_fees(force)
            logger.info("Withdrawing %d bet(s): %s (maxFee %d gwei)",
                        len(token_ids), bet_ids, fees["maxFeePerGas"] // 10 ** 9)
            tx_hash = await self.txm.send(
                lambda client, params: client.build_withdraw_payouts(self._address, token_ids, params),
                "withdraw payouts",
                self.txm.gas.withdraw_gas_limit,
                fees,
                nonce_block="latest",
            )
            receipt = await self.txm.wait_for_receipt(
                tx_hash, revert_reason="reverted - may already be redeemed or NFT approval required"
            )

        raw = parse_transfer_total(receipt, self._address, self.txm.chain.token.address)
        payout = Decimal(raw) / Decimal(10 ** self.txm.chain.token.decimals)
        logger.info("Withdrawal %s confirmed, received %s %s", tx_hash, payout, self.txm.chain.token.symbol)

        if self.ledger is not None:
            await self.ledger.mark_redeemed([str(b) for b in bet_ids])
        return WithdrawResult(tx_hash=tx_hash, bet_ids=[str(b) for b in bet_ids], payout=payout, approval_tx=approval_tx)

    async def cancel_pending(self) -> CancelReport:
        """Replace every stuck nonce with a zero-value self-transfer."""
        async with wallet_guard(self._address, self.min_interval):
            latest, pending = await self.txm.nonces()
            report = CancelReport(latest_nonce=latest, pending_nonce=pending)
            if pending <= latest:
                logger.info("No stuck transactions (nonce %d)", latest)
                return report

            g = self.txm.gas
            fees = self.txm.fixed_fees(g.cancel_gas_gwei, g.cancel_priority_gwei)
            logger.warning("Cancelling %d stuck transaction(s), nonces %d..%d", pending - latest, latest, pending - 1)

            for nonce in range(latest, pending):
                tx = {
                    "to": self._address,
                    "value": 0,
                    "nonce": nonce,
                    "gas": CANCEL_GAS_LIMIT,
                    "chainId": self.txm.chain.id,
                    **fees,
                }
                raw = self.txm.wallet.sign_transaction(tx)

                async def broadcast(ctx: ConnectionContext) -> str:
                    return await ctx.client.send_raw(raw)

                try:
                    tx_hash = await self.txm.executor.execute(broadcast, f"cancel nonce {nonce}")
                except InsufficientFunds:
                    raise
                except Exception as e:
                    text = str(e).lower()
                    report.errors.append(f"Nonce {nonce}: {str(e)[:100]}")
                    if "nonce" in text and "low" in text:
                        logger.info("Nonce %d already mined", nonce)
                        report.cancelled += 1
                    elif "replacement" in text or "underpriced" in text:
                        logger.warning("Nonce %d: replacement underpriced, trying next", nonce)
                    else:
                        logger.error("Nonce %d: cancel failed: %s", nonce, e)
                    continue

                report.tx_hashes.append(tx_hash)
                try:
                    await self.txm.wait_for_receipt(tx_hash, timeout=CANCEL_RECEIPT_TIMEOUT, poll_interval=2)
                    report.cancelled += 1
                    logger.info("Nonce %d cancelled: %s", nonce, tx_hash)
                except ReceiptTimeout:
                    logger.info("Nonce %d: replacement %s sent, not mined yet", nonce, tx_hash)
                await self._sleep(CANCEL_SPACING)

        return report
