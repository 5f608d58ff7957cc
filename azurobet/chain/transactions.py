"""
Transaction plumbing for one wallet: balances, gas, nonces, broadcast,
receipts and the token allowance the relayer needs.

Everything that touches the RPC goes through ``RetryExecutor`` and builds
its transaction from ``ctx.client`` so a rotated endpoint is picked up
on the next attempt.

Nonce-consuming work must run inside the wallet's ``WalletGuard``:

    async with wallet_guard(wallet.address):
        await txm.ensure_allowance(raw_amount)
"""

from __future__ import annotations

import asyncio
import logging
import time
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from .retry import RetryExecutor
from .rpc import ConnectionContext
from .signer import Wallet
from ..betting.config import ChainConfig, GasSettings
from ..errors import InsufficientBalance, InsufficientFunds, ReceiptTimeout, TransactionReverted

logger = logging.getLogger(__name__)

GWEI = 10 ** 9
MAX_UINT256 = 2 ** 256 - 1
UNLIMITED_ALLOWANCE_TOKENS = 1_000_000


# ── Per-wallet serialisation ─────────────────────────────────────────

class WalletGuard:
    """Lock + minimum spacing between nonce-consuming submissions."""

    def __init__(
        self,
        min_interval: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.min_interval = min_interval
        self._lock = asyncio.Lock()
        self._last: Optional[float] = None
        self._clock = clock
        self._sleep = sleep

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    async def __aenter__(self) -> "WalletGuard":
        await self._lock.acquire()
        if self._last is not None:
            wait = self.min_interval - (self._clock() - self._last)
            if wait > 0:
                await self._sleep(wait)
        return self

    async def __aexit__(self, *exc) -> None:
        self._last = self._clock()
        self._lock.release()


_guards: dict[str, WalletGuard] = {}


def wallet_guard(address: str, min_interval: float = 0.5) -> WalletGuard:
    """Process-wide guard for ``address``."""
    key = address.lower()
    if key not in _guards:
        _guards[key] = WalletGuard(min_interval)
    return _guards[key]


# ── Transactions ─────────────────────────────────────────────────────

TxBuilder = Callable[[Any, dict], Awaitable[dict]]


class TransactionManager:
    def __init__(
        self,
        executor: RetryExecutor,
        wallet: Wallet,
        chain: ChainConfig,
        gas: Optional[GasSettings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.executor = executor
        self.wallet = wallet
        self.chain = chain
        self.gas = gas or GasSettings()
        self._sleep = sleep
        self._clock = clock

    # ── Reads ────────────────────────────────────────────────────────

    async def native_balance(self) -> Decimal:
        wei = await self.executor.execute(
            lambda ctx: ctx.client.native_balance(self.wallet.address), "read native balance"
        )
        return Decimal(wei) / Decimal(10 ** 18)

    async def token_balance_raw(self) -> int:
        return await self.executor.execute(
            lambda ctx: ctx.client.token_balance(self.wallet.address), "read token balance"
        )

    async def token_balance(self) -> Decimal:
        raw = await self.token_balance_raw()
        return Decimal(raw) / Decimal(10 ** self.chain.token.decimals)

    async def nonces(self) -> tuple[int, int]:
        """(latest, pending) transaction counts."""
        async def read(ctx: ConnectionContext) -> tuple[int, int]:
            latest = await ctx.client.nonce(self.wallet.address, "latest")
            pending = await ctx.client.nonce(self.wallet.address, "pending")
            return latest, pending
        return await self.executor.execute(read, "read nonces")

    async def gas_price(self) -> int:
        return await self.executor.execute(lambda ctx: ctx.client.gas_price(), "read gas price")

    async def check_balances(self, raw_amount: int, min_native: float) -> None:
        """Fail fast when the wallet cannot pay for gas or the stake."""
        symbol = self.chain.native_symbol
        native = await self.native_balance()
        if native < Decimal(str(min_native)):
            raise InsufficientFunds(
                f"Insufficient {symbol} for gas: wallet has {native:.4f} {symbol}, "
                f"send at least {min_native} {symbol} to {self.wallet.address}."
            )
        token_raw = await self.token_balance_raw()
        if token_raw < raw_amount:
            decimals = self.chain.token.decimals
            have = Decimal(token_raw) / Decimal(10 ** decimals)
            need = Decimal(raw_amount) / Decimal(10 ** decimals)
            raise InsufficientBalance(
                f"Insufficient {self.chain.token.symbol}: have {have}, need {need}."
            )

    # ── Gas ──────────────────────────────────────────────────────────

    async def fees(self, multiplier: float, floor_gwei: float = 0, priority_gwei: float = 0,
                   priority_share: float = 0.0) -> dict[str, int]:
        """EIP-1559 fee fields from the network price, a multiplier and floors."""
        price = await self.gas_price()
        max_fee = max(int(price * multiplier), int(floor_gwei * GWEI))
        priority = max(int(price * priority_share), int(priority_gwei * GWEI))
        return {"maxFeePerGas": max(max_fee, priority), "maxPriorityFeePerGas": priority}

    @staticmethod
    def fixed_fees(max_fee_gwei: float, priority_gwei: float) -> dict[str, int]:
        return {"maxFeePerGas": int(max_fee_gwei * GWEI), "maxPriorityFeePerGas": int(priority_gwei * GWEI)}

    # ── Broadcast ────────────────────────────────────────────────────

    async def send(
        self,
        build: TxBuilder,
        name: str,
        gas_limit: int,
        fees: dict[str, int],
        nonce_block: str = "pending",
    ) -> str:
        """Build, sign and broadcast; the nonce is re-read on every attempt."""
        async def operation(ctx: ConnectionContext) -> str:
            nonce = await ctx.client.nonce(self.wallet.address, nonce_block)
            tx = await build(ctx.client, {"nonce": nonce, "gas": gas_limit, "value": 0, **fees})
            raw = self.wallet.sign_transaction(tx)
            tx_hash = await ctx.client.send_raw(raw)
            logger.info("%s sent: %s (nonce %d)", name, tx_hash, nonce)
            return tx_hash
        return await self.executor.execute(operation, name)

    async def verify_broadcast(self, tx_hash: str, attempts: int = 3, delay: float = 2.0) -> bool:
        """Check the node knows the transaction; rotates endpoint via the executor on errors."""
        for attempt in range(attempts):
            tx = await self.executor.execute(lambda ctx: ctx.client.get_transaction(tx_hash), "verify broadcast")
            if tx is not None:
                return True
            if attempt < attempts - 1:
                await self._sleep(delay)
        logger.warning("Transaction %s not visible on the RPC yet", tx_hash)
        return False

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        revert_reason: str = "transaction reverted",
    ) -> dict:
        """Poll until mined; status 0 raises ``TransactionReverted``."""
        timeout = self.gas.receipt_timeout if timeout is None else timeout
        poll_interval = self.gas.receipt_poll_interval if poll_interval is None else poll_interval
        deadline = self._clock() + timeout
        while True:
            receipt = await self.executor.execute(lambda ctx: ctx.client.get_receipt(tx_hash), "read receipt")
            if receipt is not None:
                if receipt.get("status") == 0:
                    raise TransactionReverted(tx_hash, revert_reason)
                return receipt
            if self._clock() + poll_interval > deadline:
                raise ReceiptTimeout(tx_hash, timeout)
            await self._sleep(poll_interval)

    # ── Allowance ────────────────────────────────────────────────────

    async def ensure_allowance(self, raw_amount: int) -> Optional[str]:
        """
        Make sure the spender may pull ``raw_amount``; approves MAX_UINT256
        and waits for the receipt.  Returns the approval tx hash, or None
        when the existing allowance already covers it.
        """
        spender = self.chain.contracts.spender
        owner = self.wallet.address
        allowance = await self.executor.execute(
            lambda ctx: ctx.client.allowance(owner, spender), "read allowance"
        )
        unlimited = UNLIMITED_ALLOWANCE_TOKENS * 10 ** self.chain.token.decimals
        if allowance >= max(raw_amount, unlimited):
            logger.debug("Allowance OK (%d)", allowance)
            return None

        latest, pending = await self.nonces()
        g = self.gas
        if pending > latest:
            logger.warning("%d stuck transaction(s) pending; approving with elevated gas", pending - latest)
            fees = await self.fees(1, g.stuck_gas_gwei, g.stuck_priority_gwei)
        else:
            fees = await self.fees(g.approval_multiplier, 0, g.approval_priority_gwei, priority_share=0.15)

        logger.info("Approving %s for %s spending", spender, self.chain.token.symbol)
        tx_hash = await self.send(
            lambda client, params: client.build_approve(owner, spender, MAX_UINT256, params),
            "approve token",
            g.approval_gas_limit,
            fees,
        )
        await self.verify_broadcast(tx_hash)
        await self.wait_for_receipt(tx_hash, revert_reason="token approval reverted")
        logger.info("Approval confirmed: %s", tx_hash)
        return tx_hash
