"""
Blockchain RPC access for the bet client.

``ChainClient`` wraps one ``AsyncWeb3`` provider bound to a single RPC
endpoint.  ``RpcEndpointPool`` owns the ordered endpoint list and the
process-wide "current endpoint" index; it hands out immutable
``ConnectionContext`` values and replaces them on rotation instead of
mutating clients in place.

Calls used:
  eth_getBalance / eth_getTransactionCount / eth_gasPrice
  eth_sendRawTransaction / eth_getTransactionByHash / eth_getTransactionReceipt
  ERC20.balanceOf / allowance / approve
  AzuroBet.isApprovedForAll / setApprovalForAll
  LP.withdrawPayouts
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from web3 import AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound
from web3.middleware import ExtraDataToPOAMiddleware

from ..betting.config import ChainConfig

logger = logging.getLogger(__name__)

RPC_TIMEOUT = 30.0

ERC20_ABI = [
    {
        "name": "balanceOf", "type": "function", "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "allowance", "type": "function", "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "approve", "type": "function", "stateMutability": "nonpayable",
        "inputs": [{"name": "spender", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
]

AZURO_BET_ABI = [
    {
        "name": "isApprovedForAll", "type": "function", "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}, {"name": "operator", "type": "address"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "setApprovalForAll", "type": "function", "stateMutability": "nonpayable",
        "inputs": [{"name": "operator", "type": "address"}, {"name": "approved", "type": "bool"}],
        "outputs": [],
    },
]

LP_ABI = [
    {
        "name": "withdrawPayouts", "type": "function", "stateMutability": "nonpayable",
        "inputs": [{"name": "core", "type": "address"}, {"name": "tokenIds", "type": "uint256[]"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]


def _hex(value: Any) -> str:
    """Normalise a hash / topic / data field (bytes or str) to 0x-prefixed lower hex."""
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value).lower()
    text = str(value).lower()
    return text if text.startswith("0x") else f"0x{text}"


class ChainClient:
    """Thin async wrapper over one RPC endpoint."""

    def __init__(self, endpoint: str, chain: ChainConfig, timeout: float = RPC_TIMEOUT):
        self.endpoint = endpoint
        self.chain = chain
        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(endpoint, request_kwargs={"timeout": timeout}))
        self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        self.token = self.w3.eth.contract(
            address=Web3.to_checksum_address(chain.token.address), abi=ERC20_ABI
        )
        self.lp = self.w3.eth.contract(
            address=Web3.to_checksum_address(chain.contracts.lp), abi=LP_ABI
        )
        self.azuro_bet = None
        if chain.contracts.azuro_bet:
            self.azuro_bet = self.w3.eth.contract(
                address=Web3.to_checksum_address(chain.contracts.azuro_bet), abi=AZURO_BET_ABI
            )

    # ── Reads ────────────────────────────────────────────────────────

    async def native_balance(self, address: str) -> int:
        return await self.w3.eth.get_balance(Web3.to_checksum_address(address))

    async def token_balance(self, address: str) -> int:
        return await self.token.functions.balanceOf(Web3.to_checksum_address(address)).call()

    async def allowance(self, owner: str, spender: str) -> int:
        return await self.token.functions.allowance(
            Web3.to_checksum_address(owner), Web3.to_checksum_address(spender)
        ).call()

    async def nonce(self, address: str, block: str = "latest") -> int:
        return await self.w3.eth.get_transaction_count(Web3.to_checksum_address(address), block)

    async def gas_price(self) -> int:
        return await self.w3.eth.gas_price

    async def is_approved_for_all(self, owner: str, operator: str) -> bool:
        if self.azuro_bet is None:
            return True
        return await self.azuro_bet.functions.isApprovedForAll(
            Web3.to_checksum_address(owner), Web3.to_checksum_address(operator)
        ).call()

    async def get_transaction(self, tx_hash: str) -> Optional[dict]:
        try:
            tx = await self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return None
        return dict(tx) if tx else None

    async def get_receipt(self, tx_hash: str) -> Optional[dict]:
        """Return the receipt as a plain dict (hex strings for hashes/topics), or None."""
        try:
            receipt = await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        if receipt is None:
            return None
        return {
            "status": receipt["status"],
            "transactionHash": _hex(receipt["transactionHash"]),
            "blockNumber": receipt.get("blockNumber"),
            "logs": [
                {
                    "address": log["address"],
                    "topics": [_hex(t) for t in log["topics"]],
                    "data": _hex(log["data"]),
                }
                for log in receipt.get("logs", [])
            ],
        }

    # ── Writes ───────────────────────────────────────────────────────

    async def send_raw(self, raw_tx: bytes) -> str:
        tx_hash = await self.w3.eth.send_raw_transaction(raw_tx)
        return _hex(tx_hash)

    def _tx_params(self, sender: str, params: dict) -> dict:
        return {"from": Web3.to_checksum_address(sender), "chainId": self.chain.id, **params}

    async def build_approve(self, owner: str, spender: str, amount: int, params: dict) -> dict:
        return await self.token.functions.approve(
            Web3.to_checksum_address(spender), amount
        ).build_transaction(self._tx_params(owner, params))

    async def build_set_approval_for_all(self, owner: str, operator: str, params: dict) -> dict:
        if self.azuro_bet is None:
            raise ValueError(f"No bet NFT contract configured for {self.chain.name}")
        return await self.azuro_bet.functions.setApprovalForAll(
            Web3.to_checksum_address(operator), True
        ).build_transaction(self._tx_params(owner, params))

    async def build_withdraw_payouts(self, owner: str, token_ids: list[int], params: dict) -> dict:
        return await self.lp.functions.withdrawPayouts(
            Web3.to_checksum_address(self.chain.contracts.core), token_ids
        ).build_transaction(self._tx_params(owner, params))


# ── Endpoint pool ────────────────────────────────────────────────────

@dataclass(frozen=True)
class ConnectionContext:
    """One endpoint plus the client built for it. Replaced, never mutated."""
    endpoint: str
    index: int
    generation: int
    client: Any


ClientFactory = Callable[[str], Any]


class RpcEndpointPool:
    """
    Ordered RPC endpoints with a shared "current" index.

    ``rotate(ctx)`` is compare-and-swap: only the first caller holding the
    current context advances the index; concurrent callers holding the
    same stale context get the already-rotated context back.
    """

    def __init__(self, endpoints: list[str], client_factory: ClientFactory):
        if not endpoints:
            raise ValueError("At least one RPC endpoint is required")
        self.endpoints = list(endpoints)
        self._factory = client_factory
        self._lock = asyncio.Lock()
        self._current = self._make(0, 0)

    @classmethod
    def for_chain(cls, chain: ChainConfig, timeout: float = RPC_TIMEOUT) -> "RpcEndpointPool":
        return cls(chain.rpc_endpoints, lambda url: ChainClient(url, chain, timeout))

    def _make(self, index: int, generation: int) -> ConnectionContext:
        endpoint = self.endpoints[index]
        return ConnectionContext(endpoint, index, generation, self._factory(endpoint))

    def current(self) -> ConnectionContext:
        return self._current

    async def rotate(self, ctx: ConnectionContext) -> ConnectionContext:
        async with self._lock:
            if ctx.generation != self._current.generation:
                return self._current
            index = (self._current.index + 1) % len(self.endpoints)
            self._current = self._make(index, self._current.generation + 1)
            logger.warning("Switched RPC %s -> %s", ctx.endpoint, self._current.endpoint)
            return self._current

    async def restore(self, index: int) -> ConnectionContext:
        """Point the pool back at ``index`` (used after a full unsuccessful cycle)."""
        async with self._lock:
            if self._current.index != index:
                self._current = self._make(index, self._current.generation + 1)
                logger.info("Restored RPC %s", self._current.endpoint)
            return self._current
