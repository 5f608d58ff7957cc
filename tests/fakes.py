"""Test doubles shared by the test modules."""

from __future__ import annotations

from typing import Any, Optional

from azurobet.betting.config import ChainConfig, Settings
from azurobet.chain.retry import RetryExecutor
from azurobet.chain.rpc import RpcEndpointPool
from azurobet.chain.signer import Wallet
from azurobet.chain.transactions import TransactionManager

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
WALLET_ADDRESS = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"
TOKEN_ADDRESS = "0xc2132D05D31c914a87C6611C10748AEb04B58e8F"

CHAIN_DICT = {
    "id": 137,
    "name": "Polygon",
    "environment": "PolygonUSDT",
    "native_symbol": "POL",
    "token": {"symbol": "USDT", "decimals": 6, "address": TOKEN_ADDRESS},
    "contracts": {
        "lp": "0x0FA7FB5407eA971694652E6E16C12A52625DE1b8",
        "core": "0xF9548Be470A4e130c90ceA8b179FCD66D2972AC7",
        "relayer": "0x8dA05c0021e6b35865FDC959c54dCeF3A4AbBa9d",
        "azuro_bet": "0x7A1c3FEf712753374C4DCe34254B96faF2B7265B",
        "cashout": "0x4a2BB4211cCF9b9eA6eF01D0a61448154ED19095",
    },
    "rpc_endpoints": ["https://rpc-a", "https://rpc-b", "https://rpc-c"],
    "graphql": {"data_feed": "https://feed.test/data", "client": "https://feed.test/client"},
    "websocket": "wss://stream.test/feed",
}


def make_chain() -> ChainConfig:
    return ChainConfig(key="polygon", **CHAIN_DICT)


def make_settings(db_path: str = ":memory:", **betting: Any) -> Settings:
    settings = Settings(chain=make_chain(), database_path=db_path, private_key=PRIVATE_KEY)
    if betting:
        settings.betting = settings.betting.model_copy(update=betting)
    return settings


class Recorder:
    """Async sleep stand-in that records requested delays and advances a clock."""

    def __init__(self):
        self.now = 0.0
        self.delays: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.delays.append(seconds)
        self.now += seconds


class FakeChainClient:
    """Stands in for ``ChainClient``; every RPC is an attribute you can set."""

    def __init__(self, endpoint: str = "fake://rpc"):
        self.endpoint = endpoint
        self.native = 10 ** 18
        self.token = 100 * 10 ** 6
        self.allowance_value = 2 ** 256 - 1
        self.latest = 5
        self.pending = 5
        self.price = 30 * 10 ** 9
        self.approved = True
        self.sent: list[bytes] = []
        self.built: list[tuple] = []
        self.receipts: dict[str, dict] = {}
        self.default_receipt: Optional[dict] = {"status": 1, "logs": []}
        self.send_errors: list[Optional[Exception]] = []
        self.read_errors: list[Exception] = []
        self.calls = 0

    async def _read(self, value):
        self.calls += 1
        if self.read_errors:
            raise self.read_errors.pop(0)
        return value

    async def native_balance(self, address):
        return await self._read(self.native)

    async def token_balance(self, address):
        return await self._read(self.token)

    async def allowance(self, owner, spender):
        return await self._read(self.allowance_value)

    async def nonce(self, address, block="latest"):
        return await self._read(self.pending if block == "pending" else self.latest)

    async def gas_price(self):
        return await self._read(self.price)

    async def is_approved_for_all(self, owner, operator):
        return await self._read(self.approved)

    async def get_transaction(self, tx_hash):
        return {"hash": tx_hash}

    async def get_receipt(self, tx_hash):
        return self.receipts.get(tx_hash, self.default_receipt)

    async def send_raw(self, raw):
        if self.send_errors:
            err = self.send_errors.pop(0)
            if err is not None:
                raise err
        self.sent.append(raw)
        return "0x%064x" % len(self.sent)

    def _tx(self, params: dict) -> dict:
        return {"to": TOKEN_ADDRESS, "value": 0, "data": "0x", "chainId": 137, **params}

    async def build_approve(self, owner, spender, amount, params):
        self.built.append(("approve", spender, amount, params))
        return self._tx(params)

    async def build_set_approval_for_all(self, owner, operator, params):
        self.built.append(("setApprovalForAll", operator, params))
        return self._tx(params)

    async def build_withdraw_payouts(self, owner, token_ids, params):
        self.built.append(("withdrawPayouts", token_ids, params))
        return self._tx(params)


def make_txm(client: FakeChainClient, recorder: Optional[Recorder] = None):
    """TransactionManager over a one-endpoint pool serving ``client``."""
    recorder = recorder or Recorder()
    pool = RpcEndpointPool([client.endpoint], lambda url: client)
    executor = RetryExecutor(pool, sleep=recorder.sleep, rng=lambda: 0.0)
    return TransactionManager(executor, Wallet(PRIVATE_KEY), make_chain(),
                              sleep=recorder.sleep, clock=recorder.clock)
