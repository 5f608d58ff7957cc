"""
Configuration loader for the bet client.

Reads a YAML config and injects secrets from environment variables,
then turns the raw dict into typed settings.
"""

from __future__ import annotations

import os
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from ..errors import UnknownChain

load_dotenv()

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


# ── Chain parameters ─────────────────────────────────────────────────

class TokenConfig(BaseModel):
    symbol: str
    decimals: int
    address: str


class ContractsConfig(BaseModel):
    lp: str
    core: str
    relayer: Optional[str] = None
    azuro_bet: Optional[str] = None
    cashout: Optional[str] = None

    @property
    def spender(self) -> str:
        """Contract that pulls the stake; the relayer when deployed, else the LP."""
        return self.relayer or self.lp


class GraphQLConfig(BaseModel):
    data_feed: str
    client: str


class ChainConfig(BaseModel):
    key: str = ""
    id: int
    name: str
    environment: str
    native_symbol: str = "POL"
    token: TokenConfig
    contracts: ContractsConfig
    rpc_endpoints: list[str]
    graphql: GraphQLConfig
    websocket: str = ""


# ── Tunables ─────────────────────────────────────────────────────────

class RelayerSettings(BaseModel):
    bet_api: str = "https://api.onchainfeed.org/api/v1/public/bet"
    cashout_api: str = "https://api.onchainfeed.org/api/v1/public/cashout"
    timeout: float = 30.0


class BettingSettings(BaseModel):
    slippage: float = 10.0
    expiry_seconds: int = 300
    poll_interval: float = 2.0
    poll_timeout: float = 30.0
    cashout_poll_timeout: float = 30.0
    min_submit_interval: float = 0.5
    min_native_balance: float = 0.15
    affiliate: str = ZERO_ADDRESS


class RetrySettings(BaseModel):
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.5


class ReconcilerSettings(BaseModel):
    staleness_seconds: int = 300
    lookback_hours: int = 24
    amount_tolerance: float = 0.05
    page_size: int = 100


class GasSettings(BaseModel):
    approval_multiplier: float = 1.3
    approval_priority_gwei: float = 30
    approval_gas_limit: int = 150_000
    stuck_gas_gwei: float = 500
    stuck_priority_gwei: float = 100
    withdraw_multiplier: float = 1.5
    withdraw_floor_gwei: float = 1500
    withdraw_priority_gwei: float = 100
    withdraw_gas_limit: int = 1_000_000
    force_gas_gwei: float = 2000
    force_priority_gwei: float = 800
    cancel_gas_gwei: float = 2000
    cancel_priority_gwei: float = 1000
    receipt_timeout: float = 90
    receipt_poll_interval: float = 3


class Settings(BaseModel):
    chain: ChainConfig
    relayer: RelayerSettings = Field(default_factory=RelayerSettings)
    betting: BettingSettings = Field(default_factory=BettingSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    reconciler: ReconcilerSettings = Field(default_factory=ReconcilerSettings)
    gas: GasSettings = Field(default_factory=GasSettings)
    database_path: str = "data/bets.db"
    private_key: Optional[str] = None


def load_config(config_path: str = "config.yaml") -> dict:
    """
    Load configuration from YAML file.

    Injects PRIVATE_KEY into wallet.private_key and honours an
    AZUROBET_CHAIN override of the active chain.
    """
    with open(config_path, "r") as f:
        config = yaml.safe_load(f) or {}

    private_key = os.getenv("PRIVATE_KEY")
    if private_key:
        config.setdefault("wallet", {})["private_key"] = private_key

    chain = os.getenv("AZUROBET_CHAIN")
    if chain:
        config["chain"] = chain

    return config


def build_settings(config: dict) -> Settings:
    """Turn a raw config dict into typed settings for the active chain."""
    chain_key = config.get("chain", "polygon")
    chains = config.get("chains", {})
    if chain_key not in chains:
        raise UnknownChain(f"Chain '{chain_key}' not found in config (known: {', '.join(chains) or 'none'})")

    return Settings(
        chain=ChainConfig(key=chain_key, **chains[chain_key]),
        relayer=RelayerSettings(**config.get("relayer", {})),
        betting=BettingSettings(**config.get("betting", {})),
        retry=RetrySettings(**config.get("retry", {})),
        reconciler=ReconcilerSettings(**config.get("reconciler", {})),
        gas=GasSettings(**config.get("gas", {})),
        database_path=config.get("database", {}).get("path", "data/bets.db"),
        private_key=config.get("wallet", {}).get("private_key"),
    )
