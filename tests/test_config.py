"""Tests for configuration loading."""

from pathlib import Path

import pytest

from azurobet.betting.config import build_settings, load_config
from azurobet.errors import UnknownChain

from fakes import PRIVATE_KEY

CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"


def test_shipped_config_builds_polygon_settings(monkeypatch):
    monkeypatch.delenv("AZUROBET_CHAIN", raising=False)
    settings = build_settings(load_config(str(CONFIG_PATH)))

    assert settings.chain.key == "polygon"
    assert settings.chain.id == 137
    assert settings.chain.token.decimals == 6
    assert settings.chain.contracts.spender == settings.chain.contracts.relayer
    assert len(settings.chain.rpc_endpoints) > 1
    assert settings.betting.poll_timeout == 30
    assert settings.reconciler.amount_tolerance == 0.05


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("PRIVATE_KEY", PRIVATE_KEY)
    monkeypatch.setenv("AZUROBET_CHAIN", "gnosis")

    settings = build_settings(load_config(str(CONFIG_PATH)))

    assert settings.private_key == PRIVATE_KEY
    assert settings.chain.key == "gnosis"
    assert settings.chain.native_symbol == "XDAI"
    assert settings.chain.contracts.spender == settings.chain.contracts.lp


def test_defaults_fill_missing_sections(tmp_path, monkeypatch):
    monkeypatch.delenv("AZUROBET_CHAIN", raising=False)
    monkeypatch.delenv("PRIVATE_KEY", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        "chain: local\n"
        "chains:\n"
        "  local:\n"
        "    id: 1337\n"
        "    name: Local\n"
        "    environment: LocalUSDT\n"
        "    token: {symbol: USDT, decimals: 6, address: '0x0000000000000000000000000000000000000001'}\n"
        "    contracts: {lp: '0x0000000000000000000000000000000000000002', core: '0x0000000000000000000000000000000000000003'}\n"
        "    rpc_endpoints: [http://localhost:8545]\n"
        "    graphql: {data_feed: http://localhost/data, client: http://localhost/client}\n"
    )

    settings = build_settings(load_config(str(path)))

    assert settings.private_key is None
    assert settings.betting.slippage == 10
    assert settings.retry.max_retries == 3
    assert settings.database_path == "data/bets.db"


def test_unknown_chain():
    with pytest.raises(UnknownChain):
        build_settings({"chain": "solana", "chains": {}})
