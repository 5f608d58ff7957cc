import asyncio

import pytest

from azurobet.betting.database import Ledger
from azurobet.chain.signer import Wallet

from fakes import PRIVATE_KEY


@pytest.fixture
def ledger(tmp_path):
    db = Ledger(str(tmp_path / "bets.db"))
    asyncio.run(db.init_schema())
    return db


@pytest.fixture
def wallet():
    return Wallet(PRIVATE_KEY)
