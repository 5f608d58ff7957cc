"""Tests for settlement sync."""

import asyncio
from decimal import Decimal

from azurobet.azuro.models import ChainBet, ChainSelection, Condition
from azurobet.betting.database import new_attempt
from azurobet.betting.models import ACCEPTED, CANCELED, CANCELED_RESULT, LOST, SETTLED, WON, Selection
from azurobet.betting.settlement import SettlementSync, chain_outcome
from azurobet.errors import FeedError

from fakes import WALLET_ADDRESS

OWNER = WALLET_ADDRESS.lower()


class FakeFeed:
    def __init__(self, bets=(), conditions=(), error=None):
        self.bets = list(bets)
        self._conditions = list(conditions)
        self.error = error

    async def bets_for_wallet(self, wallet, since=None, page_size=100):
        if self.error:
            raise self.error
        return self.bets

    async def conditions(self, ids):
        if self.error:
            raise self.error
        return [c for c in self._conditions if c.condition_id in ids]


def _accepted(ledger, bet_id, amount="10", odds="2.0", condition_id="1001", outcome_id=1):
    selections = [Selection(condition_id=condition_id, outcome_id=outcome_id, odds=Decimal(odds))]
    bet = asyncio.run(ledger.create(new_attempt(OWNER, selections, amount, Decimal(odds))))
    return asyncio.run(ledger.confirm(bet.local_id, bet_id, f"0x{bet_id}"))


def _chain_bet(bet_id, status, result=None, payout=None, amount="10"):
    return ChainBet(
        bet_id=bet_id, amount=Decimal(amount), odds=Decimal("2.0"), status=status, result=result,
        tx_hash=f"0x{bet_id}", payout=Decimal(payout) if payout else None,
        selections=[ChainSelection(condition_id="1001", outcome_id=1)],
    )


def test_chain_outcome_mapping():
    selections = [Selection(condition_id="1001", outcome_id=1, odds=Decimal("2"))]
    bet = new_attempt(OWNER, selections, "10", Decimal("2"))

    assert chain_outcome(bet, _chain_bet("1", "Resolved", "Won", "19.5")) == (SETTLED, WON, "19.5")
    assert chain_outcome(bet, _chain_bet("1", "Resolved", "Won")) == (SETTLED, WON, "20.0")
    assert chain_outcome(bet, _chain_bet("1", "Resolved", "Lost")) == (SETTLED, LOST, "0")
    assert chain_outcome(bet, _chain_bet("1", "Canceled")) == (CANCELED, CANCELED_RESULT, "10")
    assert chain_outcome(bet, _chain_bet("1", "Accepted")) == (ACCEPTED, None, None)


def test_sync_settles_from_client_feed(ledger):
    won = _accepted(ledger, "1")
    lost = _accepted(ledger, "2")
    open_bet = _accepted(ledger, "3")
    feed = FakeFeed(bets=[
        _chain_bet("1", "Resolved", "Won", "19.8"),
        _chain_bet("2", "Resolved", "Lost"),
        _chain_bet("3", "Accepted"),
    ])

    report = asyncio.run(SettlementSync(ledger, feed).sync(OWNER))

    assert report.checked == 3
    assert len(report.updated) == 2
    stored = asyncio.run(ledger.get(won.local_id))
    assert (stored.status, stored.result, stored.payout) == (SETTLED, WON, "19.8")
    assert asyncio.run(ledger.get(lost.local_id)).result == LOST
    assert asyncio.run(ledger.get(open_bet.local_id)).status == ACCEPTED


def test_condition_fast_path_settles_before_client_feed(ledger):
    bet = _accepted(ledger, "5", amount="4", odds="2.5")
    condition = Condition.from_api({"conditionId": "1001", "state": "Resolved", "wonOutcomeIds": [1]})
    feed = FakeFeed(conditions=[condition])

    asyncio.run(SettlementSync(ledger, feed).sync(OWNER))

    stored = asyncio.run(ledger.get(bet.local_id))
    assert (stored.status, stored.result) == (SETTLED, WON)
    assert Decimal(stored.payout) == Decimal("10")


def test_canceled_condition_returns_stake(ledger):
    bet = _accepted(ledger, "6", amount="4")
    feed = FakeFeed(conditions=[Condition.from_api({"conditionId": "1001", "state": "Canceled"})])

    asyncio.run(SettlementSync(ledger, feed).sync(OWNER))

    stored = asyncio.run(ledger.get(bet.local_id))
    assert (stored.status, stored.result, stored.payout) == (CANCELED, CANCELED_RESULT, "4")


def test_feed_error_aborts_sync(ledger):
    bet = _accepted(ledger, "7")
    report = asyncio.run(SettlementSync(ledger, FakeFeed(error=FeedError("down"))).sync(OWNER))

    assert report.aborted
    assert asyncio.run(ledger.get(bet.local_id)).status == ACCEPTED


def test_nothing_open_skips_feed(ledger):
    report = asyncio.run(SettlementSync(ledger, FakeFeed(error=FeedError("unused"))).sync(OWNER))
    assert report.checked == 0
    assert not report.aborted
