"""Tests for the ghost bet reconciler."""

import asyncio
from decimal import Decimal

from azurobet.azuro.models import ChainBet, ChainSelection
from azurobet.betting.database import new_attempt
from azurobet.betting.models import ACCEPTED, FAILED, GHOST_BET_CLEANUP, PENDING, BetFilter, Selection
from azurobet.betting.reconciler import GhostBetReconciler, amount_matches, legs_match
from azurobet.errors import FeedError

from fakes import WALLET_ADDRESS

OWNER = WALLET_ADDRESS.lower()
CREATED = 1_700_000_000
NOW = CREATED + 600


class FakeFeed:
    def __init__(self, bets=None, error=None):
        self.bets = bets or []
        self.error = error
        self.calls = []

    async def bets_for_wallet(self, wallet, since=None, page_size=100):
        self.calls.append(since)
        if self.error:
            raise self.error
        return self.bets


def _chain_bet(bet_id, amount, legs, status="Accepted", created_at=CREATED + 5):
    return ChainBet(
        bet_id=bet_id,
        amount=Decimal(amount),
        status=status,
        tx_hash=f"0x{bet_id}",
        created_at=created_at,
        selections=[ChainSelection(condition_id=c, outcome_id=o) for c, o in legs],
    )


def _record(ledger, amount="10", legs=(("1001", 1),), created_at=CREATED):
    selections = [Selection(condition_id=c, outcome_id=o, odds=Decimal("1.8")) for c, o in legs]
    return asyncio.run(ledger.create(new_attempt(OWNER, selections, amount, Decimal("1.8"), now=created_at)))


def _reconciler(ledger, feed):
    return GhostBetReconciler(ledger, feed, staleness_seconds=300, lookback_hours=24,
                              amount_tolerance=0.05, clock=lambda: NOW)


def test_stale_pending_row_gets_chain_ids(ledger):
    bet = _record(ledger)
    feed = FakeFeed([_chain_bet("205291", "10", [("1001", 1)])])

    report = asyncio.run(_reconciler(ledger, feed).reconcile(OWNER))

    stored = asyncio.run(ledger.get(bet.local_id))
    assert report.matched == [{"local_id": bet.local_id, "bet_id": "205291", "status": ACCEPTED}]
    assert stored.status == ACCEPTED
    assert stored.bet_id == "205291"
    assert stored.tx_hash == "0x205291"
    assert feed.calls == [NOW - 24 * 3600]


def test_amount_within_tolerance_still_matches(ledger):
    bet = _record(ledger, amount="10")
    feed = FakeFeed([_chain_bet("1", "10.4", [("1001", 1)])])
    asyncio.run(_reconciler(ledger, feed).reconcile(OWNER))
    assert asyncio.run(ledger.get(bet.local_id)).bet_id == "1"


def test_unmatched_row_becomes_ghost(ledger):
    bet = _record(ledger)
    feed = FakeFeed([
        _chain_bet("1", "11", [("1001", 1)]),
        _chain_bet("2", "10", [("1001", 2)]),
        _chain_bet("3", "10", [("1001", 1), ("1002", 1)]),
    ])

    report = asyncio.run(_reconciler(ledger, feed).reconcile(OWNER))

    stored = asyncio.run(ledger.get(bet.local_id))
    assert report.ghosted == [bet.local_id]
    assert (stored.status, stored.result) == (FAILED, GHOST_BET_CLEANUP)


def test_fresh_rows_are_left_alone(ledger):
    bet = _record(ledger, created_at=NOW - 60)
    feed = FakeFeed()

    report = asyncio.run(_reconciler(ledger, feed).reconcile(OWNER))

    assert report.candidates == 0
    assert feed.calls == []
    assert asyncio.run(ledger.get(bet.local_id)).status == PENDING


def test_feed_error_aborts_without_writes(ledger):
    bet = _record(ledger)
    report = asyncio.run(_reconciler(ledger, FakeFeed(error=FeedError("timeout"))).reconcile(OWNER))

    assert report.aborted
    assert report.ghosted == []
    assert asyncio.run(ledger.get(bet.local_id)).status == PENDING


def test_one_chain_bet_is_never_assigned_twice(ledger):
    first = _record(ledger, created_at=CREATED)
    second = _record(ledger, created_at=CREATED + 1)
    feed = FakeFeed([_chain_bet("500", "10", [("1001", 1)])])

    report = asyncio.run(_reconciler(ledger, feed).reconcile(OWNER))

    assert [m["local_id"] for m in report.matched] == [first.local_id]
    assert report.ghosted == [second.local_id]
    rows = asyncio.run(ledger.query(BetFilter(bet_id="500")))
    assert len(rows) == 1


def test_already_claimed_chain_bet_is_skipped(ledger):
    owner_row = _record(ledger, created_at=NOW)
    asyncio.run(ledger.assign_chain_ids(owner_row.local_id, "500", "0x500"))
    stale = _record(ledger)
    feed = FakeFeed([_chain_bet("500", "10", [("1001", 1)])])

    report = asyncio.run(_reconciler(ledger, feed).reconcile(OWNER))
    assert report.ghosted == [stale.local_id]


def test_every_candidate_leaves_the_candidate_set(ledger):
    _record(ledger, amount="10")
    _record(ledger, amount="20", legs=(("1002", 1),))
    _record(ledger, amount="30", legs=(("1003", 1),))
    feed = FakeFeed([
        _chain_bet("1", "10", [("1001", 1)]),
        _chain_bet("2", "20", [("1002", 1)], status="Resolved"),
    ])

    asyncio.run(_reconciler(ledger, feed).reconcile(OWNER))

    assert asyncio.run(ledger.ghost_candidates(OWNER, NOW)) == []


def test_closest_amount_wins(ledger):
    bet = _record(ledger, amount="10")
    feed = FakeFeed([
        _chain_bet("1", "10.3", [("1001", 1)]),
        _chain_bet("2", "10.1", [("1001", 1)]),
    ])
    asyncio.run(_reconciler(ledger, feed).reconcile(OWNER))
    assert asyncio.run(ledger.get(bet.local_id)).bet_id == "2"


def test_combo_matches_on_shared_condition(ledger):
    bet = _record(ledger, legs=(("1001", 1), ("1002", 2)))
    feed = FakeFeed([_chain_bet("9", "10", [("1001", 1), ("1003", 1)])])
    asyncio.run(_reconciler(ledger, feed).reconcile(OWNER))
    assert asyncio.run(ledger.get(bet.local_id)).bet_id == "9"


def test_recovery_needs_exact_legs(ledger):
    exact = _record(ledger, legs=(("1001", 1), ("1002", 2)))
    loose = _record(ledger, legs=(("1003", 1), ("1004", 1)))
    asyncio.run(_reconciler(ledger, FakeFeed()).reconcile(OWNER))

    feed = FakeFeed([
        _chain_bet("10", "10", [("1001", 1), ("1002", 2)]),
        _chain_bet("11", "10", [("1003", 1), ("1005", 1)]),
    ])
    report = asyncio.run(_reconciler(ledger, feed).recover_failed(OWNER))

    assert feed.calls[-1] is None
    assert [m["local_id"] for m in report.matched] == [exact.local_id]
    recovered = asyncio.run(ledger.get(exact.local_id))
    assert (recovered.status, recovered.result, recovered.bet_id) == (ACCEPTED, None, "10")
    still_ghost = asyncio.run(ledger.get(loose.local_id))
    assert (still_ghost.status, still_ghost.result) == (FAILED, GHOST_BET_CLEANUP)


def test_amount_matches_is_relative():
    assert amount_matches(Decimal("100"), Decimal("105"), Decimal("0.05"))
    assert not amount_matches(Decimal("100"), Decimal("105.01"), Decimal("0.05"))


def test_combo_relaxed_match_needs_first_leg_condition():
    selections = [
        Selection(condition_id="1001", outcome_id=1, odds=Decimal("2")),
        Selection(condition_id="1002", outcome_id=2, odds=Decimal("2")),
    ]
    bet = new_attempt(OWNER, selections, "10", Decimal("4"))
    assert legs_match(bet, _chain_bet("1", "10", [("1001", 2), ("1003", 1)]), strict=False)
    assert not legs_match(bet, _chain_bet("2", "10", [("1002", 2), ("1003", 1)]), strict=False)


def test_single_never_matches_combo_chain_bet():
    selections = [Selection(condition_id="1001", outcome_id=1, odds=Decimal("2"))]
    bet = new_attempt(OWNER, selections, "10", Decimal("2"))
    combo = _chain_bet("1", "10", [("1001", 1), ("1002", 1)])
    assert not legs_match(bet, combo, strict=False)
