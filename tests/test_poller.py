"""Tests for the relayer order poller."""

import asyncio

import httpx

from azurobet.azuro.models import OrderState
from azurobet.betting.poller import OrderPoller

from fakes import Recorder


def _state(state, **data):
    return OrderState.from_api("order-1", {"state": state, **data})


class Responses:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = 0

    async def __call__(self, order_id):
        self.calls += 1
        item = self.responses.pop(0) if self.responses else _state("Processing")
        if isinstance(item, Exception):
            raise item
        return item


def _poll(fetch, budget=30.0):
    recorder = Recorder()
    poller = OrderPoller(fetch, interval=2.0, budget=budget, sleep=recorder.sleep, clock=recorder.clock)
    return asyncio.run(poller.poll("order-1")), recorder


def test_accepted_on_third_attempt_stops_immediately():
    fetch = Responses(
        _state("Processing"),
        _state("Pending"),
        _state("Accepted", betId=205291, txHash="0xabc"),
    )
    result, recorder = _poll(fetch)

    assert result.status == "accepted"
    assert result.bet_id == "205291"
    assert result.tx_hash == "0xabc"
    assert result.attempts == 3
    assert result.elapsed == 6.0
    assert fetch.calls == 3
    assert recorder.now == 6.0


def test_no_terminal_state_times_out_within_budget():
    fetch = Responses()
    result, recorder = _poll(fetch)

    assert result.status == "timeout"
    assert result.bet_id is None
    assert recorder.now == 30.0
    assert fetch.calls == 14


def test_rejected_carries_reason():
    fetch = Responses(_state("Rejected", errorMessage="Odds changed"))
    result, _ = _poll(fetch)

    assert result.status == "rejected"
    assert result.error == "Odds changed"
    assert result.attempts == 1


def test_status_endpoint_errors_do_not_end_polling():
    request = httpx.Request("GET", "https://relayer.test/orders/order-1")
    fetch = Responses(
        httpx.ConnectError("refused", request=request),
        ValueError("bad json"),
        _state("Accepted", betId="7", txHash="0xdef"),
    )
    result, _ = _poll(fetch)

    assert result.status == "accepted"
    assert result.attempts == 3
    assert result.bet_id == "7"
