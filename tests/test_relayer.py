"""Tests for the relayer REST client."""

import asyncio
import json

import httpx
import pytest

from azurobet.azuro.relayer import RelayerClient, error_text
from azurobet.betting.config import RelayerSettings, RetrySettings
from azurobet.errors import ExhaustedRetries, MissingOrderId, RelayerRejected

from fakes import Recorder

BET_API = "https://relayer.test/bet"
CASHOUT_API = "https://relayer.test/cashout"


def _client(handler, max_retries=2):
    recorder = Recorder()
    relayer = RelayerClient(
        RelayerSettings(bet_api=BET_API, cashout_api=CASHOUT_API),
        RetrySettings(max_retries=max_retries, base_delay=0.1, max_delay=1.0, jitter=0.0),
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        sleep=recorder.sleep,
    )
    return relayer, recorder


def test_submit_single_posts_to_ordinar():
    seen = []

    def handler(request):
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"id": "order-1", "state": "Created"})

    relayer, _ = _client(handler)
    order_id = asyncio.run(relayer.submit({"environment": "PolygonUSDT"}))

    assert order_id == "order-1"
    assert seen == [("/bet/orders/ordinar", {"environment": "PolygonUSDT"})]


def test_submit_combo_posts_to_combo():
    def handler(request):
        assert request.url.path == "/bet/orders/combo"
        return httpx.Response(200, json={"id": 42})

    relayer, _ = _client(handler)
    assert asyncio.run(relayer.submit({}, combo=True)) == "42"


def test_client_error_is_a_rejection():
    def handler(request):
        return httpx.Response(400, json={"message": ["minOdds too high", "bet expired"]})

    relayer, recorder = _client(handler)
    with pytest.raises(RelayerRejected) as info:
        asyncio.run(relayer.submit({}))
    assert info.value.reason == "minOdds too high, bet expired"
    assert info.value.status_code == 400
    assert recorder.delays == []


def test_server_errors_are_retried_then_succeed():
    responses = [httpx.Response(502, text="Bad Gateway"), httpx.Response(200, json={"id": "order-2"})]

    def handler(request):
        return responses.pop(0)

    relayer, recorder = _client(handler)
    assert asyncio.run(relayer.submit({})) == "order-2"
    assert len(recorder.delays) == 1


def test_server_errors_exhaust_retries():
    calls = []

    def handler(request):
        calls.append(1)
        return httpx.Response(503, json={"error": "maintenance"})

    relayer, _ = _client(handler, max_retries=2)
    with pytest.raises(ExhaustedRetries) as info:
        asyncio.run(relayer.submit({}))
    assert len(calls) == 3
    assert "maintenance" in str(info.value)


def test_connect_error_on_first_attempt_propagates():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    relayer, recorder = _client(handler)
    with pytest.raises(httpx.ConnectError):
        asyncio.run(relayer.submit({}))
    assert recorder.delays == []


def test_connect_error_after_server_error_is_not_a_clean_failure():
    calls = []

    def handler(request):
        calls.append(1)
        if len(calls) == 1:
            return httpx.Response(502, text="Bad Gateway")
        raise httpx.ConnectError("refused", request=request)

    relayer, _ = _client(handler)
    with pytest.raises(ExhaustedRetries) as info:
        asyncio.run(relayer.submit({}))
    assert len(calls) == 2
    assert info.value.attempts == 2
    assert isinstance(info.value.last_error, httpx.ConnectError)


def test_missing_order_id():
    relayer, _ = _client(lambda request: httpx.Response(200, json={"state": "Created"}))
    with pytest.raises(MissingOrderId):
        asyncio.run(relayer.submit({}))


def test_get_order_parses_state():
    def handler(request):
        assert request.url.path == "/bet/orders/order-1"
        return httpx.Response(200, json={"id": "order-1", "state": "Accepted", "betId": 205291, "txHash": "0xabc"})

    relayer, _ = _client(handler)
    state = asyncio.run(relayer.get_order("order-1"))
    assert (state.state, state.bet_id, state.tx_hash) == ("Accepted", "205291", "0xabc")


def test_get_order_http_error_propagates():
    relayer, _ = _client(lambda request: httpx.Response(500))
    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(relayer.get_order("order-1"))


def test_cashout_calculation_requires_id():
    def handler(request):
        body = json.loads(request.content)
        assert body == {"environment": "PolygonUSDT", "owner": "0xabc", "betId": "7"}
        return httpx.Response(200, json=[])

    relayer, _ = _client(handler)
    with pytest.raises(RelayerRejected):
        asyncio.run(relayer.cashout_calculation("PolygonUSDT", "0xABC", "7"))


def test_cashout_available_reads_availables():
    def handler(request):
        return httpx.Response(200, json={"availables": [{"conditionId": "1001", "available": True}]})

    relayer, _ = _client(handler)
    assert asyncio.run(relayer.cashout_available(["1001"])) == [{"conditionId": "1001", "available": True}]


def test_error_text_falls_back_to_body():
    assert error_text(httpx.Response(422, json={"errorMessage": "Bad signature"})) == "Bad signature"
    assert error_text(httpx.Response(400, text="nope")) == "nope"
    assert error_text(httpx.Response(400)) == "HTTP 400"
