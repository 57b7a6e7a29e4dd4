import pytest
import requests

from src.services.empire.bidding import BidController, Rejection, classify_rejection
from src.services.empire.models import (
    NOT_ENOUGH_BALANCE,
    ONE_TRADE_AT_A_TIME,
    TEMPORARILY_RESTRICTED,
    BidOutcome,
    RuntimeSettings,
)

from conftest import FakeClient, bid_rejection


def test_classify_rejection_reads_error_key_and_message():
    assert classify_rejection(bid_rejection(error_key="bid_already_placed", next_bid=10500)) == (
        Rejection.OUTBID,
        10500,
    )
    assert classify_rejection(bid_rejection(ONE_TRADE_AT_A_TIME))[0] is Rejection.CONTENTION
    assert classify_rejection(bid_rejection(error_key="auction_already_finished"))[0] is Rejection.FINISHED
    assert classify_rejection(bid_rejection(TEMPORARILY_RESTRICTED))[0] is Rejection.RESTRICTED
    assert classify_rejection(bid_rejection(NOT_ENOUGH_BALANCE))[0] is Rejection.NO_BALANCE
    assert classify_rejection(bid_rejection("Something odd"))[0] is Rejection.UNKNOWN
    assert classify_rejection({"success": False, "data": None})[0] is Rejection.UNKNOWN


@pytest.mark.asyncio
async def test_accepted_on_first_try(runtime):
    client = FakeClient([{"success": True}])
    outcome = await BidController(client=client, runtime=runtime).submit_bid(5, 1000, 1200)
    assert outcome is BidOutcome.ACCEPTED
    assert client.bids == [(5, 1000)]


@pytest.mark.asyncio
async def test_escalates_to_next_bid_within_max(runtime):
    client = FakeClient(
        [
            bid_rejection(error_key="bid_already_placed", next_bid=10500),
            {"success": True},
        ]
    )
    outcome = await BidController(client=client, runtime=runtime).submit_bid(7, 10000, 12000)
    assert outcome is BidOutcome.ACCEPTED
    assert client.bids == [(7, 10000), (7, 10500)]


@pytest.mark.asyncio
async def test_next_bid_above_max_stops_without_another_request(runtime):
    client = FakeClient([bid_rejection(error_key="bid_already_placed", next_bid=12001)])
    outcome = await BidController(client=client, runtime=runtime).submit_bid(7, 10000, 12000)
    assert outcome is BidOutcome.ABANDONED
    assert client.bids == [(7, 10000)]


@pytest.mark.asyncio
async def test_next_bid_missing_is_abandoned(runtime):
    client = FakeClient([bid_rejection(error_key="bid_already_placed")])
    outcome = await BidController(client=client, runtime=runtime).submit_bid(7, 10000, 12000)
    assert outcome is BidOutcome.ABANDONED
    assert len(client.bids) == 1


@pytest.mark.asyncio
async def test_escalation_chain_never_exceeds_max(runtime):
    client = FakeClient(
        [
            bid_rejection(error_key="bid_already_placed", next_bid=10100),
            bid_rejection(error_key="bid_already_placed", next_bid=11000),
            bid_rejection(error_key="bid_already_placed", next_bid=12000),
            bid_rejection(error_key="bid_already_placed", next_bid=12100),
        ]
    )
    outcome = await BidController(client=client, runtime=runtime).submit_bid(3, 10000, 12000)
    assert outcome is BidOutcome.ABANDONED
    assert [value for _, value in client.bids] == [10000, 10100, 11000, 12000]
    assert all(value <= 12000 for _, value in client.bids)


@pytest.mark.asyncio
async def test_zero_ceiling_never_escalates(runtime):
    client = FakeClient([bid_rejection(error_key="bid_already_placed", next_bid=10200)])
    outcome = await BidController(client=client, runtime=runtime).submit_bid(3, 10100, 0)
    assert outcome is BidOutcome.ABANDONED
    assert client.bids == [(3, 10100)]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        bid_rejection(error_key="auction_already_finished"),
        bid_rejection(TEMPORARILY_RESTRICTED),
        bid_rejection("Totally new failure"),
    ],
)
async def test_terminal_rejections_do_not_retry(runtime, response):
    client = FakeClient([response, {"success": True}])
    outcome = await BidController(client=client, runtime=runtime).submit_bid(1, 500, 900)
    assert outcome is BidOutcome.ABANDONED
    assert len(client.bids) == 1


@pytest.mark.asyncio
async def test_not_enough_balance_is_reported(runtime):
    client = FakeClient([bid_rejection(NOT_ENOUGH_BALANCE), {"success": True}])
    outcome = await BidController(client=client, runtime=runtime).submit_bid(1, 500, 900)
    assert outcome is BidOutcome.INSUFFICIENT_BALANCE
    assert len(client.bids) == 1


@pytest.mark.asyncio
async def test_contention_retries_same_value_after_cooldown(runtime, monkeypatch):
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    monkeypatch.setattr("src.services.empire.bidding.asyncio.sleep", fake_sleep)
    runtime.contention_cooldown = 1.0
    client = FakeClient([bid_rejection(ONE_TRADE_AT_A_TIME), {"success": True}])
    outcome = await BidController(client=client, runtime=runtime).submit_bid(9, 700, 900)
    assert outcome is BidOutcome.ACCEPTED
    assert client.bids == [(9, 700), (9, 700)]
    assert sleeps == [1.0]


@pytest.mark.asyncio
async def test_contention_retries_are_capped(runtime):
    client = FakeClient([bid_rejection(ONE_TRADE_AT_A_TIME)] * 10)
    outcome = await BidController(client=client, runtime=runtime).submit_bid(9, 700, 900)
    assert outcome is BidOutcome.ABANDONED
    assert len(client.bids) == runtime.max_contention_retries + 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [requests.ConnectionError("boom"), requests.Timeout("slow"), RuntimeError("HTTP 502: bad gateway")],
)
async def test_transport_failure_is_abandoned(runtime, error):
    client = FakeClient([error])
    outcome = await BidController(client=client, runtime=runtime).submit_bid(2, 100, 100)
    assert outcome is BidOutcome.ABANDONED
    assert len(client.bids) == 1


@pytest.mark.asyncio
async def test_dry_run_sends_nothing():
    client = FakeClient()
    controller = BidController(client=client, runtime=RuntimeSettings(dry_run=True))
    assert await controller.submit_bid(2, 100, 100) is BidOutcome.ABANDONED
    assert client.bids == []


@pytest.mark.asyncio
async def test_next_bid_that_does_not_raise_is_abandoned(runtime):
    client = FakeClient([bid_rejection(error_key="bid_already_placed", next_bid=10000) for _ in range(50)])
    outcome = await BidController(client=client, runtime=runtime).submit_bid(1, 10000, 12000)
    assert outcome is BidOutcome.ABANDONED
    assert client.bids == [(1, 10000)]


@pytest.mark.asyncio
async def test_escalations_are_capped():
    runtime = RuntimeSettings(dry_run=False, contention_cooldown=0.0, max_escalations=2)
    client = FakeClient(
        [bid_rejection(error_key="bid_already_placed", next_bid=10000 + step * 100) for step in range(1, 50)]
    )
    outcome = await BidController(client=client, runtime=runtime).submit_bid(1, 10000, 20000)
    assert outcome is BidOutcome.ABANDONED
    assert client.bids == [(1, 10000), (1, 10100), (1, 10200)]
