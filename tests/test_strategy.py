import pytest

from src.services.empire.models import Auction, AuctionUpdate, Item
from src.services.empire.strategy import (
    compute_outbid_bid,
    format_coins,
    parse_active_auctions,
    parse_auction_update,
    parse_item,
    parse_trade_status,
    parse_user_context,
    to_int,
    worth_bidding,
)


@pytest.mark.parametrize(
    "highest, expected",
    [
        (10000, 10100),
        (50, 51),
        (149, 150),
        (99, 100),
        (1, 2),
        (10, 11),
        (12345, 12468),
    ],
)
def test_outbid_adds_one_percent(highest, expected):
    assert compute_outbid_bid(highest) == expected


def test_outbid_always_increases():
    for highest in range(1, 500):
        assert compute_outbid_bid(highest) > highest


def test_worth_bidding():
    assert worth_bidding(10100, 10100)
    assert not worth_bidding(10099, 10100)
    assert not worth_bidding(None, 1)


def test_to_int():
    assert to_int("42") == 42
    assert to_int(7.9) == 7
    assert to_int(None) is None
    assert to_int(True) is None
    assert to_int("abc") is None


def test_parse_item():
    item = parse_item({"id": 9, "market_name": "AK-47 | Redline", "market_value": 1234})
    assert item == Item(9, "AK-47 | Redline", 1234)
    assert parse_item({"id": 9, "market_value": 1234}) is None
    assert parse_item({"market_name": "x", "market_value": 1}) is None


def test_parse_auction_update():
    update = parse_auction_update({"id": 3, "auction_highest_bid": 500, "auction_highest_bidder": 77})
    assert update == AuctionUpdate(3, 500, 77)
    assert parse_auction_update({"id": 3}) is None


def test_parse_trade_status_reads_partner():
    trade = parse_trade_status(
        {
            "type": "withdrawal",
            "data": {
                "status": 5,
                "id": 881,
                "item": {"market_name": "AWP | Asiimov"},
                "total_value": 4550,
                "metadata": {"partner": {"steam_name": "seller", "steam_level": 12, "steam_id": "765"}},
            },
        }
    )
    assert trade is not None
    assert trade.type == "withdrawal"
    assert trade.status == 5
    assert trade.trade_id == "881"
    assert trade.market_name == "AWP | Asiimov"
    assert trade.total_value == 4550
    assert trade.partner_name == "seller"
    assert trade.partner_level == "12"
    assert parse_trade_status({"type": "withdrawal", "data": {}}) is None


def test_parse_active_auctions_ignores_junk():
    assert parse_active_auctions(None) == []
    assert parse_active_auctions({"active_auctions": None}) == []
    assert parse_active_auctions({"active_auctions": [{"id": 1, "market_name": "x"}, "bad"]}) == [
        Auction(1, "x")
    ]


def test_parse_user_context():
    ctx = parse_user_context(
        {"user": {"id": 10094491, "balance": 3100}, "socket_token": "t", "socket_signature": "s"}
    )
    assert ctx is not None
    assert ctx.user_id == 10094491
    assert ctx.balance == 3100
    assert ctx.socket_token == "t"
    assert ctx.model == {"id": 10094491, "balance": 3100}
    assert parse_user_context({"user": {}}) is None
    assert parse_user_context([]) is None


def test_format_coins():
    assert format_coins(3100) == "31.00"
    assert format_coins(5) == "0.05"
