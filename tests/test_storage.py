from src.services.empire.models import TradeStatus
from src.services.empire.storage import BidJournal, PriceBook


def test_price_book_lookup_by_market_name(tmp_path):
    book = PriceBook(str(tmp_path / "nested" / "prices.db"))
    assert book.get_price("AK-47 | Redline") is None

    book.set_price("AK-47 | Redline", 12000)
    assert book.get_price("AK-47 | Redline") == 12000

    book.set_price("AK-47 | Redline", 11500)
    assert book.get_price("AK-47 | Redline") == 11500


def test_import_prices_skips_bad_rows(tmp_path):
    book = PriceBook(str(tmp_path / "prices.db"))
    count = book.import_prices(
        {
            "AWP | Asiimov": 45000,
            "Glock-18 | Fade": "99000",
            "": 10,
            "Broken": "n/a",
            "Negative": -5,
        }
    )
    assert count == 2
    assert book.get_price("Glock-18 | Fade") == 99000
    assert book.get_price("Broken") is None


def test_journal_stats_and_recent(tmp_path):
    journal = BidJournal(str(tmp_path / "journal.db"))
    journal.record_bid(item_id=1, market_name="A", bid_value=100, bid_max=200, outcome="accepted", source="new_item")
    journal.record_bid(item_id=2, market_name="B", bid_value=300, bid_max=0, outcome="abandoned", source="auction_update")
    journal.record_bid(item_id=3, market_name="C", bid_value=50, bid_max=60, outcome="accepted", source="new_item")

    stats = journal.get_bid_stats()
    assert stats.attempts == 3
    assert stats.accepted == 2
    assert stats.accepted_value == 150

    recent = journal.get_recent_bids(limit=2)
    assert [row["item_id"] for row in recent] == [3, 2]


def test_journal_trade_status_dedupes(tmp_path):
    journal = BidJournal(str(tmp_path / "journal.db"))
    trade = TradeStatus(type="withdrawal", status=8, trade_id="t1", market_name="Case", total_value=100)
    assert journal.record_trade_status(trade) is True
    assert journal.record_trade_status(trade) is False
    assert journal.get_bid_stats().resolved_trades == 1
