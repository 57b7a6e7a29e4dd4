from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_CEILING, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from .models import Auction, AuctionUpdate, Item, TradeStatus, UserContext


OUTBID_FACTOR = Decimal("1.01")


def to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError, OverflowError):
        return None


def now_ts() -> int:
    return int(datetime.now(tz=timezone.utc).timestamp())


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    sec = data.get(key)
    return sec if isinstance(sec, dict) else {}


def compute_outbid_bid(highest_bid: int) -> int:
    """Smallest bid that beats ``highest_bid`` by the 1% increment.

    The value is rounded half up; when that lands back on ``highest_bid``
    (small amounts) it is rounded up instead so the bid always increases.
    """
    exact = Decimal(highest_bid) * OUTBID_FACTOR
    bid = int(exact.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if bid == highest_bid:
        bid = int(exact.to_integral_value(rounding=ROUND_CEILING))
    return bid


def worth_bidding(reference_price: Optional[int], bid_value: int) -> bool:
    if reference_price is None:
        return False
    return reference_price >= bid_value


def parse_item(raw: Dict[str, Any]) -> Optional[Item]:
    item_id = to_int(raw.get("id"))
    value = to_int(raw.get("market_value"))
    name = _text(raw.get("market_name"))
    if item_id is None or value is None or not name:
        return None
    return Item(id=item_id, market_name=name, market_value=value, raw=raw)


def parse_auction_update(raw: Dict[str, Any]) -> Optional[AuctionUpdate]:
    item_id = to_int(raw.get("id"))
    highest = to_int(raw.get("auction_highest_bid"))
    if item_id is None or highest is None:
        return None
    return AuctionUpdate(
        id=item_id,
        highest_bid=highest,
        highest_bidder=to_int(raw.get("auction_highest_bidder")),
    )


def parse_trade_status(raw: Dict[str, Any]) -> Optional[TradeStatus]:
    data = _section(raw, "data")
    status = to_int(data.get("status"))
    if status is None:
        return None
    item = _section(data, "item")
    partner = _section(_section(data, "metadata"), "partner")
    return TradeStatus(
        type=_text(raw.get("type")).lower(),
        status=status,
        trade_id=_text(data.get("id")),
        market_name=_text(item.get("market_name")),
        total_value=to_int(data.get("total_value")) or 0,
        partner_name=_text(partner.get("steam_name")),
        partner_level=_text(partner.get("steam_level")),
        partner_steam_id=_text(partner.get("steam_id")),
    )


def parse_active_auctions(payload: Any) -> List[Auction]:
    if not isinstance(payload, dict):
        return []
    rows = payload.get("active_auctions")
    if not isinstance(rows, list):
        return []
    out: List[Auction] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        auction_id = to_int(row.get("id"))
        if auction_id is None:
            continue
        name = _text(row.get("market_name") or row.get("marketName"))
        out.append(Auction(id=auction_id, market_name=name))
    return out


def parse_user_context(payload: Any) -> Optional[UserContext]:
    if not isinstance(payload, dict):
        return None
    user = _section(payload, "user")
    user_id = to_int(user.get("id"))
    if user_id is None:
        return None
    return UserContext(
        user_id=user_id,
        balance=to_int(user.get("balance")) or 0,
        socket_token=_text(payload.get("socket_token")),
        socket_signature=_text(payload.get("socket_signature")),
        model=user,
    )


def format_coins(value: int) -> str:
    return f"{Decimal(value) / Decimal(100):.2f}"
