from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


ONE_TRADE_AT_A_TIME = "You can only make one trade at a time. Please wait a moment and try again."
TEMPORARILY_RESTRICTED = "You are temporarily restricted from withdrawing or placing bids."
NOT_ENOUGH_BALANCE = "You don't have enough balance to do that!"

TRADE_STATUS_SENT = 5
TRADE_STATUS_RESOLVED = frozenset({4, 8, 9, 10, 11})


class BidOutcome(str, Enum):
    ACCEPTED = "accepted"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class Item:
    id: int
    market_name: str
    market_value: int
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class Auction:
    id: int
    market_name: str


@dataclass(frozen=True)
class AuctionUpdate:
    id: int
    highest_bid: int
    highest_bidder: Optional[int]


@dataclass(frozen=True)
class TradeStatus:
    type: str
    status: int
    trade_id: str
    market_name: str
    total_value: int
    partner_name: str = ""
    partner_level: str = ""
    partner_steam_id: str = ""


@dataclass(frozen=True)
class UserContext:
    user_id: int
    balance: int
    socket_token: str
    socket_signature: str
    model: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass
class ApiRoutes:
    place_bid: str = "/api/v2/trading/deposit/{item_id}/bid"
    active_auctions: str = "/api/v2/trading/user/auctions"
    socket_metadata: str = "/api/v2/metadata/socket"


@dataclass
class RuntimeSettings:
    dry_run: bool = True
    request_timeout: float = 10.0
    contention_cooldown: float = 1.0
    max_contention_retries: int = 30
    max_escalations: int = 20


@dataclass
class FilterSettings:
    min_balance: int = 3000
    per_page: int = 2500
    auction: str = "yes"
    price_max_above: int = 20


@dataclass
class ReconnectSettings:
    reconnect_delay: float = 5.0
    init_retry_delay: float = 180.0
    max_init_attempts: Optional[int] = None
    recoverable_reasons: Tuple[str, ...] = (
        "io client disconnect",
        "transport close",
        "ping timeout",
        "client disconnect",
        "transport error",
    )


@dataclass
class TelegramSettings:
    enabled: bool = False
    token: str = ""
    chat_ids: Tuple[int, ...] = ()


@dataclass
class AppConfig:
    api_base: str
    websocket_url: str
    socket_path: str
    api_key: str
    routes: ApiRoutes
    runtime: RuntimeSettings
    filters: FilterSettings
    reconnect: ReconnectSettings
    telegram: TelegramSettings
    prices_db_path: str
    journal_db_path: str
