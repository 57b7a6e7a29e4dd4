from typing import Any, Dict, List, Optional

import pytest

from src.services.empire.auctions import AuctionStateStore
from src.services.empire.bidding import BidController
from src.services.empire.engine import EventDispatcher
from src.services.empire.models import FilterSettings, ReconnectSettings, RuntimeSettings


def user_payload(user_id: int = 1, balance: int = 50000) -> Dict[str, Any]:
    return {
        "user": {"id": user_id, "balance": balance, "steam_name": "bot"},
        "socket_token": "token",
        "socket_signature": "signature",
    }


class FakeClient:
    """Stands in for EmpireClient; every call is recorded."""

    def __init__(
        self,
        bid_responses: Optional[List[Any]] = None,
        metadata: Optional[List[Any]] = None,
        auctions: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.bid_responses = list(bid_responses or [])
        self.metadata = list(metadata or [user_payload()])
        self.auctions = auctions if auctions is not None else {"active_auctions": []}
        self.bids: List[tuple] = []
        self.metadata_calls = 0
        self.auction_calls = 0

    def place_bid(self, item_id: int, bid_value: int) -> Dict[str, Any]:
        self.bids.append((item_id, bid_value))
        response = self.bid_responses.pop(0) if self.bid_responses else {"success": True}
        if isinstance(response, Exception):
            raise response
        return response

    def fetch_socket_metadata(self) -> Dict[str, Any]:
        self.metadata_calls += 1
        if len(self.metadata) > 1:
            response = self.metadata.pop(0)
        else:
            response = self.metadata[0]
        if isinstance(response, Exception):
            raise response
        return response

    def fetch_active_auctions(self) -> Dict[str, Any]:
        self.auction_calls += 1
        if isinstance(self.auctions, Exception):
            raise self.auctions
        return self.auctions

    def close(self) -> None:
        pass


class FakeStream:
    def __init__(self) -> None:
        self.emitted: List[tuple] = []
        self.connected = False
        self.closed = 0

    async def connect(self) -> None:
        self.connected = True

    async def emit(self, event: str, data: Any) -> None:
        self.emitted.append((event, data))

    async def close(self) -> None:
        self.closed += 1
        self.connected = False

    def filters(self) -> List[Dict[str, Any]]:
        return [data for event, data in self.emitted if event == "filters"]


class FakePrices:
    def __init__(self, prices: Optional[Dict[str, Any]] = None) -> None:
        self.prices = dict(prices or {})

    def get_price(self, market_name: str) -> Optional[int]:
        value = self.prices.get(market_name)
        if isinstance(value, Exception):
            raise value
        return value


def bid_rejection(message: str = "", error_key: Optional[str] = None, next_bid: Any = None) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    if error_key is not None:
        data["error_key"] = error_key
    if next_bid is not None:
        data["next_bid"] = next_bid
    return {"success": False, "message": message, "data": data}


@pytest.fixture
def runtime() -> RuntimeSettings:
    return RuntimeSettings(dry_run=False, contention_cooldown=0.0, max_contention_retries=3)


@pytest.fixture
def reconnects() -> List[str]:
    return []


@pytest.fixture
def make_dispatcher(runtime, reconnects):
    def build(client: FakeClient, prices: FakePrices, controller: Any = None):
        dispatcher = EventDispatcher(
            client=client,
            controller=controller or BidController(client=client, runtime=runtime),
            store=AuctionStateStore(),
            prices=prices,
            filter_settings=FilterSettings(),
            reconnect=ReconnectSettings(),
            request_reconnect=reconnects.append,
        )
        return dispatcher

    return build
