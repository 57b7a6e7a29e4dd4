from __future__ import annotations

import asyncio
import sqlite3
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set

import requests

from .auctions import AuctionStateStore
from .bidding import BidController
from .client import EmpireClient
from .filters import FilterManager
from .logs import log
from .models import (
    TRADE_STATUS_RESOLVED,
    TRADE_STATUS_SENT,
    BidOutcome,
    FilterSettings,
    ReconnectSettings,
    UserContext,
)
from .storage import BidJournal, PriceBook
from .stream import StreamEvent
from .strategy import (
    compute_outbid_bid,
    format_coins,
    parse_auction_update,
    parse_item,
    parse_trade_status,
    parse_user_context,
    worth_bidding,
)
from .telegram_bot import TelegramSupervisor


class EventDispatcher:
    """Consumes ``StreamEvent`` messages and runs the matching handler.

    Every message runs as its own task so a slow bid negotiation never stalls
    the stream. Inside a batch, items are handled concurrently and the batch
    is done once all of them finish; one failing item is logged and the rest
    carry on.
    """

    def __init__(
        self,
        *,
        client: EmpireClient,
        controller: BidController,
        store: AuctionStateStore,
        prices: PriceBook,
        filter_settings: FilterSettings,
        reconnect: ReconnectSettings,
        request_reconnect: Callable[[str], None],
        journal: Optional[BidJournal] = None,
        notifier: Optional[TelegramSupervisor] = None,
    ) -> None:
        self.client = client
        self.controller = controller
        self.store = store
        self.prices = prices
        self.filter_settings = filter_settings
        self.reconnect = reconnect
        self.request_reconnect = request_reconnect
        self.journal = journal
        self.notifier = notifier

        self.stream: Any = None
        self.filters: Optional[FilterManager] = None
        self.user: Optional[UserContext] = None
        self._tasks: Set[asyncio.Task[None]] = set()
        self._routes: Dict[str, Callable[[Any], Awaitable[None]]] = {
            "connect": self.on_connect,
            "init": self.on_init,
            "timesync": self.on_timesync,
            "new_item": self.on_new_item,
            "auction_update": self.on_auction_update,
            "trade_status": self.on_trade_status,
            "disconnect": self.on_disconnect,
        }

    async def _call(self, fn, *args, **kwargs):
        return await asyncio.to_thread(fn, *args, **kwargs)

    def attach(self, *, stream: Any, user: UserContext) -> None:
        self.stream = stream
        self.filters = FilterManager(stream=stream, settings=self.filter_settings)
        self.user = user

    async def _notify(self, text: str) -> None:
        if self.notifier is not None:
            await self.notifier.notify(text)

    async def _reference_price(self, market_name: str) -> Optional[int]:
        try:
            return await self._call(self.prices.get_price, market_name)
        except sqlite3.Error as exc:
            log("prices", f"PRICE LOOKUP FAIL {market_name}: {exc}")
            return None

    async def _journal_bid(
        self,
        *,
        item_id: int,
        market_name: str,
        bid_value: int,
        bid_max: int,
        outcome: BidOutcome,
        source: str,
    ) -> None:
        if self.journal is None:
            return
        try:
            await self._call(
                self.journal.record_bid,
                item_id=item_id,
                market_name=market_name,
                bid_value=bid_value,
                bid_max=bid_max,
                outcome=outcome.value,
                source=source,
            )
        except sqlite3.Error as exc:
            log("journal", f"JOURNAL FAIL {item_id}: {exc}")

    async def refresh_account(self) -> Optional[UserContext]:
        """Re-fetch the user context and push filters for the new balance."""
        try:
            payload = await self._call(self.client.fetch_socket_metadata)
        except (requests.RequestException, RuntimeError) as exc:
            log("account", f"USER DATA FAIL: {exc}")
            return None
        user = parse_user_context(payload)
        if user is None:
            log("account", "Received userData is empty")
            return None
        self.user = user
        if self.filters is not None:
            await self.filters.update_filters(user)
        return user

    # dispatch loop

    async def run(self, queue: "asyncio.Queue[StreamEvent]") -> None:
        while True:
            event = await queue.get()
            task = asyncio.create_task(self._process(event, queue), name=f"event:{event.name}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for in-flight event tasks. Running bids are not cancelled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _process(self, event: StreamEvent, queue: "asyncio.Queue[StreamEvent]") -> None:
        try:
            await self.handle(event)
        except Exception as exc:
            log("dispatch", f"HANDLER FAIL {event.name}: {exc}")
        finally:
            queue.task_done()

    async def handle(self, event: StreamEvent) -> None:
        handler = self._routes.get(event.name)
        if handler is None:
            log("dispatch", f"Ignoring event {event.name}")
            return
        await handler(event.payload)

    async def _for_each(
        self,
        scope: str,
        items: Any,
        handler: Callable[[Dict[str, Any]], Awaitable[None]],
    ) -> None:
        if isinstance(items, dict):
            items = [items]
        if not isinstance(items, list):
            return
        batch: Iterable[Dict[str, Any]] = [x for x in items if isinstance(x, dict)]
        results = await asyncio.gather(*(handler(x) for x in batch), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                log(scope, f"ITEM FAIL: {result}")

    # handlers

    async def on_connect(self, _payload: Any = None) -> None:
        log("stream", "Connected to websocket")

    async def on_init(self, payload: Any) -> None:
        if self.user is None or self.stream is None:
            return
        data = payload if isinstance(payload, dict) else {}
        if data.get("authenticated"):
            log("stream", f"Successfully authenticated as {data.get('name')}")
            if self.filters is not None:
                await self.filters.update_filters(self.user)
            return
        try:
            await self.stream.emit(
                "identify",
                {
                    "uid": self.user.user_id,
                    "model": self.user.model,
                    "authorizationToken": self.user.socket_token,
                    "signature": self.user.socket_signature,
                },
            )
        except Exception as exc:
            log("stream", f"IDENTIFY FAIL: {exc}")
            return
        log("stream", "Successfully identify")

    async def on_timesync(self, payload: Any) -> None:
        log("stream", f"Timesync: {payload}")

    async def on_new_item(self, items: Any) -> None:
        await self._for_each("new_item", items, self._handle_new_item)

    async def _handle_new_item(self, raw: Dict[str, Any]) -> None:
        item = parse_item(raw)
        if item is None:
            return
        reference = await self._reference_price(item.market_name)
        if reference is None or not worth_bidding(reference, item.market_value):
            return

        log(
            "new_item",
            (
                f"deposit_id={item.id} market_name={item.market_name} "
                f"market_value={format_coins(item.market_value)} reference={format_coins(reference)}"
            ),
        )
        outcome = await self.controller.submit_bid(item.id, item.market_value, reference)
        await self._journal_bid(
            item_id=item.id,
            market_name=item.market_name,
            bid_value=item.market_value,
            bid_max=reference,
            outcome=outcome,
            source="new_item",
        )
        if outcome is BidOutcome.ACCEPTED:
            await self._notify(f"BID {item.market_name} {format_coins(item.market_value)}")
            await self.store.reload(self.client)
        elif outcome is BidOutcome.INSUFFICIENT_BALANCE:
            await self.refresh_account()

    async def on_auction_update(self, items: Any) -> None:
        await self._for_each("auction_update", items, self._handle_auction_update)

    async def _handle_auction_update(self, raw: Dict[str, Any]) -> None:
        update = parse_auction_update(raw)
        if update is None:
            return
        auction = await self.store.find(update.id)
        if auction is None:
            return
        if self.user is not None and update.highest_bidder == self.user.user_id:
            return

        reference = await self._reference_price(auction.market_name)
        bid = compute_outbid_bid(update.highest_bid)
        if reference is None or not worth_bidding(reference, bid):
            return

        log(
            "auction_update",
            f"Auction update: {update.id}, bid: {update.highest_bid}, bidder: {update.highest_bidder}",
        )
        log("auction_update", f"Placing a bid for {update.id} at {format_coins(bid)}")
        # Outbids carry a zero ceiling, so a bid_already_placed answer is never escalated.
        outcome = await self.controller.submit_bid(update.id, bid, 0)
        await self._journal_bid(
            item_id=update.id,
            market_name=auction.market_name,
            bid_value=bid,
            bid_max=0,
            outcome=outcome,
            source="auction_update",
        )
        if outcome is BidOutcome.INSUFFICIENT_BALANCE:
            await self.refresh_account()

    async def on_trade_status(self, items: Any) -> None:
        await self._for_each("trade_status", items, self._handle_trade_status)

    async def _handle_trade_status(self, raw: Dict[str, Any]) -> None:
        trade = parse_trade_status(raw)
        if trade is None:
            return
        log("trade_status", f"Trade status: {trade.status} for: {trade.market_name}. ID: {trade.trade_id}")
        if trade.type != "withdrawal":
            return

        if self.journal is not None:
            try:
                await self._call(self.journal.record_trade_status, trade)
            except sqlite3.Error as exc:
                log("journal", f"JOURNAL FAIL trade={trade.trade_id}: {exc}")

        if trade.status == TRADE_STATUS_SENT:
            msg = (
                f"Check if you received the item: {trade.market_name}, "
                f"{format_coins(trade.total_value)}C from {trade.partner_name} "
                f"({trade.partner_level}). tradeId: {trade.trade_id}, steamId: {trade.partner_steam_id}"
            )
            log("trade_status", msg)
            await self._notify(msg)

        if trade.status in TRADE_STATUS_RESOLVED:
            await self.refresh_account()

    async def on_disconnect(self, reason: Any) -> None:
        text = str(reason or "")
        log("stream", f"Socket disconnected: {text}")
        if text not in self.reconnect.recoverable_reasons:
            return
        self.request_reconnect(text)
        if self.stream is not None:
            try:
                await self.stream.close()
            except Exception as exc:
                log("stream", f"CLOSE FAIL: {exc}")
