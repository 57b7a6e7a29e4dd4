from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import requests

from .client import EmpireClient
from .logs import log
from .models import (
    NOT_ENOUGH_BALANCE,
    ONE_TRADE_AT_A_TIME,
    TEMPORARILY_RESTRICTED,
    BidOutcome,
    RuntimeSettings,
)
from .strategy import format_coins, to_int


class Rejection(str, Enum):
    OUTBID = "bid_already_placed"
    CONTENTION = "one_trade_at_a_time"
    FINISHED = "auction_already_finished"
    RESTRICTED = "restricted"
    NO_BALANCE = "insufficient_balance"
    UNKNOWN = "unknown"


def classify_rejection(payload: Dict[str, Any]) -> Tuple[Rejection, Optional[int]]:
    """Map a ``success: false`` bid body to a rejection kind.

    Returns the server-suggested ``next_bid`` alongside ``OUTBID``.
    """
    message = payload.get("message")
    data = payload.get("data")
    data = data if isinstance(data, dict) else {}
    error_key = data.get("error_key")

    if error_key == "bid_already_placed":
        return Rejection.OUTBID, to_int(data.get("next_bid"))
    if message == ONE_TRADE_AT_A_TIME:
        return Rejection.CONTENTION, None
    if error_key == "auction_already_finished":
        return Rejection.FINISHED, None
    if message == TEMPORARILY_RESTRICTED:
        return Rejection.RESTRICTED, None
    if message == NOT_ENOUGH_BALANCE:
        return Rejection.NO_BALANCE, None
    return Rejection.UNKNOWN, None


class BidController:
    def __init__(self, *, client: EmpireClient, runtime: RuntimeSettings) -> None:
        self.client = client
        self.runtime = runtime

    async def _call(self, fn, *args, **kwargs):
        return await asyncio.to_thread(fn, *args, **kwargs)

    async def submit_bid(self, item_id: int, bid_value: int, bid_max: int) -> BidOutcome:
        """Negotiate one bid on ``item_id``.

        ``bid_max`` caps escalation: a ``next_bid`` above it ends the attempt
        without another request, as does one that would not raise the bid or
        more than ``max_escalations`` raises. The opening ``bid_value`` is
        checked by the caller.
        """
        if self.runtime.dry_run:
            log("bid", f"DRY BID deposit_id={item_id} value={bid_value} max={bid_max}")
            return BidOutcome.ABANDONED

        value = bid_value
        contention_retries = 0
        escalations = 0
        while True:
            try:
                payload = await self._call(self.client.place_bid, item_id, value)
            except (requests.RequestException, RuntimeError) as exc:
                log("bid", f"BID FAIL deposit_id={item_id} value={value}: {exc}")
                return BidOutcome.ABANDONED

            success = bool(payload.get("success"))
            log("bid", f"Bid request sent: deposit_id={item_id} value={value} success={success}")
            if success:
                return BidOutcome.ACCEPTED

            log("bid", f"Error placing bid: {payload.get('message')}")
            kind, next_bid = classify_rejection(payload)

            if kind is Rejection.OUTBID:
                if next_bid is None or next_bid > bid_max:
                    log(
                        "bid",
                        f"Outbid on {item_id}: next_bid={next_bid} above max={bid_max}, giving up",
                    )
                    return BidOutcome.ABANDONED
                if next_bid <= value:
                    log("bid", f"Outbid on {item_id}: next_bid={next_bid} does not raise {value}, giving up")
                    return BidOutcome.ABANDONED
                escalations += 1
                if escalations > self.runtime.max_escalations:
                    log("bid", f"Still outbid on {item_id} after {escalations - 1} raises, giving up")
                    return BidOutcome.ABANDONED
                log("bid", f"Raising {item_id} to {format_coins(next_bid)}")
                value = next_bid
                continue

            if kind is Rejection.CONTENTION:
                contention_retries += 1
                if contention_retries > self.runtime.max_contention_retries:
                    log("bid", f"Trade slot still busy after {contention_retries - 1} retries: {item_id}")
                    return BidOutcome.ABANDONED
                await asyncio.sleep(self.runtime.contention_cooldown)
                continue

            if kind is Rejection.NO_BALANCE:
                return BidOutcome.INSUFFICIENT_BALANCE
            if kind is Rejection.UNKNOWN:
                log("bid", f"Unhandled error: {payload.get('message')}")
            return BidOutcome.ABANDONED
