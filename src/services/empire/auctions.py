from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, Optional, Tuple

import requests

from .client import EmpireClient
from .logs import log
from .models import Auction
from .strategy import parse_active_auctions


class AuctionStateStore:
    """Auctions we currently hold the top bid in, as last reported by the market.

    The whole set is swapped on ``refresh``; ``find`` and ``refresh`` share one
    lock so a lookup never sees a half-replaced set. The lock is only held
    around the in-memory swap or read.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._auctions: Tuple[Auction, ...] = ()
        self._by_id: Dict[int, Auction] = {}

    async def refresh(self, auctions: Iterable[Auction]) -> int:
        ordered = []
        by_id: Dict[int, Auction] = {}
        for auction in auctions:
            if auction.id in by_id:
                continue
            by_id[auction.id] = auction
            ordered.append(auction)
        async with self._lock:
            self._auctions = tuple(ordered)
            self._by_id = by_id
        return len(ordered)

    async def find(self, auction_id: int) -> Optional[Auction]:
        async with self._lock:
            return self._by_id.get(auction_id)

    async def snapshot(self) -> Tuple[Auction, ...]:
        async with self._lock:
            return self._auctions

    async def reload(self, client: EmpireClient) -> bool:
        """Fetch the active auctions and refresh. On failure the old set stays."""
        try:
            payload: Any = await asyncio.to_thread(client.fetch_active_auctions)
        except (requests.RequestException, RuntimeError) as exc:
            log("auctions", f"ACTIVE AUCTIONS FAIL: {exc}")
            return False
        count = await self.refresh(parse_active_auctions(payload))
        if count == 0:
            log("auctions", "No active auctions found.")
        else:
            log("auctions", f"Tracking {count} active auctions")
        return True
