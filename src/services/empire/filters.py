from __future__ import annotations

from typing import Any, Dict, Optional

from .logs import log
from .models import FilterSettings, UserContext
from .strategy import format_coins


class FilterManager:
    def __init__(self, *, stream: Any, settings: FilterSettings) -> None:
        self.stream = stream
        self.settings = settings

    def build_payload(self, user: UserContext) -> Optional[Dict[str, Any]]:
        if user.balance < self.settings.min_balance:
            return None
        return {
            "price_max": user.balance,
            "per_page": self.settings.per_page,
            "auction": self.settings.auction,
            "price_max_above": self.settings.price_max_above,
        }

    async def update_filters(self, user: UserContext) -> bool:
        payload = self.build_payload(user)
        if payload is None:
            log("filters", f"The balance is too small ({format_coins(user.balance)} coins)")
            return False
        try:
            await self.stream.emit("filters", payload)
        except Exception as exc:
            log("filters", f"FILTERS FAIL: {exc}")
            return False
        log("filters", f"The current balance is: {format_coins(user.balance)}")
        return True
