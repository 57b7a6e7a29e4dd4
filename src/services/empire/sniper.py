from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Dict

from dotenv import load_dotenv

from .auctions import AuctionStateStore
from .bidding import BidController
from .client import EmpireClient
from .config_loader import (
    API_KEY_FILE_DEFAULT,
    CONFIG_FILE_DEFAULT,
    PRICES_DB_DEFAULT,
    load_app_config,
)
from .engine import EventDispatcher
from .logs import configure_log_file, log
from .models import AppConfig, UserContext
from .storage import BidJournal, PriceBook
from .stream import MarketStream, StreamEvent
from .strategy import format_coins
from .supervisor import ReconnectSupervisor
from .telegram_bot import TelegramSupervisor


class EmpireEngine:
    def __init__(self, app_config: AppConfig) -> None:
        self.app_config = app_config
        self.client = EmpireClient(
            api_base=app_config.api_base,
            api_key=app_config.api_key,
            routes=app_config.routes,
            timeout=app_config.runtime.request_timeout,
        )
        self.prices = PriceBook(app_config.prices_db_path)
        self.journal = BidJournal(app_config.journal_db_path)
        self.store = AuctionStateStore()
        self.telegram = TelegramSupervisor(
            settings=app_config.telegram,
            journal=self.journal,
            status_snapshot=self.status_snapshot,
            auctions_snapshot=self.store.snapshot,
            logger=lambda msg: log("telegram", msg),
        )
        self.supervisor = ReconnectSupervisor(
            client=self.client,
            store=self.store,
            settings=app_config.reconnect,
            stream_factory=self._make_stream,
            notifier=self.telegram,
        )
        self.dispatcher = EventDispatcher(
            client=self.client,
            controller=BidController(client=self.client, runtime=app_config.runtime),
            store=self.store,
            prices=self.prices,
            filter_settings=app_config.filters,
            reconnect=app_config.reconnect,
            request_reconnect=self.supervisor.request_reconnect,
            journal=self.journal,
            notifier=self.telegram,
        )
        self.supervisor.dispatcher = self.dispatcher

    def _make_stream(self, user: UserContext, queue: "asyncio.Queue[StreamEvent]") -> MarketStream:
        return MarketStream(
            url=self.app_config.websocket_url,
            socket_path=self.app_config.socket_path,
            user_id=user.user_id,
            queue=queue,
        )

    def status_snapshot(self) -> Dict[str, str]:
        user = self.dispatcher.user
        return {
            "mode": "DRY-RUN" if self.app_config.runtime.dry_run else "LIVE",
            "session": self.supervisor.status,
            "balance": format_coins(user.balance) if user else "?",
        }

    async def run(self) -> int:
        await self.telegram.start()
        try:
            completed = await self.supervisor.run()
            return 0 if completed else 1
        finally:
            await self.supervisor.stop()
            await self.telegram.stop()
            self.client.close()


def import_prices(path: str, prices_db: str) -> int:
    with Path(path).open("r", encoding="utf-8") as f:
        payload = json.load(f)
    if not isinstance(payload, dict):
        raise RuntimeError(f"Price file must map item names to prices: {path}")
    return PriceBook(prices_db).import_prices(payload)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="CSGOEmpire auction bidder")
    parser.add_argument("--config", default=os.getenv("EMPIRE_CONFIG", CONFIG_FILE_DEFAULT))
    parser.add_argument("--api-key-file", default=os.getenv("API_KEY_FILE", API_KEY_FILE_DEFAULT))
    parser.add_argument(
        "--prices-db",
        default=os.getenv("PRICES_DB", ""),
        help=f"SQLite file with reference prices (default {PRICES_DB_DEFAULT})",
    )
    parser.add_argument(
        "--log-file",
        default=os.getenv("LOG_FILE", "application.log"),
        help="Append log lines here as well (empty = stdout only)",
    )
    parser.add_argument(
        "--import-prices",
        metavar="FILE",
        default="",
        help="Load a JSON {market_name: price_in_cents} map into the price DB and exit",
    )
    parser.add_argument("--live", action="store_true", help="Send real bids")
    return parser.parse_args()


def main() -> int:
    load_dotenv()
    args = parse_args()
    configure_log_file(args.log_file or None)

    if args.import_prices:
        try:
            count = import_prices(args.import_prices, args.prices_db or PRICES_DB_DEFAULT)
        except (OSError, ValueError, RuntimeError) as e:
            log("prices", f"IMPORT ERROR: {e}")
            return 1
        log("prices", f"Imported {count} prices")
        return 0

    try:
        cfg = load_app_config(
            config_file=args.config,
            api_key_file=args.api_key_file,
            prices_db_path=args.prices_db,
            live_mode=args.live,
        )
    except (OSError, ValueError, RuntimeError) as e:
        log("config", f"CONFIG ERROR: {e}")
        return 1

    mode = "LIVE" if not cfg.runtime.dry_run else "DRY-RUN"
    log("main", f"Mode: {mode}")
    log("main", f"api={cfg.api_base} socket={cfg.websocket_url} path={cfg.socket_path}")
    log(
        "main",
        (
            f"filters: min_balance={cfg.filters.min_balance} per_page={cfg.filters.per_page} "
            f"reconnect={cfg.reconnect.reconnect_delay}s init_retry={cfg.reconnect.init_retry_delay}s"
        ),
    )

    try:
        return asyncio.run(EmpireEngine(cfg).run())
    except KeyboardInterrupt:
        log("main", "Stopped by user")
        return 0


if __name__ == "__main__":
    sys.exit(main())
