from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional, Tuple

from .models import Auction, TelegramSettings
from .storage import BidJournal
from .strategy import format_coins


def _utc_day_start_ts() -> int:
    now = datetime.now(tz=timezone.utc)
    start = datetime(year=now.year, month=now.month, day=now.day, tzinfo=timezone.utc)
    return int(start.timestamp())


class TelegramSupervisor:
    def __init__(
        self,
        *,
        settings: TelegramSettings,
        journal: BidJournal,
        status_snapshot: Callable[[], Dict[str, str]],
        auctions_snapshot: Callable[[], Awaitable[Tuple[Auction, ...]]],
        logger: Callable[[str], None],
    ) -> None:
        self.settings = settings
        self.journal = journal
        self.status_snapshot = status_snapshot
        self.auctions_snapshot = auctions_snapshot
        self.log = logger

        self._enabled_runtime = False
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=2000)
        self._bot = None
        self._dp = None
        self._polling_task: Optional[asyncio.Task[None]] = None
        self._sender_task: Optional[asyncio.Task[None]] = None

    @property
    def enabled(self) -> bool:
        return bool(self.settings.enabled and self.settings.token)

    def _on_task_done(self, task: asyncio.Task[None], name: str) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        self._enabled_runtime = False
        self.log(f"[tg] {name} crashed: {exc}")

    async def start(self) -> None:
        if not self.enabled:
            return
        try:
            from aiogram import Bot, Dispatcher, Router
            from aiogram.filters import Command
            from aiogram.types import Message
        except ImportError as exc:
            self.log(f"[tg] aiogram unavailable: {exc}")
            return

        allowed = set(self.settings.chat_ids)
        self._bot = Bot(self.settings.token)
        self._dp = Dispatcher()
        router = Router()
        try:
            me = await self._bot.get_me()
        except Exception as exc:
            self.log(f"[tg] bot auth failed: {exc}")
            await self._bot.session.close()
            self._bot = None
            self._dp = None
            return

        username = getattr(me, "username", "")
        if username:
            self.log(f"[tg] connected as @{username}")
        else:
            self.log(f"[tg] connected as id={me.id}")

        def _allowed(chat_id: int) -> bool:
            if not allowed:
                return True
            return chat_id in allowed

        async def _reply(message: Message, text: str) -> None:
            if not _allowed(message.chat.id):
                return
            await message.answer(text)

        @router.message(Command("start"))
        async def handle_start(message: Message) -> None:
            await _reply(
                message,
                "Empire bidder online.\n"
                "Commands: /status /auctions /last /today",
            )

        @router.message(Command("status"))
        async def handle_status(message: Message) -> None:
            if not _allowed(message.chat.id):
                return
            lines = ["Status:"]
            for name, state in sorted(self.status_snapshot().items()):
                lines.append(f"{name}: {state}")
            await _reply(message, "\n".join(lines))

        @router.message(Command("auctions"))
        async def handle_auctions(message: Message) -> None:
            if not _allowed(message.chat.id):
                return
            auctions = await self.auctions_snapshot()
            if not auctions:
                await _reply(message, "Winning auctions: none")
                return
            lines = [f"Winning auctions ({len(auctions)}):"]
            for auction in auctions[:20]:
                lines.append(f"{auction.id} | {auction.market_name}")
            await _reply(message, "\n".join(lines))

        @router.message(Command("last"))
        async def handle_last(message: Message) -> None:
            if not _allowed(message.chat.id):
                return
            rows = await asyncio.to_thread(self.journal.get_recent_bids, 10)
            if not rows:
                await _reply(message, "No bids yet")
                return
            lines = ["Last bids (10):"]
            for row in rows:
                lines.append(
                    f"{row['source']} | {row['market_name']} | "
                    f"{format_coins(row['bid_value'])} | {row['outcome']}"
                )
            await _reply(message, "\n".join(lines))

        @router.message(Command("today"))
        async def handle_today(message: Message) -> None:
            if not _allowed(message.chat.id):
                return
            stats = await asyncio.to_thread(self.journal.get_bid_stats, _utc_day_start_ts())
            await _reply(
                message,
                "\n".join(
                    [
                        "Today UTC:",
                        f"Bids: {stats.attempts}",
                        f"Accepted: {stats.accepted} ({format_coins(stats.accepted_value)})",
                        f"Resolved trades: {stats.resolved_trades}",
                    ]
                ),
            )

        self._dp.include_router(router)
        self._sender_task = asyncio.create_task(self._sender_loop(), name="tg-sender")
        self._polling_task = asyncio.create_task(
            self._dp.start_polling(self._bot),
            name="tg-polling",
        )
        self._sender_task.add_done_callback(lambda task: self._on_task_done(task, "sender"))
        self._polling_task.add_done_callback(lambda task: self._on_task_done(task, "polling"))
        self._enabled_runtime = True
        self.log("[tg] bot started")

    async def _sender_loop(self) -> None:
        if self._bot is None:
            return
        while True:
            text = await self._queue.get()
            for chat_id in self.settings.chat_ids:
                try:
                    await self._bot.send_message(chat_id=chat_id, text=text)
                except Exception as exc:
                    self.log(f"[tg] send failed chat={chat_id}: {exc}")
            self._queue.task_done()

    async def notify(self, text: str) -> None:
        if not self._enabled_runtime:
            return
        try:
            self._queue.put_nowait(text)
        except asyncio.QueueFull:
            self.log("[tg] queue full, dropping notification")

    async def stop(self) -> None:
        was_running = (
            self._enabled_runtime
            or self._polling_task is not None
            or self._sender_task is not None
        )
        for name in ("_polling_task", "_sender_task"):
            task = getattr(self, name)
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                self.log(f"[tg] {name.strip('_')} stop error: {exc}")
            setattr(self, name, None)

        if self._bot is not None:
            await self._bot.session.close()
        self._bot = None
        self._dp = None
        self._enabled_runtime = False
        if was_running:
            self.log("[tg] bot stopped")
