from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from .auctions import AuctionStateStore
from .client import EmpireClient
from .engine import EventDispatcher
from .logs import log
from .models import ReconnectSettings, UserContext
from .stream import StreamEvent
from .strategy import parse_user_context
from .telegram_bot import TelegramSupervisor


StreamFactory = Callable[[UserContext, "asyncio.Queue[StreamEvent]"], Any]


class ReconnectSupervisor:
    """Owns the connection lifecycle.

    ``initialize`` fetches the user context, opens a fresh stream and reloads
    the auction store. A failed initialize is retried after
    ``init_retry_delay``; a recoverable disconnect waits ``reconnect_delay``
    and initializes again. With ``max_init_attempts`` unset it never gives up.
    """

    def __init__(
        self,
        *,
        client: EmpireClient,
        store: AuctionStateStore,
        settings: ReconnectSettings,
        stream_factory: StreamFactory,
        notifier: Optional[TelegramSupervisor] = None,
    ) -> None:
        self.client = client
        self.store = store
        self.settings = settings
        self.stream_factory = stream_factory
        self.notifier = notifier
        self.dispatcher: Optional[EventDispatcher] = None
        self.queue: "asyncio.Queue[StreamEvent]" = asyncio.Queue()
        self.stream: Any = None
        self.last_reason = ""
        self.sessions = 0
        self._status = "booting"
        self._reconnect = asyncio.Event()
        self._stopped = asyncio.Event()

    @property
    def status(self) -> str:
        return self._status

    def request_reconnect(self, reason: str) -> None:
        self.last_reason = reason
        self._reconnect.set()

    async def stop(self) -> None:
        self._stopped.set()
        self._reconnect.set()

    async def _sleep(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=max(0.0, delay))
        except asyncio.TimeoutError:
            pass

    async def _close_stream(self) -> None:
        stream, self.stream = self.stream, None
        if stream is None:
            return
        try:
            await stream.close()
        except Exception as exc:
            log("supervisor", f"CLOSE FAIL: {exc}")

    async def initialize(self) -> None:
        if self.dispatcher is None:
            raise RuntimeError("dispatcher is not attached")
        log("supervisor", "Connecting to websocket...")
        payload = await asyncio.to_thread(self.client.fetch_socket_metadata)
        user = parse_user_context(payload)
        if user is None:
            raise RuntimeError("Received userData is empty")

        stream = self.stream_factory(user, self.queue)
        self.stream = stream
        self.dispatcher.attach(stream=stream, user=user)
        await stream.connect()
        await self.store.reload(self.client)
        self.sessions += 1
        log("supervisor", f"Session {self.sessions} up for user {user.user_id}")

    async def run(self) -> bool:
        """Keep a session alive until ``stop``. Returns False if attempts ran out."""
        if self.dispatcher is None:
            raise RuntimeError("dispatcher is not attached")
        dispatcher_task = asyncio.create_task(self.dispatcher.run(self.queue), name="dispatcher")
        failures = 0
        try:
            while not self._stopped.is_set():
                self._reconnect.clear()
                self._status = "connecting"
                try:
                    await self.initialize()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    failures += 1
                    self._status = f"init_fail:{exc}"
                    log("supervisor", f"Error while initializing the Socket. Error: {exc}")
                    await self._close_stream()
                    limit = self.settings.max_init_attempts
                    if limit is not None and failures >= limit:
                        log("supervisor", f"Giving up after {failures} failed initializations")
                        return False
                    await self._sleep(self.settings.init_retry_delay)
                    continue

                failures = 0
                self._status = "running"
                await self._reconnect.wait()
                if self._stopped.is_set():
                    break

                self._status = f"reconnecting:{self.last_reason}"
                log("supervisor", f"Reconnecting to server... ({self.last_reason})")
                if self.notifier is not None:
                    await self.notifier.notify(f"Reconnecting: {self.last_reason}")
                await self._close_stream()
                await self._sleep(self.settings.reconnect_delay)
            return True
        finally:
            self._status = "stopped"
            dispatcher_task.cancel()
            await asyncio.gather(dispatcher_task, return_exceptions=True)
            await self.dispatcher.drain()
            await self._close_stream()
