from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Tuple
from urllib.parse import urlsplit, urlunsplit

import socketio

from .logs import log


STREAM_EVENTS = ("init", "timesync", "new_item", "auction_update", "trade_status")


@dataclass(frozen=True)
class StreamEvent:
    name: str
    payload: Any = None


def split_socket_url(url: str) -> Tuple[str, str]:
    """``wss://host/trade`` -> (``wss://host``, ``/trade``)."""
    parts = urlsplit(url)
    namespace = parts.path.rstrip("/") or "/"
    base = urlunsplit((parts.scheme, parts.netloc, "", "", ""))
    return base, namespace


class MarketStream:
    """Socket.IO connection that turns every server event into a ``StreamEvent``.

    Reconnection is left to the supervisor, so the client's own retry logic is
    off. A disconnect we asked for ourselves is not forwarded.
    """

    def __init__(
        self,
        *,
        url: str,
        socket_path: str,
        user_id: int,
        queue: "asyncio.Queue[StreamEvent]",
    ) -> None:
        self.base_url, self.namespace = split_socket_url(url)
        self.socket_path = socket_path
        self.user_id = user_id
        self.queue = queue
        self._closing = False
        self.sio = socketio.AsyncClient(reconnection=False, ssl_verify=False)
        for name in STREAM_EVENTS:
            self.sio.on(name, self._forwarder(name), namespace=self.namespace)
        self.sio.on("connect", self._on_connect, namespace=self.namespace)
        self.sio.on("disconnect", self._on_disconnect, namespace=self.namespace)
        self.sio.on("connect_error", self._on_connect_error, namespace=self.namespace)

    @property
    def connected(self) -> bool:
        return bool(self.sio.connected)

    def _forwarder(self, name: str):
        async def forward(data: Any = None) -> None:
            self.queue.put_nowait(StreamEvent(name, data))

        return forward

    async def _on_connect(self) -> None:
        self.queue.put_nowait(StreamEvent("connect"))

    async def _on_disconnect(self, reason: Any = None) -> None:
        if self._closing:
            log("stream", f"Socket closed: {reason}")
            return
        self.queue.put_nowait(StreamEvent("disconnect", str(reason or "transport close")))

    async def _on_connect_error(self, data: Any = None) -> None:
        log("stream", f"Connect Error: {data}")

    async def connect(self) -> None:
        log("stream", "Connecting to websocket...")
        await self.sio.connect(
            self.base_url,
            headers={"User-agent": f"{self.user_id} API Bot"},
            transports=["websocket"],
            namespaces=[self.namespace],
            socketio_path=self.socket_path,
        )

    async def emit(self, event: str, data: Any) -> None:
        await self.sio.emit(event, data, namespace=self.namespace)

    async def close(self) -> None:
        self._closing = True
        if self.sio.connected:
            await self.sio.disconnect()
