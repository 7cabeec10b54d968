"""JSON-over-websocket subscription with bounded handshake and auto-reconnect."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from relay_bench.streams.base import ConnectivityError

log = logging.getLogger("rb.streams.ws")

RECONNECT_DELAY_SEC = 3.0
REPLY_TIMEOUT_SEC = 10.0

# Raised by parsers on payloads with mis-typed fields
PAYLOAD_ERRORS = (AttributeError, TypeError, ValueError, KeyError)

# (websocket, decoded message, receipt timestamp in microseconds)
MessageHandler = Callable[[Any, dict, int], Awaitable[None]]


def now_micros() -> int:
    return time.time_ns() // 1000


def normalize_hash(value: Any) -> str | None:
    """Return a 0x-prefixed lowercase 32-byte hex hash, or None if malformed."""
    if not isinstance(value, str):
        return None
    h = value.lower()
    if not h.startswith("0x"):
        h = "0x" + h
    if len(h) != 66:
        return None
    try:
        int(h, 16)
    except ValueError:
        return None
    return h


class WebsocketSubscription:
    """
    One websocket connection carrying one subscription.

    ``open()`` performs the handshake and waits for the subscription reply so
    that a bad endpoint or key fails fast. ``run()`` then reads until
    cancelled, re-subscribing after any disconnect.
    """

    def __init__(
        self,
        name: str,
        endpoint: str,
        subscribe_request: dict,
        handler: MessageHandler,
        headers: dict[str, str] | None = None,
        reconnect_delay: float = RECONNECT_DELAY_SEC,
        reply_timeout: float = REPLY_TIMEOUT_SEC,
    ):
        self.name = name
        self.endpoint = endpoint
        self.subscribe_request = subscribe_request
        self.handler = handler
        self.headers = headers or {}
        self.reconnect_delay = reconnect_delay
        self.reply_timeout = reply_timeout

        self._ws = None
        self.reconnect_count = 0
        self.message_count = 0
        self.parse_errors = 0

    async def _handshake(self):
        try:
            ws = await websockets.connect(
                self.endpoint,
                additional_headers=self.headers,
                ping_interval=20,
                ping_timeout=10,
                max_size=None,
            )
        except (OSError, InvalidHandshake, InvalidURI) as e:
            raise ConnectivityError(f"{self.name}: cannot connect to {self.endpoint}: {e}") from e

        await ws.send(json.dumps(self.subscribe_request))
        try:
            reply = json.loads(await asyncio.wait_for(ws.recv(), self.reply_timeout))
        except asyncio.TimeoutError:
            await ws.close()
            raise ConnectivityError(
                f"{self.name}: no subscription reply within {self.reply_timeout}s"
            ) from None
        except (json.JSONDecodeError, ConnectionClosed) as e:
            await ws.close()
            raise ConnectivityError(f"{self.name}: bad subscription reply: {e}") from e
        if isinstance(reply, dict) and reply.get("error"):
            await ws.close()
            raise ConnectivityError(f"{self.name}: subscription rejected: {reply['error']}")
        log.info("SUBSCRIBED │ %s endpoint=%s", self.name, self.endpoint)
        return ws

    async def open(self) -> None:
        self._ws = await self._handshake()

    async def run(self) -> None:
        """Read loop. Runs until cancelled."""
        while True:
            try:
                if self._ws is None:
                    self._ws = await self._handshake()
                await self._read(self._ws)
            except asyncio.CancelledError:
                raise
            except (ConnectionClosed, ConnectivityError, OSError) as e:
                log.warning("WS_DISCONNECTED │ %s: %s, reconnecting in %.0fs", self.name, e, self.reconnect_delay)
            finally:
                if self._ws is not None:
                    await self._ws.close()
                    self._ws = None

            self.reconnect_count += 1
            await asyncio.sleep(self.reconnect_delay)

    async def _read(self, ws) -> None:
        async for raw in ws:
            ts = now_micros()
            self.message_count += 1
            try:
                msg = json.loads(raw)
            except (json.JSONDecodeError, TypeError) as e:
                self.parse_errors += 1
                log.debug("PARSE_ERROR │ %s: %s", self.name, e)
                continue
            if not isinstance(msg, dict):
                self.parse_errors += 1
                continue
            try:
                await self.handler(ws, msg, ts)
            except PAYLOAD_ERRORS as e:
                self.parse_errors += 1
                log.warning("PAYLOAD_ERROR │ %s: %s: %s", self.name, type(e).__name__, e)

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None


class WebsocketSource:
    """
    Base for feeds built from one or more websocket subscriptions.

    Subscriptions are registered by the ``subscribe_*`` methods of subclasses
    before ``connect()``, which opens them all and starts one reader task per
    subscription. ``close()`` cancels the readers and closes every channel.
    """

    name = "source"

    def __init__(self, api_key: str = "", buffer_size: int = 8192):
        self.api_key = api_key
        self.buffer_size = buffer_size
        self._subscriptions: list[WebsocketSubscription] = []
        self._channels: list = []
        self._tasks: list[asyncio.Task] = []
        self._connected = False

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": self.api_key} if self.api_key else {}

    def _register(self, sub: WebsocketSubscription, channel) -> None:
        if self._connected:
            raise RuntimeError(f"{self.name}: subscribe before connect()")
        self._subscriptions.append(sub)
        if channel not in self._channels:
            self._channels.append(channel)

    async def connect(self) -> None:
        if not self._subscriptions:
            raise ConnectivityError(f"{self.name}: no subscriptions registered")
        await asyncio.gather(*(sub.open() for sub in self._subscriptions))
        self._connected = True
        for sub in self._subscriptions:
            self._tasks.append(asyncio.create_task(sub.run(), name=sub.name))
        log.info("CONNECTED │ %s subscriptions=%d", self.name, len(self._subscriptions))

    async def close(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        for sub in self._subscriptions:
            await sub.close()
        for channel in self._channels:
            channel.close()
        log.info("CLOSED │ %s", self.name)

    @property
    def parse_errors(self) -> int:
        return sum(sub.parse_errors for sub in self._subscriptions)

    @property
    def stats(self) -> dict:
        return {
            "messages": sum(sub.message_count for sub in self._subscriptions),
            "reconnects": sum(sub.reconnect_count for sub in self._subscriptions),
            "parse_errors": self.parse_errors,
            "dropped": sum(ch.drop_count for ch in self._channels),
        }
