"""Coinbase Pro WebSocket feed.

One `WebSocketFeed` owns one aiohttp session and one socket. It is an async
iterator of `FeedMessage`s; ping and pong frames are answered automatically
and still surfaced so callers can log keep-alive traffic. A close frame ends
the iteration with `RemoteClosed`. There is no reconnect: build a new feed.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Literal, Sequence

import aiohttp

from cbpro.config import MAIN_FEED_URL, SANDBOX_FEED_URL
from cbpro.errors import DecodeError, RemoteClosed, TransportError
from cbpro.signing import Credentials, canonical_message, sign

logger = logging.getLogger(__name__)

__all__ = [
    "Channels",
    "FeedHandshake",
    "FeedMessage",
    "MAIN_FEED_URL",
    "SANDBOX_FEED_URL",
    "WebSocketFeed",
]

VERIFY_PATH = "/users/self/verify"

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006


class Channels:
    TICKER = "ticker"
    HEARTBEAT = "heartbeat"
    STATUS = "status"
    LEVEL2 = "level2"
    USER = "user"
    MATCHES = "matches"
    FULL = "full"


@dataclass(frozen=True)
class FeedHandshake:
    url: str
    protocol: str | None


@dataclass(frozen=True)
class FeedMessage:
    kind: Literal["message", "binary", "ping", "pong"]
    data: Any

    @property
    def is_keepalive(self) -> bool:
        return self.kind in ("ping", "pong")


def subscription_message(
    type_: Literal["subscribe", "unsubscribe"],
    product_ids: Sequence[str],
    channels: Sequence[str],
    credentials: Credentials | None = None,
    *,
    timestamp: int | None = None,
) -> dict[str, Any]:
    """Build the wire message; auth fields are flattened into the top level."""

    message: dict[str, Any] = {
        "type": type_,
        "product_ids": list(product_ids),
        "channels": list(channels),
    }
    if credentials is not None:
        ts = str(int(time.time()) if timestamp is None else int(timestamp))
        message["key"] = credentials.key
        message["passphrase"] = credentials.passphrase
        message["timestamp"] = ts
        message["signature"] = sign(credentials.secret, canonical_message(ts, "GET", VERIFY_PATH))
    return message


class WebSocketFeed:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        ws: aiohttp.ClientWebSocketResponse,
        *,
        url: str,
        credentials: Credentials | None = None,
    ) -> None:
        self._session = session
        self._ws = ws
        self._credentials = credentials
        self._write_lock = asyncio.Lock()
        self._closed = False
        self._closed_locally = False
        self.handshake = FeedHandshake(url=url, protocol=ws.protocol)

    @classmethod
    async def connect(
        cls,
        url: str = MAIN_FEED_URL,
        *,
        credentials: Credentials | None = None,
    ) -> "WebSocketFeed":
        session = aiohttp.ClientSession()
        try:
            ws = await session.ws_connect(url, autoping=False)
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            await session.close()
            raise TransportError(f"websocket handshake with {url} failed: {e}") from e

        logger.info("Connected to %s (authenticated=%s)", url, credentials is not None)
        return cls(session, ws, url=url, credentials=credentials)

    @classmethod
    async def connect_authenticated(
        cls,
        credentials: Credentials,
        url: str = MAIN_FEED_URL,
    ) -> "WebSocketFeed":
        return await cls.connect(url, credentials=credentials)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def authenticated(self) -> bool:
        return self._credentials is not None

    def _ensure_open(self) -> None:
        if self._closed:
            raise TransportError("feed session is closed")

    async def _write(self, op: str, coro_fn: Any, *args: Any) -> None:
        # Every frame written to the socket goes through here, one at a time.
        async with self._write_lock:
            self._ensure_open()
            try:
                await coro_fn(*args)
            except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
                raise TransportError(f"websocket {op} failed: {e}") from e

    async def send_message(self, payload: dict[str, Any] | str) -> None:
        text = payload if isinstance(payload, str) else json.dumps(payload)
        await self._write("send", self._ws.send_str, text)

    async def subscribe(self, product_ids: Sequence[str], channels: Sequence[str]) -> None:
        """Send a subscribe frame. The confirmation arrives later as a regular message."""

        self._ensure_open()
        message = subscription_message("subscribe", product_ids, channels, self._credentials)
        logger.debug("Subscribing products=%s channels=%s", list(product_ids), list(channels))
        await self.send_message(message)

    async def unsubscribe(self, product_ids: Sequence[str], channels: Sequence[str]) -> None:
        message = subscription_message("unsubscribe", product_ids, channels)
        logger.debug("Unsubscribing products=%s channels=%s", list(product_ids), list(channels))
        await self.send_message(message)

    async def _release(self) -> None:
        self._closed = True
        if not self._ws.closed:
            await self._ws.close()
        if not self._session.closed:
            await self._session.close()

    async def close(self) -> None:
        """Send a normal-closure frame and release the socket. Idempotent."""

        if self._closed:
            return
        self._closed_locally = True
        async with self._write_lock:
            try:
                if not self._ws.closed:
                    await self._ws.close(code=NORMAL_CLOSURE, message=b"closed manually")
            finally:
                await self._release()
        logger.info("Feed %s closed", self.handshake.url)

    async def __aenter__(self) -> "WebSocketFeed":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def __aiter__(self) -> "WebSocketFeed":
        return self

    async def next(self) -> FeedMessage:
        return await self.__anext__()

    async def __anext__(self) -> FeedMessage:
        # A feed we closed ourselves is unusable; one the remote ended is just exhausted.
        if self._closed_locally:
            raise TransportError("feed session is closed")
        if self._closed:
            raise StopAsyncIteration

        try:
            msg = await self._ws.receive()
        except (aiohttp.ClientError, ConnectionError, asyncio.TimeoutError) as e:
            await self._release()
            raise TransportError(f"websocket read failed: {e}") from e

        if msg.type == aiohttp.WSMsgType.TEXT:
            try:
                return FeedMessage("message", json.loads(msg.data))
            except ValueError as e:
                raise DecodeError(f"feed frame is not JSON: {msg.data[:200]!r}") from e

        if msg.type == aiohttp.WSMsgType.BINARY:
            return FeedMessage("binary", bytes(msg.data).decode("utf-8", errors="replace"))

        if msg.type == aiohttp.WSMsgType.PING:
            logger.debug("ping received; answering with pong")
            await self._write("pong", self._ws.pong, msg.data)
            return FeedMessage("ping", msg.data)

        if msg.type == aiohttp.WSMsgType.PONG:
            logger.debug("pong received; answering with ping")
            await self._write("ping", self._ws.ping, msg.data)
            return FeedMessage("pong", msg.data)

        if msg.type == aiohttp.WSMsgType.CLOSE:
            await self._release()
            if not msg.data:
                raise RemoteClosed(ABNORMAL_CLOSURE, "no reason given")
            code = int(msg.data)
            reason = msg.extra or ""
            if code != NORMAL_CLOSURE:
                logger.warning("Feed closed by remote: code=%s reason=%s", code, reason)
            raise RemoteClosed(code, reason)

        if msg.type == aiohttp.WSMsgType.ERROR:
            await self._release()
            cause = self._ws.exception()
            raise TransportError(f"websocket protocol error: {cause}") from cause

        # CLOSING / CLOSED: the transport went away underneath us.
        await self._release()
        raise StopAsyncIteration
