from __future__ import annotations

import logging
from typing import Sequence

from cbpro.client import CoinbaseClient
from cbpro.config import Settings, env_defaults
from cbpro.errors import RemoteClosed
from cbpro.params import RequestOptions
from cbpro.websocket import WebSocketFeed

log = logging.getLogger("cbpro")


async def run_app(
    *,
    mode: str,
    product_id: str = "BTC-USD",
    pages: int = 2,
    limit: int = 100,
    channels: Sequence[str] = ("ticker", "heartbeat"),
    messages: int = 10,
) -> None:
    settings = Settings.load()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # httpx/aiohttp can be very chatty at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    if mode == "feed":
        await _run_feed(settings, product_id=product_id, channels=channels, messages=messages)
        return

    async with CoinbaseClient.from_settings(settings) as client:
        log.info("Coinbase env=%s base_url=%s", settings.cbpro_env, client.base_url)

        if mode == "products":
            products = await client.get_products()
            log.info("products=%d", len(products))
            for p in products:
                log.info("%s status=%s", p.get("id"), p.get("status"))
            return

        if mode == "trades":
            seen = 0
            async with client.get_trades(product_id, options=RequestOptions(limit=limit)) as paginator:
                async for page in paginator.pages():
                    seen += 1
                    log.info("page=%d trades=%d cursor_after=%s", seen, len(page), paginator.query.after)
                    if seen >= pages:
                        break
            return

        if mode == "accounts":
            accounts = await client.list_accounts()
            for a in accounts:
                log.info("%s balance=%s available=%s", a.get("currency"), a.get("balance"), a.get("available"))
            return

    raise ValueError(f"Unknown mode: {mode}")


async def _run_feed(
    settings: Settings,
    *,
    product_id: str,
    channels: Sequence[str],
    messages: int,
) -> None:
    url = settings.cbpro_feed_url or env_defaults(settings.cbpro_env).feed_url
    product_ids = list(settings.product_ids) or [product_id]

    async with await WebSocketFeed.connect(url, credentials=settings.credentials) as feed:
        await feed.subscribe(product_ids, list(channels))
        received = 0
        try:
            async for msg in feed:
                if msg.is_keepalive:
                    log.debug("keep-alive %s", msg.kind)
                    continue
                received += 1
                log.info("%s", msg.data)
                if received >= messages:
                    break
        except RemoteClosed as e:
            log.warning("feed closed: code=%s reason=%s", e.code, e.reason)
