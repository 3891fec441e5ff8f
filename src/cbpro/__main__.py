from __future__ import annotations

import argparse
import asyncio

from cbpro.app import run_app


def main() -> None:
    parser = argparse.ArgumentParser(description="cbpro (Coinbase Pro)")
    parser.add_argument(
        "--mode",
        choices=["products", "trades", "accounts", "feed"],
        default="products",
        help="products: list products; trades: follow trade pages; accounts: list accounts (auth required); feed: print WebSocket feed messages",
    )
    parser.add_argument(
        "--product",
        default="BTC-USD",
        help="Product id for trades/feed modes (default: BTC-USD)",
    )
    parser.add_argument(
        "--pages",
        type=int,
        default=2,
        help="For trades mode, stop after N pages (default: 2)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="For trades mode, page size (default: 100)",
    )
    parser.add_argument(
        "--channels",
        default="ticker,heartbeat",
        help="Comma-separated feed channels (default: ticker,heartbeat)",
    )
    parser.add_argument(
        "--messages",
        type=int,
        default=10,
        help="For feed mode, print N messages then close (default: 10)",
    )
    args = parser.parse_args()

    asyncio.run(
        run_app(
            mode=args.mode,
            product_id=args.product,
            pages=args.pages,
            limit=args.limit,
            channels=[c.strip() for c in args.channels.split(",") if c.strip()],
            messages=args.messages,
        )
    )


if __name__ == "__main__":
    main()
