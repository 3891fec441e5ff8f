# cbpro - async Coinbase Pro REST + WebSocket client

from cbpro.client import CoinbaseClient
from cbpro.config import MAIN_FEED_URL, MAIN_URL, SANDBOX_FEED_URL, SANDBOX_URL, Settings
from cbpro.errors import (
    AuthenticationFailed,
    CoinbaseError,
    DecodeError,
    InvalidCredentials,
    InvalidParameter,
    RemoteClosed,
    RemoteRejected,
    TransportError,
)
from cbpro.pagination import Paginator
from cbpro.params import Capability, RequestOptions
from cbpro.signing import Credentials, authenticate, sign
from cbpro.websocket import Channels, FeedMessage, WebSocketFeed

__all__ = [
    "CoinbaseClient",
    "Settings",
    "MAIN_URL",
    "SANDBOX_URL",
    "MAIN_FEED_URL",
    "SANDBOX_FEED_URL",
    # Errors
    "CoinbaseError",
    "AuthenticationFailed",
    "InvalidCredentials",
    "TransportError",
    "RemoteRejected",
    "RemoteClosed",
    "DecodeError",
    "InvalidParameter",
    # Core
    "Paginator",
    "Capability",
    "RequestOptions",
    "Credentials",
    "authenticate",
    "sign",
    "Channels",
    "FeedMessage",
    "WebSocketFeed",
]
