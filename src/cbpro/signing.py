from __future__ import annotations

import base64
import binascii
import logging
import time
from dataclasses import dataclass
from typing import MutableMapping

import httpx
from cryptography.hazmat.primitives import hashes, hmac

from cbpro.errors import InvalidCredentials

logger = logging.getLogger(__name__)

KEY_HEADER = "CB-ACCESS-KEY"
PASSPHRASE_HEADER = "CB-ACCESS-PASSPHRASE"
TIMESTAMP_HEADER = "CB-ACCESS-TIMESTAMP"
SIGN_HEADER = "CB-ACCESS-SIGN"

AUTH_HEADERS = (KEY_HEADER, PASSPHRASE_HEADER, TIMESTAMP_HEADER, SIGN_HEADER)


@dataclass(frozen=True)
class Credentials:
    key: str
    passphrase: str
    # base64-encoded, exactly as issued by the exchange
    secret: str | bytes

    def __repr__(self) -> str:
        return f"Credentials(key={self.key!r}, passphrase='***', secret='***')"


def _decode_secret(secret: str | bytes) -> bytes:
    try:
        key = base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise InvalidCredentials("secret is not valid base64") from e
    if not key:
        raise InvalidCredentials("secret decodes to an empty HMAC key")
    return key


def sign(secret: str | bytes, message: str) -> str:
    """Return base64(HMAC-SHA256(base64decode(secret), message))."""

    mac = hmac.HMAC(_decode_secret(secret), hashes.SHA256())
    mac.update(message.encode("utf-8"))
    return base64.b64encode(mac.finalize()).decode("utf-8")


def canonical_message(timestamp: str | int, method: str, request_path: str, body: str = "") -> str:
    # request_path must carry the query string when there is one.
    return f"{timestamp}{method.upper()}{request_path}{body}"


def strip_auth_headers(headers: MutableMapping[str, str]) -> None:
    for name in AUTH_HEADERS:
        if name in headers:
            del headers[name]


def authenticate(
    request: httpx.Request,
    credentials: Credentials | None,
    *,
    timestamp: int | None = None,
) -> httpx.Request:
    """Attach the four CB-ACCESS-* headers to `request` and return it.

    The body must already be serialized: the signature covers `request.content`
    byte for byte. Public requests (no credentials) pass through untouched.
    """

    if credentials is None:
        return request

    ts = str(int(time.time()) if timestamp is None else int(timestamp))
    request_path = request.url.raw_path.decode("ascii")
    body = request.content.decode("utf-8") if request.content else ""

    signature = sign(credentials.secret, canonical_message(ts, request.method, request_path, body))

    request.headers[KEY_HEADER] = credentials.key
    request.headers[PASSPHRASE_HEADER] = credentials.passphrase
    request.headers[TIMESTAMP_HEADER] = ts
    request.headers[SIGN_HEADER] = signature

    logger.debug("Signed %s %s", request.method, request_path)
    return request
