from __future__ import annotations


class CoinbaseError(Exception):
    """Base class for every error raised by cbpro."""


class AuthenticationFailed(CoinbaseError):
    pass


class InvalidCredentials(AuthenticationFailed):
    """Secret is not valid base64, or decodes to an unusable HMAC key."""


class TransportError(CoinbaseError):
    """DNS/TCP/TLS/HTTP or WebSocket-level failure."""


class RemoteRejected(CoinbaseError):
    """The exchange answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"Status Code: {status_code}, Reason: {body}")
        self.status_code = status_code
        self.body = body

    @property
    def retryable(self) -> bool:
        return self.status_code == 429 or 500 <= self.status_code <= 599


class RemoteClosed(CoinbaseError):
    """The feed received a close frame."""

    def __init__(self, code: int, reason: str) -> None:
        super().__init__(f"connection closed by remote: code={code} reason={reason}")
        self.code = code
        self.reason = reason


class DecodeError(CoinbaseError):
    pass


class InvalidParameter(CoinbaseError, ValueError):
    pass
