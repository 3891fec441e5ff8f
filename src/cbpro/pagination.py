from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from enum import Enum
from typing import Any

import httpx

from cbpro.errors import DecodeError, RemoteRejected, TransportError
from cbpro.params import RequestOptions
from cbpro.signing import Credentials, authenticate, strip_auth_headers

logger = logging.getLogger(__name__)

AFTER_HEADER = "cb-after"
BEFORE_HEADER = "cb-before"


def decode_response(resp: httpx.Response) -> Any:
    """Turn a completed response into JSON, or raise the matching typed error."""

    if not resp.is_success:
        raise RemoteRejected(resp.status_code, resp.text)
    # Some endpoints (e.g. DELETE) answer with an empty body.
    if not resp.content:
        return {}
    try:
        return resp.json()
    except ValueError as e:
        raise DecodeError(f"response body is not JSON: {resp.text[:200]!r}") from e


def _retrieve_exception(task: asyncio.Future[httpx.Response]) -> None:
    # A paginator dropped mid-iteration never awaits its last request; mark
    # the failure as seen so asyncio does not report it at garbage collection.
    if not task.cancelled():
        task.exception()


class _State(Enum):
    ACTIVE = "active"
    DONE = "done"


class Paginator:
    """Follow `cb-after` / `cb-before` cursors one request at a time.

    The first request is sent as soon as the paginator is built. Each
    `__anext__` waits for the in-flight response, starts the next page if the
    response carries a cursor in the followed direction, and returns the
    completed response. Without a cursor the paginator is done.

    A transport failure is raised once as `TransportError`; the paginator does
    not retry and is exhausted afterwards. Re-issue the call to start over.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        request: httpx.Request,
        query: RequestOptions,
        *,
        credentials: Credentials | None = None,
    ) -> None:
        self._client = client
        self._method = request.method
        self._url = request.url
        self._headers = httpx.Headers(request.headers)
        strip_auth_headers(self._headers)
        self._query = query.copy()
        self._credentials = credentials
        self._state = _State.ACTIVE
        self._in_flight: asyncio.Future[httpx.Response] | None = self._start(self._page_request())

    @property
    def query(self) -> RequestOptions:
        return self._query

    @property
    def done(self) -> bool:
        return self._state is _State.DONE

    def _page_request(self) -> httpx.Request:
        # copy_with(params=...) replaces the whole query string, so a stale
        # cursor from the previous page never survives.
        url = self._url.copy_with(params=self._query.to_params())
        request = self._client.build_request(self._method, url, headers=self._headers)
        return authenticate(request, self._credentials)

    def _start(self, request: httpx.Request) -> asyncio.Future[httpx.Response]:
        task = asyncio.ensure_future(self._client.send(request))
        task.add_done_callback(_retrieve_exception)
        return task

    def __aiter__(self) -> "Paginator":
        return self

    async def __anext__(self) -> httpx.Response:
        if self._state is _State.DONE or self._in_flight is None:
            raise StopAsyncIteration

        in_flight, self._in_flight = self._in_flight, None
        try:
            resp = await in_flight
        except httpx.HTTPError as e:
            self._state = _State.DONE
            raise TransportError(f"page request failed: {e}") from e

        after = resp.headers.get(AFTER_HEADER)
        before = resp.headers.get(BEFORE_HEADER)

        # Keep going in the direction the caller pinned: `after` only wins
        # when no `before` cursor is set.
        if after is not None and self._query.before is None:
            self._query.set_after(after)
            logger.debug("Next page after=%s", after)
            self._in_flight = self._start(self._page_request())
        elif before is not None:
            self._query.set_before(before)
            logger.debug("Next page before=%s", before)
            self._in_flight = self._start(self._page_request())
        else:
            self._state = _State.DONE

        return resp

    async def aclose(self) -> None:
        self._state = _State.DONE
        in_flight, self._in_flight = self._in_flight, None
        if in_flight is None:
            return
        if not in_flight.done():
            in_flight.cancel()
        try:
            await in_flight
        except (asyncio.CancelledError, httpx.HTTPError):
            pass

    async def __aenter__(self) -> "Paginator":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def pages(self) -> AsyncIterator[Any]:
        """Decoded JSON for each page; non-2xx pages raise `RemoteRejected`."""

        try:
            async for resp in self:
                yield decode_response(resp)
        finally:
            await self.aclose()
