"""Paginator tests against httpx.MockTransport.

Each fake exchange is a list of response header dicts, one per page.
"""

from __future__ import annotations

import sys
from pathlib import Path

_SRC = Path(__file__).resolve().parents[1] / "src"
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

import asyncio
import base64
import gc
import hashlib
import hmac

import httpx
import pytest

from cbpro.errors import DecodeError, RemoteRejected, TransportError
from cbpro.pagination import Paginator, decode_response
from cbpro.params import RequestOptions
from cbpro.signing import Credentials

URL = "https://api.example.test/products/BTC-USD/trades"


def _fake_exchange(pages: list[dict[str, str]], *, status: int = 200) -> tuple[httpx.AsyncClient, list[httpx.Request]]:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        i = len(calls) - 1
        return httpx.Response(status, headers=pages[i], json=[{"page": i}])

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), calls


def _base_request(client: httpx.AsyncClient, url: str = URL) -> httpx.Request:
    return client.build_request("GET", url)


async def _drain(paginator: Paginator) -> list[httpx.Response]:
    return [resp async for resp in paginator]


@pytest.mark.asyncio
async def test_follows_after_cursor_until_header_missing() -> None:
    client, calls = _fake_exchange([{"cb-after": "A1"}, {"cb-after": "A2"}, {}])
    paginator = Paginator(client, _base_request(client), RequestOptions(limit=2))

    responses = await _drain(paginator)

    assert len(responses) == 3
    assert [r.json() for r in responses] == [[{"page": 0}], [{"page": 1}], [{"page": 2}]]
    assert [dict(c.url.params) for c in calls] == [
        {"limit": "2"},
        {"limit": "2", "after": "A1"},
        {"limit": "2", "after": "A2"},
    ]
    assert paginator.done

    with pytest.raises(StopAsyncIteration):
        await paginator.__anext__()
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_pinned_before_direction_wins_over_after_header() -> None:
    client, calls = _fake_exchange(
        [
            {"cb-after": "X", "cb-before": "B1"},
            {"cb-after": "Y"},
        ]
    )
    paginator = Paginator(client, _base_request(client), RequestOptions(limit=2, before="B0"))

    responses = await _drain(paginator)

    assert len(responses) == 2
    assert [dict(c.url.params) for c in calls] == [
        {"limit": "2", "before": "B0"},
        {"limit": "2", "before": "B1"},
    ]
    assert paginator.query.before == "B1"
    assert paginator.query.after is None


@pytest.mark.asyncio
async def test_before_header_followed_when_nothing_pinned() -> None:
    client, calls = _fake_exchange([{"cb-before": "B1"}, {}])
    paginator = Paginator(client, _base_request(client), RequestOptions())

    assert len(await _drain(paginator)) == 2
    assert dict(calls[1].url.params) == {"before": "B1"}


@pytest.mark.asyncio
async def test_after_wins_when_both_headers_and_nothing_pinned() -> None:
    client, calls = _fake_exchange([{"cb-after": "A1", "cb-before": "B1"}, {}])
    paginator = Paginator(client, _base_request(client), RequestOptions())

    await _drain(paginator)
    assert dict(calls[1].url.params) == {"after": "A1"}


@pytest.mark.asyncio
async def test_first_request_starts_before_iteration() -> None:
    client, calls = _fake_exchange([{}])
    paginator = Paginator(client, _base_request(client), RequestOptions())

    await asyncio.sleep(0.05)
    assert len(calls) == 1

    await _drain(paginator)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_never_more_than_one_request_in_flight() -> None:
    active = 0
    max_active = 0
    calls = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal active, max_active, calls
        active += 1
        max_active = max(max_active, active)
        await asyncio.sleep(0.01)
        active -= 1
        calls += 1
        headers = {"cb-after": str(calls)} if calls < 4 else {}
        return httpx.Response(200, headers=headers, json=[])

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    paginator = Paginator(client, _base_request(client), RequestOptions())

    assert len(await _drain(paginator)) == 4
    assert max_active == 1


@pytest.mark.asyncio
async def test_stale_query_string_is_replaced() -> None:
    client, calls = _fake_exchange([{"cb-after": "A1"}, {}])
    request = _base_request(client, URL + "?after=OLD&limit=9")
    paginator = Paginator(client, request, RequestOptions(limit=2))

    await _drain(paginator)

    assert calls[0].url.query == b"limit=2"
    assert calls[1].url.query == b"limit=2&after=A1"


@pytest.mark.asyncio
async def test_transport_failure_surfaces_once_then_ends() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 2:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, headers={"cb-after": "A1"}, json=[])

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    paginator = Paginator(client, _base_request(client), RequestOptions())

    first = await paginator.__anext__()
    assert first.status_code == 200

    with pytest.raises(TransportError) as exc:
        await paginator.__anext__()
    assert isinstance(exc.value.__cause__, httpx.ConnectError)

    with pytest.raises(StopAsyncIteration):
        await paginator.__anext__()
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_any_httpx_error_surfaces_as_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.HTTPStatusError("proxy refused", request=request, response=httpx.Response(502, request=request))

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    paginator = Paginator(client, _base_request(client), RequestOptions())

    with pytest.raises(TransportError) as exc:
        await paginator.__anext__()
    assert isinstance(exc.value.__cause__, httpx.HTTPStatusError)
    assert paginator.done


@pytest.mark.asyncio
async def test_abandoned_paginator_failure_is_not_reported() -> None:
    loop = asyncio.get_running_loop()
    reported: list[dict] = []
    loop.set_exception_handler(lambda _loop, context: reported.append(context))

    def handler(request: httpx.Request) -> httpx.Response:
        if "after" in request.url.params:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, headers={"cb-after": "A1"}, json=[])

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    try:
        paginator = Paginator(client, _base_request(client), RequestOptions())
        async for _ in paginator:
            break
        await asyncio.sleep(0.05)
        del paginator
        gc.collect()
    finally:
        loop.set_exception_handler(None)

    assert reported == []


@pytest.mark.asyncio
async def test_caller_query_is_not_mutated() -> None:
    client, _ = _fake_exchange([{"cb-after": "A1"}, {}])
    query = RequestOptions(limit=2)
    paginator = Paginator(client, _base_request(client), query)

    await _drain(paginator)

    assert query.after is None
    assert paginator.query.after == "A1"


@pytest.mark.asyncio
async def test_each_page_is_signed_for_its_own_query() -> None:
    secret = base64.b64encode(b"secret-bytes").decode()
    creds = Credentials(key="k", passphrase="p", secret=secret)
    client, calls = _fake_exchange([{"cb-after": "A1"}, {}])

    paginator = Paginator(client, _base_request(client), RequestOptions(limit=2), credentials=creds)
    await _drain(paginator)

    for call in calls:
        ts = call.headers["CB-ACCESS-TIMESTAMP"]
        message = f"{ts}GET{call.url.raw_path.decode()}"
        digest = hmac.new(b"secret-bytes", message.encode(), hashlib.sha256).digest()
        assert call.headers["CB-ACCESS-SIGN"] == base64.b64encode(digest).decode()
        assert call.headers["CB-ACCESS-KEY"] == "k"
        assert call.headers["CB-ACCESS-PASSPHRASE"] == "p"


@pytest.mark.asyncio
async def test_aclose_stops_further_requests() -> None:
    client, calls = _fake_exchange([{"cb-after": "A1"}, {"cb-after": "A2"}, {}])
    paginator = Paginator(client, _base_request(client), RequestOptions())

    await paginator.__anext__()
    await paginator.aclose()

    with pytest.raises(StopAsyncIteration):
        await paginator.__anext__()
    await asyncio.sleep(0.05)
    assert len(calls) <= 2


@pytest.mark.asyncio
async def test_pages_decodes_json() -> None:
    client, _ = _fake_exchange([{"cb-after": "A1"}, {}])
    paginator = Paginator(client, _base_request(client), RequestOptions())

    pages = [page async for page in paginator.pages()]
    assert pages == [[{"page": 0}], [{"page": 1}]]


@pytest.mark.asyncio
async def test_pages_raises_remote_rejected_on_error_status() -> None:
    client, _ = _fake_exchange([{}], status=400)
    paginator = Paginator(client, _base_request(client), RequestOptions())

    with pytest.raises(RemoteRejected) as exc:
        async for _ in paginator.pages():
            pass
    assert exc.value.status_code == 400
    assert "page" in exc.value.body


def test_decode_response_rejects_non_json() -> None:
    resp = httpx.Response(200, content=b"<html>", request=httpx.Request("GET", URL))
    with pytest.raises(DecodeError):
        decode_response(resp)


def test_decode_response_empty_body_is_empty_dict() -> None:
    resp = httpx.Response(200, content=b"", request=httpx.Request("GET", URL))
    assert decode_response(resp) == {}
