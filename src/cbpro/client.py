from __future__ import annotations

import asyncio
import datetime
import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Literal

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from cbpro.config import Settings, env_defaults
from cbpro.errors import AuthenticationFailed, InvalidParameter, RemoteRejected, TransportError
from cbpro.pagination import Paginator, decode_response
from cbpro.params import Capability, RequestOptions
from cbpro.signing import Credentials, authenticate

logger = logging.getLogger(__name__)

Json = Any
Method = Literal["GET", "POST", "DELETE", "PUT"]


def _is_retryable_exception(exc: BaseException) -> bool:
    # Network / timeout errors are usually retryable.
    if isinstance(exc, TransportError):
        return True

    # Only retry statuses that are plausibly transient.
    if isinstance(exc, RemoteRejected):
        return exc.retryable

    return False


def _with(options: RequestOptions | None, **values: Any) -> RequestOptions:
    return replace(options or RequestOptions(), **values)


def _order_path(order_id: str | None, client_oid: str | None) -> str:
    if (order_id is None) == (client_oid is None):
        raise InvalidParameter("pass exactly one of order_id / client_oid")
    if order_id is not None:
        return f"/orders/{order_id}"
    return f"/orders/client:{client_oid}"


def _rfc3339(value: datetime.datetime | str) -> str:
    if isinstance(value, datetime.datetime):
        # Naive datetimes are taken as UTC; the API wants an explicit offset.
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return value.isoformat()
    return value


@dataclass
class CoinbaseClient:
    base_url: str
    credentials: Credentials | None = None
    timeout: float = 10.0

    _client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "CoinbaseClient":
        defaults = env_defaults(settings.cbpro_env)
        base_url = (settings.cbpro_base_url or defaults.base_url).rstrip("/")
        return cls(
            base_url=base_url,
            credentials=settings.credentials,
            timeout=settings.http_timeout_seconds,
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "CoinbaseClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    def _require_credentials(self) -> Credentials:
        if self.credentials is None:
            raise AuthenticationFailed("Authenticated endpoint called but no CBPRO credentials configured")
        return self.credentials

    def build_request(
        self,
        method: Method,
        path: str,
        *,
        options: RequestOptions | None = None,
        capability: Capability = Capability.NONE,
    ) -> httpx.Request:
        """Build an unsigned request. POST parameters travel as a JSON body.

        The body is serialized here, once; the signature later covers exactly
        these bytes.
        """

        options = options or RequestOptions()
        options.validate(capability)
        url = f"{self.base_url}{path}"

        if method == "POST":
            body = json.dumps(options.to_body(), separators=(",", ":"))
            return self._get_client().build_request(
                method,
                url,
                content=body.encode("utf-8"),
                headers={"Content-Type": "application/json"},
            )
        return self._get_client().build_request(method, url, params=options.to_params())

    async def _send(self, req: httpx.Request) -> httpx.Response:
        try:
            return await self._get_client().send(req)
        except httpx.HTTPError as e:
            raise TransportError(f"{req.method} {req.url.path} failed: {e}") from e

    @retry(
        wait=wait_exponential_jitter(initial=0.2, max=2.0),
        stop=stop_after_attempt(3),
        retry=retry_if_exception(_is_retryable_exception),
        reraise=True,
    )
    async def request(
        self,
        method: Method,
        path: str,
        *,
        options: RequestOptions | None = None,
        capability: Capability = Capability.NONE,
        auth_required: bool = False,
    ) -> Json:
        # Rebuilt and re-signed on every attempt so the timestamp stays fresh.
        req = self.build_request(method, path, options=options, capability=capability)
        if auth_required:
            authenticate(req, self._require_credentials())

        resp = await self._send(req)

        # Be polite with rate limits: if we get a 429, pause briefly and let tenacity retry.
        if resp.status_code == 429:
            retry_after = resp.headers.get("Retry-After")
            delay = 1.0
            if retry_after:
                try:
                    delay = float(retry_after)
                except ValueError:
                    delay = 1.0
            await asyncio.sleep(max(0.5, min(delay, 10.0)))

        return decode_response(resp)

    def paginate(
        self,
        path: str,
        *,
        options: RequestOptions | None = None,
        capability: Capability = Capability.PAGINATE,
        auth_required: bool = False,
    ) -> Paginator:
        """Start following pages of a GET list endpoint. Must be called inside a running loop."""

        options = options or RequestOptions()
        req = self.build_request("GET", path, options=options, capability=capability)
        credentials = self._require_credentials() if auth_required else None
        return Paginator(self._get_client(), req, options, credentials=credentials)

    # -------- Public endpoints --------

    async def get_products(self) -> Json:
        return await self.request("GET", "/products")

    async def get_product_order_book(self, product_id: str, *, level: int | None = None) -> Json:
        return await self.request(
            "GET",
            f"/products/{product_id}/book",
            options=RequestOptions(level=level),
            capability=Capability.BOOK,
        )

    async def get_product_ticker(self, product_id: str) -> Json:
        return await self.request("GET", f"/products/{product_id}/ticker")

    def get_trades(self, product_id: str, *, options: RequestOptions | None = None) -> Paginator:
        return self.paginate(f"/products/{product_id}/trades", options=options)

    async def get_historic_rates(
        self,
        product_id: str,
        granularity: int,
        *,
        start: datetime.datetime | str | None = None,
        end: datetime.datetime | str | None = None,
    ) -> Json:
        options = RequestOptions(
            granularity=granularity,
            start=_rfc3339(start) if start is not None else None,
            end=_rfc3339(end) if end is not None else None,
        )
        return await self.request(
            "GET",
            f"/products/{product_id}/candles",
            options=options,
            capability=Capability.CANDLES,
        )

    async def get_24hr_stats(self, product_id: str) -> Json:
        return await self.request("GET", f"/products/{product_id}/stats")

    async def get_currencies(self) -> Json:
        return await self.request("GET", "/currencies")

    async def get_time(self) -> Json:
        return await self.request("GET", "/time")

    # -------- Accounts --------

    async def list_accounts(self) -> Json:
        return await self.request("GET", "/accounts", auth_required=True)

    async def get_account(self, account_id: str) -> Json:
        return await self.request("GET", f"/accounts/{account_id}", auth_required=True)

    def get_account_history(self, account_id: str, *, options: RequestOptions | None = None) -> Paginator:
        return self.paginate(f"/accounts/{account_id}/ledger", options=options, auth_required=True)

    def get_holds(self, account_id: str, *, options: RequestOptions | None = None) -> Paginator:
        return self.paginate(f"/accounts/{account_id}/holds", options=options, auth_required=True)

    # -------- Orders --------

    async def place_limit_order(
        self,
        product_id: str,
        side: Literal["buy", "sell"],
        price: float | str,
        size: float | str,
        *,
        options: RequestOptions | None = None,
    ) -> Json:
        options = _with(
            options,
            order_type="limit",
            product_id=product_id,
            side=side,
            price=str(price),
            size=str(size),
        )
        return await self.request(
            "POST",
            "/orders",
            options=options,
            capability=Capability.LIMIT_ORDER,
            auth_required=True,
        )

    async def place_market_order(
        self,
        product_id: str,
        side: Literal["buy", "sell"],
        *,
        size: float | str | None = None,
        funds: float | str | None = None,
        options: RequestOptions | None = None,
    ) -> Json:
        if (size is None) == (funds is None):
            raise InvalidParameter("market orders take exactly one of size / funds")
        options = _with(
            options,
            order_type="market",
            product_id=product_id,
            side=side,
            size=str(size) if size is not None else None,
            funds=str(funds) if funds is not None else None,
        )
        return await self.request(
            "POST",
            "/orders",
            options=options,
            capability=Capability.MARKET_ORDER,
            auth_required=True,
        )

    async def cancel_order(self, order_id: str | None = None, *, client_oid: str | None = None) -> Json:
        return await self.request("DELETE", _order_path(order_id, client_oid), auth_required=True)

    async def cancel_all(self, *, product_id: str | None = None) -> Json:
        return await self.request(
            "DELETE",
            "/orders",
            options=RequestOptions(product_id=product_id),
            capability=Capability.CANCEL_ALL,
            auth_required=True,
        )

    def list_orders(self, status: list[str] | None = None, *, options: RequestOptions | None = None) -> Paginator:
        options = _with(options, status=list(status or []))
        return self.paginate(
            "/orders",
            options=options,
            capability=Capability.LIST_ORDERS,
            auth_required=True,
        )

    async def get_order(self, order_id: str | None = None, *, client_oid: str | None = None) -> Json:
        return await self.request("GET", _order_path(order_id, client_oid), auth_required=True)

    def get_fills(
        self,
        *,
        order_id: str | None = None,
        product_id: str | None = None,
        options: RequestOptions | None = None,
    ) -> Paginator:
        if (order_id is None) == (product_id is None):
            raise InvalidParameter("fills need exactly one of order_id / product_id")
        options = _with(options, order_id=order_id, product_id=product_id)
        return self.paginate("/fills", options=options, capability=Capability.FILLS, auth_required=True)

    # -------- Transfers --------

    async def deposit(
        self,
        amount: float | str,
        currency: str,
        *,
        coinbase_account_id: str | None = None,
        payment_method_id: str | None = None,
    ) -> Json:
        if coinbase_account_id is not None and payment_method_id is None:
            path = "/deposits/coinbase-account"
        elif payment_method_id is not None and coinbase_account_id is None:
            path = "/deposits/payment-method"
        else:
            raise InvalidParameter("deposit needs exactly one of coinbase_account_id / payment_method_id")

        options = RequestOptions(
            amount=str(amount),
            currency=currency,
            coinbase_account_id=coinbase_account_id,
            payment_method_id=payment_method_id,
        )
        return await self.request(
            "POST", path, options=options, capability=Capability.DEPOSIT, auth_required=True
        )

    async def withdraw(
        self,
        amount: float | str,
        currency: str,
        *,
        coinbase_account_id: str | None = None,
        payment_method_id: str | None = None,
        crypto_address: str | None = None,
        destination_tag: str | None = None,
    ) -> Json:
        targets = [t for t in (coinbase_account_id, payment_method_id, crypto_address) if t is not None]
        if len(targets) != 1:
            raise InvalidParameter(
                "withdraw needs exactly one of coinbase_account_id / payment_method_id / crypto_address"
            )

        options = RequestOptions(amount=str(amount), currency=currency)
        if coinbase_account_id is not None:
            path = "/withdrawals/coinbase-account"
            options.coinbase_account_id = coinbase_account_id
        elif payment_method_id is not None:
            path = "/withdrawals/payment-method"
            options.payment_method_id = payment_method_id
        else:
            path = "/withdrawals/crypto"
            options.crypto_address = crypto_address
            if destination_tag is not None:
                options.destination_tag = destination_tag
            else:
                options.no_destination_tag = True

        return await self.request(
            "POST", path, options=options, capability=Capability.WITHDRAW, auth_required=True
        )

    async def convert(self, from_: str, to: str, amount: float | str) -> Json:
        return await self.request(
            "POST",
            "/conversions",
            options=RequestOptions(from_=from_, to=to, amount=str(amount)),
            capability=Capability.CONVERT,
            auth_required=True,
        )

    async def list_payment_methods(self) -> Json:
        return await self.request("GET", "/payment-methods", auth_required=True)

    async def list_coinbase_accounts(self) -> Json:
        return await self.request("GET", "/coinbase-accounts", auth_required=True)

    async def get_current_fees(self) -> Json:
        return await self.request("GET", "/fees", auth_required=True)

    # -------- Reports / profiles --------

    async def create_report(
        self,
        start: datetime.datetime | str,
        end: datetime.datetime | str,
        *,
        product_id: str | None = None,
        account_id: str | None = None,
        format: Literal["pdf", "csv"] | None = None,
        email: str | None = None,
    ) -> Json:
        """Request a fills report (by product) or an account report (by account)."""

        if product_id is not None and account_id is None:
            report_type = "fills"
        elif account_id is not None and product_id is None:
            report_type = "account"
        else:
            raise InvalidParameter("report needs exactly one of product_id / account_id")

        options = RequestOptions(
            report_type=report_type,
            start=_rfc3339(start),
            end=_rfc3339(end),
            product_id=product_id,
            account_id=account_id,
            format=format,
            email=email,
        )
        return await self.request(
            "POST", "/reports", options=options, capability=Capability.REPORT, auth_required=True
        )

    async def get_report_status(self, report_id: str) -> Json:
        return await self.request("GET", f"/reports/{report_id}", auth_required=True)

    async def list_profiles(self) -> Json:
        return await self.request("GET", "/profiles", auth_required=True)

    async def get_profile(self, profile_id: str) -> Json:
        return await self.request("GET", f"/profiles/{profile_id}", auth_required=True)

    async def transfer_profile(self, from_: str, to: str, currency: str, amount: float | str) -> Json:
        return await self.request(
            "POST",
            "/profiles/transfer",
            options=RequestOptions(from_=from_, to=to, currency=currency, amount=str(amount)),
            capability=Capability.TRANSFER,
            auth_required=True,
        )

    async def get_trailing_volume(self) -> Json:
        return await self.request("GET", "/users/self/trailing-volume", auth_required=True)
