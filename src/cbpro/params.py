from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any

from cbpro.errors import InvalidParameter


class Capability(str, Enum):
    """Which optional parameters an endpoint accepts."""

    NONE = "none"
    BOOK = "book"
    CANDLES = "candles"
    PAGINATE = "paginate"
    LIMIT_ORDER = "limit_order"
    MARKET_ORDER = "market_order"
    CANCEL_ALL = "cancel_all"
    LIST_ORDERS = "list_orders"
    FILLS = "fills"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    CONVERT = "convert"
    REPORT = "report"
    TRANSFER = "transfer"


_PAGINATE = frozenset({"limit", "before", "after"})
_ORDER_COMMON = frozenset(
    {"client_oid", "order_type", "side", "product_id", "stp", "stop", "stop_price"}
)

ALLOWED_FIELDS: dict[Capability, frozenset[str]] = {
    Capability.NONE: frozenset(),
    Capability.BOOK: frozenset({"level"}),
    Capability.CANDLES: frozenset({"start", "end", "granularity"}),
    Capability.PAGINATE: _PAGINATE,
    Capability.LIMIT_ORDER: _ORDER_COMMON
    | frozenset({"price", "size", "time_in_force", "cancel_after", "post_only"}),
    Capability.MARKET_ORDER: _ORDER_COMMON | frozenset({"size", "funds"}),
    Capability.CANCEL_ALL: frozenset({"product_id"}),
    Capability.LIST_ORDERS: _PAGINATE | frozenset({"status", "product_id"}),
    Capability.FILLS: _PAGINATE | frozenset({"order_id", "product_id"}),
    Capability.DEPOSIT: frozenset(
        {"amount", "currency", "coinbase_account_id", "payment_method_id"}
    ),
    Capability.WITHDRAW: frozenset(
        {
            "amount",
            "currency",
            "coinbase_account_id",
            "payment_method_id",
            "crypto_address",
            "destination_tag",
            "no_destination_tag",
        }
    ),
    Capability.CONVERT: frozenset({"from_", "to", "amount"}),
    Capability.REPORT: frozenset(
        {"report_type", "start", "end", "product_id", "account_id", "format", "email"}
    ),
    Capability.TRANSFER: frozenset({"from_", "to", "currency", "amount"}),
}

# Python attribute -> wire name, where they differ.
_WIRE_NAMES = {"order_type": "type", "report_type": "type", "from_": "from"}


def _wire_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass
class RequestOptions:
    """Every optional request parameter the REST API understands.

    All fields default to None. An endpoint declares a `Capability` and
    `validate()` rejects anything outside that subset. The same object is the
    query state followed by the paginator: `set_after` / `set_before` keep the
    two cursors mutually exclusive.
    """

    # book
    level: int | None = None
    # candles / reports
    start: str | None = None
    end: str | None = None
    granularity: int | None = None
    # orders
    client_oid: str | None = None
    order_type: str | None = None
    side: str | None = None
    product_id: str | None = None
    stp: str | None = None
    stop: str | None = None
    stop_price: str | None = None
    price: str | None = None
    size: str | None = None
    time_in_force: str | None = None
    cancel_after: str | None = None
    post_only: bool | None = None
    funds: str | None = None
    # paginate
    limit: int | None = None
    before: str | None = None
    after: str | None = None
    # listing filters
    order_id: str | None = None
    status: list[str] = field(default_factory=list)
    # money movement
    amount: str | None = None
    currency: str | None = None
    coinbase_account_id: str | None = None
    payment_method_id: str | None = None
    crypto_address: str | None = None
    destination_tag: str | None = None
    no_destination_tag: bool | None = None
    from_: str | None = None
    to: str | None = None
    # reports
    report_type: str | None = None
    account_id: str | None = None
    format: str | None = None
    email: str | None = None

    def __post_init__(self) -> None:
        self._check_cursors()

    def _check_cursors(self) -> None:
        if self.after is not None and self.before is not None:
            raise InvalidParameter("`after` and `before` are mutually exclusive")

    def set_after(self, value: str) -> None:
        self.after = str(value)
        self.before = None

    def set_before(self, value: str) -> None:
        self.before = str(value)
        self.after = None

    def copy(self) -> "RequestOptions":
        return copy.deepcopy(self)

    def set_fields(self) -> set[str]:
        out: set[str] = set()
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None or value == []:
                continue
            out.add(f.name)
        return out

    def validate(self, capability: Capability) -> None:
        self._check_cursors()
        extra = self.set_fields() - ALLOWED_FIELDS[capability]
        if extra:
            raise InvalidParameter(
                f"parameters not accepted by a {capability.value} endpoint: {', '.join(sorted(extra))}"
            )

    def to_params(self) -> list[tuple[str, str]]:
        """Query pairs in field order; list values repeat their key."""

        pairs: list[tuple[str, str]] = []
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            name = _WIRE_NAMES.get(f.name, f.name)
            if isinstance(value, list):
                pairs.extend((name, _wire_value(v)) for v in value)
            else:
                pairs.append((name, _wire_value(value)))
        return pairs

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None or value == []:
                continue
            name = _WIRE_NAMES.get(f.name, f.name)
            if isinstance(value, (bool, list)):
                body[name] = value
            else:
                body[name] = str(value)
        return body
