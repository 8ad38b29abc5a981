"""order_etl.transform

Maps one raw order-export row onto an OrderBundle: customer, order header,
line item(s) and billing/shipping addresses.

Column names are matched exactly as the export writes them.  Unknown
columns are ignored and missing columns read as absent, so transform_row
never raises for a dict input.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from order_etl.normalize import (
    parse_bool,
    parse_numeric,
    parse_quantity,
    parse_ts,
    split_name,
    strip_order_hash,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_CURRENCY = "USD"
DEFAULT_LINE_FULFILLMENT_STATUS = "unfulfilled"

ADDRESS_TYPES = ("billing", "shipping")

# Order header column → OrderFields attribute, grouped by coercion.
ORDER_NUMERIC_COLUMNS = {
    "Subtotal": "subtotal_price",
    "Shipping": "shipping_price",
    "Taxes": "total_tax",
    "Total": "total_price",
    "Discount Amount": "discount_amount",
    "Refunded Amount": "refunded_amount",
}
ORDER_TIMESTAMP_COLUMNS = {
    "Paid at": "paid_at",
    "Fulfilled at": "fulfilled_at",
    "Cancelled at": "cancelled_at",
    "Created at": "order_date",
}
ORDER_TEXT_COLUMNS = {
    "Financial Status": "financial_status",
    "Fulfillment Status": "fulfillment_status",
    "Payment Method": "payment_method",
    "Payment Reference": "payment_reference",
    "Shipping Method": "shipping_method",
    "Discount Code": "discount_code",
    "Tags": "tags",
    "Risk Level": "risk_level",
    "Source": "source",
    "Notes": "notes",
}


# ---------------------------------------------------------------------------
# Bundle types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CustomerFields:
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    accepts_marketing: bool = False


@dataclass(frozen=True)
class OrderFields:
    subtotal_price: Decimal | None = None
    shipping_price: Decimal | None = None
    total_tax: Decimal | None = None
    total_price: Decimal | None = None
    currency: str = DEFAULT_CURRENCY
    financial_status: str | None = None
    fulfillment_status: str | None = None
    payment_method: str | None = None
    payment_reference: str | None = None
    paid_at: datetime | None = None
    shipping_method: str | None = None
    fulfilled_at: datetime | None = None
    discount_code: str | None = None
    discount_amount: Decimal | None = None
    tags: str | None = None
    risk_level: str | None = None
    source: str | None = None
    notes: str | None = None
    cancelled_at: datetime | None = None
    refunded_amount: Decimal | None = None
    order_date: datetime | None = None


@dataclass(frozen=True)
class LineItemFields:
    title: str | None = None
    variant_title: str | None = None
    sku: str | None = None
    quantity: int = 1
    price: Decimal | None = None
    compare_at_price: Decimal | None = None
    total_discount: Decimal = Decimal("0")
    requires_shipping: bool = False
    taxable: bool = False
    fulfillment_status: str = DEFAULT_LINE_FULFILLMENT_STATUS


@dataclass(frozen=True)
class AddressFields:
    address1: str
    city: str | None
    country: str | None
    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    address2: str | None = None
    province: str | None = None
    province_name: str | None = None
    zip: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class OrderBundle:
    external_id: str
    order_number: str
    customer: CustomerFields
    order: OrderFields
    line_items: list[LineItemFields] = field(default_factory=list)
    billing_address: AddressFields | None = None
    shipping_address: AddressFields | None = None

    def addresses(self) -> list[tuple[str, AddressFields]]:
        """Present addresses as (address_type, fields), billing first."""
        out = []
        if self.billing_address is not None:
            out.append(("billing", self.billing_address))
        if self.shipping_address is not None:
            out.append(("shipping", self.shipping_address))
        return out


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------

def _text(row: dict[str, str], column: str) -> str | None:
    """Column value with empty string read as absent (no trimming)."""
    v = row.get(column)
    return v if v else None


def _build_address(row: dict[str, str], prefix: str) -> AddressFields | None:
    address1 = _text(row, f"{prefix} Address1")
    if address1 is None:
        return None
    first, last = split_name(row.get(f"{prefix} Name"))
    return AddressFields(
        address1=address1,
        city=_text(row, f"{prefix} City"),
        country=_text(row, f"{prefix} Country"),
        first_name=first,
        last_name=last,
        company=_text(row, f"{prefix} Company"),
        address2=_text(row, f"{prefix} Address2"),
        province=_text(row, f"{prefix} Province"),
        province_name=_text(row, f"{prefix} Province Name"),
        zip=_text(row, f"{prefix} Zip"),
        phone=_text(row, f"{prefix} Phone"),
    )


def _build_line_item(row: dict[str, str]) -> LineItemFields:
    discount = parse_numeric(row.get("Lineitem discount"))
    return LineItemFields(
        title=_text(row, "Lineitem name"),
        sku=_text(row, "Lineitem sku"),
        quantity=parse_quantity(row.get("Lineitem quantity")),
        price=parse_numeric(row.get("Lineitem price")),
        compare_at_price=parse_numeric(row.get("Lineitem compare at price")),
        total_discount=discount if discount is not None else Decimal("0"),
        requires_shipping=parse_bool(row.get("Lineitem requires shipping")),
        taxable=parse_bool(row.get("Lineitem taxable")),
        fulfillment_status=(
            _text(row, "Lineitem fulfillment status") or DEFAULT_LINE_FULFILLMENT_STATUS
        ),
    )


def _build_order(row: dict[str, str]) -> OrderFields:
    values: dict[str, object] = {}
    for column, attr in ORDER_NUMERIC_COLUMNS.items():
        values[attr] = parse_numeric(row.get(column))
    for column, attr in ORDER_TIMESTAMP_COLUMNS.items():
        values[attr] = parse_ts(row.get(column))
    for column, attr in ORDER_TEXT_COLUMNS.items():
        values[attr] = _text(row, column)
    values["currency"] = _text(row, "Currency") or DEFAULT_CURRENCY
    return OrderFields(**values)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def transform_row(row: dict[str, str]) -> OrderBundle:
    """Normalize one raw CSV row.  Pure; tolerates any missing column.

    The current export carries exactly one line item per row.
    """
    raw_id = row.get("Id") or ""
    first, last = split_name(row.get("Name"))
    return OrderBundle(
        external_id=strip_order_hash(raw_id),
        order_number=raw_id,
        customer=CustomerFields(
            email=_text(row, "Email"),
            first_name=first,
            last_name=last,
            phone=_text(row, "Phone"),
            accepts_marketing=parse_bool(row.get("Accepts Marketing")),
        ),
        order=_build_order(row),
        line_items=[_build_line_item(row)],
        billing_address=_build_address(row, "Billing"),
        shipping_address=_build_address(row, "Shipping"),
    )
