"""order_etl.upsert

Idempotent persistence of one normalized OrderBundle.

Order of writes:
  1. Customer (only when the row carries an email), keyed by
     (shop_id, external_id) where external_id is the ORDER's external id.
     Repeat buyers therefore get one customer row per order; kept as-is
     until a real customer identifier is agreed on.
  2. Billing / shipping addresses under that customer, appended.
  3. Order, keyed by (shop_id, external_id), insert or update.
  4. Line items, appended.

Addresses and line items carry no natural key, so re-ingesting a changed
file that repeats an order appends them again.

The caller wraps each bundle in a savepoint; any exception raised here is a
row error for that one row.
"""

from __future__ import annotations

from order_etl.shared import RowConflictError
from order_etl.store import OrderStore, WriteResult
from order_etl.transform import OrderBundle


def _require_written(result: WriteResult, entity: str) -> str:
    if result.conflicted or result.row_id is None:
        raise RowConflictError(entity, result.conflict_on)
    return result.row_id


def upsert_order_bundle(store: OrderStore, shop_id: str, bundle: OrderBundle) -> bool:
    """Persist one bundle.  Returns True when the order was newly created."""
    customer_id: str | None = None
    if bundle.customer.email:
        customer_id = _require_written(
            store.upsert_customer(shop_id, bundle.external_id, bundle.customer),
            "customer",
        )
        for address_type, address in bundle.addresses():
            store.insert_address(customer_id, address_type, address)

    order_result = store.upsert_order(
        shop_id,
        bundle.external_id,
        bundle.order_number,
        customer_id,
        bundle.order,
    )
    order_id = _require_written(order_result, "order")

    for item in bundle.line_items:
        store.insert_line_item(order_id, item)

    return order_result.created
