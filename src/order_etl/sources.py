"""order_etl.sources

Shop identity from export filenames.

Filename contract:
    [<YYYY-MM-DDTHH-MM-SS-mmmZ>_]<Shop Name>[ (<id fragment>)].csv

The optional timestamp prefix is added by the upload path; it is never part
of the shop's identity.
"""

from __future__ import annotations

import logging
import re

from order_etl.store import OrderStore, ShopRecord

log = logging.getLogger(__name__)

TIMESTAMP_PREFIX_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{3}Z_(.+)$")
_SHOP_NAME_RE = re.compile(r"^(.+?)\s*\(")


def strip_timestamp_prefix(name: str) -> str:
    """Remove a leading upload timestamp token, if any."""
    m = TIMESTAMP_PREFIX_RE.match(name)
    return m.group(1) if m else name


def has_timestamp_prefix(name: str) -> bool:
    return TIMESTAMP_PREFIX_RE.match(name) is not None


def extract_shop_name(filename: str) -> str:
    """Canonical shop name for an export filename.

    '2025-08-03T23-20-16-775Z_Acme Store (1234-5678).csv' → 'Acme Store'
    'Acme.csv'                                             → 'Acme'
    """
    clean = strip_timestamp_prefix(filename)
    m = _SHOP_NAME_RE.match(clean)
    if m:
        return m.group(1).strip()
    return clean.replace(".csv", "", 1)


def resolve_shop(store: OrderStore, filename: str) -> ShopRecord:
    """Find-or-create the shop a file belongs to."""
    shop_name = extract_shop_name(filename)
    shop, created = store.find_or_create_shop(shop_name)
    if created:
        log.info("Created shop %r for file %s", shop.name, filename)
    return shop
