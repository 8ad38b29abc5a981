"""Normalization functions for order-export CSV ingestion.

All functions accept str | None and return the appropriate type or None.
None means "absent": callers must not substitute zero or an empty string.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

_NON_NUMERIC_RE = re.compile(r"[^\d.\-]")
_LEADING_INT_RE = re.compile(r"^\s*([-+]?\d+)")

_TRUE_VALUES = frozenset({"yes", "true"})

_TS_FORMATS = (
    "%Y-%m-%d %H:%M:%S %z",
    "%Y-%m-%d %H:%M %z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
)


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: parse_numeric
# ---------------------------------------------------------------------------

def parse_numeric(value: str | None) -> Decimal | None:
    """Parse a money/amount field.

    Every character other than a digit, '.' or '-' is dropped first, so
    '$1,234.50' → Decimal('1234.50').  Whatever is left must be a valid
    decimal; otherwise the field is absent ('N/A' → None, never zero).
    No prefix is salvaged: '1.2.3' and '10-20' are absent rather than
    read as 1.2 or 10.
    """
    if value is None:
        return None
    cleaned = _NON_NUMERIC_RE.sub("", value)
    if not cleaned:
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def parse_quantity(value: str | None, default: int = 1) -> int:
    """Leading integer of the field; missing, unparsable or zero → default."""
    if value is None:
        return default
    m = _LEADING_INT_RE.match(value)
    if not m:
        return default
    qty = int(m.group(1))
    return qty if qty else default


# ---------------------------------------------------------------------------
# Rule 3: parse_ts
# ---------------------------------------------------------------------------

def parse_ts(value: str | None) -> datetime | None:
    """Parse a calendar timestamp in any of the export's known layouts.

    Naive results are taken to be UTC.  Empty or unparsable → None.
    """
    v = trim(value)
    if v is None:
        return None
    parsed: datetime | None = None
    for fmt in _TS_FORMATS:
        try:
            parsed = datetime.strptime(v, fmt)
            break
        except ValueError:
            continue
    if parsed is None:
        try:
            parsed = datetime.fromisoformat(v.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Rule 4: parse_bool
# ---------------------------------------------------------------------------

def parse_bool(value: str | None) -> bool:
    """'yes' / 'true' in any case → True; everything else, including None → False."""
    if value is None:
        return False
    return value.strip().lower() in _TRUE_VALUES


# ---------------------------------------------------------------------------
# Helper: split_name
# ---------------------------------------------------------------------------

def split_name(full_name: str | None) -> tuple[str | None, str | None]:
    """Split a full name into (first_name, last_name).

    The first whitespace token is the first name; the remaining tokens,
    joined by single spaces, are the last name.
    - "Ada Lovelace King" → ("Ada", "Lovelace King")
    - "Cher"              → ("Cher", None)
    """
    if full_name is None:
        return (None, None)
    tokens = full_name.split()
    if not tokens:
        return (None, None)
    return (tokens[0], " ".join(tokens[1:]) or None)


# ---------------------------------------------------------------------------
# Helper: strip_order_hash
# ---------------------------------------------------------------------------

def strip_order_hash(order_id: str | None) -> str:
    """Return the external order id with one leading '#' removed ('' when absent)."""
    if not order_id:
        return ""
    return order_id[1:] if order_id.startswith("#") else order_id
