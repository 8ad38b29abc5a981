"""order_etl.merge

Consolidation of accidentally duplicated shops (--mode merge_shops).

Shops are grouped by canonical name (upload timestamp prefix stripped).  For
each group with more than one member:

  1. keeper = first member whose stored name has no timestamp prefix,
     else the earliest-created member
  2. for every other member, in this order:
       orders → customers → csv files
     move each child to the keeper; a move that hits the keeper's unique key
     (external_id / file_hash) deletes the moved child instead; the
     keeper's row wins.  Orders of a deleted customer are relinked to the
     keeper's customer with the same external_id.  processing_log rows are
     re-pointed afterwards.
  3. delete the emptied duplicate shop
  4. rename the keeper to the canonical name when it differs

A conflict is the designed resolution and only counted.  Any other database
error propagates; the caller owns the transaction (commit, or roll back for
a dry run).  Running the merge again with no new duplicates changes nothing.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from order_etl.sources import has_timestamp_prefix, strip_timestamp_prefix
from order_etl.store import OrderStore, ShopRecord

log = logging.getLogger(__name__)

MERGE_CHILD_ORDER = ("order", "customer", "csv_file")


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------

@dataclass
class MergeCounters:
    shops_scanned: int = 0
    groups_found: int = 0
    shops_removed: int = 0
    shops_renamed: int = 0
    moved: dict[str, int] = field(default_factory=lambda: dict.fromkeys(MERGE_CHILD_ORDER, 0))
    deleted: dict[str, int] = field(default_factory=lambda: dict.fromkeys(MERGE_CHILD_ORDER, 0))
    orders_relinked: int = 0
    logs_moved: int = 0
    actions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "shops_scanned": self.shops_scanned,
            "groups_found": self.groups_found,
            "shops_removed": self.shops_removed,
            "shops_renamed": self.shops_renamed,
            "moved": dict(self.moved),
            "deleted": dict(self.deleted),
            "orders_relinked": self.orders_relinked,
            "logs_moved": self.logs_moved,
            "actions": self.actions[:50],
        }


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------

def group_by_canonical_name(shops: list[ShopRecord]) -> dict[str, list[ShopRecord]]:
    """Group shops by canonical name, keeping the input (creation) order."""
    groups: dict[str, list[ShopRecord]] = defaultdict(list)
    for shop in shops:
        groups[strip_timestamp_prefix(shop.name)].append(shop)
    return dict(groups)


def choose_keeper(members: list[ShopRecord]) -> ShopRecord:
    """Prefer an unprefixed name; otherwise the earliest-created member.

    `members` must already be ordered by creation time.
    """
    for shop in members:
        if not has_timestamp_prefix(shop.name):
            return shop
    return members[0]


# ---------------------------------------------------------------------------
# Moving children
# ---------------------------------------------------------------------------

def _move_children(
    store: OrderStore,
    kind: str,
    dup: ShopRecord,
    keeper: ShopRecord,
    ctrs: MergeCounters,
) -> None:
    for child_id, natural_key in store.list_child_ids(kind, dup.id):
        result = store.move_child(kind, child_id, keeper.id)
        if not result.conflicted:
            ctrs.moved[kind] += 1
            continue
        if kind == "customer":
            winner_id = store.find_customer_id(keeper.id, natural_key)
            if winner_id is not None:
                ctrs.orders_relinked += store.relink_customer_orders(child_id, winner_id)
        store.delete_child(kind, child_id)
        ctrs.deleted[kind] += 1
        log.debug(
            "Deleted duplicate %s %s (%s) from shop %r; keeper %r already has it",
            kind, child_id, natural_key, dup.name, keeper.name,
        )


def _merge_into(
    store: OrderStore,
    dup: ShopRecord,
    keeper: ShopRecord,
    ctrs: MergeCounters,
) -> None:
    before_moved = dict(ctrs.moved)
    before_deleted = dict(ctrs.deleted)
    for kind in MERGE_CHILD_ORDER:
        _move_children(store, kind, dup, keeper, ctrs)
    ctrs.logs_moved += store.move_processing_logs(dup.id, keeper.id)
    store.delete_shop(dup.id)
    ctrs.shops_removed += 1
    ctrs.actions.append(
        f"{dup.name!r} → {keeper.name!r}: "
        + ", ".join(
            f"{kind} moved {ctrs.moved[kind] - before_moved[kind]}"
            f"/deleted {ctrs.deleted[kind] - before_deleted[kind]}"
            for kind in MERGE_CHILD_ORDER
        )
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def merge_duplicate_shops(store: OrderStore) -> MergeCounters:
    """Merge every group of shops sharing a canonical name.  Caller commits."""
    ctrs = MergeCounters()
    shops = store.list_shops()
    ctrs.shops_scanned = len(shops)

    for canonical_name, members in group_by_canonical_name(shops).items():
        if len(members) < 2:
            continue
        ctrs.groups_found += 1
        keeper = choose_keeper(members)
        log.info(
            "Found %d shops for %r; keeping %r (%s)",
            len(members), canonical_name, keeper.name, keeper.id,
        )
        for dup in members:
            if dup.id != keeper.id:
                _merge_into(store, dup, keeper, ctrs)

        if keeper.name != canonical_name:
            store.rename_shop(keeper.id, canonical_name)
            ctrs.shops_renamed += 1
            ctrs.actions.append(f"renamed {keeper.name!r} → {canonical_name!r}")

    return ctrs


def build_merge_report(ctrs: MergeCounters, dry_run: bool = False) -> str:
    lines = [
        "=" * 60,
        "Shop Merge Report",
        f"  dry_run: {dry_run}",
        "=" * 60,
        f"  shops scanned:        {ctrs.shops_scanned}",
        f"  duplicate groups:     {ctrs.groups_found}",
        f"  shops removed:        {ctrs.shops_removed}",
        f"  shops renamed:        {ctrs.shops_renamed}",
    ]
    for kind in MERGE_CHILD_ORDER:
        lines.append(
            f"  {kind + 's':<21} moved {ctrs.moved[kind]}, deleted {ctrs.deleted[kind]}"
        )
    lines.append(f"  orders relinked:      {ctrs.orders_relinked}")
    lines.append(f"  log entries moved:    {ctrs.logs_moved}")
    if ctrs.actions:
        lines.append(f"\nActions ({len(ctrs.actions)}):")
        for a in ctrs.actions[:20]:
            lines.append(f"  {a}")
        if len(ctrs.actions) > 20:
            lines.append(f"  ... and {len(ctrs.actions) - 20} more")
    lines.append("=" * 60)
    return "\n".join(lines)
