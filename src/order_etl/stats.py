"""Read-only per-shop projection for the reporting layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from order_etl.store import OrderStore


@dataclass(frozen=True)
class RecentFile:
    filename: str
    status: str
    processed_at: datetime | None
    records_total: int
    records_inserted: int
    records_updated: int
    records_errors: int


@dataclass(frozen=True)
class ShopStats:
    id: str
    name: str
    display_name: str | None
    last_sync: datetime | None
    order_count: int
    customer_count: int
    recent_files: list[RecentFile] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
            "order_count": self.order_count,
            "customer_count": self.customer_count,
            "recent_files": [
                {
                    "filename": f.filename,
                    "status": f.status,
                    "processed_at": f.processed_at.isoformat() if f.processed_at else None,
                    "records_total": f.records_total,
                    "records_inserted": f.records_inserted,
                    "records_updated": f.records_updated,
                    "records_errors": f.records_errors,
                }
                for f in self.recent_files
            ],
        }


def get_processing_stats(store: OrderStore, recent_limit: int = 5) -> list[ShopStats]:
    """Counts per shop plus its `recent_limit` newest csv files."""
    out = []
    for shop_id, name, display_name, last_sync, orders, customers in store.shop_counts():
        recent = [RecentFile(*r) for r in store.recent_files(str(shop_id), recent_limit)]
        out.append(
            ShopStats(
                id=str(shop_id),
                name=name,
                display_name=display_name,
                last_sync=last_sync,
                order_count=int(orders),
                customer_count=int(customers),
                recent_files=recent,
            )
        )
    return out
