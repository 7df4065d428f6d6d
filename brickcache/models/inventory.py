from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .records import MetadataRecord, PriceRecord, RecordKind


@dataclass(frozen=True)
class InventoryItem:
    """User-owned quantities. Never stored in the shared metadata cache."""

    primary_id: str
    kind: RecordKind
    quantity_on_hand: int = 0
    quantity_required: int = 0
    color_id: Optional[str] = None

    @property
    def complete(self) -> bool:
        return self.quantity_on_hand >= self.quantity_required


@dataclass(frozen=True)
class EnrichedItem:
    """Read-time join of a user's item with the shared records for its key."""

    item: InventoryItem
    metadata: Optional[MetadataRecord]
    price: Optional[PriceRecord] = None
