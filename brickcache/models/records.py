from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..normalize.money import parse_money

PRICE_FIELDS = (
    "min_price_new",
    "max_price_new",
    "avg_price_new",
    "min_price_used",
    "max_price_used",
    "avg_price_used",
)


class RecordKind(str, Enum):
    PART = "part"
    FIGURE = "figure"
    PRICE = "price"


class ColorEntry(BaseModel):
    color_id: Optional[str] = None
    color_name: Optional[str] = None
    image_url: Optional[str] = None

    @field_validator("color_id", mode="before")
    @classmethod
    def _color_id_as_text(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @property
    def is_malformed(self) -> bool:
        return not self.color_id or not self.color_name


class MetadataRecord(BaseModel):
    """Shared part/figure metadata keyed by primary-catalog id.

    ``invalid`` is sticky: the primary catalog said the item does not exist.
    ``secondary_id`` is the marketplace identity once resolved (figures).
    """

    model_config = ConfigDict(validate_assignment=False)

    primary_id: str
    name: str = ""
    image_url: Optional[str] = None
    invalid: bool = False
    available_colors: List[ColorEntry] = Field(default_factory=list)
    secondary_id: Optional[str] = None

    @field_validator("available_colors")
    @classmethod
    def _unique_by_color_id(cls, colors: List[ColorEntry]) -> List[ColorEntry]:
        seen = set()
        out: List[ColorEntry] = []
        for c in colors:
            if c.color_id:
                if c.color_id in seen:
                    continue
                seen.add(c.color_id)
            out.append(c)
        return out

    def has_malformed_colors(self) -> bool:
        return any(c.is_malformed for c in self.available_colors)

    @classmethod
    def invalid_marker(cls, primary_id: str) -> "MetadataRecord":
        return cls(primary_id=primary_id, invalid=True)


class PriceSummary(BaseModel):
    min_price_new: Optional[Decimal] = None
    max_price_new: Optional[Decimal] = None
    avg_price_new: Optional[Decimal] = None
    min_price_used: Optional[Decimal] = None
    max_price_used: Optional[Decimal] = None
    avg_price_used: Optional[Decimal] = None
    currency_code: str = "USD"

    @field_validator(*PRICE_FIELDS, mode="before")
    @classmethod
    def _money(cls, v: Any) -> Optional[Decimal]:
        return parse_money(v)

    def has_any_price(self) -> bool:
        return any(getattr(self, f) is not None for f in PRICE_FIELDS)

    def prices(self) -> dict:
        return {f: getattr(self, f) for f in PRICE_FIELDS}


class PriceRecord(PriceSummary):
    primary_id: str
    secondary_id: Optional[str] = None
    expires_at: datetime
    is_expired: bool = False

    @field_validator("expires_at")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    def is_due(self, now: datetime) -> bool:
        return self.is_expired or now > self.expires_at

    @classmethod
    def from_summary(
        cls,
        primary_id: str,
        secondary_id: Optional[str],
        summary: PriceSummary,
        *,
        now: datetime,
        ttl: timedelta,
    ) -> "PriceRecord":
        return cls(
            primary_id=primary_id,
            secondary_id=secondary_id,
            currency_code=summary.currency_code,
            expires_at=now + ttl,
            is_expired=False,
            **summary.prices(),
        )
