from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Union

from ..errors import Unavailable
from ..io.timeutil import parse_iso, to_iso, utc_now_iso
from ..models.records import PRICE_FIELDS, ColorEntry, MetadataRecord, PriceRecord, RecordKind

Record = Union[MetadataRecord, PriceRecord]

TABLES = {
    RecordKind.PART: "part_metadata",
    RecordKind.FIGURE: "figure_metadata",
    RecordKind.PRICE: "price_metadata",
}

META_COLUMNS = "primary_id, name, image_url, invalid, secondary_id, available_colors_json"
PRICE_COLUMNS = "primary_id, secondary_id, " + ", ".join(PRICE_FIELDS) + ", currency_code, expires_at, is_expired"


def _to_txt_decimal(v: Optional[Decimal]) -> Optional[str]:
    if v is None:
        return None
    return format(v, "f")


def _meta_from_row(row: tuple) -> MetadataRecord:
    primary_id, name, image_url, invalid, secondary_id, colors_json = row
    return MetadataRecord(
        primary_id=primary_id,
        name=name,
        image_url=image_url,
        invalid=bool(invalid),
        secondary_id=secondary_id,
        available_colors=[ColorEntry(**c) for c in json.loads(colors_json or "[]")],
    )


def _price_from_row(row: tuple) -> PriceRecord:
    primary_id, secondary_id = row[0], row[1]
    prices = dict(zip(PRICE_FIELDS, row[2:2 + len(PRICE_FIELDS)]))
    currency_code, expires_at, is_expired = row[2 + len(PRICE_FIELDS):]
    return PriceRecord(
        primary_id=primary_id,
        secondary_id=secondary_id,
        currency_code=currency_code,
        expires_at=parse_iso(expires_at),
        is_expired=bool(is_expired),
        **prices,
    )


class MetadataStore:
    """Durable source of truth for part, figure and price records.

    Upserts are last-write-wins per key. One lock serializes the shared
    sqlite connection.
    """

    def __init__(self, con: sqlite3.Connection):
        self.con = con
        self._lock = threading.RLock()

    def ping(self) -> None:
        try:
            with self._lock:
                self.con.execute("SELECT 1 FROM price_metadata LIMIT 1;").fetchall()
        except sqlite3.Error as e:
            raise Unavailable(f"Durable store unreachable: {e}") from e

    def _select(self, kind: RecordKind, where: str, params: tuple) -> List[Record]:
        table = TABLES[kind]
        if kind is RecordKind.PRICE:
            cols, conv = PRICE_COLUMNS, _price_from_row
        else:
            cols, conv = META_COLUMNS, _meta_from_row
        with self._lock:
            rows = self.con.execute(f"SELECT {cols} FROM {table} WHERE {where};", params).fetchall()
        return [conv(r) for r in rows]

    def get(self, kind: RecordKind, key: str) -> Optional[Record]:
        found = self._select(kind, "primary_id = ?", (key,))
        return found[0] if found else None

    def find_many(self, kind: RecordKind, keys: Iterable[str]) -> Dict[str, Record]:
        keys = sorted(set(keys))
        if not keys:
            return {}
        marks = ",".join("?" for _ in keys)
        return {r.primary_id: r for r in self._select(kind, f"primary_id IN ({marks})", tuple(keys))}

    def upsert(self, kind: RecordKind, record: Record) -> None:
        if kind is RecordKind.PRICE:
            if not isinstance(record, PriceRecord):
                raise TypeError(f"price records must be PriceRecord, got {type(record).__name__}")
            self._upsert_price(record)
        else:
            if not isinstance(record, MetadataRecord):
                raise TypeError(f"{kind.value} records must be MetadataRecord, got {type(record).__name__}")
            self._upsert_meta(TABLES[kind], record)

    def _upsert_meta(self, table: str, r: MetadataRecord) -> None:
        colors = json.dumps([c.model_dump() for c in r.available_colors], ensure_ascii=False)
        with self._lock:
            self.con.execute(
                f"""
                INSERT OR REPLACE INTO {table}(
                  primary_id, name, image_url, invalid, secondary_id, available_colors_json, updated_ts
                ) VALUES (?,?,?,?,?,?,?)
                """,
                (r.primary_id, r.name, r.image_url, 1 if r.invalid else 0, r.secondary_id, colors, utc_now_iso()),
            )
            self.con.commit()

    def _upsert_price(self, r: PriceRecord) -> None:
        with self._lock:
            self.con.execute(
                f"""
                INSERT OR REPLACE INTO price_metadata(
                  {PRICE_COLUMNS}, updated_ts
                ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?)
                """,
                (
                    r.primary_id, r.secondary_id,
                    *(_to_txt_decimal(getattr(r, f)) for f in PRICE_FIELDS),
                    r.currency_code, to_iso(r.expires_at), 1 if r.is_expired else 0,
                    utc_now_iso(),
                ),
            )
            self.con.commit()

    def find_due_prices(self, now: datetime) -> List[PriceRecord]:
        # ISO-8601 UTC text sorts chronologically
        return self._select(  # type: ignore[return-value]
            RecordKind.PRICE,
            "expires_at < ? OR is_expired = 1 ORDER BY expires_at, primary_id",
            (to_iso(now),),
        )

    def mark_price_expired(self, primary_id: str) -> bool:
        with self._lock:
            cur = self.con.execute(
                "UPDATE price_metadata SET is_expired = 1, updated_ts = ? WHERE primary_id = ?;",
                (utc_now_iso(), primary_id),
            )
            self.con.commit()
        return cur.rowcount == 1
