from __future__ import annotations

from typing import Dict, Iterable, Optional, Tuple

from ..errors import MalformedCache
from ..logging.logger import JsonlLogger
from ..models.records import MetadataRecord, RecordKind
from .memory_cache import TtlMemoryCache
from .metadata_store import MetadataStore, Record


def _check_record(kind: RecordKind, record: Record) -> None:
    if isinstance(record, MetadataRecord) and record.has_malformed_colors():
        raise MalformedCache(f"{kind.value} {record.primary_id} has a color entry without id or name")


class CachedMetadataStore:
    """Read-through / write-through memory layer over the durable store.

    The memory layer is always a subset view of durable state and can be
    cleared at any time. Records failing their structural check are reported
    as absent so callers re-fetch them from the catalog.
    """

    def __init__(self, store: MetadataStore, memory: TtlMemoryCache, *, logger: Optional[JsonlLogger] = None):
        self.store = store
        self.memory = memory
        self.logger = logger

    @staticmethod
    def _key(kind: RecordKind, key: str) -> Tuple[str, str]:
        return (kind.value, key)

    def _log(self, event: str, **fields) -> None:
        if self.logger is not None:
            self.logger.log(event, **fields)

    def get(self, kind: RecordKind, key: str) -> Optional[Record]:
        ck = self._key(kind, key)
        rec = self.memory.get(ck)
        if rec is not None:
            try:
                _check_record(kind, rec)
                return rec
            except MalformedCache as e:
                self.memory.delete(ck)
                self._log("cache.malformed", layer="memory", kind=kind.value, primary_id=key, error=str(e))

        rec = self.store.get(kind, key)
        if rec is None:
            return None
        try:
            _check_record(kind, rec)
        except MalformedCache as e:
            self._log("cache.malformed", layer="durable", kind=kind.value, primary_id=key, error=str(e))
            return None
        self.memory.set(ck, rec)
        return rec

    def get_many(self, kind: RecordKind, keys: Iterable[str]) -> Dict[str, Record]:
        out: Dict[str, Record] = {}
        missing = []
        for key in dict.fromkeys(keys):
            ck = self._key(kind, key)
            rec = self.memory.get(ck)
            if rec is not None:
                try:
                    _check_record(kind, rec)
                    out[key] = rec
                    continue
                except MalformedCache:
                    self.memory.delete(ck)
            missing.append(key)
        for key, rec in self.store.find_many(kind, missing).items():
            try:
                _check_record(kind, rec)
            except MalformedCache as e:
                self._log("cache.malformed", layer="durable", kind=kind.value, primary_id=key, error=str(e))
                continue
            self.memory.set(self._key(kind, key), rec)
            out[key] = rec
        return out

    def set(self, kind: RecordKind, record: Record) -> None:
        self.store.upsert(kind, record)
        self.memory.set(self._key(kind, record.primary_id), record)

    def invalidate_all(self) -> None:
        self.memory.clear()
