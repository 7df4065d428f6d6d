from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..io.timeutil import utc_now
from ..logging.logger import JsonlLogger
from ..models.records import MetadataRecord, PriceRecord, RecordKind
from ..repositories.cached_store import CachedMetadataStore
from ..repositories.metadata_store import MetadataStore
from .catalog_service import CatalogService


@dataclass
class RefreshReport:
    due: int = 0
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    batches: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RefreshCoordinator:
    """Re-prices expired records in small concurrent batches.

    Batches run one after another with a fixed pause between them; items in a
    batch run concurrently. Item failures are logged and counted, only a
    durable-store fault at start-up aborts the run.
    """

    def __init__(
        self,
        store: MetadataStore,
        cache: CachedMetadataStore,
        service: CatalogService,
        *,
        logger: JsonlLogger,
        batch_size: int = 5,
        batch_delay_s: float = 3.0,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got: {batch_size}")
        self.store = store
        self.cache = cache
        self.service = service
        self.logger = logger
        self.batch_size = batch_size
        self.batch_delay_s = batch_delay_s
        self._clock = clock
        self._sleep = sleep

    def _batches(self, due: List[PriceRecord]) -> List[List[PriceRecord]]:
        n = self.batch_size
        return [due[i:i + n] for i in range(0, len(due), n)]

    def refresh_expired(self) -> RefreshReport:
        self.store.ping()
        due = self.store.find_due_prices(self._clock())

        report = RefreshReport(due=len(due))
        batches = self._batches(due)
        self.logger.log("refresh.start", due=len(due), batches=len(batches), batch_size=self.batch_size)

        for i, batch in enumerate(batches, start=1):
            if i > 1:
                self.logger.log("refresh.wait", seconds=self.batch_delay_s)
                self._sleep(self.batch_delay_s)

            owners = self.cache.get_many(RecordKind.FIGURE, [p.primary_id for p in batch])
            with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="brickcache-refresh") as pool:
                results = list(pool.map(lambda p: self._refresh_one(p, owners.get(p.primary_id)), batch))

            ok = sum(1 for r in results if r)
            report.batches += 1
            report.attempted += len(batch)
            report.succeeded += ok
            report.failed += len(batch) - ok
            self.logger.log("refresh.batch.done", batch=i, of=len(batches), succeeded=ok, size=len(batch))

        self.logger.log("refresh.done", **report.to_dict())
        return report

    def _refresh_one(self, price: PriceRecord, owner: Optional[MetadataRecord]) -> bool:
        if owner is None:
            self.logger.log("refresh.item.skip", primary_id=price.primary_id, reason="no_metadata")
            return False
        try:
            fresh = self.service.refresh_price(owner, previous=price)
        except Exception as e:  # one item never aborts the batch
            self.logger.log(
                "refresh.item.error",
                primary_id=price.primary_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        self.logger.log("refresh.item.ok", primary_id=price.primary_id, secondary_id=fresh.secondary_id)
        return True
