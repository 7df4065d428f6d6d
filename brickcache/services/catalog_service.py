from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from ..errors import Aborted, Invalid, NotFound, Unavailable
from ..io.timeutil import utc_now
from ..logging.logger import JsonlLogger
from ..matching.identity_resolver import best_match
from ..models.inventory import EnrichedItem, InventoryItem
from ..models.records import MetadataRecord, PriceRecord, RecordKind
from ..providers.bricklink_html_provider import BrickLinkHtmlProvider
from ..providers.fetch import check_abort
from ..providers.rebrickable_api_provider import RebrickableApiProvider, pick_lowest_numeric_set
from ..repositories.cached_store import CachedMetadataStore
from .background import BackgroundTasks


class CatalogService:
    """Entry point for inventory handlers: metadata and prices by primary id.

    Interactive calls never raise for catalog trouble; they log and return
    ``None`` (or the last known price record) meaning "no data yet".
    An aborted call leaves the cache untouched.
    """

    def __init__(
        self,
        cache: CachedMetadataStore,
        primary: RebrickableApiProvider,
        secondary: BrickLinkHtmlProvider,
        *,
        logger: JsonlLogger,
        background: BackgroundTasks,
        price_ttl: timedelta,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.cache = cache
        self.primary = primary
        self.secondary = secondary
        self.logger = logger
        self.background = background
        self.price_ttl = price_ttl
        self._clock = clock

    # -- metadata --------------------------------------------------------

    def _fetch_metadata(self, kind: RecordKind, primary_id: str, abort: Optional[threading.Event]) -> MetadataRecord:
        if kind is RecordKind.PART:
            return self.primary.fetch_part(primary_id, abort=abort)
        return self.primary.fetch_figure(primary_id, abort=abort)

    def request_metadata(
        self,
        kind: RecordKind,
        primary_id: str,
        *,
        abort: Optional[threading.Event] = None,
    ) -> Optional[MetadataRecord]:
        if kind is RecordKind.PRICE:
            raise ValueError("request_metadata takes part or figure, use request_price for prices")

        rec = self.cache.get(kind, primary_id)
        if rec is not None:
            return None if rec.invalid else rec

        try:
            rec = self._fetch_metadata(kind, primary_id, abort)
            check_abort(abort)
        except Invalid as e:
            self.logger.log("metadata.invalid", kind=kind.value, primary_id=primary_id, error=str(e))
            self.cache.set(kind, MetadataRecord.invalid_marker(primary_id))
            return None
        except Aborted:
            self.logger.log("metadata.aborted", kind=kind.value, primary_id=primary_id)
            return None
        except Unavailable as e:
            self.logger.log("metadata.unavailable", kind=kind.value, primary_id=primary_id, error=str(e))
            return None

        # a re-fetch over a malformed record keeps the identity already resolved
        stale = self.cache.store.get(kind, primary_id)
        if stale is not None and stale.secondary_id and not rec.secondary_id:
            rec = rec.model_copy(update={"secondary_id": stale.secondary_id})

        self.cache.set(kind, rec)
        self.logger.log("metadata.fetched", kind=kind.value, primary_id=primary_id, colors=len(rec.available_colors))
        return rec

    # -- identity --------------------------------------------------------

    def resolve_secondary_id(
        self,
        record: MetadataRecord,
        *,
        known: Optional[str] = None,
        abort: Optional[threading.Event] = None,
    ) -> str:
        if record.invalid:
            raise Invalid(f"{record.primary_id} is marked invalid in the primary catalog")
        if record.secondary_id:
            return record.secondary_id
        if known:
            return known
        if not record.name:
            raise NotFound(f"{record.primary_id} has no name to match on")

        set_num = pick_lowest_numeric_set(self.primary.fetch_figure_sets(record.primary_id, abort=abort))
        if set_num is None:
            raise NotFound(f"No numeric set contains {record.primary_id}")

        candidates = self.secondary.fetch_inventory_candidates(set_num, abort=abort)
        match = best_match(record.name, candidates)
        check_abort(abort)

        secondary_id = match.candidate.id
        self.logger.log(
            "identity.resolved",
            primary_id=record.primary_id,
            secondary_id=secondary_id,
            set_num=set_num,
            label=match.candidate.label,
            score=round(match.score, 2),
            candidates=len(candidates),
        )
        self.background.submit("figure.secondary_id.save", self._save_secondary_id, record, secondary_id)
        return secondary_id

    def _save_secondary_id(self, record: MetadataRecord, secondary_id: str) -> None:
        current = self.cache.get(RecordKind.FIGURE, record.primary_id) or record
        if current.secondary_id == secondary_id:
            return
        self.cache.set(RecordKind.FIGURE, current.model_copy(update={"secondary_id": secondary_id}))

    # -- prices ----------------------------------------------------------

    def refresh_price(
        self,
        record: MetadataRecord,
        *,
        previous: Optional[PriceRecord] = None,
        abort: Optional[threading.Event] = None,
    ) -> PriceRecord:
        """Resolve, fetch and store a fresh price record. Raises CatalogError."""
        known = previous.secondary_id if previous is not None else None
        secondary_id = self.resolve_secondary_id(record, known=known, abort=abort)
        summary = self.secondary.fetch_price(secondary_id, abort=abort)
        check_abort(abort)

        price = PriceRecord.from_summary(
            record.primary_id,
            secondary_id,
            summary,
            now=self._clock(),
            ttl=self.price_ttl,
        )
        self.cache.set(RecordKind.PRICE, price)
        return price

    def request_price(self, primary_id: str, *, abort: Optional[threading.Event] = None) -> Optional[PriceRecord]:
        rec = self.cache.get(RecordKind.PRICE, primary_id)
        if rec is not None and not rec.is_due(self._clock()):
            return rec

        meta = self.request_metadata(RecordKind.FIGURE, primary_id, abort=abort)
        if meta is None:
            return rec

        try:
            return self.refresh_price(meta, previous=rec, abort=abort)
        except Aborted:
            self.logger.log("price.aborted", primary_id=primary_id)
        except (NotFound, Unavailable, Invalid) as e:
            self.logger.log("price.unavailable", primary_id=primary_id, error_type=type(e).__name__, error=str(e))
        return rec

    # -- read-time join --------------------------------------------------

    def enrich(self, items: Iterable[InventoryItem], *, abort: Optional[threading.Event] = None) -> List[EnrichedItem]:
        out: List[EnrichedItem] = []
        for item in items:
            meta = self.request_metadata(item.kind, item.primary_id, abort=abort)
            price = None
            if item.kind is RecordKind.FIGURE and meta is not None:
                price = self.request_price(item.primary_id, abort=abort)
            out.append(EnrichedItem(item=item, metadata=meta, price=price))
        return out
