from __future__ import annotations

import threading
import time
from datetime import timedelta

import pytest

from conftest import NOW, FakeSecondary
from brickcache.errors import Unavailable
from brickcache.models.records import MetadataRecord, PriceRecord, PriceSummary, RecordKind
from brickcache.services.catalog_service import CatalogService
from brickcache.services.refresh import RefreshCoordinator


class SlowSecondary(FakeSecondary):
    """Tracks how many price fetches run at once."""

    def __init__(self):
        super().__init__()
        self.in_flight = 0
        self.max_in_flight = 0

    def fetch_price(self, secondary_id, *, item_type="M", abort=None):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            time.sleep(0.05)
            return super().fetch_price(secondary_id, item_type=item_type, abort=abort)
        finally:
            with self._lock:
                self.in_flight -= 1


def _seed(store, secondary, n: int, *, with_figures: bool = True) -> None:
    for i in range(n):
        pid = f"fig-{i:06d}"
        sid = f"sw{i:04d}"
        if with_figures:
            store.upsert(RecordKind.FIGURE, MetadataRecord(primary_id=pid, name=f"Figure {i}", secondary_id=sid))
        store.upsert(RecordKind.PRICE, PriceRecord(primary_id=pid, secondary_id=sid,
                                                   expires_at=NOW - timedelta(hours=1), min_price_new="1.00"))
        secondary.prices[sid] = PriceSummary(min_price_new="2.00", max_price_new="4.00")


@pytest.fixture
def slow_secondary() -> SlowSecondary:
    return SlowSecondary()


@pytest.fixture
def sleeps():
    return []


def _coordinator(store, cache, service, logger, sleeps, **kwargs) -> RefreshCoordinator:
    return RefreshCoordinator(store, cache, service, logger=logger, clock=lambda: NOW, sleep=sleeps.append, **kwargs)


class TestRefreshCoordinator:
    def test_batches_with_delay_between(self, store, cache, service, secondary, logger, sleeps) -> None:
        _seed(store, secondary, 12)
        report = _coordinator(store, cache, service, logger, sleeps, batch_size=5, batch_delay_s=3.0).refresh_expired()

        assert report.to_dict() == {"due": 12, "attempted": 12, "succeeded": 12, "failed": 0, "batches": 3}
        assert sleeps == [3.0, 3.0]
        assert store.find_due_prices(NOW) == []

        batch_sizes = [e["size"] for e in logger.read_events() if e["event"] == "refresh.batch.done"]
        assert batch_sizes == [5, 5, 2]

    def test_refreshed_record_gets_new_expiry(self, store, cache, service, secondary, logger, sleeps) -> None:
        _seed(store, secondary, 1)
        _coordinator(store, cache, service, logger, sleeps).refresh_expired()
        rec = store.get(RecordKind.PRICE, "fig-000000")
        assert rec.expires_at == NOW + timedelta(days=2)
        assert not rec.is_expired
        assert str(rec.min_price_new) == "2.00"
        assert sleeps == []

    def test_items_in_a_batch_run_concurrently(
        self, store, cache, primary, slow_secondary, logger, background, sleeps
    ) -> None:
        service = CatalogService(cache, primary, slow_secondary, logger=logger, background=background,
                                 price_ttl=timedelta(days=2), clock=lambda: NOW)
        _seed(store, slow_secondary, 10)
        report = _coordinator(store, cache, service, logger, sleeps, batch_size=5).refresh_expired()
        assert report.succeeded == 10
        assert 1 < slow_secondary.max_in_flight <= 5

    def test_item_failures_are_counted_not_raised(self, store, cache, service, secondary, logger, sleeps) -> None:
        _seed(store, secondary, 4)
        secondary.failing.add("sw0001")
        del secondary.prices["sw0002"]
        report = _coordinator(store, cache, service, logger, sleeps).refresh_expired()

        assert (report.succeeded, report.failed) == (2, 2)
        still_due = {p.primary_id for p in store.find_due_prices(NOW)}
        assert still_due == {"fig-000001", "fig-000002"}
        errors = {e["primary_id"]: e["error_type"] for e in logger.read_events() if e["event"] == "refresh.item.error"}
        assert errors == {"fig-000001": "Unavailable", "fig-000002": "NotFound"}

    def test_price_without_figure_is_skipped(self, store, cache, service, secondary, logger, sleeps) -> None:
        _seed(store, secondary, 2, with_figures=False)
        report = _coordinator(store, cache, service, logger, sleeps).refresh_expired()
        assert report.failed == 2
        assert secondary.calls == []
        assert len([e for e in logger.read_events() if e["event"] == "refresh.item.skip"]) == 2

    def test_flagged_price_is_refreshed(self, store, cache, service, secondary, logger, sleeps) -> None:
        store.upsert(RecordKind.FIGURE, MetadataRecord(primary_id="fig-1", name="Luke", secondary_id="sw0187"))
        store.upsert(RecordKind.PRICE, PriceRecord(primary_id="fig-1", secondary_id="sw0187",
                                                   expires_at=NOW + timedelta(days=1)))
        store.mark_price_expired("fig-1")
        secondary.prices["sw0187"] = PriceSummary(min_price_used="3.00")
        report = _coordinator(store, cache, service, logger, sleeps).refresh_expired()
        assert report.succeeded == 1
        assert not store.get(RecordKind.PRICE, "fig-1").is_expired

    def test_nothing_due(self, store, cache, service, logger, sleeps) -> None:
        report = _coordinator(store, cache, service, logger, sleeps).refresh_expired()
        assert report.to_dict() == {"due": 0, "attempted": 0, "succeeded": 0, "failed": 0, "batches": 0}

    def test_store_fault_aborts_run(self, store, cache, service, logger, sleeps) -> None:
        store.con.close()
        with pytest.raises(Unavailable):
            _coordinator(store, cache, service, logger, sleeps).refresh_expired()

    def test_batch_size_must_be_positive(self, store, cache, service, logger) -> None:
        with pytest.raises(ValueError):
            RefreshCoordinator(store, cache, service, logger=logger, batch_size=0)
