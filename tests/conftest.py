from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from brickcache.errors import Invalid, NotFound, Unavailable
from brickcache.logging.logger import JsonlLogger
from brickcache.matching.identity_resolver import Candidate
from brickcache.models.records import MetadataRecord, PriceSummary
from brickcache.providers.fetch import check_abort
from brickcache.repositories.cached_store import CachedMetadataStore
from brickcache.repositories.db import connect, migrate
from brickcache.repositories.memory_cache import TtlMemoryCache
from brickcache.repositories.metadata_store import MetadataStore
from brickcache.services.background import BackgroundTasks
from brickcache.services.catalog_service import CatalogService

NOW = datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, t: float = 1000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "", json_data: Any = None, headers: Optional[dict] = None):
        self.status_code = status_code
        self.text = text
        self._json = json_data
        self.headers = headers or {}

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("no json")
        return self._json


class FakeSession:
    """Replays queued responses per URL; records every call."""

    def __init__(self, routes: Optional[Dict[str, List[Any]]] = None):
        self.routes: Dict[str, List[Any]] = {k: list(v) for k, v in (routes or {}).items()}
        self.calls: List[Dict[str, Any]] = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        queue = self.routes.get(url)
        if not queue:
            return FakeResponse(404, "not found")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item


class FakePrimary:
    def __init__(self):
        self.parts: Dict[str, MetadataRecord] = {}
        self.figures: Dict[str, MetadataRecord] = {}
        self.sets: Dict[str, List[str]] = {}
        self.invalid: set = set()
        self.calls: List[tuple] = []

    def fetch_part(self, part_id, *, abort=None):
        self.calls.append(("part", part_id))
        check_abort(abort)
        if part_id in self.invalid:
            raise Invalid(f"no part {part_id}")
        if part_id not in self.parts:
            raise Unavailable(f"part {part_id} down")
        return self.parts[part_id]

    def fetch_figure(self, figure_id, *, abort=None):
        self.calls.append(("figure", figure_id))
        check_abort(abort)
        if figure_id in self.invalid:
            raise Invalid(f"no figure {figure_id}")
        if figure_id not in self.figures:
            raise Unavailable(f"figure {figure_id} down")
        return self.figures[figure_id]

    def fetch_figure_sets(self, figure_id, *, abort=None):
        self.calls.append(("sets", figure_id))
        check_abort(abort)
        return list(self.sets.get(figure_id, []))


class FakeSecondary:
    def __init__(self):
        self.inventories: Dict[str, List[Candidate]] = {}
        self.prices: Dict[str, PriceSummary] = {}
        self.failing: set = set()
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def fetch_inventory_candidates(self, set_num, *, abort=None):
        with self._lock:
            self.calls.append(("inventory", set_num))
        check_abort(abort)
        if set_num not in self.inventories:
            raise Unavailable(f"inventory {set_num} down")
        return list(self.inventories[set_num])

    def fetch_price(self, secondary_id, *, item_type="M", abort=None):
        with self._lock:
            self.calls.append(("price", secondary_id))
        check_abort(abort)
        if secondary_id in self.failing:
            raise Unavailable(f"price page for {secondary_id} down")
        if secondary_id not in self.prices:
            raise NotFound(secondary_id)
        return self.prices[secondary_id]


@pytest.fixture
def logger(tmp_path) -> JsonlLogger:
    return JsonlLogger(str(tmp_path / "logs"), run_id="test", component="test")


@pytest.fixture
def store() -> MetadataStore:
    con = connect(":memory:")
    migrate(con)
    yield MetadataStore(con)
    con.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(store, clock, logger) -> CachedMetadataStore:
    return CachedMetadataStore(store, TtlMemoryCache(300, clock=clock), logger=logger)


@pytest.fixture
def primary() -> FakePrimary:
    return FakePrimary()


@pytest.fixture
def secondary() -> FakeSecondary:
    return FakeSecondary()


@pytest.fixture
def background(logger) -> BackgroundTasks:
    bg = BackgroundTasks(logger)
    yield bg
    bg.shutdown()


@pytest.fixture
def service(cache, primary, secondary, logger, background) -> CatalogService:
    return CatalogService(
        cache,
        primary,
        secondary,
        logger=logger,
        background=background,
        price_ttl=timedelta(days=2),
        clock=lambda: NOW,
    )
