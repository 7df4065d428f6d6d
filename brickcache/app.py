from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from .config.schema import BrickCacheConfig
from .logging.logger import JsonlLogger
from .providers.bricklink_html_provider import BrickLinkHtmlProvider
from .providers.rebrickable_api_provider import RebrickableApiProvider
from .repositories.cached_store import CachedMetadataStore
from .repositories.db import connect, migrate
from .repositories.memory_cache import TtlMemoryCache
from .repositories.metadata_store import MetadataStore
from .services.background import BackgroundTasks
from .services.catalog_service import CatalogService
from .services.refresh import RefreshCoordinator


@dataclass
class CatalogContext:
    """Every core component, built once per process and shared by reference."""

    config: BrickCacheConfig
    logger: JsonlLogger
    store: MetadataStore
    cache: CachedMetadataStore
    primary: RebrickableApiProvider
    secondary: BrickLinkHtmlProvider
    background: BackgroundTasks
    service: CatalogService

    def coordinator(self, *, batch_size: Optional[int] = None, batch_delay_s: Optional[float] = None) -> RefreshCoordinator:
        refresh = self.config.refresh
        return RefreshCoordinator(
            self.store,
            self.cache,
            self.service,
            logger=self.logger,
            batch_size=batch_size if batch_size is not None else refresh.batch_size,
            batch_delay_s=batch_delay_s if batch_delay_s is not None else refresh.batch_delay_s,
        )

    def close(self) -> None:
        self.background.drain()
        self.background.shutdown()
        self.store.con.close()


def build_context(
    cfg: BrickCacheConfig,
    logger: JsonlLogger,
    *,
    primary_session: Optional[Any] = None,
    secondary_session: Optional[Any] = None,
) -> CatalogContext:
    con = connect(cfg.paths.sqlite_db)
    migrate(con)
    store = MetadataStore(con)
    cache = CachedMetadataStore(store, TtlMemoryCache(cfg.cache.memory_ttl_seconds), logger=logger)
    primary = RebrickableApiProvider.from_config(cfg.primary_catalog, session=primary_session)
    secondary = BrickLinkHtmlProvider.from_config(cfg.secondary_catalog, session=secondary_session)
    background = BackgroundTasks(logger)
    service = CatalogService(
        cache,
        primary,
        secondary,
        logger=logger,
        background=background,
        price_ttl=timedelta(days=cfg.cache.price_ttl_days),
    )
    return CatalogContext(
        config=cfg,
        logger=logger,
        store=store,
        cache=cache,
        primary=primary,
        secondary=secondary,
        background=background,
        service=service,
    )
