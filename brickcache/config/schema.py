from __future__ import annotations

from pydantic import BaseModel, Field, ConfigDict
from typing import Dict, Any


class PathsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    sqlite_db: str = "data/brickcache.db"
    lockfile: str = "data/locks/refresh.lock"
    logs_dir: str = "data/logs"
    reports_dir: str = "data/reports"


class PrimaryCatalogConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    base_url: str = "https://rebrickable.com/api/v3/lego"
    api_key_env: str = "REBRICKABLE_APIKEY"
    timeout_s: float = Field(default=8.0, gt=0)
    max_tries: int = Field(default=3, ge=1)
    backoff_s: float = Field(default=1.0, ge=0)
    requests_per_second: float = Field(default=1.0, gt=0)
    burst: int = Field(default=5, ge=1)


class SecondaryCatalogConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    base_url: str = "https://www.bricklink.com"
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
    )
    timeout_s: float = Field(default=10.0, gt=0)
    max_tries: int = Field(default=3, ge=1)
    backoff_s: float = Field(default=1.0, ge=0)
    default_currency: str = "USD"


class CacheConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    memory_ttl_seconds: float = Field(default=300.0, gt=0)
    price_ttl_days: float = Field(default=2.0, gt=0)


class RefreshConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    batch_size: int = Field(default=5, ge=1)
    batch_delay_s: float = Field(default=3.0, ge=0)


class BrickCacheConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    version: int = 1
    paths: PathsConfig = Field(default_factory=PathsConfig)
    primary_catalog: PrimaryCatalogConfig = Field(default_factory=PrimaryCatalogConfig)
    secondary_catalog: SecondaryCatalogConfig = Field(default_factory=SecondaryCatalogConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)

    # Keep raw config for audit
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)
