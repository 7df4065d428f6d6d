from __future__ import annotations

import os
import re
import threading
from typing import Any, Dict, Iterable, List, Optional

from ..config.schema import PrimaryCatalogConfig
from ..errors import Invalid, Unavailable
from ..models.records import ColorEntry, MetadataRecord
from .fetch import HttpFetcher
from .rate_limiter import TokenBucketRateLimiter

SET_PREFIX_RE = re.compile(r"^(\d+)(?:-|$)")
MAX_PAGES = 20


def pick_lowest_numeric_set(set_nums: Iterable[str]) -> Optional[str]:
    """Set number with the smallest numeric prefix; non-numeric ones are skipped."""
    best: Optional[str] = None
    best_n: Optional[int] = None
    for s in set_nums:
        m = SET_PREFIX_RE.match(s or "")
        if not m:
            continue
        n = int(m.group(1))
        if best_n is None or n < best_n:
            best, best_n = s, n
    return best


class RebrickableApiProvider:
    """Primary catalog: keyed JSON API (parts, figures, figure->sets)."""

    def __init__(self, *, fetcher: HttpFetcher, base_url: str, api_key: Optional[str]):
        self.fetcher = fetcher
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    @classmethod
    def from_config(cls, cfg: PrimaryCatalogConfig, *, session: Optional[Any] = None) -> "RebrickableApiProvider":
        fetcher = HttpFetcher(
            headers={"Accept": "application/json"},
            timeout_s=cfg.timeout_s,
            max_tries=cfg.max_tries,
            backoff_s=cfg.backoff_s,
            session=session,
            rate_limiter=TokenBucketRateLimiter(cfg.requests_per_second, cfg.burst),
        )
        return cls(fetcher=fetcher, base_url=cfg.base_url, api_key=os.getenv(cfg.api_key_env))

    def _url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _get(self, path: str, *, item: str, abort: Optional[threading.Event]) -> Dict[str, Any]:
        if not self.api_key:
            raise Unavailable("Primary catalog API key is not configured")
        try:
            data = self.fetcher.get_json(
                self._url(path),
                headers={"Authorization": f"key {self.api_key}"},
                abort=abort,
            )
        except Unavailable as e:
            if e.status_code == 404:
                raise Invalid(f"Primary catalog has no {item}") from e
            raise
        if not isinstance(data, dict):
            raise Unavailable(f"Unexpected payload for {item}: {type(data).__name__}")
        return data

    def _get_all(self, path: str, *, item: str, abort: Optional[threading.Event]) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        next_path: Optional[str] = path
        for _ in range(MAX_PAGES):
            if not next_path:
                break
            data = self._get(next_path, item=item, abort=abort)
            out.extend(r for r in data.get("results") or [] if isinstance(r, dict))
            next_path = data.get("next")
        return out

    def fetch_part(self, part_id: str, *, abort: Optional[threading.Event] = None) -> MetadataRecord:
        data = self._get(f"parts/{part_id}/", item=f"part {part_id}", abort=abort)
        rows = self._get_all(f"parts/{part_id}/colors/", item=f"colors of part {part_id}", abort=abort)
        colors = [
            ColorEntry(
                color_id=r.get("color_id"),
                color_name=r.get("color_name"),
                image_url=r.get("part_img_url"),
            )
            for r in rows
        ]
        return MetadataRecord(
            primary_id=part_id,
            name=data.get("name") or f"Part {part_id}",
            image_url=data.get("part_img_url"),
            available_colors=colors,
        )

    def fetch_figure(self, figure_id: str, *, abort: Optional[threading.Event] = None) -> MetadataRecord:
        data = self._get(f"minifigs/{figure_id}/", item=f"figure {figure_id}", abort=abort)
        return MetadataRecord(
            primary_id=figure_id,
            name=data.get("name") or f"Minifig {figure_id}",
            image_url=data.get("set_img_url"),
        )

    def fetch_figure_sets(self, figure_id: str, *, abort: Optional[threading.Event] = None) -> List[str]:
        rows = self._get_all(f"minifigs/{figure_id}/sets/", item=f"sets of figure {figure_id}", abort=abort)
        return [str(r["set_num"]) for r in rows if r.get("set_num")]
