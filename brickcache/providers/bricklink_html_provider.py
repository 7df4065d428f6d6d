from __future__ import annotations

import threading
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from ..config.schema import SecondaryCatalogConfig
from ..errors import Unavailable
from ..matching.identity_resolver import Candidate, parse_inventory_candidates
from ..models.records import PriceSummary
from ..normalize.money import CENT, detect_currency, parse_money
from .fetch import HttpFetcher

STATS_TABLE_SELECTOR = "table.fv"
PRICE_LABELS = {
    "min price": "min",
    "avg price": "avg",
    "max price": "max",
}


def average_of_min_max(min_price: Optional[Decimal], max_price: Optional[Decimal]) -> Optional[Decimal]:
    if min_price is None or max_price is None:
        return None
    return ((min_price + max_price) / 2).quantize(CENT, rounding=ROUND_HALF_UP)


def _stats_rows(table: Any) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for tr in table.find_all("tr"):
        tds = tr.find_all("td")
        if len(tds) < 2:
            continue
        label = tds[0].get_text(" ", strip=True).rstrip(":").strip().lower()
        bold = tds[1].find("b")
        value = (bold or tds[1]).get_text(" ", strip=True)
        if label and label not in out:
            out[label] = value
    return out


def _column_condition(table: Any, position: int) -> str:
    # Price guide columns alternate New / Used (past sales, then current lots).
    index = position
    cell = table.find_parent("td")
    if cell is not None:
        row = cell.find_parent("tr")
        if row is not None:
            cells = row.find_all("td", recursive=False)
            for i, c in enumerate(cells):
                if c is cell:
                    index = i
                    break
    return "new" if index % 2 == 0 else "used"


def parse_price_guide(html: str, default_currency: str = "USD") -> PriceSummary:
    soup = BeautifulSoup(html, "html.parser")
    tables = soup.select(STATS_TABLE_SELECTOR)
    if not tables:
        raise Unavailable("Price guide page has no statistics table")

    found: Dict[str, Dict[str, str]] = {"new": {}, "used": {}}
    for pos, table in enumerate(tables):
        rows = _stats_rows(table)
        prices = {
            key: rows[label]
            for label, key in PRICE_LABELS.items()
            if label in rows and parse_money(rows[label]) is not None
        }
        if prices:
            # current lots come after past sales and take precedence
            found[_column_condition(table, pos)] = prices

    sample = next(iter((found["new"] or found["used"]).values()), "")
    values: Dict[str, Any] = {"currency_code": detect_currency(sample, default_currency)}
    for cond, prices in found.items():
        lo = parse_money(prices.get("min"))
        hi = parse_money(prices.get("max"))
        avg = parse_money(prices.get("avg"))
        if avg is None:
            avg = average_of_min_max(lo, hi)
        values[f"min_price_{cond}"] = lo
        values[f"max_price_{cond}"] = hi
        values[f"avg_price_{cond}"] = avg

    summary = PriceSummary(**values)
    if not summary.has_any_price():
        raise Unavailable("Price guide statistics carry no Min/Avg/Max price")
    return summary


class BrickLinkHtmlProvider:
    """Secondary catalog (marketplace) over unauthenticated HTML pages."""

    def __init__(
        self,
        *,
        fetcher: HttpFetcher,
        base_url: str = "https://www.bricklink.com",
        default_currency: str = "USD",
    ):
        self.fetcher = fetcher
        self.base_url = base_url.rstrip("/")
        self.default_currency = default_currency

        self.inventory_url = f"{self.base_url}/catalogItemInv.asp"
        self.price_guide_url = f"{self.base_url}/catalogPG.asp"

    @classmethod
    def from_config(cls, cfg: SecondaryCatalogConfig, *, session: Optional[Any] = None) -> "BrickLinkHtmlProvider":
        fetcher = HttpFetcher(
            headers={
                "User-Agent": cfg.user_agent,
                "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
                "Referer": cfg.base_url.rstrip("/") + "/",
            },
            timeout_s=cfg.timeout_s,
            max_tries=cfg.max_tries,
            backoff_s=cfg.backoff_s,
            session=session,
        )
        return cls(fetcher=fetcher, base_url=cfg.base_url, default_currency=cfg.default_currency)

    def fetch_inventory_candidates(self, set_num: str, *, abort: Optional[threading.Event] = None) -> List[Candidate]:
        html = self.fetcher.get_text(self.inventory_url, params={"S": set_num}, abort=abort)
        return parse_inventory_candidates(html)

    def fetch_price(
        self,
        secondary_id: str,
        *,
        item_type: str = "M",
        abort: Optional[threading.Event] = None,
    ) -> PriceSummary:
        html = self.fetcher.get_text(
            self.price_guide_url,
            params={item_type.upper(): secondary_id},
            abort=abort,
        )
        return parse_price_guide(html, self.default_currency)
