from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from bs4 import BeautifulSoup
from rapidfuzz import fuzz

from ..errors import NotFound
from ..normalize.names import normalize

# Inventory page layout on the secondary catalog: one row per item,
# id anchor in the 3rd cell, bold description in the 4th.
INVENTORY_ROW_SELECTOR = "table.ta tr.IV_ITEM"
ID_CELL = 2
LABEL_CELL = 3


@dataclass(frozen=True)
class Candidate:
    label: str
    id: str


@dataclass(frozen=True)
class Match:
    candidate: Candidate
    score: float
    index: int


def similarity(a: str, b: str) -> float:
    """Length-normalized Indel similarity in [0, 100]; symmetric."""
    return fuzz.ratio(a, b)


def best_match(target_name: str, candidates: Sequence[Candidate]) -> Match:
    if not candidates:
        raise NotFound(f"No candidates to match {target_name!r} against")

    target = normalize(target_name)
    best = Match(candidate=candidates[0], score=similarity(target, normalize(candidates[0].label)), index=0)
    for i, c in enumerate(candidates[1:], start=1):
        score = similarity(target, normalize(c.label))
        # strict > keeps the first candidate on ties
        if score > best.score:
            best = Match(candidate=c, score=score, index=i)
    return best


def resolve(target_name: str, candidates: Sequence[Candidate]) -> str:
    """Secondary-catalog id of the candidate whose label best matches.

    No minimum score: with a poor candidate set the least-bad one wins.
    """
    return best_match(target_name, candidates).candidate.id


def parse_inventory_candidates(html: str) -> List[Candidate]:
    soup = BeautifulSoup(html, "html.parser")
    out: List[Candidate] = []

    for tr in soup.select(INVENTORY_ROW_SELECTOR):
        tds = tr.find_all("td", recursive=False)
        if len(tds) <= LABEL_CELL:
            continue

        bold = tds[LABEL_CELL].find("b")
        label = bold.get_text(" ", strip=True) if bold else ""

        a = tds[ID_CELL].find("a")
        item_id = a.get_text(strip=True) if a else ""

        if not label or not item_id:
            continue
        out.append(Candidate(label=label, id=item_id))

    return out
