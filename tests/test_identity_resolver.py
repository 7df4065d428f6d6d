from __future__ import annotations

import pytest

from brickcache.errors import NotFound
from brickcache.matching.identity_resolver import (
    Candidate,
    best_match,
    parse_inventory_candidates,
    resolve,
    similarity,
)

INVENTORY_HTML = """
<html><body>
<table class="ta">
  <tr><th>Image</th><th>Qty</th><th>Item No</th><th>Description</th></tr>
  <tr class="IV_ITEM">
    <td><img src="/M/sw0001a.jpg"></td><td>1</td>
    <td><a href="/v2/catalog/catalogitem.page?M=sw0001a">sw0001a</a></td>
    <td><b>Battle Droid Tan with Back Plate</b><br><font>Cat: Star Wars</font></td>
  </tr>
  <tr class="IV_ITEM">
    <td></td><td>1</td>
    <td><a href="/v2/catalog/catalogitem.page?M=sw0002">sw0002</a></td>
    <td>No emphasized label here</td>
  </tr>
  <tr class="IV_ITEM">
    <td></td><td>1</td>
    <td></td>
    <td><b>Label without id</b></td>
  </tr>
  <tr class="IV_ITEM">
    <td></td><td>1</td>
    <td><a href="/v2/catalog/catalogitem.page?M=sw0187">sw0187</a></td>
    <td><b>Luke Skywalker - Tatooine</b></td>
  </tr>
  <tr class="IV_ITEM"><td>short row</td></tr>
</table>
<table class="ta"><tr class="other"><td>1</td><td>2</td><td><a>x</a></td><td><b>ignored</b></td></tr></table>
</body></html>
"""


class TestResolve:
    def test_empty_candidates_not_found(self) -> None:
        with pytest.raises(NotFound):
            resolve("anything", [])

    def test_single_candidate_always_wins(self) -> None:
        assert resolve("red brick 2x4", [Candidate("Completely Unrelated", "Z9")]) == "Z9"

    def test_picks_best_label(self) -> None:
        candidates = [Candidate("Red Brick 2x4", "A"), Candidate("Blue Brick 2x4", "B")]
        assert resolve("red brick 2x4", candidates) == "A"

    def test_ties_go_to_first(self) -> None:
        candidates = [Candidate("Stormtrooper", "first"), Candidate("stormtrooper!", "second")]
        assert resolve("Stormtrooper", candidates) == "first"

    def test_normalization_applies_to_both_sides(self) -> None:
        candidates = [Candidate("Battle Droid Tan", "sw0001a"), Candidate("Luke Skywalker - Tatooine", "sw0187")]
        match = best_match("LUKE SKYWALKER (Tatooine)", candidates)
        assert match.candidate.id == "sw0187"
        assert match.index == 1
        assert 0 <= match.score <= 100

    def test_similarity_symmetric(self) -> None:
        assert similarity("red brick", "red bricks") == similarity("red bricks", "red brick")

    def test_later_candidate_beats_first(self) -> None:
        candidates = (Candidate("Blue Brick 2x4", "B"), Candidate("Tan Plate", "C"), Candidate("Red Brick 2x4", "A"))
        match = best_match("red brick 2x4", candidates)
        assert (match.candidate.id, match.index) == ("A", 2)
        assert match.score == 100

    def test_single_candidate_match_index(self) -> None:
        match = best_match("anything", [Candidate("Other", "X")])
        assert match.index == 0
        assert match.score == similarity("anything", "other")


class TestParseInventoryCandidates:
    def test_extracts_label_and_id(self) -> None:
        candidates = parse_inventory_candidates(INVENTORY_HTML)
        assert candidates == [
            Candidate("Battle Droid Tan with Back Plate", "sw0001a"),
            Candidate("Luke Skywalker - Tatooine", "sw0187"),
        ]

    def test_no_rows(self) -> None:
        assert parse_inventory_candidates("<html><body><p>Nothing</p></body></html>") == []

    def test_feeds_resolver(self) -> None:
        candidates = parse_inventory_candidates(INVENTORY_HTML)
        assert resolve("Luke Skywalker, Tatooine", candidates) == "sw0187"
