"""
test_material_aggregator.py — Unit tests for per-shaft and per-article roll-ups.

Tests cover:
  - (shaft, article) merging with PC integer sums and M real sums
  - Ordering: shafts numerically, items by category then article
  - Unassigned items and the grand total
  - Order independence (shuffled input → identical output)
  - cross_check invariant and unresolved summary
"""

import random
import pytest

from sanitary_bom.services.catalog_resolver import UnresolvedKey
from sanitary_bom.services.material_aggregator import (
    BOM,
    LineItem,
    cross_check,
    shaft_sort_key,
    summarize_unresolved,
)


def _item(article, qty, shaft="SH-01", unit="M", category="water-closet", description=None):
    return LineItem(
        article_no=article,
        description=description or f"part {article}",
        unit=unit,
        quantity=qty,
        shaft_id=shaft,
        category=category,
        categories=(category,),
    )


@pytest.fixture
def mixed_items():
    """Two shafts, one unassigned pipe, PC and M units, awkward float lengths."""
    return [
        _item("367.000.16.0", 10.1, "SH-02"),
        _item("367.000.16.0", 0.2, "SH-02"),
        _item("367.000.16.0", 0.3, "SH-10"),
        _item("367.045.16.1", 1, "SH-02", unit="PC"),
        _item("367.045.16.1", 1, "SH-02", unit="PC"),
        _item("361.000.16.0", 10.0, "SH-01", category="wash-basin"),
        _item("367.000.16.0", 80.0, None, category="vent"),
    ]


# ===========================================================================
# Class 1: Per-shaft merge
# ===========================================================================

class TestAggregateByShaft:

    def test_two_runs_merge_to_one_line(self, aggregator):
        """Two 10-unit runs on SH-02 → one line of 20 M."""
        items = [_item("367.000.16.0", 10.0, "SH-02"), _item("367.000.16.0", 10.0, "SH-02")]
        by_shaft = aggregator.aggregate_by_shaft(items)
        assert list(by_shaft) == ["SH-02"]
        [line] = by_shaft["SH-02"]
        assert line.quantity == pytest.approx(20.0)
        assert line.unit == "M"

    def test_pc_sums_are_integers(self, aggregator, mixed_items):
        by_shaft = aggregator.aggregate_by_shaft(mixed_items)
        bend = [i for i in by_shaft["SH-02"] if i.article_no == "367.045.16.1"][0]
        assert bend.quantity == 2
        assert isinstance(bend.quantity, int)

    def test_no_duplicate_articles_per_shaft(self, aggregator, mixed_items):
        for items in aggregator.aggregate_by_shaft(mixed_items).values():
            articles = [i.article_no for i in items]
            assert len(articles) == len(set(articles))

    def test_shafts_sorted_numerically(self, aggregator, mixed_items):
        assert list(aggregator.aggregate_by_shaft(mixed_items)) == ["SH-01", "SH-02", "SH-10"]
        assert sorted(["SH-10", "SH-2"], key=shaft_sort_key) == ["SH-2", "SH-10"]

    def test_unassigned_excluded_from_shafts(self, aggregator, mixed_items):
        by_shaft = aggregator.aggregate_by_shaft(mixed_items)
        assert None not in by_shaft
        assert sum(len(v) for v in by_shaft.values()) == 4

    def test_items_ordered_by_category_then_article(self, aggregator):
        items = [
            _item("367.000.16.0", 1.0, category="vent"),
            _item("361.771.16.1", 1, unit="PC", category="wash-basin"),
            _item("361.000.16.0", 1.0, category="wash-basin"),
        ]
        lines = aggregator.aggregate_by_shaft(items)["SH-01"]
        assert [i.article_no for i in lines] == ["361.000.16.0", "361.771.16.1", "367.000.16.0"]

    def test_merged_categories_keep_first_in_order(self, aggregator):
        """The same pipe used by WC and vent on one shaft becomes one line filed under WC."""
        items = [
            _item("367.000.16.0", 5.0, category="vent"),
            _item("367.000.16.0", 5.0, category="water-closet"),
        ]
        [line] = aggregator.aggregate_by_shaft(items)["SH-01"]
        assert line.category == "water-closet"
        assert line.categories == ("water-closet", "vent")
        assert line.quantity == pytest.approx(10.0)

    def test_blank_article_is_rejected(self, aggregator):
        with pytest.raises(ValueError):
            aggregator.aggregate_by_shaft([_item("", 1.0)])


# ===========================================================================
# Class 2: Totals and unassigned
# ===========================================================================

class TestTotals:

    def test_grand_total_includes_unassigned(self, aggregator, mixed_items):
        totals = aggregator.total_by_article(mixed_items)
        assert totals["367.000.16.0"] == pytest.approx(10.1 + 0.2 + 0.3 + 80.0)
        assert totals["367.045.16.1"] == 2
        assert totals["361.000.16.0"] == pytest.approx(10.0)

    def test_unassigned_lines(self, aggregator, mixed_items):
        [line] = aggregator.unassigned(mixed_items)
        assert line.shaft_id is None
        assert line.quantity == pytest.approx(80.0)

    def test_empty_input(self, aggregator):
        bom = aggregator.build_bom([])
        assert bom.by_shaft == {}
        assert bom.totals_by_article == {}
        assert bom.unassigned == []
        assert cross_check(bom) == []


# ===========================================================================
# Class 3: Order independence and cross-check
# ===========================================================================

class TestInvariants:

    def test_shuffled_input_gives_identical_output(self, aggregator, mixed_items):
        baseline = aggregator.build_bom(mixed_items).to_dict()
        rng = random.Random(7)
        for _ in range(20):
            shuffled = list(mixed_items)
            rng.shuffle(shuffled)
            bom = aggregator.build_bom(shuffled)
            assert bom.to_dict() == baseline
            assert bom.totals_by_article == aggregator.build_bom(mixed_items).totals_by_article

    def test_cross_check_holds(self, aggregator, mixed_items):
        assert cross_check(aggregator.build_bom(mixed_items)) == []

    def test_cross_check_detects_tampering(self, aggregator, mixed_items):
        bom = aggregator.build_bom(mixed_items)
        tampered = BOM(
            by_shaft=bom.by_shaft,
            totals_by_article={**bom.totals_by_article, "367.045.16.1": 3},
            unassigned=bom.unassigned,
        )
        assert cross_check(tampered) == ["367.045.16.1"]

    def test_to_dict_shape(self, aggregator, mixed_items):
        data = aggregator.build_bom(mixed_items, pipe_type="Sunken").to_dict()
        assert set(data) == {
            "byShaft", "totalsByArticle", "unresolved", "unassigned",
            "pipeType", "shafts", "diagnostics",
        }
        line = data["byShaft"]["SH-01"][0]
        assert set(line) == {"articleNo", "description", "unit", "quantity", "category"}
        assert data["unassigned"][0]["shaftId"] is None
        assert data["totalsByArticle"]["367.045.16.1"] == 2
        assert data["pipeType"] == "Sunken"


# ===========================================================================
# Class 4: Unresolved summary
# ===========================================================================

class TestUnresolved:

    def test_dedupes_with_occurrences(self):
        miss = UnresolvedKey("wash-basin", 110, "straight-run")
        other = UnresolvedKey("urinal", 50, "reducer")
        summary = summarize_unresolved([(miss, "SH-02"), (other, None), (miss, "SH-01"), (miss, "SH-02")])
        assert summary == [
            {"category": "wash-basin", "diameter": 110, "subtype": "straight-run",
             "occurrences": 3, "shafts": ["SH-01", "SH-02"]},
            {"category": "urinal", "diameter": 50, "subtype": "reducer",
             "occurrences": 1, "shafts": []},
        ]
