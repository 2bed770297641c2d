"""
Material Aggregator — rolls resolved line items up per shaft and per article.

Two independent views are produced from the same line items:
  - by shaft:   (shaft, article) pairs merged by quantity summation
  - by article: a separate grand total over every item, assigned or not

Both are order-independent: PC quantities are integer sums and M quantities
are summed with math.fsum (exactly rounded), so shuffling the input never
changes the output. Items without a shaft are reported as "unassigned"; they
count towards the grand total only.
"""
import logging
import math
import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sanitary_bom.services.catalog_resolver import CatalogEntry, UnresolvedKey
from sanitary_bom.services.entity_classifier import CATEGORIES
from sanitary_bom.services.feature_estimator import UNIT_METRE, EntityFeature

logger = logging.getLogger("sanitary-aggregator")

# Relative tolerance for the shaft/article cross-check
CROSS_CHECK_REL_TOL = 1e-9

_SHAFT_NUMBER_RE = re.compile(r"(\d+)")


@dataclass(frozen=True)
class LineItem:
    article_no: str
    description: str
    unit: str               # PC / M
    quantity: float
    shaft_id: Optional[str]
    category: str
    categories: Tuple[str, ...] = ()  # every category merged into this line

    def to_dict(self, include_shaft: bool = False) -> Dict[str, Any]:
        data = {
            "articleNo": self.article_no,
            "description": self.description,
            "unit": self.unit,
            "quantity": _round_quantity(self.unit, self.quantity),
            "category": self.category,
        }
        if include_shaft:
            data["shaftId"] = self.shaft_id
        return data


@dataclass
class BOM:
    by_shaft: Dict[str, List[LineItem]] = field(default_factory=dict)
    totals_by_article: Dict[str, float] = field(default_factory=dict)
    unresolved: List[Dict[str, Any]] = field(default_factory=list)
    unassigned: List[LineItem] = field(default_factory=list)
    pipe_type: str = ""
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @property
    def shafts(self) -> List[str]:
        return list(self.by_shaft)

    def line_items(self) -> List[LineItem]:
        items = [item for shaft_items in self.by_shaft.values() for item in shaft_items]
        return items + list(self.unassigned)

    def unit_for(self, article_no: str) -> str:
        for item in self.line_items():
            if item.article_no == article_no:
                return item.unit
        return ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "byShaft": {
                shaft: [item.to_dict() for item in items]
                for shaft, items in self.by_shaft.items()
            },
            "totalsByArticle": {
                article: _round_quantity(self.unit_for(article), qty)
                for article, qty in self.totals_by_article.items()
            },
            "unresolved": list(self.unresolved),
            "unassigned": [item.to_dict(include_shaft=True) for item in self.unassigned],
            "pipeType": self.pipe_type,
            "shafts": self.shafts,
            "diagnostics": self.diagnostics,
        }


def _round_quantity(unit: str, quantity: float):
    if unit == UNIT_METRE:
        return round(quantity, 6)
    return int(quantity)


def _sum_quantities(unit: str, quantities: Iterable[float]):
    if unit == UNIT_METRE:
        return math.fsum(quantities)
    return sum(int(q) for q in quantities)


def _category_rank(category: str) -> Tuple[int, str]:
    try:
        return CATEGORIES.index(category), category
    except ValueError:
        return len(CATEGORIES), category


def shaft_sort_key(shaft_id: str) -> Tuple[int, str]:
    """SH-2 sorts before SH-10."""
    match = _SHAFT_NUMBER_RE.search(shaft_id)
    return (int(match.group(1)) if match else 0, shaft_id)


class MaterialAggregator:

    @staticmethod
    def to_line_item(feature: EntityFeature, entry: CatalogEntry) -> LineItem:
        """One catalog-resolved feature → one unmerged line item."""
        quantity = feature.length if entry.unit == UNIT_METRE else 1
        return LineItem(
            article_no=entry.article_no,
            description=entry.description,
            unit=entry.unit,
            quantity=quantity,
            shaft_id=feature.shaft_id,
            category=feature.category,
            categories=(feature.category,),
        )

    def merge(self, line_items: Iterable[LineItem]) -> List[LineItem]:
        """
        Merge items sharing (shaft, article) into one line each. The merged
        category is the first one in catalog category order.
        """
        groups: Dict[Tuple[Optional[str], str], List[LineItem]] = defaultdict(list)
        for item in line_items:
            if not item.article_no:
                raise ValueError(f"Line item without article number: {item}")
            groups[(item.shaft_id, item.article_no)].append(item)

        merged = []
        for (shaft_id, article_no), items in groups.items():
            first = items[0]
            categories = sorted({c for i in items for c in (i.categories or (i.category,))}, key=_category_rank)
            merged.append(LineItem(
                article_no=article_no,
                description=first.description,
                unit=first.unit,
                quantity=_sum_quantities(first.unit, (i.quantity for i in items)),
                shaft_id=shaft_id,
                category=categories[0],
                categories=tuple(categories),
            ))
        merged.sort(key=lambda i: (_category_rank(i.category), i.article_no))
        return merged

    def aggregate_by_shaft(self, line_items: Iterable[LineItem]) -> Dict[str, List[LineItem]]:
        """Shaft → merged, ordered line items. Items without a shaft are left out."""
        assigned = [item for item in line_items if item.shaft_id]
        by_shaft: Dict[str, List[LineItem]] = defaultdict(list)
        for item in self.merge(assigned):
            by_shaft[item.shaft_id].append(item)
        return {shaft: by_shaft[shaft] for shaft in sorted(by_shaft, key=shaft_sort_key)}

    def unassigned(self, line_items: Iterable[LineItem]) -> List[LineItem]:
        return self.merge(item for item in line_items if not item.shaft_id)

    def total_by_article(self, line_items: Iterable[LineItem]) -> Dict[str, float]:
        """Grand total per article over all items, summed directly from the line items."""
        contributions: Dict[str, List[float]] = defaultdict(list)
        units: Dict[str, str] = {}
        for item in line_items:
            contributions[item.article_no].append(item.quantity)
            units[item.article_no] = item.unit
        return {
            article: _sum_quantities(units[article], contributions[article])
            for article in sorted(contributions)
        }

    def build_bom(
        self,
        line_items: Iterable[LineItem],
        unresolved: Iterable[Tuple[UnresolvedKey, Optional[str]]] = (),
        pipe_type: str = "",
        diagnostics: Optional[Dict[str, Any]] = None,
    ) -> BOM:
        items = list(line_items)
        bom = BOM(
            by_shaft=self.aggregate_by_shaft(items),
            totals_by_article=self.total_by_article(items),
            unresolved=summarize_unresolved(unresolved),
            unassigned=self.unassigned(items),
            pipe_type=pipe_type,
            diagnostics=diagnostics or {},
        )
        mismatches = cross_check(bom)
        if mismatches:
            # Both views come from the same items; a mismatch is a programming error
            raise RuntimeError(f"BOM cross-check failed for articles: {', '.join(mismatches)}")
        logger.info(
            f"BOM built: {len(bom.by_shaft)} shaft(s), {len(bom.totals_by_article)} article(s), "
            f"{len(bom.unassigned)} unassigned, {len(bom.unresolved)} unresolved key(s)"
        )
        return bom


def summarize_unresolved(misses: Iterable[Tuple[UnresolvedKey, Optional[str]]]) -> List[Dict[str, Any]]:
    """One entry per missing key with its occurrence count and the shafts it was seen on."""
    counts: Dict[UnresolvedKey, int] = defaultdict(int)
    shafts: Dict[UnresolvedKey, set] = defaultdict(set)
    for key, shaft_id in misses:
        counts[key] += 1
        if shaft_id:
            shafts[key].add(shaft_id)
    ordered = sorted(counts, key=lambda k: (_category_rank(k.category), k.diameter, k.subtype))
    return [
        {**key.to_dict(), "occurrences": counts[key], "shafts": sorted(shafts[key], key=shaft_sort_key)}
        for key in ordered
    ]


def cross_check(bom: BOM) -> List[str]:
    """Articles whose grand total differs from per-shaft plus unassigned quantities."""
    contributions: Dict[str, List[float]] = defaultdict(list)
    for item in bom.line_items():
        contributions[item.article_no].append(item.quantity)

    mismatches = []
    for article in sorted(set(contributions) | set(bom.totals_by_article)):
        expected = math.fsum(contributions.get(article, []))
        actual = bom.totals_by_article.get(article, 0.0)
        if not math.isclose(expected, actual, rel_tol=CROSS_CHECK_REL_TOL, abs_tol=1e-9):
            mismatches.append(article)
    return mismatches
