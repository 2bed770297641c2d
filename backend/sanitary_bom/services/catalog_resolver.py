"""
Catalog Resolver — exact-match lookup of (category, diameter, subtype) onto
parts-catalog entries.

The catalog is static reference data, loaded once and never mutated. It is the
only place article numbers and descriptions come from. A missing key yields an
``UnresolvedKey`` that callers must surface; it is never turned into a blank
or zero-quantity line item.
"""
import functools
import logging
import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple, Union

import pandas as pd
from pydantic import ValidationError

from sanitary_bom import config
from sanitary_bom.models.catalog_schema import CatalogRow
from sanitary_bom.services.entity_classifier import (
    BATH_TUB,
    SHOWER_FLOOR_DRAIN,
    URINAL,
    VENT,
    VERTICAL_SHAFT,
    WASH_BASIN,
    WATER_CLOSET,
)

logger = logging.getLogger("sanitary-catalog")


class CatalogLoadError(ValueError):
    """A catalog source is inconsistent (bad row, conflicting article or key)."""


@dataclass(frozen=True)
class CatalogEntry:
    article_no: str
    unit: str
    description: str


class CatalogKey(NamedTuple):
    category: str
    diameter: int
    subtype: str


@dataclass(frozen=True)
class UnresolvedKey:
    category: str
    diameter: int
    subtype: str

    def to_dict(self) -> Dict:
        return {"category": self.category, "diameter": self.diameter, "subtype": self.subtype}


Resolution = Union[CatalogEntry, UnresolvedKey]


# ── Built-in catalog ──────────────────────────────────────────────────────────
# (article_no, unit, description, category, nominal class, subtype)
# Nominal class = nearest canonical size of the article's outside diameter
# (d56 → 50, d63 → 75). Reducers and branches are filed under their outlet.
# Rows without subtype are accessories, reachable by article number only.

BUILTIN_ROWS: Tuple[Tuple[str, str, str, str, int, Optional[str]], ...] = (
    # Wash basin / sink
    ("152.682.00.1", "PC", "sleeve EPDM for d50 50IRHD", WASH_BASIN, 50, None),
    ("152.796.00.1", "PC", "sleeve EPDM for d50 60IRHD", WASH_BASIN, 50, None),
    ("152.742.11.1", "PC", "drain assembly for cast iron 1 1/2''x40", WASH_BASIN, 50, None),
    ("361.802.92.1", "PC", "protective cap for pipe end PE-HD d50", WASH_BASIN, 50, None),
    ("361.000.16.0", "M", "pipe PE-HD d50x3 L5000", WASH_BASIN, 50, "straight-run"),
    ("361.045.16.1", "PC", "bend PE-HD 45G d50 L4.5", WASH_BASIN, 50, "bend"),
    ("361.088.16.1", "PC", "bend PE-HD 88.5G d50 L6", WASH_BASIN, 50, None),
    ("361.112.16.1", "PC", "Geberit HDPE Y-branch fitting 45°, dia.50/50", WASH_BASIN, 50, "branch"),
    ("361.162.16.1", "PC", "branch fitting PE-HD 88.5G d50/50", WASH_BASIN, 50, None),
    ("367.560.16.1", "PC", "reducer PE-HD d110/50 concentric", WASH_BASIN, 50, "reducer"),
    ("361.771.16.1", "PC", "electrofusion sleeve coupling PE-HD d50", WASH_BASIN, 50, "coupling"),
    # Urinals
    ("152.689.00.1", "PC", "sleeve EPDM for d56 50IRHD", URINAL, 50, None),
    ("363.000.16.0", "M", "pipe PE-HD d56x3 L500", URINAL, 50, "straight-run"),
    ("363.045.16.1", "PC", "bend PE-HD 45G d56 L4.5", URINAL, 50, "bend"),
    ("363.088.16.1", "PC", "bend PE-HD 88.5G d56 L6.5", URINAL, 50, None),
    ("363.115.16.1", "PC", "branch fitting PE-HD 45G d56/56", URINAL, 50, "branch"),
    ("363.165.16.1", "PC", "branch fitting PE-HD 88.5G d56/56", URINAL, 50, None),
    ("363.771.16.1", "PC", "electrofusion sleeve coupling PE-HD d56", URINAL, 50, "coupling"),
    # Shower / floor drain
    ("388.008.00.1", "PC", "Geberit collector drain", SHOWER_FLOOR_DRAIN, 110, None),
    ("367.802.92.1", "PC", "protective cap for pipe end PE-HD d110", SHOWER_FLOOR_DRAIN, 110, None),
    ("367.000.16.0", "M", "pipe PE-HD d110x4.3 L500", SHOWER_FLOOR_DRAIN, 110, "straight-run"),
    ("365.000.16.0", "M", "pipe PE-HD d75x3 L500", SHOWER_FLOOR_DRAIN, 75, "straight-run"),
    ("365.045.16.1", "PC", "bend PE-HD 45G d75 L5", SHOWER_FLOOR_DRAIN, 75, "bend"),
    ("365.088.16.1", "PC", "bend PE-HD 88.5G d75 L7.5", SHOWER_FLOOR_DRAIN, 75, None),
    ("365.115.16.1", "PC", "branch fitting PE-HD 45G d75/56", SHOWER_FLOOR_DRAIN, 50, "branch"),
    ("365.125.16.1", "PC", "branch fitting PE-HD 45G d75/75", SHOWER_FLOOR_DRAIN, 75, "branch"),
    ("365.771.16.1", "PC", "electrofusion sleeve coupling PE-HD d75", SHOWER_FLOOR_DRAIN, 75, "coupling"),
    # Bath tub
    ("152.693.00.1", "PC", "sleeve EPDM for d63 50IRHD", BATH_TUB, 75, None),
    ("364.000.16.0", "M", "pipe PE-HD d63x3 L500", BATH_TUB, 75, "straight-run"),
    ("364.730.16.1", "PC", "tubular trap PE-HD d63", BATH_TUB, 75, None),
    ("364.779.16.3", "PC", "Geberit HDPE ring seal socket with lip seal: d=63mm", BATH_TUB, 75, None),
    ("364.045.16.1", "PC", "bend PE-HD 45G d63 L5", BATH_TUB, 75, "bend"),
    ("365.571.16.1", "PC", "reducer PE-HD d75/63 L8 eccentric", BATH_TUB, 75, "reducer"),
    ("365.120.16.1", "PC", "branch fitting PE-HD 45G d75/63", BATH_TUB, 75, "branch"),
    ("364.771.16.1", "PC", "electrofusion sleeve coupling PE-HD d63", BATH_TUB, 75, "coupling"),
    # Water closet
    ("367.000.16.0", "M", "pipe PE-HD d110x4.3 L500", WATER_CLOSET, 110, "straight-run"),
    ("367.045.16.1", "PC", "bend PE-HD 45G d110 L6", WATER_CLOSET, 110, "bend"),
    ("367.088.16.1", "PC", "bend PE-HD 88.5G d110 L9.5", WATER_CLOSET, 110, None),
    ("367.576.16.1", "PC", "reducer PE-HD d110/75 L8 eccentric", WATER_CLOSET, 75, "reducer"),
    ("367.115.16.1", "PC", "branch fitting PE-HD 45G d110/110", WATER_CLOSET, 110, "branch"),
    ("367.125.16.1", "PC", "branch fitting PE-HD 88.5G d110/110", WATER_CLOSET, 110, None),
    ("367.771.16.1", "PC", "electrofusion sleeve coupling PE-HD d110", WATER_CLOSET, 110, "coupling"),
    # Vertical shaft
    ("367.000.16.0", "M", "pipe PE-HD d110x4.3 L500", VERTICAL_SHAFT, 110, "straight-run"),
    ("367.045.16.1", "PC", "bend PE-HD 45G d110 L6", VERTICAL_SHAFT, 110, "bend"),
    ("367.088.16.1", "PC", "bend PE-HD 88.5G d110 L9.5", VERTICAL_SHAFT, 110, None),
    ("367.771.16.1", "PC", "electrofusion sleeve coupling PE-HD d110", VERTICAL_SHAFT, 110, "coupling"),
    # Vent
    ("367.000.16.0", "M", "pipe PE-HD d110x4.3 L500", VENT, 110, "straight-run"),
    ("367.045.16.1", "PC", "bend PE-HD 45G d110 L6", VENT, 110, "bend"),
    ("367.088.16.1", "PC", "bend PE-HD 88.5G d110 L9.5", VENT, 110, None),
    ("367.771.16.1", "PC", "electrofusion sleeve coupling PE-HD d110", VENT, 110, "coupling"),
)

_CSV_COLUMNS = ["article_no", "unit", "description", "category", "diameter", "subtype"]


class SanitaryCatalog:
    """Immutable parts catalog with an exact (category, diameter, subtype) index."""

    def __init__(self, rows: Iterable[CatalogRow]):
        by_article: Dict[str, CatalogEntry] = {}
        by_key: Dict[CatalogKey, CatalogEntry] = {}
        by_category: Dict[str, List[CatalogEntry]] = {}

        for row in rows:
            entry = CatalogEntry(row.article_no, row.unit, row.description)
            known = by_article.get(row.article_no)
            if known is not None and known != entry:
                raise CatalogLoadError(
                    f"Article {row.article_no} defined twice with different unit/description"
                )
            by_article[row.article_no] = entry

            members = by_category.setdefault(row.category, [])
            if entry not in members:
                members.append(entry)

            if row.subtype is None:
                continue
            key = CatalogKey(row.category, row.diameter, row.subtype)
            taken = by_key.get(key)
            if taken is not None and taken != entry:
                raise CatalogLoadError(
                    f"Key {tuple(key)} maps to both {taken.article_no} and {entry.article_no}"
                )
            by_key[key] = entry

        self._by_article = MappingProxyType(by_article)
        self._by_key = MappingProxyType(by_key)
        self._by_category = MappingProxyType({k: tuple(v) for k, v in by_category.items()})
        logger.info(f"Catalog loaded: {len(by_article)} articles, {len(by_key)} lookup keys")

    # ── Construction ──────────────────────────────────────────────────────────

    @classmethod
    def from_records(cls, records: Iterable[Dict]) -> "SanitaryCatalog":
        rows = []
        for i, record in enumerate(records):
            try:
                rows.append(CatalogRow(**record))
            except ValidationError as e:
                raise CatalogLoadError(f"Catalog row {i}: {e.errors()[0]['msg']}") from e
        return cls(rows)

    @classmethod
    def builtin(cls) -> "SanitaryCatalog":
        return cls.from_records(dict(zip(_CSV_COLUMNS, row)) for row in BUILTIN_ROWS)

    @classmethod
    def from_csv(cls, path: str) -> "SanitaryCatalog":
        """Load a catalog CSV (columns: article_no, unit, description, category, diameter, subtype)."""
        df = pd.read_csv(path, dtype={"article_no": str, "subtype": str})
        missing = [c for c in _CSV_COLUMNS if c not in df.columns]
        if missing:
            raise CatalogLoadError(f"Catalog CSV {path} is missing columns: {', '.join(missing)}")
        records = []
        for rec in df[_CSV_COLUMNS].to_dict(orient="records"):
            subtype = rec["subtype"]
            if isinstance(subtype, float) and math.isnan(subtype):
                rec["subtype"] = None
            try:
                rec["diameter"] = int(rec["diameter"])
            except (TypeError, ValueError) as e:
                raise CatalogLoadError(f"Catalog CSV {path}: bad diameter {rec['diameter']!r}") from e
            records.append(rec)
        return cls.from_records(records)

    # ── Lookup ────────────────────────────────────────────────────────────────

    def resolve(self, category: str, diameter: int, subtype: str) -> Resolution:
        entry = self._by_key.get(CatalogKey(category, diameter, subtype))
        if entry is None:
            return UnresolvedKey(category, diameter, subtype)
        return entry

    def entry_for_article(self, article_no: str) -> Optional[CatalogEntry]:
        return self._by_article.get(article_no)

    def description_for_article(self, article_no: str) -> str:
        entry = self._by_article.get(article_no)
        return entry.description if entry else ""

    def contains(self, article_no: str) -> bool:
        return article_no in self._by_article

    def entries_for_category(self, category: str) -> Tuple[CatalogEntry, ...]:
        return self._by_category.get(category, ())

    @property
    def categories(self) -> Tuple[str, ...]:
        return tuple(self._by_category)

    @property
    def keys(self) -> Tuple[CatalogKey, ...]:
        return tuple(self._by_key)

    def __len__(self) -> int:
        return len(self._by_article)


@functools.lru_cache(maxsize=1)
def default_catalog() -> SanitaryCatalog:
    """Process-wide catalog: CATALOG_CSV_PATH when set, else the built-in table."""
    if config.CATALOG_CSV_PATH:
        logger.info(f"Loading catalog from {config.CATALOG_CSV_PATH}")
        return SanitaryCatalog.from_csv(config.CATALOG_CSV_PATH)
    return SanitaryCatalog.builtin()
