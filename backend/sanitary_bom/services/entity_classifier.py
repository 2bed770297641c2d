"""
Layer / Entity Classifier — turns generic drawing records into typed entities.

Steps per record:
  1. Layer filter   — only layers matching the naming convention (``GEB*``)
                      continue; everything else is dropped silently.
  2. Kind           — LinearRun / PointMarker / BlockInsert / Unrecognized.
  3. Geometry check — recognized kinds with unusable geometry are dropped
                      with a warning (upstream data corruption).
  4. Shaft + category tagging from the layer name.
"""
import fnmatch
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from sanitary_bom import config
from sanitary_bom.services import diagnostics as diag
from sanitary_bom.services.diagnostics import Diagnostics
from sanitary_bom.services.geometry_engine import Point, polyline_length

logger = logging.getLogger("sanitary-classifier")

_SHAFT_RE = re.compile(config.SHAFT_ID_PATTERN, re.IGNORECASE)
_SHAFT_FORMAT_RE = re.compile(config.SHAFT_ID_FORMAT)


class EntityKind(str, Enum):
    LINEAR_RUN = "LinearRun"
    POINT_MARKER = "PointMarker"
    BLOCK_INSERT = "BlockInsert"
    UNRECOGNIZED = "Unrecognized"


# DXF entity names produced by raw readers map onto the same kinds
_KIND_ALIASES = {
    "LINEARRUN": EntityKind.LINEAR_RUN,
    "LWPOLYLINE": EntityKind.LINEAR_RUN,
    "POLYLINE": EntityKind.LINEAR_RUN,
    "POINTMARKER": EntityKind.POINT_MARKER,
    "CIRCLE": EntityKind.POINT_MARKER,
    "BLOCKINSERT": EntityKind.BLOCK_INSERT,
    "INSERT": EntityKind.BLOCK_INSERT,
}

# ── Fixture categories ────────────────────────────────────────────────────────

WASH_BASIN = "wash-basin"
URINAL = "urinal"
SHOWER_FLOOR_DRAIN = "shower-floor-drain"
BATH_TUB = "bath-tub"
WATER_CLOSET = "water-closet"
VERTICAL_SHAFT = "vertical-shaft"
VENT = "vent"

CATEGORIES: Tuple[str, ...] = (
    WASH_BASIN, URINAL, SHOWER_FLOOR_DRAIN, BATH_TUB, WATER_CLOSET, VERTICAL_SHAFT, VENT,
)


def _token(pattern: str) -> re.Pattern:
    return re.compile(rf"(?<![A-Z0-9])(?:{pattern})(?![A-Z0-9])", re.IGNORECASE)


# Evaluated top to bottom; the first hit wins
CATEGORY_LAYER_RULES: List[Tuple[re.Pattern, str]] = [
    (_token(r"WB|WASH\W?BASIN|BASIN|SINK"), WASH_BASIN),
    (_token(r"UR|URINALS?"), URINAL),
    (_token(r"SHOWER|SHW|FD|FLOOR\W?DRAIN|DRAIN"), SHOWER_FLOOR_DRAIN),
    (_token(r"BT|BATH\W?TUB|BATH|TUB"), BATH_TUB),
    (_token(r"WC|TOILET|WATER\W?CLOSET"), WATER_CLOSET),
    (_token(r"VT|VENT"), VENT),
    (_token(r"VS|STACK|RISER"), VERTICAL_SHAFT),
]


# ── Entities ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class LinearRun:
    layer: str
    vertices: Tuple[Point, ...] = ()
    category: Optional[str] = None
    handle: str = ""

    @property
    def length(self) -> float:
        return polyline_length(self.vertices)


@dataclass(frozen=True)
class PointMarker:
    layer: str
    center: Optional[Point] = None
    radius: Optional[float] = None
    category: Optional[str] = None
    handle: str = ""


@dataclass(frozen=True)
class BlockInsert:
    layer: str
    block_name: str = ""
    insertion_point: Optional[Point] = None
    scale: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    rotation: float = 0.0
    category: Optional[str] = None
    handle: str = ""


@dataclass(frozen=True)
class UnrecognizedEntity:
    layer: str
    raw_type: str = ""
    handle: str = ""


Entity = Union[LinearRun, PointMarker, BlockInsert, UnrecognizedEntity]


@dataclass(frozen=True)
class ClassifiedEntity:
    entity: Entity
    kind: EntityKind
    shaft_id: Optional[str]
    category: str
    index: int = -1  # position in the input record list


@dataclass
class ClassificationResult:
    entities: List[ClassifiedEntity] = field(default_factory=list)
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    def of_kind(self, kind: EntityKind) -> List[ClassifiedEntity]:
        return [e for e in self.entities if e.kind == kind]


# ── Record parsing ────────────────────────────────────────────────────────────

def _point_or_none(raw) -> Optional[Point]:
    if not isinstance(raw, Mapping):
        return None
    try:
        return Point.from_mapping(raw)
    except (KeyError, TypeError, ValueError):
        return None


def _vertices(raw) -> Tuple[Point, ...]:
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        return ()
    points = tuple(_point_or_none(v) for v in raw)
    # A single unreadable vertex makes the whole run unusable
    if any(p is None for p in points):
        return ()
    return points


def _float_or_none(raw) -> Optional[float]:
    try:
        return float(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def _scale(raw) -> Tuple[float, float, float]:
    if isinstance(raw, Mapping):
        return (
            float(raw.get("x", 1.0)),
            float(raw.get("y", 1.0)),
            float(raw.get("z", 1.0)),
        )
    if isinstance(raw, (int, float)):
        return (float(raw),) * 3
    return (1.0, 1.0, 1.0)


def kind_of_record(record: Mapping) -> EntityKind:
    raw_type = str(record.get("type") or "").replace("_", "").replace(" ", "").upper()
    return _KIND_ALIASES.get(raw_type, EntityKind.UNRECOGNIZED)


def entity_from_record(record: Mapping) -> Entity:
    """Parse one generic reader record into a typed entity. Never raises."""
    layer = str(record.get("layer") or "")
    handle = str(record.get("handle") or "")
    category = record.get("category") or None
    kind = kind_of_record(record)

    if kind == EntityKind.LINEAR_RUN:
        return LinearRun(
            layer=layer,
            vertices=_vertices(record.get("vertices")),
            category=category,
            handle=handle,
        )
    if kind == EntityKind.POINT_MARKER:
        return PointMarker(
            layer=layer,
            center=_point_or_none(record.get("center")),
            radius=_float_or_none(record.get("radius")),
            category=category,
            handle=handle,
        )
    if kind == EntityKind.BLOCK_INSERT:
        try:
            scale = _scale(record.get("scale"))
        except (TypeError, ValueError):
            scale = (1.0, 1.0, 1.0)
        return BlockInsert(
            layer=layer,
            block_name=str(record.get("blockName") or record.get("block_name") or ""),
            insertion_point=_point_or_none(
                record.get("insertionPoint") or record.get("insertion_point")
            ),
            scale=scale,
            rotation=_float_or_none(record.get("rotation")) or 0.0,
            category=category,
            handle=handle,
        )
    return UnrecognizedEntity(layer=layer, raw_type=str(record.get("type") or ""), handle=handle)


# ── Layer helpers ─────────────────────────────────────────────────────────────

def extract_shaft_id(layer: Optional[str]) -> Optional[str]:
    """First ``SH-<digits>`` token in the layer name, upper-cased, or None."""
    if not layer:
        return None
    match = _SHAFT_RE.search(layer)
    return match.group(0).upper() if match else None


def is_valid_shaft_id(shaft_id: str) -> bool:
    return bool(shaft_id) and bool(_SHAFT_FORMAT_RE.match(shaft_id))


def category_for_layer(layer: Optional[str]) -> Optional[str]:
    if not layer:
        return None
    for pattern, category in CATEGORY_LAYER_RULES:
        if pattern.search(layer):
            return category
    return None


def unique_shaft_ids(entities: Iterable[Entity]) -> List[str]:
    shafts = {extract_shaft_id(e.layer) for e in entities}
    return sorted(s for s in shafts if s)


def filter_by_shaft(entities: Iterable[Entity], shaft_id: str) -> List[Entity]:
    wanted = shaft_id.upper()
    return [e for e in entities if extract_shaft_id(e.layer) == wanted]


def malformed_reason(entity: Entity) -> Optional[str]:
    """Why a recognized entity's geometry is unusable, or None when it is fine."""
    if isinstance(entity, LinearRun):
        if len(entity.vertices) < 2:
            return f"linear run has {len(entity.vertices)} usable vertices (need 2)"
        if entity.length <= 0.0:
            return "linear run has zero length"
    elif isinstance(entity, PointMarker):
        if entity.center is None:
            return "point marker has no center"
        if entity.radius is None or not (0.0 < entity.radius < config.MAX_MARKER_RADIUS):
            return f"point marker radius {entity.radius} outside (0, {config.MAX_MARKER_RADIUS:g})"
    elif isinstance(entity, BlockInsert):
        if not entity.block_name.strip():
            return "block insert has no block name"
        if entity.insertion_point is None:
            return "block insert has no insertion point"
    return None


# ── Classifier ────────────────────────────────────────────────────────────────

class EntityClassifier:
    """
    Filters raw records to the naming convention and tags the survivors.

    Args:
        layer_patterns: glob patterns (``*`` / ``?``), case-insensitive.
        default_category: category for entities whose record and layer carry
                          no fixture cue; None marks them uncategorized.
    """

    def __init__(
        self,
        layer_patterns: Optional[Sequence[str]] = None,
        default_category: Optional[str] = config.DEFAULT_CATEGORY,
    ):
        patterns = layer_patterns if layer_patterns is not None else config.LAYER_PATTERNS
        self.layer_patterns = [p.upper() for p in patterns]
        self.default_category = default_category

    def matches_naming_convention(self, layer: Optional[str]) -> bool:
        if not layer:
            return False
        upper = layer.upper()
        return any(fnmatch.fnmatchcase(upper, pattern) for pattern in self.layer_patterns)

    @staticmethod
    def classify(entity: Entity) -> EntityKind:
        if isinstance(entity, LinearRun):
            return EntityKind.LINEAR_RUN
        if isinstance(entity, PointMarker):
            return EntityKind.POINT_MARKER
        if isinstance(entity, BlockInsert):
            return EntityKind.BLOCK_INSERT
        return EntityKind.UNRECOGNIZED

    def category_for(self, entity: Entity) -> Optional[str]:
        explicit = getattr(entity, "category", None)
        if explicit:
            return str(explicit).strip().lower()
        return category_for_layer(entity.layer) or self.default_category

    def classify_records(self, records: Iterable[Mapping]) -> ClassificationResult:
        result = ClassificationResult()
        d = result.diagnostics

        for index, record in enumerate(records):
            entity = entity_from_record(record)
            if not self.matches_naming_convention(entity.layer):
                d.count(diag.EXCLUDED_BY_LAYER)
                continue

            kind = self.classify(entity)
            if kind == EntityKind.UNRECOGNIZED:
                d.count(diag.UNRECOGNIZED)
                continue

            reason = malformed_reason(entity)
            if reason:
                d.warn(diag.MALFORMED, f"Entity #{index} on layer {entity.layer}: {reason}")
                continue

            category = self.category_for(entity)
            if category is None:
                d.warn(diag.UNCATEGORIZED, f"Entity #{index} on layer {entity.layer}: no fixture category")
                continue

            result.entities.append(ClassifiedEntity(
                entity=entity,
                kind=kind,
                shaft_id=extract_shaft_id(entity.layer),
                category=category,
                index=index,
            ))

        logger.info(
            f"Classified {len(result.entities)} entities "
            f"({d.counts[diag.EXCLUDED_BY_LAYER]} off-convention, "
            f"{d.counts[diag.UNRECOGNIZED]} unrecognized, {d.counts[diag.MALFORMED]} malformed)"
        )
        return result
