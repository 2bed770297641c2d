"""
Feature Estimator — nominal diameter and fitting subtype per classified entity.

Each entity kind has its own swappable policy:
  - LinearRun   → RunDiameterPolicy   (run length breakpoints → diameter)
  - PointMarker → MarkerPolicy        (radius bands → fitting; diameter = 2r)
  - BlockInsert → BlockNameRules      (ordered keyword table → fitting;
                                       D<n> token / DN band → diameter)

These are calibrated-threshold heuristics, not drawing-standard facts. All
diameters leave this module snapped onto the canonical set {50, 75, 110}.
"""
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from sanitary_bom import config
from sanitary_bom.services import diagnostics as diag
from sanitary_bom.services.diagnostics import Diagnostics
from sanitary_bom.services.entity_classifier import (
    BlockInsert,
    ClassifiedEntity,
    EntityKind,
    LinearRun,
    PointMarker,
)
from sanitary_bom.services.geometry_engine import has_angle_near, point_touches_polyline

logger = logging.getLogger("sanitary-estimator")


class Subtype(str, Enum):
    BEND = "bend"
    BRANCH = "branch"
    COUPLING = "coupling"
    REDUCER = "reducer"
    STRAIGHT_RUN = "straight-run"


# Raw fitting labels → canonical subtype
LABEL_SUBTYPES: Dict[str, Subtype] = {
    "bend": Subtype.BEND,
    "elbow": Subtype.BEND,
    "branch": Subtype.BRANCH,
    "tee": Subtype.BRANCH,
    "coupling": Subtype.COUPLING,
    "reducer": Subtype.REDUCER,
    "straight-run": Subtype.STRAIGHT_RUN,
}

UNIT_PIECE = "PC"
UNIT_METRE = "M"


def snap_to_nominal(value: float, nominal: Sequence[int] = config.NOMINAL_DIAMETERS) -> int:
    """
    Nearest canonical diameter. An exact tie between two neighbours resolves
    to the larger one.
    """
    return min(nominal, key=lambda d: (abs(d - value), -d))


# ── Policies ──────────────────────────────────────────────────────────────────

class RunDiameterPolicy:
    """First breakpoint whose (exclusive) length bound is exceeded wins."""

    def __init__(
        self,
        breakpoints: Optional[Sequence[Tuple[float, int]]] = None,
        fallback: int = config.RUN_LENGTH_FALLBACK_DIAMETER,
    ):
        self.breakpoints = list(breakpoints if breakpoints is not None else config.RUN_LENGTH_BREAKPOINTS)
        self.fallback = fallback

    def diameter_for(self, length: float) -> int:
        for bound, diameter in self.breakpoints:
            if length > bound:
                return diameter
        return self.fallback


class MarkerPolicy:
    """Radius bands checked in order; the fallback label covers small markers."""

    def __init__(
        self,
        bands: Optional[Sequence[Tuple[float, str]]] = None,
        fallback_label: str = config.MARKER_RADIUS_FALLBACK_LABEL,
    ):
        self.bands = list(bands if bands is not None else config.MARKER_RADIUS_BANDS)
        self.fallback_label = fallback_label

    def label_for(self, radius: float) -> str:
        for bound, label in self.bands:
            if radius > bound:
                return label
        return self.fallback_label

    @staticmethod
    def diameter_for(radius: float) -> float:
        return 2.0 * radius


def _rule(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE)


# Ordered rule table: the first matching pattern decides the fitting label.
# Primary vocabulary first, secondary cues after it.
DEFAULT_BLOCK_RULES: List[Tuple[re.Pattern, str]] = [
    (_rule(r"BEND"), "bend"),
    (_rule(r"BRANCH"), "branch"),
    (_rule(r"COUPLING"), "coupling"),
    (_rule(r"REDUCER"), "reducer"),
    (_rule(r"TEE"), "tee"),
    (_rule(r"ELBOW"), "elbow"),
    (_rule(r"(?<!\d)45(?!\d)|ANGLE"), "bend"),
    (_rule(r"(?<![A-Z0-9])Y(?![A-Z])"), "branch"),
    (_rule(r"COUPLE|JOINT"), "coupling"),
]

_EXPLICIT_DIAMETER_RE = re.compile(r"(?<![A-Z])D(\d+(?:\.\d+)?)", re.IGNORECASE)
_BAND_DIAMETER_RE = re.compile(r"(?<!\d)(?:DN)?(50|75|110)(?!\d)", re.IGNORECASE)


class BlockNameRules:
    def __init__(
        self,
        rules: Optional[Sequence[Tuple[re.Pattern, str]]] = None,
        default_diameter: int = config.DEFAULT_BLOCK_DIAMETER,
    ):
        self.rules = list(rules if rules is not None else DEFAULT_BLOCK_RULES)
        self.default_diameter = default_diameter

    def label_for(self, block_name: str) -> Optional[str]:
        for pattern, label in self.rules:
            if pattern.search(block_name):
                return label
        return None

    def diameter_for(self, block_name: str) -> Tuple[float, str]:
        """Returns (diameter, source) where source is explicit / band / default."""
        explicit = _EXPLICIT_DIAMETER_RE.search(block_name)
        if explicit:
            return float(explicit.group(1)), "explicit"
        band = _BAND_DIAMETER_RE.search(block_name)
        if band:
            return float(band.group(1)), "band"
        return float(self.default_diameter), "default"


# ── Output ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EntityFeature:
    index: int
    kind: EntityKind
    layer: str
    shaft_id: Optional[str]
    category: str
    diameter: int
    subtype: Subtype
    label: str                     # raw fitting label before canonicalisation
    measured: float                # run length, marker 2r, or parsed block diameter
    length: float = 0.0            # scaled run length (M quantity); 0 for fittings
    block_name: str = ""
    has_45_degree_bend: bool = False
    connections: Optional[int] = None

    @property
    def unit(self) -> str:
        return UNIT_METRE if self.subtype == Subtype.STRAIGHT_RUN else UNIT_PIECE

    def to_dict(self) -> Dict:
        return {
            "index": self.index,
            "type": self.kind.value,
            "layer": self.layer,
            "shaft_id": self.shaft_id,
            "category": self.category,
            "diameter": self.diameter,
            "subtype": self.subtype.value,
            "label": self.label,
            "measured": round(self.measured, 4),
            "length": round(self.length, 4),
            "unit": self.unit,
            "block_name": self.block_name,
            "has_45_degree_bend": self.has_45_degree_bend,
            "connections": self.connections,
        }


@dataclass
class EstimationResult:
    features: List[EntityFeature] = field(default_factory=list)
    diagnostics: Diagnostics = field(default_factory=Diagnostics)


# ── Estimator ─────────────────────────────────────────────────────────────────

class FeatureEstimator:

    def __init__(
        self,
        run_policy: Optional[RunDiameterPolicy] = None,
        marker_policy: Optional[MarkerPolicy] = None,
        block_rules: Optional[BlockNameRules] = None,
        connection_tolerance: float = config.CONNECTION_TOLERANCE,
        min_connections: Optional[Dict[str, int]] = None,
    ):
        self.run_policy = run_policy or RunDiameterPolicy()
        self.marker_policy = marker_policy or MarkerPolicy()
        self.block_rules = block_rules or BlockNameRules()
        self.connection_tolerance = connection_tolerance
        self.min_connections = min_connections if min_connections is not None else config.MIN_FITTING_CONNECTIONS

    def estimate(
        self,
        item: ClassifiedEntity,
        runs: Sequence[ClassifiedEntity] = (),
        length_scale: float = 1.0,
    ) -> Tuple[Optional[EntityFeature], Diagnostics]:
        """
        Estimate one entity. ``runs`` are the classified linear runs of the
        drawing, used for fitting connectivity. Returns (feature or None, diagnostics).
        """
        d = Diagnostics()
        entity = item.entity

        if isinstance(entity, LinearRun):
            length = entity.length
            diameter = self._coerce(self.run_policy.diameter_for(length), item, d)
            return EntityFeature(
                index=item.index,
                kind=item.kind,
                layer=entity.layer,
                shaft_id=item.shaft_id,
                category=item.category,
                diameter=diameter,
                subtype=Subtype.STRAIGHT_RUN,
                label=Subtype.STRAIGHT_RUN.value,
                measured=length,
                length=length * length_scale,
                has_45_degree_bend=has_angle_near(entity.vertices),
            ), d

        if isinstance(entity, PointMarker):
            label = self.marker_policy.label_for(entity.radius)
            raw_diameter = self.marker_policy.diameter_for(entity.radius)
            return EntityFeature(
                index=item.index,
                kind=item.kind,
                layer=entity.layer,
                shaft_id=item.shaft_id,
                category=item.category,
                diameter=self._coerce(raw_diameter, item, d),
                subtype=LABEL_SUBTYPES[label],
                label=label,
                measured=raw_diameter,
            ), d

        if isinstance(entity, BlockInsert):
            label = self.block_rules.label_for(entity.block_name)
            if label is None:
                d.warn(
                    diag.UNKNOWN_BLOCK,
                    f"Entity #{item.index}: block '{entity.block_name}' has no recognizable fitting type",
                )
                return None, d
            raw_diameter, _source = self.block_rules.diameter_for(entity.block_name)
            subtype = LABEL_SUBTYPES[label]
            connections = self._count_connections(item, runs)
            minimum = self.min_connections.get(subtype.value, 1)
            if connections < minimum:
                d.warn(
                    diag.UNDER_CONNECTED,
                    f"Entity #{item.index}: {label} '{entity.block_name}' touches "
                    f"{connections} run(s), expected at least {minimum}",
                )
            return EntityFeature(
                index=item.index,
                kind=item.kind,
                layer=entity.layer,
                shaft_id=item.shaft_id,
                category=item.category,
                diameter=self._coerce(raw_diameter, item, d),
                subtype=subtype,
                label=label,
                measured=raw_diameter,
                block_name=entity.block_name,
                connections=connections,
            ), d

        return None, d

    def _coerce(self, raw: float, item: ClassifiedEntity, d: Diagnostics) -> int:
        snapped = snap_to_nominal(raw)
        if snapped != raw:
            d.count(diag.COERCED_DIAMETER)
            logger.debug(f"Entity #{item.index}: diameter {raw:g} coerced to {snapped}")
        return snapped

    def _count_connections(self, item: ClassifiedEntity, runs: Sequence[ClassifiedEntity]) -> int:
        point = item.entity.insertion_point
        return sum(
            1 for run in runs
            if run.shaft_id == item.shaft_id
            and point_touches_polyline(point, run.entity.vertices, self.connection_tolerance)
        )
