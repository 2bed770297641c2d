"""
Material Pipeline — one synchronous extraction pass over a drawing's records.

    records → classify → estimate → resolve → aggregate → ExtractionResult

The pipeline object is stateless between runs: it holds only the read-only
catalog and the estimator policies. Anything a caller wants to keep between
requests goes into a ``MaterialSession`` it owns.
"""
import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sanitary_bom.models.pipe_sheet import CATEGORY_DIAMETER_FIELDS, PipeSheetConfig, ensure_valid_pipe_sheet
from sanitary_bom.services import diagnostics as diag
from sanitary_bom.services.catalog_resolver import SanitaryCatalog, UnresolvedKey, default_catalog
from sanitary_bom.services.diagnostics import Diagnostics
from sanitary_bom.services.entity_classifier import (
    ClassificationResult,
    ClassifiedEntity,
    EntityClassifier,
    EntityKind,
)
from sanitary_bom.services.feature_estimator import EntityFeature, FeatureEstimator, Subtype
from sanitary_bom.services.material_aggregator import BOM, LineItem, MaterialAggregator
from sanitary_bom.services.perf_monitor import timed, tracker

logger = logging.getLogger("sanitary-pipeline")


@dataclass
class ExtractionResult:
    run_id: str
    entities: List[EntityFeature]
    bom: BOM
    diagnostics: Diagnostics = field(default_factory=Diagnostics)
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "entities": [f.to_dict() for f in self.entities],
            "bom": self.bom.to_dict(),
            "diagnostics": self.diagnostics.to_dict(),
            "duration_ms": self.duration_ms,
        }


class MaterialPipeline:
    """
    Args:
        catalog:        parts catalog; the process-wide default when omitted.
        estimator:      feature estimator with its calibration policies.
        layer_patterns: naming-convention globs for the classifier.
    """

    def __init__(
        self,
        catalog: Optional[SanitaryCatalog] = None,
        estimator: Optional[FeatureEstimator] = None,
        layer_patterns: Optional[Sequence[str]] = None,
        aggregator: Optional[MaterialAggregator] = None,
    ):
        self.catalog = catalog or default_catalog()
        self.estimator = estimator or FeatureEstimator()
        self.layer_patterns = layer_patterns
        self.aggregator = aggregator or MaterialAggregator()

    def run(
        self,
        records: Iterable[Mapping],
        pipe_sheet: Optional[PipeSheetConfig],
        workers: int = 1,
        run_id: Optional[str] = None,
    ) -> ExtractionResult:
        """
        Run the full extraction. Raises ``ConfigurationError`` before touching
        any record when the pipe sheet is unusable; otherwise returns a
        complete result or propagates the failure.
        """
        run_id = run_id or uuid.uuid4().hex[:12]
        start = time.perf_counter()
        try:
            pipe_sheet = ensure_valid_pipe_sheet(pipe_sheet)
            records = list(records)
            logger.info(f"Run {run_id}: {len(records)} record(s), pipe type {pipe_sheet.pipe_type}",
                        extra={"run_id": run_id})

            diagnostics = Diagnostics()
            classification = self.classify(records, pipe_sheet)
            diagnostics.merge(classification.diagnostics)

            features, estimate_diag = self.estimate(classification, pipe_sheet, workers)
            diagnostics.merge(estimate_diag)
            diagnostics.merge(check_configured_diameters(features, pipe_sheet))

            line_items, misses = self.resolve(features)
            bom = self.aggregate(line_items, misses, pipe_sheet, diagnostics)
        except Exception:
            tracker.record_run_failed()
            raise

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        tracker.record_run_complete(duration_ms)
        logger.info(
            f"Run {run_id} finished: {len(features)} feature(s), {len(bom.unresolved)} unresolved key(s)",
            extra={"run_id": run_id, "duration_ms": duration_ms},
        )
        return ExtractionResult(
            run_id=run_id,
            entities=features,
            bom=bom,
            diagnostics=diagnostics,
            duration_ms=duration_ms,
        )

    # ── Stages ────────────────────────────────────────────────────────────────

    @timed("classify")
    def classify(self, records: Sequence[Mapping], pipe_sheet: PipeSheetConfig) -> ClassificationResult:
        classifier = EntityClassifier(
            layer_patterns=self.layer_patterns,
            default_category=pipe_sheet.default_category,
        )
        return classifier.classify_records(records)

    @timed("estimate")
    def estimate(
        self,
        classification: ClassificationResult,
        pipe_sheet: PipeSheetConfig,
        workers: int = 1,
    ) -> Tuple[List[EntityFeature], Diagnostics]:
        """Estimate every classified entity; results keep input order regardless of ``workers``."""
        runs = classification.of_kind(EntityKind.LINEAR_RUN)

        def _one(item: ClassifiedEntity):
            return self.estimator.estimate(item, runs, pipe_sheet.length_scale)

        items = classification.entities
        if workers > 1 and len(items) > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                outcomes = list(pool.map(_one, items))
        else:
            outcomes = [_one(item) for item in items]

        features: List[EntityFeature] = []
        diagnostics = Diagnostics()
        for feature, d in outcomes:
            diagnostics.merge(d)
            if feature is not None:
                features.append(feature)
        return features, diagnostics

    @timed("resolve")
    def resolve(self, features: Sequence[EntityFeature]) -> Tuple[List[LineItem], List[Tuple[UnresolvedKey, Optional[str]]]]:
        line_items: List[LineItem] = []
        misses: List[Tuple[UnresolvedKey, Optional[str]]] = []
        for feature in features:
            resolution = self.catalog.resolve(feature.category, feature.diameter, feature.subtype.value)
            if isinstance(resolution, UnresolvedKey):
                misses.append((resolution, feature.shaft_id))
            else:
                line_items.append(self.aggregator.to_line_item(feature, resolution))

        for key in sorted({m[0] for m in misses}, key=lambda k: (k.category, k.diameter, k.subtype)):
            logger.warning(f"Catalog miss: category={key.category} diameter={key.diameter} subtype={key.subtype}")
        return line_items, misses

    @timed("aggregate")
    def aggregate(
        self,
        line_items: Sequence[LineItem],
        misses: Sequence[Tuple[UnresolvedKey, Optional[str]]],
        pipe_sheet: PipeSheetConfig,
        diagnostics: Diagnostics,
    ) -> BOM:
        bom = self.aggregator.build_bom(
            line_items,
            unresolved=misses,
            pipe_type=pipe_sheet.pipe_type,
            diagnostics=diagnostics.to_dict(include_warnings=False),
        )
        missing = [s for s in pipe_sheet.shafts if s not in bom.by_shaft]
        if missing:
            logger.info(f"Expected shaft(s) without material: {', '.join(missing)}")
        return bom


def check_configured_diameters(features: Iterable[EntityFeature], pipe_sheet: PipeSheetConfig) -> Diagnostics:
    """
    Count straight runs whose inferred diameter differs from the diameter the
    pipe sheet configures for their category. The inferred value is kept.
    """
    d = Diagnostics()
    for feature in features:
        if feature.subtype != Subtype.STRAIGHT_RUN or feature.category not in CATEGORY_DIAMETER_FIELDS:
            continue
        configured = pipe_sheet.diameter_for(feature.category)
        if configured and feature.diameter != configured:
            d.count(diag.DIAMETER_MISMATCH)
            logger.debug(
                f"Entity #{feature.index}: inferred d{feature.diameter}, "
                f"pipe sheet says d{configured:g} for {feature.category}"
            )
    return d


class MaterialSession:
    """
    Holder for the last drawing's records and the last extraction result.
    Each load or store replaces the previous content wholesale.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._records: List[Dict] = []
        self._source: str = ""
        self._result: Optional[ExtractionResult] = None

    def load_entities(self, records: Iterable[Mapping], source: str = "") -> int:
        snapshot = [dict(r) for r in records]
        with self._lock:
            self._records = snapshot
            self._source = source
            self._result = None
        return len(snapshot)

    def store_result(self, result: ExtractionResult) -> None:
        with self._lock:
            self._result = result

    def clear(self) -> None:
        with self._lock:
            self._records = []
            self._source = ""
            self._result = None

    @property
    def records(self) -> List[Dict]:
        with self._lock:
            return [dict(r) for r in self._records]

    @property
    def source(self) -> str:
        return self._source

    @property
    def result(self) -> Optional[ExtractionResult]:
        return self._result

    @property
    def has_entities(self) -> bool:
        return bool(self._records)
