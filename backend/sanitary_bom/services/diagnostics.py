"""
Per-run counters for entities the pipeline absorbs instead of failing on.

Warnings name entities by their position in the input record list, so they
depend on record order. Counters do not.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List

logger = logging.getLogger("sanitary-pipeline")

EXCLUDED_BY_LAYER = "excluded_by_layer"
UNRECOGNIZED = "unrecognized"
MALFORMED = "malformed"
UNKNOWN_BLOCK = "unknown_block"
UNCATEGORIZED = "uncategorized"
DIAMETER_MISMATCH = "diameter_mismatch"
COERCED_DIAMETER = "coerced_diameter"
UNDER_CONNECTED = "under_connected"

COUNTER_NAMES = (
    EXCLUDED_BY_LAYER,
    UNRECOGNIZED,
    MALFORMED,
    UNKNOWN_BLOCK,
    UNCATEGORIZED,
    DIAMETER_MISMATCH,
    COERCED_DIAMETER,
    UNDER_CONNECTED,
)


@dataclass
class Diagnostics:
    counts: Counter = field(default_factory=Counter)
    warnings: List[str] = field(default_factory=list)

    def count(self, name: str, n: int = 1) -> None:
        self.counts[name] += n

    def warn(self, name: str, message: str) -> None:
        """Count ``name`` and keep ``message`` for the caller."""
        self.counts[name] += 1
        self.warnings.append(message)
        logger.warning(message)

    def merge(self, other: "Diagnostics") -> None:
        self.counts.update(other.counts)
        self.warnings.extend(other.warnings)

    def to_dict(self, include_warnings: bool = True) -> Dict:
        data = {"counts": {name: self.counts.get(name, 0) for name in COUNTER_NAMES}}
        if include_warnings:
            data["warnings"] = list(self.warnings)
        return data
