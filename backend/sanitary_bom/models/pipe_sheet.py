"""
Per-run pipe sheet configuration.

The pipe sheet is validated as a whole before any entity is touched; every
violation is reported at once so the caller can fix everything in one pass.
Configured diameters are checked against inferred ones, never substituted.
"""
import logging
import re
from typing import List, Optional

from pydantic import BaseModel

from sanitary_bom import config
from sanitary_bom.services.entity_classifier import (
    CATEGORIES,
    SHOWER_FLOOR_DRAIN,
    VERTICAL_SHAFT,
    WASH_BASIN,
    WATER_CLOSET,
)

logger = logging.getLogger("sanitary-pipeline")

_SHAFT_FORMAT_RE = re.compile(config.SHAFT_ID_FORMAT)

# Configured diameter field per fixture category
CATEGORY_DIAMETER_FIELDS = {
    WATER_CLOSET: "wc_dia_110",
    WASH_BASIN: "washbasin_dia_50",
    VERTICAL_SHAFT: "mt_dia_110",
    SHOWER_FLOOR_DRAIN: "collector_dia_110",
}

_REQUIRED_DIAMETERS = (
    ("wc_dia_110", "WC Dia 110"),
    ("washbasin_dia_50", "Washbasin Dia 50"),
    ("mt_dia_110", "MT Dia 110"),
    ("collector_dia_110", "Collector Dia 110"),
)


class ConfigurationError(ValueError):
    """The pipe sheet cannot be used; carries every violation found."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid configuration")


class PipeSheetConfig(BaseModel):
    """Caller-supplied configuration for one extraction run."""
    pipe_type: Optional[str] = None            # "Sunken" | "Under Slung"
    wc_dia_110: float = 0.0
    washbasin_dia_50: float = 0.0
    mt_dia_110: float = 0.0
    collector_dia_110: float = 0.0
    default_category: Optional[str] = config.DEFAULT_CATEGORY
    length_scale: float = 1.0                  # drawing units → M quantity
    shafts: List[str] = []                     # expected shafts, optional

    model_config = {"json_schema_extra": {
        "example": {
            "pipe_type": "Sunken",
            "wc_dia_110": 110,
            "washbasin_dia_50": 50,
            "mt_dia_110": 110,
            "collector_dia_110": 110,
            "shafts": ["SH-01", "SH-02"],
        }
    }}

    def diameter_for(self, fixture: str) -> float:
        """Configured diameter for a fixture name or category; 0.0 when none applies."""
        key = fixture.strip().lower()
        if key in ("wc", "water closet", WATER_CLOSET):
            return self.wc_dia_110
        if key in ("washbasin", "wash basin", WASH_BASIN):
            return self.washbasin_dia_50
        if key in ("mt", "manhole", VERTICAL_SHAFT):
            return self.mt_dia_110
        if key in ("collector", SHOWER_FLOOR_DRAIN):
            return self.collector_dia_110
        return 0.0


def validate_pipe_sheet(pipe_sheet: Optional[PipeSheetConfig]) -> List[str]:
    """Every violation in the pipe sheet; an empty list means it is usable."""
    if pipe_sheet is None:
        return ["Pipe sheet configuration is required"]

    errors: List[str] = []
    if not pipe_sheet.pipe_type:
        errors.append("Pipe type is required")
    elif pipe_sheet.pipe_type not in config.PIPE_TYPES:
        errors.append('Invalid pipe type. Must be "Sunken" or "Under Slung"')

    for field_name, label in _REQUIRED_DIAMETERS:
        value = getattr(pipe_sheet, field_name)
        if value <= 0:
            errors.append(f"{label} must be greater than 0")
        elif value not in config.NOMINAL_DIAMETERS:
            errors.append(f"{label} must be one of {', '.join(map(str, config.NOMINAL_DIAMETERS))}")

    if pipe_sheet.default_category is not None and pipe_sheet.default_category not in CATEGORIES:
        errors.append(f"Unknown default category: {pipe_sheet.default_category}")

    if pipe_sheet.length_scale <= 0:
        errors.append("Length scale must be greater than 0")

    for shaft in pipe_sheet.shafts:
        if not _SHAFT_FORMAT_RE.match(shaft):
            errors.append(f"Invalid shaft number: {shaft} (expected SH-<1-2 digits>)")

    return errors


def ensure_valid_pipe_sheet(pipe_sheet: Optional[PipeSheetConfig]) -> PipeSheetConfig:
    errors = validate_pipe_sheet(pipe_sheet)
    if errors:
        logger.warning(f"Pipe sheet rejected with {len(errors)} violation(s)")
        raise ConfigurationError(errors)
    return pipe_sheet
