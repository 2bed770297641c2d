"""
Extraction configuration — single source of truth for calibration tables,
naming conventions and environment-driven settings.

Import from here in all services rather than hardcoding values.
"""
from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


def _csv_env(name: str, default: str) -> list[str]:
    return [part.strip() for part in os.getenv(name, default).split(",") if part.strip()]


# ── Runtime settings ───────────────────────────────────────────────────────────

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON: bool = os.getenv("LOG_FORMAT", "json").lower() != "text"

MAX_UPLOAD_MB: float = float(os.getenv("MAX_UPLOAD_MB", "50"))

CORS_ORIGINS: list[str] = _csv_env("CORS_ORIGINS", "http://localhost:3000,http://localhost:3001")

# Optional CSV that replaces the built-in parts catalog at startup
CATALOG_CSV_PATH: str = os.getenv("CATALOG_CSV_PATH", "")

# ODA File Converter path for .dwg input; auto-detected when empty
ODA_CONVERTER_PATH: str = os.getenv("ODA_CONVERTER_PATH", "")

SUPPORTED_DRAWING_EXTENSIONS: tuple[str, ...] = (".dxf", ".dwg")


# ── Layer naming convention ────────────────────────────────────────────────────

# Glob-style patterns, matched case-insensitively against the full layer name
LAYER_PATTERNS: list[str] = _csv_env("LAYER_PATTERNS", "GEB*")

SHAFT_ID_PATTERN: str = r"SH-(\d+)"

# Shaft ids supplied by callers must look like SH-1 .. SH-99
SHAFT_ID_FORMAT: str = r"^SH-\d{1,2}$"


# ── Nominal diameters ──────────────────────────────────────────────────────────

NOMINAL_DIAMETERS: tuple[int, ...] = (50, 75, 110)

# Fallback when a block name carries no diameter cue
DEFAULT_BLOCK_DIAMETER: int = 50

# Catalog lookup subtypes; only straight runs are measured in metres
CATALOG_SUBTYPES: tuple[str, ...] = ("bend", "branch", "coupling", "reducer", "straight-run")
STRAIGHT_RUN_SUBTYPE: str = "straight-run"


# ── Calibration knobs (uncalibrated, pending domain review) ───────────────────

# Linear runs: (exclusive lower bound on run length, diameter), checked in order
RUN_LENGTH_BREAKPOINTS: list[tuple[float, int]] = [
    (50.0, 110),
    (20.0, 75),
]
RUN_LENGTH_FALLBACK_DIAMETER: int = 50

# Point markers: (exclusive lower bound on radius, fitting label), checked in order
MARKER_RADIUS_BANDS: list[tuple[float, str]] = [
    (50.0, "elbow"),
    (25.0, "tee"),
]
MARKER_RADIUS_FALLBACK_LABEL: str = "coupling"

# Circles at or above this radius are not fitting markers
MAX_MARKER_RADIUS: float = 1000.0


# ── Geometry tolerances ────────────────────────────────────────────────────────

CONNECTION_TOLERANCE: float = 0.5
BEND_ANGLE_DEG: float = 45.0
BEND_ANGLE_TOLERANCE_DEG: float = 5.0


# ── Fitting connectivity ───────────────────────────────────────────────────────

# Minimum number of runs a fitting must touch to count as properly connected
MIN_FITTING_CONNECTIONS: dict[str, int] = {
    "bend": 2,
    "branch": 3,
    "coupling": 2,
    "reducer": 2,
}


# ── Pipe sheet ─────────────────────────────────────────────────────────────────

PIPE_TYPES: tuple[str, ...] = ("Sunken", "Under Slung")

DEFAULT_CATEGORY: str = "vertical-shaft"
