"""
conftest.py — Shared pytest fixtures for the sanitary BOM backend test suite.

No network or external service fixtures are defined here. Service tests are
pure unit tests; API tests run the FastAPI app in-process via TestClient.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``sanitary_bom.*`` imports resolve correctly regardless of where pytest
    is invoked.
"""

import sys
import os
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any package imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


# ---------------------------------------------------------------------------
# Core service fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def catalog():
    """Built-in parts catalog (never mutated, safe to share)."""
    from sanitary_bom.services.catalog_resolver import SanitaryCatalog
    return SanitaryCatalog.builtin()


@pytest.fixture(scope="session")
def classifier():
    """EntityClassifier with the default GEB* convention and vertical-shaft fallback."""
    from sanitary_bom.services.entity_classifier import EntityClassifier
    return EntityClassifier()


@pytest.fixture(scope="session")
def estimator():
    """FeatureEstimator with the default calibration policies."""
    from sanitary_bom.services.feature_estimator import FeatureEstimator
    return FeatureEstimator()


@pytest.fixture(scope="session")
def aggregator():
    from sanitary_bom.services.material_aggregator import MaterialAggregator
    return MaterialAggregator()


@pytest.fixture(scope="session")
def pipeline(catalog):
    """MaterialPipeline over the built-in catalog."""
    from sanitary_bom.services.material_pipeline import MaterialPipeline
    return MaterialPipeline(catalog=catalog)


@pytest.fixture
def pipe_sheet():
    """
    A valid Sunken pipe sheet:
      WC 110, washbasin 50, MT 110, collector 110, length scale 1.0.
    """
    from sanitary_bom.models.pipe_sheet import PipeSheetConfig
    return PipeSheetConfig(
        pipe_type="Sunken",
        wc_dia_110=110,
        washbasin_dia_50=50,
        mt_dia_110=110,
        collector_dia_110=110,
    )


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------

def _pt(x, y, z=0.0):
    return {"x": x, "y": y, "z": z}


@pytest.fixture
def make_run():
    """Factory: LinearRun record from (x, y) pairs."""
    def _make(layer, *xy, category=None):
        record = {"type": "LinearRun", "layer": layer, "vertices": [_pt(x, y) for x, y in xy]}
        if category:
            record["category"] = category
        return record
    return _make


@pytest.fixture
def make_block():
    """Factory: BlockInsert record."""
    def _make(layer, name, x=0.0, y=0.0, category=None):
        record = {"type": "BlockInsert", "layer": layer, "blockName": name, "insertionPoint": _pt(x, y)}
        if category:
            record["category"] = category
        return record
    return _make


@pytest.fixture
def sample_records(make_run, make_block):
    """
    A small two-shaft drawing:
      SH-01 wash basin: one 70-unit run (d110, not in catalog) and one 10-unit run (d50)
      SH-02 water closet: two 60-unit runs meeting at a 45° bend block
      Off-convention layer: one block that must be ignored
      No shaft: one vent run (unassigned)
    """
    return [
        make_run("GEB-SH-01-WB", (0, 0), (30, 0), (30, 40)),
        make_run("GEB-SH-01-WB", (100, 0), (110, 0)),
        make_run("GEB-SH-02-WC", (0, 0), (60, 0)),
        make_run("GEB-SH-02-WC", (60, 0), (60, 60)),
        make_block("GEB-SH-02-WC", "BEND-45-D110", 60, 0),
        make_block("LAYER0", "VALVE-D50"),
        make_run("GEB-VENT", (0, 0), (0, 80)),
    ]
