"""
test_pipe_sheet.py — Unit tests for per-run pipe sheet validation.

Tests cover:
  - A valid sheet produces no violations
  - Every violation is reported at once (no first-error short-circuit)
  - ConfigurationError carries the full list
  - diameter_for fixture aliases
"""

import pytest

from sanitary_bom.models.pipe_sheet import (
    ConfigurationError,
    PipeSheetConfig,
    ensure_valid_pipe_sheet,
    validate_pipe_sheet,
)


class TestValidatePipeSheet:

    def test_valid_sheet(self, pipe_sheet):
        assert validate_pipe_sheet(pipe_sheet) == []
        assert ensure_valid_pipe_sheet(pipe_sheet) is pipe_sheet

    def test_under_slung_is_accepted(self, pipe_sheet):
        sheet = pipe_sheet.model_copy(update={"pipe_type": "Under Slung"})
        assert validate_pipe_sheet(sheet) == []

    def test_missing_sheet(self):
        assert validate_pipe_sheet(None) == ["Pipe sheet configuration is required"]

    def test_all_violations_reported(self):
        """Empty sheet: pipe type plus four diameters → five violations."""
        errors = validate_pipe_sheet(PipeSheetConfig())
        assert len(errors) == 5
        assert "Pipe type is required" in errors
        assert "WC Dia 110 must be greater than 0" in errors
        assert "Collector Dia 110 must be greater than 0" in errors

    def test_unknown_pipe_type(self, pipe_sheet):
        sheet = pipe_sheet.model_copy(update={"pipe_type": "Floating"})
        assert validate_pipe_sheet(sheet) == ['Invalid pipe type. Must be "Sunken" or "Under Slung"']

    def test_non_canonical_diameter(self, pipe_sheet):
        sheet = pipe_sheet.model_copy(update={"washbasin_dia_50": 63})
        [error] = validate_pipe_sheet(sheet)
        assert error.startswith("Washbasin Dia 50 must be one of")

    def test_bad_shaft_format_and_scale(self, pipe_sheet):
        sheet = pipe_sheet.model_copy(update={"shafts": ["SH-01", "shaft 2"], "length_scale": 0})
        errors = validate_pipe_sheet(sheet)
        assert len(errors) == 2
        assert any("shaft 2" in e for e in errors)

    def test_unknown_default_category(self, pipe_sheet):
        sheet = pipe_sheet.model_copy(update={"default_category": "kitchen"})
        assert validate_pipe_sheet(sheet) == ["Unknown default category: kitchen"]

    def test_ensure_raises_with_every_error(self):
        with pytest.raises(ConfigurationError) as exc_info:
            ensure_valid_pipe_sheet(PipeSheetConfig(pipe_type="Sunken"))
        assert len(exc_info.value.errors) == 4


class TestDiameterFor:

    @pytest.mark.parametrize("fixture,expected", [
        ("WC", 110), ("water closet", 110), ("water-closet", 110),
        ("washbasin", 50), ("Wash Basin", 50),
        ("mt", 110), ("manhole", 110), ("vertical-shaft", 110),
        ("collector", 110), ("shower-floor-drain", 110),
        ("urinal", 0.0),
    ])
    def test_aliases(self, pipe_sheet, fixture, expected):
        assert pipe_sheet.diameter_for(fixture) == expected
