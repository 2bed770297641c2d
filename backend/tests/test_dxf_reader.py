"""
test_dxf_reader.py — Tests for DXF → entity record conversion.

Drawings are built in memory with ezdxf.new() and saved to tmp_path, so no
fixture files are needed.

Tests cover:
  - LWPOLYLINE / POLYLINE / CIRCLE / INSERT record shapes
  - Other entity types emitted as {type, layer}
  - read_bytes size / extension / content checks
  - .dwg input without a converter
  - Records feeding straight into the pipeline
"""

import ezdxf
import pytest

from sanitary_bom.services.dxf_reader import DrawingReadError, DxfReader, summarize_records


@pytest.fixture
def drawing_path(tmp_path):
    """A small drawing with one of every supported entity plus a TEXT and a LINE."""
    doc = ezdxf.new()
    doc.blocks.new(name="BEND-45-D110")
    msp = doc.modelspace()
    msp.add_lwpolyline([(0, 0), (30, 0), (30, 40)], dxfattribs={"layer": "GEB-SH-01-WB"})
    msp.add_polyline2d([(0, 0), (10, 0)], dxfattribs={"layer": "GEB-SH-02-WC"})
    msp.add_circle((5, 5), radius=30, dxfattribs={"layer": "GEB-SH-02-WC"})
    msp.add_blockref("BEND-45-D110", (60, 0), dxfattribs={"layer": "GEB-SH-02-WC", "rotation": 90})
    msp.add_text("NOTE", dxfattribs={"layer": "GEB-SH-01-WB"})
    msp.add_line((0, 0), (1, 1), dxfattribs={"layer": "LAYER0"})
    path = tmp_path / "drawing.dxf"
    doc.saveas(path)
    return path


@pytest.fixture
def reader():
    return DxfReader(max_upload_mb=1)


class TestReadFile:

    def test_record_types(self, reader, drawing_path):
        records = reader.read_file(str(drawing_path))
        assert [r["type"] for r in records] == [
            "LinearRun", "LinearRun", "PointMarker", "BlockInsert", "TEXT", "LINE",
        ]

    def test_lwpolyline_vertices(self, reader, drawing_path):
        run = reader.read_file(str(drawing_path))[0]
        assert run["layer"] == "GEB-SH-01-WB"
        assert [(v["x"], v["y"]) for v in run["vertices"]] == [(0, 0), (30, 0), (30, 40)]
        assert run["closed"] is False

    def test_polyline_vertices(self, reader, drawing_path):
        run = reader.read_file(str(drawing_path))[1]
        assert len(run["vertices"]) == 2
        assert run["vertices"][1]["x"] == pytest.approx(10.0)

    def test_circle(self, reader, drawing_path):
        marker = reader.read_file(str(drawing_path))[2]
        assert marker["radius"] == pytest.approx(30.0)
        assert marker["center"] == {"x": 5.0, "y": 5.0, "z": 0.0}

    def test_insert(self, reader, drawing_path):
        block = reader.read_file(str(drawing_path))[3]
        assert block["blockName"] == "BEND-45-D110"
        assert block["insertionPoint"]["x"] == pytest.approx(60.0)
        assert block["rotation"] == pytest.approx(90.0)
        assert block["scale"] == {"x": 1.0, "y": 1.0, "z": 1.0}

    def test_other_types_keep_layer_only(self, reader, drawing_path):
        text = reader.read_file(str(drawing_path))[4]
        assert set(text) == {"type", "layer", "handle"}
        assert text["layer"] == "GEB-SH-01-WB"

    def test_missing_file(self, reader, tmp_path):
        with pytest.raises(DrawingReadError):
            reader.read_file(str(tmp_path / "nope.dxf"))

    def test_summary(self, reader, drawing_path):
        summary = summarize_records(reader.read_file(str(drawing_path)))
        assert summary["total"] == 6
        assert summary["by_type"]["LinearRun"] == 2
        assert summary["layers"] == ["GEB-SH-01-WB", "GEB-SH-02-WC", "LAYER0"]


class TestReadBytes:

    def test_round_trip_through_bytes(self, reader, drawing_path):
        records = reader.read_bytes(drawing_path.read_bytes(), "upload.dxf")
        assert len(records) == 6

    def test_unsupported_extension(self, reader):
        with pytest.raises(DrawingReadError) as exc_info:
            reader.read_bytes(b"data", "plan.pdf")
        assert exc_info.value.status_code == 400

    def test_too_large(self):
        small = DxfReader(max_upload_mb=0.000001)
        with pytest.raises(DrawingReadError) as exc_info:
            small.read_bytes(b"x" * 4096, "big.dxf")
        assert exc_info.value.status_code == 413

    def test_check_size_boundary(self):
        small = DxfReader(max_upload_mb=1)
        small.check_size(small.max_upload_bytes)
        with pytest.raises(DrawingReadError) as exc_info:
            small.check_size(small.max_upload_bytes + 1)
        assert exc_info.value.status_code == 413

    def test_empty_upload(self, reader):
        with pytest.raises(DrawingReadError):
            reader.read_bytes(b"", "empty.dxf")

    def test_garbage_content(self, reader):
        with pytest.raises(DrawingReadError):
            reader.read_bytes(b"this is not a drawing", "junk.dxf")

    def test_dwg_without_converter(self, reader, monkeypatch):
        monkeypatch.setattr("sanitary_bom.services.dxf_reader._find_oda_converter", lambda configured="": None)
        with pytest.raises(DrawingReadError) as exc_info:
            reader.read_bytes(b"AC1032", "plan.dwg")
        assert "ODA" in str(exc_info.value)


class TestPipelineIntegration:

    def test_records_feed_pipeline(self, reader, drawing_path, pipeline, pipe_sheet):
        records = reader.read_file(str(drawing_path))
        result = pipeline.run(records, pipe_sheet)
        # TEXT counts as unrecognized, LINE on LAYER0 as off-convention
        counts = result.diagnostics.counts
        assert counts["unrecognized"] == 1
        assert counts["excluded_by_layer"] == 1
        assert result.bom.shafts == ["SH-02"]
        assert result.bom.unresolved[0]["category"] == "wash-basin"
