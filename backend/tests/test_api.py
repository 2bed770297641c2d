"""
test_api.py — HTTP tests for the FastAPI app via TestClient.

Tests cover:
  - /health, /metrics, / index
  - Upload → calculate → inspect → export → clear flow
  - Error mapping: invalid pipe sheet (400 with details), no drawing (400),
    unreadable upload (400), oversized upload (413)
  - Request tracing headers
"""

import io
import zipfile

import ezdxf
import pytest
from fastapi.testclient import TestClient


VALID_SHEET = {
    "pipe_type": "Sunken",
    "wc_dia_110": 110,
    "washbasin_dia_50": 50,
    "mt_dia_110": 110,
    "collector_dia_110": 110,
}


@pytest.fixture
def client():
    from sanitary_bom.main import app
    with TestClient(app) as c:
        yield c
        c.delete("/api/materials")


@pytest.fixture
def dxf_bytes(tmp_path):
    doc = ezdxf.new()
    doc.blocks.new(name="BEND-45-D110")
    msp = doc.modelspace()
    msp.add_lwpolyline([(0, 0), (10, 0)], dxfattribs={"layer": "GEB-SH-01-WB"})
    msp.add_lwpolyline([(0, 0), (60, 0)], dxfattribs={"layer": "GEB-SH-02-WC"})
    msp.add_lwpolyline([(60, 0), (60, 60)], dxfattribs={"layer": "GEB-SH-02-WC"})
    msp.add_blockref("BEND-45-D110", (60, 0), dxfattribs={"layer": "GEB-SH-02-WC"})
    msp.add_blockref("BEND-45-D110", (0, 0), dxfattribs={"layer": "LAYER0"})
    path = tmp_path / "plan.dxf"
    doc.saveas(path)
    return path.read_bytes()


def _upload(client, content, filename="plan.dxf"):
    return client.post(
        "/api/process-cad",
        files={"cad_file": (filename, io.BytesIO(content), "application/octet-stream")},
    )


class TestServiceEndpoints:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "active"
        assert body["catalog_articles"] > 0

    def test_index_lists_endpoints(self, client):
        assert "calculate_materials" in client.get("/").json()["endpoints"]

    def test_metrics(self, client):
        body = client.get("/metrics").json()
        assert "runs_processed" in body
        assert "uptime_seconds" in body

    def test_request_id_header(self, client):
        response = client.get("/health", headers={"X-Request-ID": "trace-1"})
        assert response.headers["X-Request-ID"] == "trace-1"
        assert "X-Process-Time" in response.headers


class TestMaterialFlow:

    def test_full_flow(self, client, dxf_bytes):
        upload = _upload(client, dxf_bytes)
        assert upload.status_code == 200
        assert upload.json()["entities"]["total"] == 5

        calc = client.post("/api/calculate-materials", json=VALID_SHEET)
        assert calc.status_code == 200
        bom = calc.json()
        assert bom["shafts"] == ["SH-01", "SH-02"]
        sh02 = {line["articleNo"]: line["quantity"] for line in bom["byShaft"]["SH-02"]}
        assert sh02 == {"367.000.16.0": 120.0, "367.045.16.1": 1}
        assert bom["diagnostics"]["counts"]["excluded_by_layer"] == 1
        assert bom["warnings"] == []

        materials = client.get("/api/materials", params={"shaft": "sh-02"}).json()
        assert materials["total"] == 2
        assert {i["shaftId"] for i in materials["items"]} == {"SH-02"}

        by_category = client.get("/api/materials", params={"category": "wash-basin"}).json()
        assert [i["articleNo"] for i in by_category["items"]] == ["361.000.16.0"]

        entities = client.get("/api/entities").json()
        assert len(entities["features"]) == 4

        export = client.post("/api/export-excel", json={"shafts": ["SH-02"]})
        assert export.status_code == 200
        assert "attachment" in export.headers["content-disposition"]
        assert zipfile.is_zipfile(io.BytesIO(export.content))

        assert client.delete("/api/materials").status_code == 200
        assert client.get("/api/materials").status_code == 400

    def test_export_without_body(self, client, dxf_bytes):
        _upload(client, dxf_bytes)
        client.post("/api/calculate-materials", json=VALID_SHEET)
        assert client.post("/api/export-excel").status_code == 200

    def test_materials_limit(self, client, dxf_bytes):
        _upload(client, dxf_bytes)
        client.post("/api/calculate-materials", json=VALID_SHEET)
        body = client.get("/api/materials", params={"limit": 1}).json()
        assert body["total"] == 3
        assert len(body["items"]) == 1


class TestErrorMapping:

    def test_invalid_sheet_lists_every_violation(self, client, dxf_bytes):
        _upload(client, dxf_bytes)
        response = client.post("/api/calculate-materials", json={"pipe_type": "Floating"})
        assert response.status_code == 400
        assert len(response.json()["details"]) == 5

    def test_calculate_without_drawing(self, client):
        client.delete("/api/materials")
        response = client.post("/api/calculate-materials", json=VALID_SHEET)
        assert response.status_code == 400

    def test_export_without_result(self, client):
        client.delete("/api/materials")
        assert client.post("/api/export-excel").status_code == 400

    def test_unsupported_upload(self, client):
        response = _upload(client, b"%PDF-1.4", filename="plan.pdf")
        assert response.status_code == 400
        assert response.json()["error"] == "Drawing could not be read"

    def test_unreadable_dxf(self, client):
        assert _upload(client, b"not a drawing").status_code == 400

    def test_oversized_upload(self, client, monkeypatch):
        monkeypatch.setattr(client.app.state.reader, "max_upload_mb", 0.000001)
        assert _upload(client, b"x" * 4096).status_code == 413

    def test_oversized_upload_rejected_before_parsing(self, client, monkeypatch):
        reader = client.app.state.reader
        monkeypatch.setattr(reader, "max_upload_mb", 0.001)

        def _never_called(data, filename):
            raise AssertionError("oversized upload reached the reader")

        monkeypatch.setattr(reader, "read_bytes", _never_called)
        response = _upload(client, b"x" * 64 * 1024)
        assert response.status_code == 413
        assert not client.get("/health").json()["drawing_loaded"]
