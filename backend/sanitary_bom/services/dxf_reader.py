"""
DXF/DWG reader — turns a drawing into the generic entity records the
extraction pipeline consumes.

Only model space is walked. Supported geometry:
  - LWPOLYLINE / POLYLINE → {type, layer, vertices, closed}
  - CIRCLE                → {type, layer, center, radius}
  - INSERT                → {type, layer, insertionPoint, blockName, scale, rotation}
Every other entity is emitted as {type: <dxftype>, layer} so the classifier
can count it as unrecognized.

Dependencies:
  - ezdxf (required)
  - ODA File Converter (optional, for .dwg → .dxf conversion)
"""
import os
import shutil
import logging
import tempfile
import subprocess
from collections import Counter
from typing import Dict, List, Optional

import ezdxf

from sanitary_bom import config

logger = logging.getLogger("sanitary-dxf")

ODA_TIMEOUT_S = 120


class DrawingReadError(Exception):
    """The drawing cannot be turned into entity records."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


# ── DWG → DXF Conversion ─────────────────────────────────────────────────────

def _find_oda_converter(configured: str = "") -> Optional[str]:
    """Attempt to locate ODA File Converter on disk."""
    if configured and os.path.isfile(configured):
        return configured

    candidates = [
        r"C:\Program Files\ODA\ODAFileConverter\ODAFileConverter.exe",
        "/usr/bin/ODAFileConverter",
        "/usr/local/bin/ODAFileConverter",
    ]
    for c in candidates:
        if os.path.isfile(c):
            return c
    return shutil.which("ODAFileConverter")


def convert_dwg_to_dxf(input_path: str, converter: str = "") -> str:
    """
    Convert a .dwg file to .dxf using ODA File Converter.
    Returns the path of the generated .dxf file.
    """
    oda = _find_oda_converter(converter or config.ODA_CONVERTER_PATH)
    if not oda:
        raise DrawingReadError(
            "ODA File Converter not found; .dwg input needs it. "
            "Set ODA_CONVERTER_PATH or upload a .dxf file."
        )

    input_dir = os.path.dirname(os.path.abspath(input_path))
    output_dir = tempfile.mkdtemp(prefix="sanitary_dwg_")
    basename = os.path.basename(input_path)
    dxf_name = os.path.splitext(basename)[0] + ".dxf"

    try:
        result = subprocess.run(
            [oda, input_dir, output_dir, "ACAD2018", "DXF", "0", "1", basename],
            capture_output=True,
            timeout=ODA_TIMEOUT_S,
        )
    except subprocess.TimeoutExpired as e:
        raise DrawingReadError(f"ODA File Converter timed out ({ODA_TIMEOUT_S}s limit)") from e

    dxf_path = os.path.join(output_dir, dxf_name)
    if os.path.isfile(dxf_path):
        return dxf_path
    # ODA may have changed the filename slightly
    for f in os.listdir(output_dir):
        if f.lower().endswith(".dxf"):
            return os.path.join(output_dir, f)
    raise DrawingReadError(
        f"ODA conversion produced no .dxf output. "
        f"Exit code: {result.returncode}, stderr: {result.stderr.decode(errors='replace')[:500]}"
    )


# ── Entity → record ───────────────────────────────────────────────────────────

def _xyz(vec) -> Dict[str, float]:
    return {"x": float(vec[0]), "y": float(vec[1]), "z": float(vec[2]) if len(vec) > 2 else 0.0}


def _lwpolyline_record(entity, base: Dict) -> Dict:
    elevation = float(entity.dxf.elevation)
    vertices = [{"x": float(x), "y": float(y), "z": elevation} for x, y in entity.get_points("xy")]
    return {**base, "type": "LinearRun", "vertices": vertices, "closed": bool(entity.closed)}


def _polyline_record(entity, base: Dict) -> Dict:
    vertices = [_xyz(p) for p in entity.points()]
    return {**base, "type": "LinearRun", "vertices": vertices, "closed": bool(entity.is_closed)}


def _circle_record(entity, base: Dict) -> Dict:
    return {
        **base,
        "type": "PointMarker",
        "center": _xyz(entity.dxf.center),
        "radius": float(entity.dxf.radius),
    }


def _insert_record(entity, base: Dict) -> Dict:
    return {
        **base,
        "type": "BlockInsert",
        "blockName": entity.dxf.name,
        "insertionPoint": _xyz(entity.dxf.insert),
        "scale": {
            "x": float(entity.dxf.xscale),
            "y": float(entity.dxf.yscale),
            "z": float(entity.dxf.zscale),
        },
        "rotation": float(entity.dxf.rotation),
    }


_CONVERTERS = {
    "LWPOLYLINE": _lwpolyline_record,
    "POLYLINE": _polyline_record,
    "CIRCLE": _circle_record,
    "INSERT": _insert_record,
}


def entity_to_record(entity) -> Dict:
    """One ezdxf entity → one generic record."""
    dxftype = entity.dxftype()
    base = {"layer": entity.dxf.get("layer", "0"), "handle": entity.dxf.get("handle", "")}
    converter = _CONVERTERS.get(dxftype)
    if converter is None:
        return {**base, "type": dxftype}
    return converter(entity, base)


# ── Reader ────────────────────────────────────────────────────────────────────

class DxfReader:
    """
    Reads .dxf (native ezdxf) and .dwg (via ODA) drawings into entity records.

    Args:
        max_upload_mb: size limit for byte uploads; larger input is rejected.
        oda_converter_path: explicit ODA File Converter executable.
    """

    def __init__(self, max_upload_mb: float = config.MAX_UPLOAD_MB, oda_converter_path: str = ""):
        self.max_upload_mb = max_upload_mb
        self.oda_converter_path = oda_converter_path

    @property
    def max_upload_bytes(self) -> int:
        return int(self.max_upload_mb * 1024 * 1024)

    def check_size(self, size: int) -> None:
        """Reject an upload of ``size`` bytes when it exceeds the limit (413)."""
        if size > self.max_upload_bytes:
            raise DrawingReadError(
                f"File too large: {size / (1024 * 1024):.1f} MB exceeds the {self.max_upload_mb:g} MB limit",
                status_code=413,
            )

    def read_file(self, file_path: str) -> List[Dict]:
        ext = os.path.splitext(file_path)[1].lower()
        if ext not in config.SUPPORTED_DRAWING_EXTENSIONS:
            raise DrawingReadError(f"Unsupported file format: {ext or '(none)'}. Expected .dwg or .dxf")
        if not os.path.isfile(file_path):
            raise DrawingReadError(f"File not found: {file_path}")

        dxf_path = file_path
        if ext == ".dwg":
            dxf_path = convert_dwg_to_dxf(file_path, self.oda_converter_path)
            logger.info(f"DWG converted to DXF: {dxf_path}")

        try:
            doc = ezdxf.readfile(dxf_path)
        except (IOError, ezdxf.DXFStructureError) as e:
            raise DrawingReadError(f"Failed to read DXF file: {e}") from e
        return self.read_document(doc, source=os.path.basename(file_path))

    def read_bytes(self, data: bytes, filename: str = "upload.dxf") -> List[Dict]:
        """Read an uploaded drawing; the bytes are spooled to a temp file for ezdxf."""
        ext = os.path.splitext(filename)[1].lower()
        if ext not in config.SUPPORTED_DRAWING_EXTENSIONS:
            raise DrawingReadError(f"Unsupported file format: {ext or '(none)'}. Expected .dwg or .dxf")

        self.check_size(len(data))
        if not data:
            raise DrawingReadError("Uploaded file is empty")

        fd, tmp_path = tempfile.mkstemp(suffix=ext)
        try:
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(data)
            return self.read_file(tmp_path)
        finally:
            os.unlink(tmp_path)

    def read_document(self, doc, source: str = "") -> List[Dict]:
        """Walk model space of an already loaded ezdxf document."""
        records = [entity_to_record(entity) for entity in doc.modelspace()]
        kinds = Counter(r["type"] for r in records)
        logger.info(
            f"Read {len(records)} entities from {source or 'document'} "
            f"({', '.join(f'{k}={v}' for k, v in sorted(kinds.items()))})"
        )
        return records


def summarize_records(records: List[Dict]) -> Dict:
    """Counts per record type and the sorted set of layers, for upload responses."""
    return {
        "total": len(records),
        "by_type": dict(Counter(r.get("type", "") for r in records)),
        "layers": sorted({r.get("layer", "") for r in records}),
    }
