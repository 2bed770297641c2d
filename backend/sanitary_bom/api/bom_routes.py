"""BOM API — drawing upload, material calculation, export and inspection."""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from sanitary_bom.api.deps import get_pipeline, get_reader, get_session, get_writer, require_result
from sanitary_bom.models.pipe_sheet import PipeSheetConfig
from sanitary_bom.services.dxf_reader import DxfReader, summarize_records
from sanitary_bom.services.material_pipeline import ExtractionResult, MaterialPipeline, MaterialSession
from sanitary_bom.services.report_writer import BomWorkbookWriter

logger = logging.getLogger("sanitary-api")

router = APIRouter(prefix="/api", tags=["Sanitary BOM"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class ExportRequest(BaseModel):
    shafts: Optional[List[str]] = None


# ─── Drawing upload ──────────────────────────────────────────────────────────

@router.post("/process-cad")
async def process_cad(
    cad_file: UploadFile = File(...),
    reader: DxfReader = Depends(get_reader),
    session: MaterialSession = Depends(get_session),
):
    """
    Read an uploaded .dxf/.dwg drawing into entity records and keep them in
    the session for the next calculation. Replaces any previous drawing.
    """
    filename = cad_file.filename or "upload.dxf"
    reader.check_size(cad_file.size or 0)
    # One byte past the limit is enough to know the upload is too large
    data = await cad_file.read(reader.max_upload_bytes + 1)
    reader.check_size(len(data))
    records = await run_in_threadpool(reader.read_bytes, data, filename)
    session.load_entities(records, source=filename)
    logger.info(f"Drawing {filename} loaded: {len(records)} record(s)")
    return {
        "message": "Drawing processed",
        "filename": filename,
        "entities": summarize_records(records),
    }


# ─── Calculation ─────────────────────────────────────────────────────────────

@router.post("/calculate-materials")
async def calculate_materials(
    pipe_sheet: PipeSheetConfig,
    request: Request,
    workers: int = Query(1, ge=1, le=32),
    pipeline: MaterialPipeline = Depends(get_pipeline),
    session: MaterialSession = Depends(get_session),
):
    """Run the extraction on the stored drawing and keep the result in the session."""
    if not session.has_entities:
        raise HTTPException(400, "No drawing loaded. Upload one via /api/process-cad first.")

    run_id = getattr(request.state, "request_id", None)
    result: ExtractionResult = await run_in_threadpool(
        pipeline.run, session.records, pipe_sheet, workers, run_id
    )
    session.store_result(result)
    return {
        "run_id": result.run_id,
        "source": session.source,
        "duration_ms": result.duration_ms,
        **result.bom.to_dict(),
        "warnings": list(result.diagnostics.warnings),
    }


# ─── Export ──────────────────────────────────────────────────────────────────

@router.post("/export-excel")
async def export_excel(
    body: Optional[ExportRequest] = None,
    result: ExtractionResult = Depends(require_result),
    writer: BomWorkbookWriter = Depends(get_writer),
):
    shafts = body.shafts if body and body.shafts else None
    content = await run_in_threadpool(writer.write, result.bom, shafts)
    filename = f"sanitary_bom_{result.run_id}.xlsx"
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ─── Inspection ──────────────────────────────────────────────────────────────

@router.get("/materials")
async def list_materials(
    shaft: Optional[str] = None,
    category: Optional[str] = None,
    limit: int = Query(100, ge=1, le=10000),
    result: ExtractionResult = Depends(require_result),
):
    """Flattened line items of the last run, optionally filtered by shaft and category."""
    bom = result.bom
    items = []
    for shaft_id, shaft_items in bom.by_shaft.items():
        if shaft and shaft_id != shaft.upper():
            continue
        items.extend(i.to_dict(include_shaft=True) for i in shaft_items)
    if not shaft:
        items.extend(i.to_dict(include_shaft=True) for i in bom.unassigned)
    if category:
        items = [i for i in items if i["category"] == category.lower()]
    return {
        "total": len(items),
        "items": items[:limit],
        "shafts": bom.shafts,
        "unresolved": bom.unresolved,
    }


@router.get("/entities")
async def list_entities(
    limit: int = Query(100, ge=1, le=10000),
    session: MaterialSession = Depends(get_session),
):
    """Records of the loaded drawing and, once calculated, the estimated features."""
    if not session.has_entities:
        raise HTTPException(400, "No drawing loaded. Upload one via /api/process-cad first.")
    result = session.result
    return {
        "source": session.source,
        "entities": summarize_records(session.records),
        "features": [f.to_dict() for f in result.entities[:limit]] if result else [],
        "diagnostics": result.diagnostics.to_dict() if result else None,
    }


@router.delete("/materials")
async def clear_materials(session: MaterialSession = Depends(get_session)):
    session.clear()
    logger.info("Session cleared")
    return {"message": "Session cleared"}
