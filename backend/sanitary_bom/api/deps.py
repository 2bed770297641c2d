"""FastAPI dependency injection: per-app pipeline objects held on app.state."""
from fastapi import HTTPException, Request, status

from sanitary_bom.services.dxf_reader import DxfReader
from sanitary_bom.services.material_pipeline import ExtractionResult, MaterialPipeline, MaterialSession
from sanitary_bom.services.report_writer import BomWorkbookWriter


def get_session(request: Request) -> MaterialSession:
    return request.app.state.session


def get_pipeline(request: Request) -> MaterialPipeline:
    return request.app.state.pipeline


def get_reader(request: Request) -> DxfReader:
    return request.app.state.reader


def get_writer(request: Request) -> BomWorkbookWriter:
    return request.app.state.writer


def require_result(request: Request) -> ExtractionResult:
    """The last extraction result; 400 when materials were never calculated."""
    result = get_session(request).result
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No materials calculated yet. Upload a drawing and call /api/calculate-materials first.",
        )
    return result
