"""
Sanitary BOM API
FastAPI backend: DXF/DWG intake, sanitary material extraction per shaft,
Excel export.
"""
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from sanitary_bom import config
from sanitary_bom.models.pipe_sheet import ConfigurationError
from sanitary_bom.services.catalog_resolver import CatalogLoadError, default_catalog
from sanitary_bom.services.dxf_reader import DrawingReadError, DxfReader
from sanitary_bom.services.logging_config import setup_logging
from sanitary_bom.services.material_pipeline import MaterialPipeline, MaterialSession
from sanitary_bom.services.middleware import RequestTimingMiddleware
from sanitary_bom.services.perf_monitor import tracker as perf_tracker
from sanitary_bom.services.report_writer import BomWorkbookWriter

setup_logging(level=config.LOG_LEVEL, json_output=config.LOG_JSON)
logger = logging.getLogger("sanitary-api")

VERSION = "1.0.0"

# Record process start time for uptime calculation
_PROCESS_START = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    catalog = default_catalog()
    app.state.pipeline = MaterialPipeline(catalog=catalog)
    app.state.session = MaterialSession()
    app.state.reader = DxfReader()
    app.state.writer = BomWorkbookWriter()
    logger.info(f"Catalog ready: {len(catalog)} articles in {len(catalog.categories)} categories")
    yield
    app.state.session.clear()


app = FastAPI(
    title="Sanitary BOM API",
    version=VERSION,
    description="Bill of materials for sanitary drainage, extracted per shaft from DXF drawings",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "X-Requested-With", "X-Request-ID"],
    expose_headers=["X-Request-ID", "X-Process-Time", "Content-Disposition"],
)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    return JSONResponse(status_code=400, content={"error": "Invalid configuration", "details": exc.errors})


@app.exception_handler(DrawingReadError)
async def drawing_error_handler(request: Request, exc: DrawingReadError):
    logger.warning(f"Drawing rejected: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"error": "Drawing could not be read", "details": [str(exc)]})


@app.exception_handler(CatalogLoadError)
async def catalog_error_handler(request: Request, exc: CatalogLoadError):
    logger.error(f"Catalog error: {exc}")
    return JSONResponse(status_code=500, content={"error": "Catalog unavailable", "details": [str(exc)]})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error", "details": [str(exc)]})


# Routers
from sanitary_bom.api.bom_routes import router as bom_router  # noqa: E402

app.include_router(bom_router)


@app.get("/")
async def index():
    return {
        "name": "Sanitary BOM API",
        "version": VERSION,
        "endpoints": {
            "health": "GET /health",
            "metrics": "GET /metrics",
            "process_cad": "POST /api/process-cad",
            "calculate_materials": "POST /api/calculate-materials",
            "export_excel": "POST /api/export-excel",
            "materials": "GET /api/materials",
            "entities": "GET /api/entities",
            "clear": "DELETE /api/materials",
        },
    }


@app.get("/health")
async def health_check(request: Request):
    session = getattr(request.app.state, "session", None)
    return {
        "status": "active",
        "version": VERSION,
        "catalog_articles": len(default_catalog()),
        "drawing_loaded": bool(session and session.has_entities),
        "result_available": bool(session and session.result is not None),
    }


@app.get("/metrics")
async def metrics():
    """
    Pipeline throughput, average run duration and per-stage timings, sourced
    from the in-process PipelineTracker singleton.
    """
    snapshot = perf_tracker.get_metrics()
    return {
        "uptime_seconds": round(time.monotonic() - _PROCESS_START, 1),
        **snapshot,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("sanitary_bom.main:app", host="0.0.0.0", port=8000, reload=True)
