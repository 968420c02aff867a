"""Ingestion endpoints.

Endpoints:
    POST /ingest        — Replace a knowledge base with a directory's contents
    POST /ingest/files  — Append individual files to a knowledge base

Both run synchronously; FastAPI executes them in its worker thread pool.
"""
import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.errors import KnowledgeBaseError

from .schemas import IngestFilesRequest, IngestFilesResponse, IngestRequest, IngestResponse
from .service import IngestionParams, IngestionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ingest", tags=["ingestion"])

_service: Optional[IngestionService] = None


def get_ingestion_service() -> Optional[IngestionService]:
    return _service


def set_ingestion_service(service: Optional[IngestionService]) -> None:
    global _service
    _service = service


def _log_progress(phase: str, current: int, total: int) -> None:
    logger.debug("[ingest] %s %d/%d", phase, current, total)


def _error(exc: Exception) -> JSONResponse:
    if isinstance(exc, KnowledgeBaseError):
        logger.warning("[ingest] %s", exc.message)
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)
    logger.exception("[ingest] Ingestion failed: %s", exc)
    return JSONResponse({"error": f"Ingestion failed: {exc}"}, status_code=500)


@router.post("", response_model=IngestResponse)
def ingest(request: IngestRequest) -> IngestResponse | JSONResponse:
    service = get_ingestion_service()
    if service is None:
        return JSONResponse({"error": "Ingestion service not configured"}, status_code=503)
    try:
        stats = service.ingest(IngestionParams(**request.model_dump()), progress=_log_progress)
    except Exception as exc:
        return _error(exc)
    return IngestResponse(**asdict(stats))


@router.post("/files", response_model=IngestFilesResponse)
def ingest_files(request: IngestFilesRequest) -> IngestFilesResponse | JSONResponse:
    service = get_ingestion_service()
    if service is None:
        return JSONResponse({"error": "Ingestion service not configured"}, status_code=503)
    try:
        result = service.ingest_files(request.name, list(request.files), progress=_log_progress)
    except Exception as exc:
        return _error(exc)
    return IngestFilesResponse(**asdict(result))
