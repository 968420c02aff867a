"""Knowledge-base management endpoints.

Endpoints:
    GET    /knowledgebases                              — List knowledge bases
    POST   /knowledgebases                              — Create an empty one
    GET    /knowledgebases/{name}/stats                 — Chunk statistics
    GET    /knowledgebases/{name}/documents             — Per-document summary
    POST   /knowledgebases/{name}/rename                — Copy to a new name
    DELETE /knowledgebases/{name}                       — Drop
    DELETE /knowledgebases/{name}/documents?path=...    — Drop one document
    DELETE /knowledgebases/{name}/chunk-sets/{ts}       — Drop one ingestion run
"""
import logging
from dataclasses import asdict
from typing import Callable, Optional, TypeVar

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from app.errors import KnowledgeBaseError

from .schemas import (
    CreateKnowledgeBaseRequest,
    DeleteResponse,
    DocumentItem,
    DocumentListResponse,
    KnowledgeBaseItem,
    KnowledgeBaseListResponse,
    KnowledgeBaseStatsResponse,
    RenameKnowledgeBaseRequest,
    RenameResponse,
)
from .service import KnowledgeBaseService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/knowledgebases", tags=["knowledgebases"])

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Singleton service management
# ---------------------------------------------------------------------------

_service: Optional[KnowledgeBaseService] = None


def get_knowledgebase_service() -> Optional[KnowledgeBaseService]:
    return _service


def set_knowledgebase_service(service: Optional[KnowledgeBaseService]) -> None:
    global _service
    _service = service


def _call(op: str, fn: Callable[[KnowledgeBaseService], T]) -> T | JSONResponse:
    """Run *fn* against the service, mapping errors to JSON responses."""
    service = get_knowledgebase_service()
    if service is None:
        logger.warning("[knowledgebases/%s] Service not configured — returning 503", op)
        return JSONResponse({"error": "Knowledge base service not configured"}, status_code=503)
    try:
        return fn(service)
    except KnowledgeBaseError as exc:
        logger.warning("[knowledgebases/%s] %s", op, exc.message)
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)
    except Exception as exc:
        logger.exception("[knowledgebases/%s] Failed: %s", op, exc)
        return JSONResponse({"error": f"{op} failed: {exc}"}, status_code=500)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("", response_model=KnowledgeBaseListResponse)
def list_knowledgebases():
    return _call(
        "list",
        lambda s: KnowledgeBaseListResponse(
            knowledgebases=[KnowledgeBaseItem(**asdict(i)) for i in s.list_knowledgebases()]
        ),
    )


@router.post("", response_model=KnowledgeBaseItem, status_code=201)
def create_knowledgebase(request: CreateKnowledgeBaseRequest):
    return _call("create", lambda s: KnowledgeBaseItem(**asdict(s.create_empty(request.name))))


@router.get("/{name}/stats", response_model=KnowledgeBaseStatsResponse)
def get_stats(name: str):
    return _call("stats", lambda s: KnowledgeBaseStatsResponse(**asdict(s.get_stats(name))))


@router.get("/{name}/documents", response_model=DocumentListResponse)
def list_documents(name: str):
    return _call(
        "documents",
        lambda s: DocumentListResponse(documents=[DocumentItem(**asdict(d)) for d in s.list_documents(name)]),
    )


@router.post("/{name}/rename", response_model=RenameResponse)
def rename_knowledgebase(name: str, request: RenameKnowledgeBaseRequest):
    return _call(
        "rename",
        lambda s: RenameResponse(
            old_name=name, new_name=request.new_name, rows_copied=s.rename(name, request.new_name)
        ),
    )


@router.delete("/{name}", status_code=204)
def delete_knowledgebase(name: str):
    result = _call("delete", lambda s: s.delete(name))
    return result if isinstance(result, JSONResponse) else None


@router.delete("/{name}/documents", response_model=DeleteResponse)
def delete_document(name: str, path: str = Query(..., description="Relative document path")):
    return _call("delete-document", lambda s: DeleteResponse(deleted=s.delete_document(name, path)))


@router.delete("/{name}/chunk-sets/{timestamp}", response_model=DeleteResponse)
def delete_chunk_set(name: str, timestamp: str):
    return _call("delete-chunk-set", lambda s: DeleteResponse(deleted=s.delete_chunk_set(name, timestamp)))
