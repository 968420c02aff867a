"""Pydantic schemas for the /knowledgebases API."""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class CreateKnowledgeBaseRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)


class RenameKnowledgeBaseRequest(BaseModel):
    new_name: str = Field(..., min_length=1, max_length=64)


class KnowledgeBaseItem(BaseModel):
    name: str
    chunk_count: int = 0
    file_count: int = 0
    path: str = ""
    last_ingestion: Optional[str] = None


class KnowledgeBaseListResponse(BaseModel):
    knowledgebases: List[KnowledgeBaseItem]


class KnowledgeBaseStatsResponse(BaseModel):
    name: str
    chunk_count: int
    file_count: int
    size_bytes: int
    chunk_types: Dict[str, int]
    path: str = ""
    last_ingestion: Optional[str] = None


class DocumentItem(BaseModel):
    file_path: str
    document_type: str = ""
    chunk_count: int = 0
    last_ingestion: Optional[str] = None
    size_bytes: int = 0


class DocumentListResponse(BaseModel):
    documents: List[DocumentItem]


class RenameResponse(BaseModel):
    old_name: str
    new_name: str
    rows_copied: int


class DeleteResponse(BaseModel):
    deleted: int
