"""Pydantic schemas for the /ingest API."""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class IngestRequest(BaseModel):
    path: str = Field(..., min_length=1, description="Directory to ingest")
    name: str = Field(..., min_length=1, max_length=64, description="Knowledge base name")
    respect_gitignore: Optional[bool] = None


class IngestFilesRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)
    files: List[str] = Field(..., min_length=1, description="Absolute file paths")


class FileErrorItem(BaseModel):
    file_path: str
    error: str


class IngestResponse(BaseModel):
    total_files: int
    supported_files: int
    unsupported_files: Dict[str, int]
    chunks_created: int
    chunks_skipped: int
    previous_chunk_count: int
    duration_ms: int
    ingestion_timestamp: str
    errors: List[FileErrorItem] = Field(default_factory=list)


class IngestFilesResponse(BaseModel):
    files_processed: int
    chunks_created: int
    errors: List[FileErrorItem] = Field(default_factory=list)
