from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class DocumentType(str, Enum):
    PDF = "pdf"
    DOC = "doc"
    DOCX = "docx"

    @classmethod
    def from_filename(cls, filename: str) -> "DocumentType | None":
        """Map a file name to its document type by extension, or None if unsupported."""
        _, dot, ext = filename.rpartition(".")
        if not dot:
            return None
        try:
            return cls(ext.lower())
        except ValueError:
            return None


class IngestedDocument(BaseModel):
    id: UUID
    filename: str
    file_path: str
    file_size: int
    modified_time: datetime
    file_hash: str
    file_type: DocumentType
    content: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ChunkRecord(BaseModel):
    id: UUID
    document_id: UUID
    chunk_index: int
    content: str
    embedding: list[float] | None = None
    created_at: datetime | None = None


class ChunkVector(BaseModel):
    """A stored chunk joined with its document's filename, as scanned by retrieval."""

    document_id: UUID
    filename: str
    chunk_index: int
    content: str
    embedding: list[float]


class SearchResult(BaseModel):
    document_id: UUID
    filename: str
    content: str
    similarity: float
    chunk_index: int


class DocumentPage(BaseModel):
    documents: list[IngestedDocument]
    total: int
    page: int
    page_size: int


class ScanStats(BaseModel):
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    fallback_embeddings: int = 0


class ScanStatus(BaseModel):
    last_scan_time: datetime | None = None
    scan_in_progress: bool = False
    document_count: int = 0
    chunk_count: int = 0


class IngestResult(BaseModel):
    """Result of ingesting a single file."""

    document: IngestedDocument | None = None
    chunks_count: int = 0
    was_duplicate: bool = False
    replaced_document_id: UUID | None = None
    fallback_embeddings: int = Field(default=0, ge=0)
