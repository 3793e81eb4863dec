from .models import (
    ChunkRecord,
    ChunkVector,
    DocumentPage,
    DocumentType,
    IngestedDocument,
    IngestResult,
    ScanStats,
    ScanStatus,
    SearchResult,
)
from .errors import (
    EmbeddingServiceError,
    ExtractionError,
    StoreError,
    UnsupportedFormatError,
)
from .database import PgVectorStore
from .fingerprint import compute_content_hash, compute_file_hash, document_id_from_hash
from .extraction import extract_text
from .chunking import split_text
from .embeddings import EmbeddingClient, EmbeddingResult
from .similarity import cosine_similarity
from .scanner import SourceFile, iter_document_paths, read_source_file
from .ingestion import RAGIngestionPipeline
from .retriever import (
    RAGAnswerer,
    RAGResponse,
    RetrievalEngine,
    SourceReference,
    build_context,
)

__all__ = [
    # Models
    "ChunkRecord",
    "ChunkVector",
    "DocumentPage",
    "DocumentType",
    "IngestedDocument",
    "IngestResult",
    "ScanStats",
    "ScanStatus",
    "SearchResult",
    # Errors
    "EmbeddingServiceError",
    "ExtractionError",
    "StoreError",
    "UnsupportedFormatError",
    # Database
    "PgVectorStore",
    # Fingerprinting
    "compute_content_hash",
    "compute_file_hash",
    "document_id_from_hash",
    # Extraction and chunking
    "extract_text",
    "split_text",
    # Embeddings
    "EmbeddingClient",
    "EmbeddingResult",
    "cosine_similarity",
    # Ingestion
    "SourceFile",
    "iter_document_paths",
    "read_source_file",
    "RAGIngestionPipeline",
    # Retrieval
    "RetrievalEngine",
    "RAGAnswerer",
    "RAGResponse",
    "SourceReference",
    "build_context",
]
