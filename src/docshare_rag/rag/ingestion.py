"""Document ingestion pipeline for the RAG system."""

import threading
import time
from datetime import datetime, timezone
from pathlib import Path

from ..logger import clear_context, logger, set_context
from .chunking import split_text
from .database import PgVectorStore
from .embeddings import EmbeddingClient
from .errors import StoreError
from .extraction import extract_text
from .fingerprint import chunk_id, compute_content_hash, document_id_from_hash
from .models import ChunkRecord, IngestedDocument, IngestResult, ScanStats
from .scanner import SourceFile, iter_document_paths, read_source_file


class RAGIngestionPipeline:
    """Scans a document folder and keeps the store in sync with it.

    Each file is fingerprinted; unchanged files are skipped, edited files
    replace their previous version, and new files go through
    extract -> chunk -> embed -> upsert. Only one scan runs at a time per
    pipeline instance.
    """

    def __init__(
        self,
        db: PgVectorStore,
        embedding_client: EmbeddingClient,
        root_dir: str | Path | None = None,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
    ):
        """Initialize the ingestion pipeline.

        Args:
            db: Document store the pipeline writes to.
            embedding_client: Client used to embed chunk texts.
            root_dir: Default folder to scan.
            chunk_size: Maximum characters per chunk.
            chunk_overlap: Approximate overlap between consecutive chunks.
        """
        self.db = db
        self.embedding_client = embedding_client
        self.root_dir = Path(root_dir) if root_dir is not None else None
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._scan_lock = threading.Lock()
        self._last_scan_time: datetime | None = None

    @property
    def last_scan_time(self) -> datetime | None:
        return self._last_scan_time

    @property
    def scan_in_progress(self) -> bool:
        return self._scan_lock.locked()

    def scan(self, root_dir: str | Path | None = None) -> ScanStats:
        """Scan the document folder and ingest new or changed files.

        A call made while another scan is running returns an all-zero
        ScanStats immediately without touching the store.

        Args:
            root_dir: Folder to scan; defaults to the pipeline's root_dir.

        Returns:
            ScanStats with processed, skipped and error counts.

        Raises:
            FileNotFoundError: If the folder does not exist.
            StoreError: If the document store fails; the scan stops.
        """
        if not self._scan_lock.acquire(blocking=False):
            logger.warn("scan already in progress, skipping request")
            return ScanStats()

        try:
            root = Path(root_dir) if root_dir is not None else self.root_dir
            if root is None:
                raise ValueError("No document root configured for scan")
            return self._scan(root)
        finally:
            self._scan_lock.release()

    def _scan(self, root: Path) -> ScanStats:
        stats = ScanStats()
        start = time.perf_counter()
        logger.info("starting document scan", root_dir=str(root))

        for path in iter_document_paths(root):
            set_context(file_name=path.name, file_path=str(path))
            try:
                result = self.ingest_file(read_source_file(path))
                if result.was_duplicate:
                    stats.skipped += 1
                else:
                    stats.processed += 1
                    stats.fallback_embeddings += result.fallback_embeddings
            except StoreError:
                logger.error("document store failure, aborting scan")
                raise
            except Exception as e:
                stats.errors += 1
                logger.error(
                    "failed to ingest document",
                    error_type=type(e).__name__,
                    error=str(e),
                )
            finally:
                clear_context()

        self._last_scan_time = datetime.now(timezone.utc)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "document scan complete",
            root_dir=str(root),
            processed=stats.processed,
            skipped=stats.skipped,
            errors=stats.errors,
            fallback_embeddings=stats.fallback_embeddings,
            duration_ms=round(duration_ms, 2),
        )
        if stats.fallback_embeddings:
            logger.warn(
                "scan stored fallback embeddings, search quality is degraded",
                fallback_embeddings=stats.fallback_embeddings,
            )
        return stats

    def ingest_file(self, source: SourceFile) -> IngestResult:
        """Ingest a single file read from the document folder.

        Args:
            source: The file's bytes and filesystem metadata.

        Returns:
            IngestResult; ``was_duplicate`` is True when the content is already stored.

        Raises:
            ExtractionError: If text cannot be extracted.
            StoreError: If the store cannot be read or written.
        """
        start = time.perf_counter()

        # Step 1: Fingerprint the content
        file_hash = compute_content_hash(source.data)

        # Step 2: Unchanged content is skipped
        existing = self.db.get_document_by_hash(file_hash)
        if existing:
            logger.debug(
                "document unchanged",
                document_id=str(existing.id),
                file_hash=file_hash,
            )
            return IngestResult(document=existing, was_duplicate=True)

        # Step 3: An edited file supersedes the stored version with its name
        replaced_id = None
        previous = self.db.get_document_by_name(source.filename)
        if previous and previous.file_hash != file_hash:
            self.db.delete_document(previous.id)
            replaced_id = previous.id
            logger.info(
                "document changed, replacing previous version",
                previous_document_id=str(previous.id),
                previous_hash=previous.file_hash,
                file_hash=file_hash,
            )

        # Step 4: Extract text
        text = extract_text(source.data, source.file_type)

        # Step 5: Chunk content
        chunk_texts = split_text(text, self.chunk_size, self.chunk_overlap)
        if not chunk_texts:
            logger.warn("no text extracted from document")

        # Step 6: Embed chunks
        embedding_result = self.embedding_client.generate_embeddings(chunk_texts)

        # Step 7: Store document and chunks together
        document_id = document_id_from_hash(file_hash)
        document = IngestedDocument(
            id=document_id,
            filename=source.filename,
            file_path=str(source.path),
            file_size=source.size,
            modified_time=source.modified_time,
            file_hash=file_hash,
            file_type=source.file_type,
            content=text if chunk_texts else None,
        )
        chunks = [
            ChunkRecord(
                id=chunk_id(document_id, index),
                document_id=document_id,
                chunk_index=index,
                content=content,
                embedding=embedding,
            )
            for index, (content, embedding) in enumerate(
                zip(chunk_texts, embedding_result.embeddings)
            )
        ]
        stored = self.db.upsert_document(document, chunks)

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "document ingested",
            document_id=str(stored.id),
            chunks_count=len(chunks),
            fallback_embeddings=embedding_result.fallback_count,
            duration_ms=round(duration_ms, 2),
        )

        return IngestResult(
            document=stored,
            chunks_count=len(chunks),
            replaced_document_id=replaced_id,
            fallback_embeddings=embedding_result.fallback_count,
        )
