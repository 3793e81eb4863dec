"""Facade wiring the store, ingestion pipeline and retrieval engine together."""

from uuid import UUID

from .config import Settings
from .logger import logger
from .rag import (
    ChunkRecord,
    DocumentPage,
    DocumentType,
    EmbeddingClient,
    IngestedDocument,
    PgVectorStore,
    RAGAnswerer,
    RAGIngestionPipeline,
    RAGResponse,
    RetrievalEngine,
    ScanStats,
    ScanStatus,
    SearchResult,
)


class DocumentIndexService:
    """Operations exposed to the HTTP/CLI layer.

    Document lookups, listing and deletion delegate straight to the store;
    scanning goes through the pipeline and searching through the engine.
    """

    def __init__(
        self,
        db: PgVectorStore,
        pipeline: RAGIngestionPipeline,
        engine: RetrievalEngine,
        settings: Settings | None = None,
    ):
        self.db = db
        self.pipeline = pipeline
        self.engine = engine
        self.settings = settings or Settings()
        self._answerer: RAGAnswerer | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "DocumentIndexService":
        """Build an unconnected service from settings; call ``connect()`` before use."""
        db = PgVectorStore(settings.database_url, pool_size=settings.database_pool_size)
        embedding_client = EmbeddingClient(
            api_key=settings.embedding_api_key,
            base_url=settings.embedding_base_url,
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
            timeout=settings.embedding_timeout_seconds,
        )
        pipeline = RAGIngestionPipeline(
            db,
            embedding_client,
            root_dir=settings.document_root,
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
        )
        engine = RetrievalEngine(db, embedding_client)
        return cls(db, pipeline, engine, settings)

    def connect(self, run_migrations: bool = False) -> None:
        self.db.connect()
        if run_migrations:
            self.db.run_migrations(self.settings.migrations_dir)

    def close(self) -> None:
        self.db.disconnect()

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def scan(self) -> ScanStats:
        return self.pipeline.scan()

    def _limit(self, limit: int | None) -> int:
        return self.settings.search_limit if limit is None else limit

    def search(self, query: str, limit: int | None = None) -> list[SearchResult]:
        return self.engine.search(query, self._limit(limit))

    def _get_answerer(self) -> RAGAnswerer:
        if self._answerer is None:
            self._answerer = RAGAnswerer(
                self.engine,
                anthropic_api_key=self.settings.anthropic_api_key,
                model=self.settings.llm_model,
            )
        return self._answerer

    def answer(self, question: str, limit: int | None = None) -> RAGResponse:
        return self._get_answerer().query(question, top_k=self._limit(limit))

    def summarize_document(self, document_id: UUID) -> str:
        return self._get_answerer().summarize_document(document_id)

    def suggest_questions(self, document_id: UUID) -> list[str]:
        return self._get_answerer().suggest_questions(document_id)

    def get_document(self, document_id: UUID) -> IngestedDocument | None:
        return self.db.get_document(document_id)

    def get_document_chunks(self, document_id: UUID) -> list[ChunkRecord]:
        return self.db.get_document_chunks(document_id)

    def list_documents(
        self,
        page: int = 1,
        limit: int = 10,
        file_type: DocumentType | str | None = None,
    ) -> DocumentPage:
        return self.db.list_documents(page=page, page_size=limit, file_type=file_type)

    def delete_document(self, document_id: UUID) -> bool:
        return self.db.delete_document(document_id)

    def evict_stale(
        self,
        max_age_days: int | None = None,
        grace_days: int | None = None,
    ) -> int:
        return self.db.evict_stale(
            max_age_days=self.settings.max_document_age_days if max_age_days is None else max_age_days,
            grace_days=self.settings.eviction_grace_days if grace_days is None else grace_days,
        )

    def status(self) -> ScanStatus:
        status = ScanStatus(
            last_scan_time=self.pipeline.last_scan_time,
            scan_in_progress=self.pipeline.scan_in_progress,
            document_count=self.db.count_documents(),
            chunk_count=self.db.count_chunks(),
        )
        logger.debug("status requested", **status.model_dump(mode="json"))
        return status
