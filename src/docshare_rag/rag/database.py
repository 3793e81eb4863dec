import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from uuid import UUID

import numpy as np
import psycopg2
from pgvector.psycopg2 import register_vector
from psycopg2.extras import RealDictCursor, execute_values
from psycopg2.pool import ThreadedConnectionPool

from ..config import DEFAULT_DATABASE_POOL_SIZE, DEFAULT_DATABASE_URL
from ..logger import logger
from .errors import StoreError
from .models import (
    ChunkRecord,
    ChunkVector,
    DocumentPage,
    DocumentType,
    IngestedDocument,
)

DOCUMENT_COLUMNS = (
    "id, filename, file_path, file_size, modified_time, file_hash, "
    "file_type, content, created_at, updated_at"
)
CHUNK_COLUMNS = "id, document_id, chunk_index, content, embedding, created_at"


def _to_float_list(value) -> list[float] | None:
    if value is None:
        return None
    if hasattr(value, "tolist"):
        return value.tolist()
    return [float(v) for v in value]


def _to_vector(embedding: list[float] | None) -> np.ndarray | None:
    if embedding is None:
        return None
    return np.asarray(embedding, dtype=np.float32)


def _row_to_chunk(row: dict) -> ChunkRecord:
    return ChunkRecord(**{**row, "embedding": _to_float_list(row["embedding"])})


class PgVectorStore:
    """Document and chunk-vector store backed by PostgreSQL with pgvector.

    Every public operation borrows its own pooled connection and runs in one
    transaction on it: it either commits as a whole or is rolled back and
    reported as ``StoreError``. Operations from different threads never share
    a transaction.
    """

    def __init__(
        self,
        connection_string: str = DEFAULT_DATABASE_URL,
        pool_size: int = DEFAULT_DATABASE_POOL_SIZE,
    ):
        self.connection_string = connection_string
        self.pool_size = pool_size
        self._pool: ThreadedConnectionPool | None = None
        # id() of pooled connections that already know the vector type
        self._vector_registered: set[int] = set()

    def connect(self):
        start = time.perf_counter()
        try:
            self._pool = ThreadedConnectionPool(1, self.pool_size, self.connection_string)
        except psycopg2.Error as e:
            logger.error("database connection failed", error=str(e))
            raise StoreError(f"Cannot connect to database: {e}") from e
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "connected to database",
            pool_size=self.pool_size,
            duration_ms=round(duration_ms, 2),
        )

    def disconnect(self):
        if self._pool:
            self._pool.closeall()
            self._pool = None
            self._vector_registered.clear()
            logger.info("disconnected from database")

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()

    @contextmanager
    def connection(self, register: bool = True) -> Iterator:
        """Borrow a pooled connection for one transaction.

        The block commits on normal exit and rolls back on an exception; the
        connection goes back to the pool either way.

        Args:
            register: Register the pgvector type on the connection first. Must
                be False before the vector extension exists.

        Raises:
            StoreError: If the store is not connected or the pool is exhausted.
        """
        if self._pool is None:
            raise StoreError("Database is not connected")
        pool = self._pool
        try:
            conn = pool.getconn()
        except psycopg2.Error as e:
            logger.error("cannot get database connection", error=str(e))
            raise StoreError(f"Cannot get database connection: {e}") from e

        try:
            if register and id(conn) not in self._vector_registered:
                register_vector(conn)
                self._vector_registered.add(id(conn))
            with conn:
                yield conn
        finally:
            if conn.closed:
                self._vector_registered.discard(id(conn))
            pool.putconn(conn, close=bool(conn.closed))

    def run_migrations(self, migrations_dir: str | Path):
        """Run database migrations from the specified directory.

        Args:
            migrations_dir: Path to the directory containing ``*.up.sql`` files,
                applied in file name order.
        """
        migration_files = sorted(Path(migrations_dir).glob("*.up.sql"))
        start = time.perf_counter()
        try:
            with self.connection(register=False) as conn, conn.cursor() as cur:
                for migration_file in migration_files:
                    cur.execute(migration_file.read_text())
        except psycopg2.Error as e:
            logger.error("migrations failed", error=str(e))
            raise StoreError(f"Migrations failed: {e}") from e

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "migrations completed",
            migrations_count=len(migration_files),
            duration_ms=round(duration_ms, 2),
        )

    def _fetch(self, sql: str, params: tuple = (), one: bool = False):
        """Run a read query in its own short transaction."""
        try:
            with self.connection() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                return cur.fetchone() if one else cur.fetchall()
        except psycopg2.Error as e:
            logger.error("database query failed", error=str(e))
            raise StoreError(f"Database query failed: {e}") from e

    def upsert_document(
        self,
        document: IngestedDocument,
        chunks: list[ChunkRecord],
    ) -> IngestedDocument:
        """Insert or replace a document and all of its chunks atomically.

        Any other document holding the same filename is removed in the same
        transaction, and existing chunks of this document are replaced.

        Args:
            document: The document row to persist.
            chunks: Its chunks, with indices contiguous from 0.

        Returns:
            The stored document with database timestamps.

        Raises:
            ValueError: If a chunk belongs to another document or indices have gaps.
            StoreError: If the write fails; nothing is persisted in that case.
        """
        if any(c.document_id != document.id for c in chunks):
            raise ValueError("All chunks must belong to the document being upserted")
        if [c.chunk_index for c in chunks] != list(range(len(chunks))):
            raise ValueError("Chunk indices must be contiguous and start at 0")

        start = time.perf_counter()
        try:
            with self.connection() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    "DELETE FROM documents WHERE filename = %s AND id <> %s",
                    (document.filename, str(document.id)),
                )
                superseded = cur.rowcount

                cur.execute(
                    f"""
                    INSERT INTO documents (
                        id, filename, file_path, file_size, modified_time,
                        file_hash, file_type, content
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                        filename = EXCLUDED.filename,
                        file_path = EXCLUDED.file_path,
                        file_size = EXCLUDED.file_size,
                        modified_time = EXCLUDED.modified_time,
                        file_type = EXCLUDED.file_type,
                        content = EXCLUDED.content,
                        updated_at = now()
                    RETURNING {DOCUMENT_COLUMNS}
                    """,
                    (
                        str(document.id),
                        document.filename,
                        document.file_path,
                        document.file_size,
                        document.modified_time,
                        document.file_hash,
                        DocumentType(document.file_type).value,
                        document.content,
                    ),
                )
                stored = IngestedDocument(**cur.fetchone())

                cur.execute("DELETE FROM chunks WHERE document_id = %s", (str(document.id),))
                if chunks:
                    execute_values(
                        cur,
                        """
                        INSERT INTO chunks (id, document_id, chunk_index, content, embedding)
                        VALUES %s
                        """,
                        [
                            (
                                str(chunk.id),
                                str(chunk.document_id),
                                chunk.chunk_index,
                                chunk.content,
                                _to_vector(chunk.embedding),
                            )
                            for chunk in chunks
                        ],
                    )
        except psycopg2.Error as e:
            logger.error(
                "document upsert failed",
                document_id=str(document.id),
                file_hash=document.file_hash,
                error=str(e),
            )
            raise StoreError(f"Failed to store document {document.filename}: {e}") from e

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "document and chunks stored",
            document_id=str(stored.id),
            file_hash=stored.file_hash,
            chunks_count=len(chunks),
            superseded_count=superseded,
            duration_ms=round(duration_ms, 2),
        )
        return stored

    def get_document(self, document_id: UUID) -> IngestedDocument | None:
        row = self._fetch(
            f"SELECT {DOCUMENT_COLUMNS} FROM documents WHERE id = %s",
            (str(document_id),),
            one=True,
        )
        return IngestedDocument(**row) if row else None

    def get_document_by_hash(self, file_hash: str) -> IngestedDocument | None:
        row = self._fetch(
            f"SELECT {DOCUMENT_COLUMNS} FROM documents WHERE file_hash = %s",
            (file_hash,),
            one=True,
        )
        return IngestedDocument(**row) if row else None

    def get_document_by_name(self, filename: str) -> IngestedDocument | None:
        row = self._fetch(
            f"SELECT {DOCUMENT_COLUMNS} FROM documents WHERE filename = %s",
            (filename,),
            one=True,
        )
        return IngestedDocument(**row) if row else None

    def list_documents(
        self,
        page: int = 1,
        page_size: int = 10,
        file_type: DocumentType | str | None = None,
    ) -> DocumentPage:
        """Return one page of documents, newest first.

        Args:
            page: 1-based page number.
            page_size: Documents per page.
            file_type: Optional filter on document type.

        Returns:
            DocumentPage whose ``total`` counts all documents matching the filter.
        """
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be positive")

        where = ""
        params: tuple = ()
        if file_type is not None:
            where = "WHERE file_type = %s"
            params = (DocumentType(file_type).value,)

        total = self._fetch(
            f"SELECT COUNT(*) AS total FROM documents {where}", params, one=True
        )["total"]
        rows = self._fetch(
            f"""
            SELECT {DOCUMENT_COLUMNS} FROM documents {where}
            ORDER BY created_at DESC, id
            LIMIT %s OFFSET %s
            """,
            params + (page_size, (page - 1) * page_size),
        )
        return DocumentPage(
            documents=[IngestedDocument(**row) for row in rows],
            total=total,
            page=page,
            page_size=page_size,
        )

    def get_document_chunks(self, document_id: UUID) -> list[ChunkRecord]:
        rows = self._fetch(
            f"SELECT {CHUNK_COLUMNS} FROM chunks WHERE document_id = %s ORDER BY chunk_index",
            (str(document_id),),
        )
        return [_row_to_chunk(row) for row in rows]

    def get_document_context(self, document_ids: list[UUID]) -> str:
        """Return the full stored text of the given documents as prompt context.

        Each chunk becomes one "[filename] chunk text" entry, ordered by
        filename then chunk index, separated by blank lines. Unknown ids are
        ignored; an empty string means no chunks were found.
        """
        if not document_ids:
            return ""
        rows = self._fetch(
            """
            SELECT d.filename, c.content
            FROM chunks c
            JOIN documents d ON c.document_id = d.id
            WHERE d.id = ANY(%s::uuid[])
            ORDER BY d.filename, c.chunk_index
            """,
            ([str(document_id) for document_id in document_ids],),
        )
        return "\n\n".join(f"[{row['filename']}] {row['content']}" for row in rows)

    def get_chunk_vectors(self) -> list[ChunkVector]:
        """Return every embedded chunk with its document's filename, in stable order."""
        start = time.perf_counter()
        rows = self._fetch(
            """
            SELECT c.document_id, d.filename, c.chunk_index, c.content, c.embedding
            FROM chunks c
            JOIN documents d ON c.document_id = d.id
            WHERE c.embedding IS NOT NULL
            ORDER BY d.created_at, d.id, c.chunk_index
            """
        )
        vectors = [
            ChunkVector(**{**row, "embedding": _to_float_list(row["embedding"])})
            for row in rows
        ]
        duration_ms = (time.perf_counter() - start) * 1000
        logger.debug(
            "chunk vectors loaded",
            chunks_count=len(vectors),
            duration_ms=round(duration_ms, 2),
        )
        return vectors

    def delete_document(self, document_id: UUID) -> bool:
        """Delete a document and, by cascade, its chunks.

        Returns:
            True if a document was deleted, False if it did not exist.
        """
        start = time.perf_counter()
        try:
            with self.connection() as conn, conn.cursor() as cur:
                cur.execute("DELETE FROM documents WHERE id = %s", (str(document_id),))
                deleted = cur.rowcount > 0
        except psycopg2.Error as e:
            logger.error("document delete failed", document_id=str(document_id), error=str(e))
            raise StoreError(f"Failed to delete document {document_id}: {e}") from e

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "document deleted",
            document_id=str(document_id),
            deleted=deleted,
            duration_ms=round(duration_ms, 2),
        )
        return deleted

    def count_documents(self) -> int:
        return self._fetch("SELECT COUNT(*) AS count FROM documents", one=True)["count"]

    def count_chunks(self) -> int:
        return self._fetch("SELECT COUNT(*) AS count FROM chunks", one=True)["count"]

    def evict_stale(self, max_age_days: int = 30, grace_days: int = 7) -> int:
        """Delete documents that are both old and inactive.

        A document is evicted when it was created more than ``max_age_days``
        ago and none of its chunks were written within the last ``grace_days``.

        Returns:
            Number of documents deleted.
        """
        if max_age_days < 0 or grace_days < 0:
            raise ValueError("max_age_days and grace_days must be non-negative")

        start = time.perf_counter()
        try:
            with self.connection() as conn, conn.cursor() as cur:
                cur.execute(
                    """
                    DELETE FROM documents d
                    WHERE d.created_at < now() - make_interval(days => %s)
                    AND NOT EXISTS (
                        SELECT 1 FROM chunks c
                        WHERE c.document_id = d.id
                        AND c.created_at > now() - make_interval(days => %s)
                    )
                    """,
                    (max_age_days, grace_days),
                )
                evicted = cur.rowcount
        except psycopg2.Error as e:
            logger.error("stale document eviction failed", error=str(e))
            raise StoreError(f"Failed to evict stale documents: {e}") from e

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "stale documents evicted",
            evicted_count=evicted,
            max_age_days=max_age_days,
            grace_days=grace_days,
            duration_ms=round(duration_ms, 2),
        )
        return evicted

    def truncate_tables(self) -> None:
        """Truncate all tables. Use only in tests for isolation between test runs."""
        with self.connection() as conn, conn.cursor() as cur:
            cur.execute("TRUNCATE TABLE chunks, documents CASCADE")
