"""Shared fixtures for the docshare_rag test suite."""

import io
import os
from pathlib import Path
from unittest.mock import MagicMock

import docx
import fitz  # PyMuPDF
import pytest

from docshare_rag.config import DEFAULT_DATABASE_URL
from docshare_rag.rag import EmbeddingResult, PgVectorStore, StoreError

MIGRATIONS_DIR = Path(__file__).parent.parent / "migrations"


def make_pdf(*pages: str) -> bytes:
    """Build PDF bytes with one text line per page."""
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        if text:
            page.insert_text((72, 72), text, fontsize=12)
    data = doc.tobytes()
    doc.close()
    return data


def make_docx(*paragraphs: str, table: list[list[str]] | None = None) -> bytes:
    """Build DOCX bytes with the given paragraphs and an optional table."""
    document = docx.Document()
    for text in paragraphs:
        document.add_paragraph(text)
    if table:
        t = document.add_table(rows=len(table), cols=len(table[0]))
        for r, row in enumerate(table):
            for c, value in enumerate(row):
                t.cell(r, c).text = value
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


class InMemoryStore:
    """Dict-backed stand-in for PgVectorStore used by pipeline tests."""

    def __init__(self):
        self.documents = {}
        self.chunks = {}
        self.upsert_calls = 0

    def get_document(self, document_id):
        return self.documents.get(document_id)

    def get_document_by_hash(self, file_hash):
        return next((d for d in self.documents.values() if d.file_hash == file_hash), None)

    def get_document_by_name(self, filename):
        return next((d for d in self.documents.values() if d.filename == filename), None)

    def delete_document(self, document_id):
        self.chunks.pop(document_id, None)
        return self.documents.pop(document_id, None) is not None

    def upsert_document(self, document, chunks):
        self.upsert_calls += 1
        for other in list(self.documents.values()):
            if other.filename == document.filename and other.id != document.id:
                self.delete_document(other.id)
        self.documents[document.id] = document
        self.chunks[document.id] = list(chunks)
        return document

    def count_documents(self):
        return len(self.documents)

    def count_chunks(self):
        return sum(len(c) for c in self.chunks.values())


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def embedding_client():
    """Embedding client mock returning a fixed 3-dimensional vector per text."""
    client = MagicMock()
    client.generate_embeddings.side_effect = lambda texts: EmbeddingResult(
        embeddings=[[1.0, 0.0, 0.0] for _ in texts]
    )
    client.generate_embedding.return_value = [1.0, 0.0, 0.0]
    return client


@pytest.fixture(scope="module")
def db():
    """Connect to PostgreSQL with pgvector, skipping when it is not available."""
    store = PgVectorStore(os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL))
    try:
        store.connect()
        store.run_migrations(MIGRATIONS_DIR)
    except StoreError as e:
        store.disconnect()
        pytest.skip(f"PostgreSQL with pgvector not available: {e}")
    yield store
    store.disconnect()
