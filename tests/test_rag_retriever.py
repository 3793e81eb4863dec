"""Tests for similarity search and answer generation."""

from unittest.mock import MagicMock, Mock, patch
from uuid import uuid4

import pytest

from docshare_rag.rag import (
    ChunkVector,
    RAGAnswerer,
    RetrievalEngine,
    SearchResult,
    build_context,
)
from docshare_rag.rag.retriever import (
    MAX_SUGGESTED_QUESTIONS,
    NO_CONTEXT_ANSWER,
    NO_DOCUMENT_TEXT_ANSWER,
    parse_bullet_lines,
)

DOC_A = uuid4()
DOC_B = uuid4()


def _vector(document_id, filename, index, embedding, content=None):
    return ChunkVector(
        document_id=document_id,
        filename=filename,
        chunk_index=index,
        content=content or f"{filename} chunk {index}",
        embedding=embedding,
    )


@pytest.fixture
def db():
    db = MagicMock()
    db.get_chunk_vectors.return_value = [
        _vector(DOC_A, "a.pdf", 0, [0.0, 1.0]),
        _vector(DOC_A, "a.pdf", 1, [1.0, 0.0]),
        _vector(DOC_B, "b.docx", 0, [1.0, 1.0]),
    ]
    return db


@pytest.fixture
def embedding_client():
    client = MagicMock()
    client.generate_embedding.return_value = [1.0, 0.0]
    return client


@pytest.fixture
def engine(db, embedding_client):
    return RetrievalEngine(db, embedding_client)


class TestSearch:
    def test_ranks_by_descending_similarity(self, engine):
        results = engine.search("revenue", limit=10)

        assert [(r.filename, r.chunk_index) for r in results] == [
            ("a.pdf", 1),
            ("b.docx", 0),
            ("a.pdf", 0),
        ]
        assert results[0].similarity == pytest.approx(1.0)
        assert results[1].similarity == pytest.approx(0.7071, abs=1e-4)
        assert results[2].similarity == pytest.approx(0.0)

    def test_limit_truncates(self, engine):
        results = engine.search("revenue", limit=1)
        assert len(results) == 1
        assert results[0].chunk_index == 1

    def test_limit_larger_than_store_is_not_padded(self, engine):
        assert len(engine.search("revenue", limit=50)) == 3

    def test_empty_store_returns_nothing(self, engine, db):
        db.get_chunk_vectors.return_value = []
        assert engine.search("revenue") == []

    def test_blank_query_skips_embedding(self, engine, embedding_client, db):
        assert engine.search("   ") == []
        assert engine.search("") == []
        embedding_client.generate_embedding.assert_not_called()
        db.get_chunk_vectors.assert_not_called()

    def test_non_positive_limit_returns_nothing(self, engine, embedding_client):
        assert engine.search("revenue", limit=0) == []
        embedding_client.generate_embedding.assert_not_called()

    def test_ties_keep_store_order(self, engine, db):
        db.get_chunk_vectors.return_value = [
            _vector(DOC_B, "b.docx", 3, [2.0, 0.0]),
            _vector(DOC_A, "a.pdf", 0, [1.0, 0.0]),
            _vector(DOC_A, "a.pdf", 1, [5.0, 0.0]),
        ]

        results = engine.search("revenue")

        assert [(r.filename, r.chunk_index) for r in results] == [
            ("b.docx", 3),
            ("a.pdf", 0),
            ("a.pdf", 1),
        ]

    def test_repeated_search_is_deterministic(self, engine):
        first = engine.search("revenue")
        second = engine.search("revenue")
        assert first == second

    def test_zero_and_mismatched_vectors_score_zero(self, engine, db):
        db.get_chunk_vectors.return_value = [
            _vector(DOC_A, "a.pdf", 0, [0.0, 0.0]),
            _vector(DOC_A, "a.pdf", 1, [1.0, 0.0, 0.0]),
            _vector(DOC_B, "b.docx", 0, [-1.0, 0.0]),
        ]

        results = engine.search("revenue")

        assert [r.similarity for r in results] == pytest.approx([0.0, 0.0, -1.0])
        assert [(r.filename, r.chunk_index) for r in results] == [
            ("a.pdf", 0),
            ("a.pdf", 1),
            ("b.docx", 0),
        ]

    def test_results_carry_document_fields(self, engine):
        top = engine.search("revenue", limit=1)[0]
        assert top.document_id == DOC_A
        assert top.content == "a.pdf chunk 1"


class TestBuildContext:
    def test_formats_filename_and_content(self):
        results = [
            SearchResult(document_id=DOC_A, filename="a.pdf", content="First.", similarity=0.9, chunk_index=0),
            SearchResult(document_id=DOC_B, filename="b.docx", content="Second.", similarity=0.5, chunk_index=2),
        ]
        assert build_context(results) == "[a.pdf] First.\n\n[b.docx] Second."

    def test_empty_results(self):
        assert build_context([]) == ""


class TestRAGAnswerer:
    @patch("docshare_rag.rag.retriever.Anthropic")
    def test_generates_answer_from_context(self, mock_anthropic_class, engine):
        mock_client = MagicMock()
        mock_client.messages.create.return_value = Mock(content=[Mock(text="Revenue grew.")])
        mock_anthropic_class.return_value = mock_client

        answerer = RAGAnswerer(engine, anthropic_api_key="test-key", model="claude-test")
        response = answerer.query("How did revenue change?", top_k=2)

        assert response.answer == "Revenue grew."
        assert response.chunks_used == 2
        assert [s.filename for s in response.sources] == ["a.pdf", "b.docx"]

        kwargs = mock_client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        message = kwargs["messages"][0]["content"]
        assert "[a.pdf] a.pdf chunk 1" in message
        assert "Question: How did revenue change?" in message

    @patch("docshare_rag.rag.retriever.Anthropic")
    def test_no_results_skips_generation(self, mock_anthropic_class, engine, db):
        db.get_chunk_vectors.return_value = []

        response = RAGAnswerer(engine, anthropic_api_key="test-key").query("anything")

        assert response.answer == NO_CONTEXT_ANSWER
        assert response.sources == []
        mock_anthropic_class.return_value.messages.create.assert_not_called()

    @patch("docshare_rag.rag.retriever.Anthropic")
    def test_long_chunks_are_previewed(self, mock_anthropic_class, engine, db):
        db.get_chunk_vectors.return_value = [
            _vector(DOC_A, "a.pdf", 0, [1.0, 0.0], content="x" * 500)
        ]
        mock_anthropic_class.return_value.messages.create.return_value = Mock(
            content=[Mock(text="ok")]
        )

        response = RAGAnswerer(engine, anthropic_api_key="test-key").query("q")

        assert response.sources[0].content_preview == "x" * 200 + "..."

    @patch("docshare_rag.rag.retriever.Anthropic")
    def test_empty_llm_response_raises(self, mock_anthropic_class, engine):
        mock_anthropic_class.return_value.messages.create.return_value = Mock(content=[])

        with pytest.raises(ValueError, match="Empty response"):
            RAGAnswerer(engine, anthropic_api_key="test-key").query("q")

    def test_missing_api_key_raises(self, engine, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "from-env")
        with pytest.raises(ValueError, match="Anthropic API key required"):
            RAGAnswerer(engine)


class TestDocumentInsights:
    @pytest.fixture
    def anthropic_client(self):
        with patch("docshare_rag.rag.retriever.Anthropic") as mock_anthropic_class:
            yield mock_anthropic_class.return_value

    @pytest.fixture
    def answerer(self, engine, anthropic_client):
        return RAGAnswerer(engine, anthropic_api_key="test-key")

    def test_summary_uses_whole_document_context(self, answerer, anthropic_client, db):
        db.get_document_context.return_value = "[a.pdf] Revenue grew.\n\n[a.pdf] Costs fell."
        anthropic_client.messages.create.return_value = Mock(content=[Mock(text="Growth year.")])

        assert answerer.summarize_document(DOC_A) == "Growth year."

        db.get_document_context.assert_called_once_with([DOC_A])
        message = anthropic_client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert "[a.pdf] Costs fell." in message

    def test_summary_of_document_without_text_skips_generation(self, answerer, anthropic_client, db):
        db.get_document_context.return_value = ""

        assert answerer.summarize_document(DOC_A) == NO_DOCUMENT_TEXT_ANSWER
        anthropic_client.messages.create.assert_not_called()

    def test_suggested_questions_are_parsed_and_capped(self, answerer, anthropic_client, db):
        db.get_document_context.return_value = "[a.pdf] Revenue grew."
        reply = "Here are some questions:\n" + "\n".join(f"- Question {i}?" for i in range(7))
        anthropic_client.messages.create.return_value = Mock(content=[Mock(text=reply)])

        questions = answerer.suggest_questions(DOC_A)

        assert len(questions) == MAX_SUGGESTED_QUESTIONS
        assert questions[0] == "Question 0?"

    def test_no_questions_for_document_without_text(self, answerer, anthropic_client, db):
        db.get_document_context.return_value = ""

        assert answerer.suggest_questions(DOC_A) == []
        anthropic_client.messages.create.assert_not_called()


class TestParseBulletLines:
    def test_keeps_only_bullet_items(self):
        text = "Intro line\n- First?\n  -   Second?\n-\nnot a bullet\n- Third?"
        assert parse_bullet_lines(text) == ["First?", "Second?", "Third?"]

    def test_empty_text(self):
        assert parse_bullet_lines("") == []
