"""RAG retriever for similarity search and response generation."""

import time
from uuid import UUID

from anthropic import Anthropic
from pydantic import BaseModel

from ..config import DEFAULT_LLM_MODEL
from ..logger import logger
from .database import PgVectorStore
from .embeddings import EmbeddingClient
from .models import SearchResult
from .similarity import cosine_similarity

NO_CONTEXT_ANSWER = (
    "I couldn't find any relevant information in the documents to answer your question."
)
NO_DOCUMENT_TEXT_ANSWER = "The document has no extracted text to work from."

MAX_SUMMARY_WORDS = 200
MAX_SUGGESTED_QUESTIONS = 5
SUMMARY_SYSTEM_PROMPT = "You are an expert at writing summaries of documents."
QUESTIONS_SYSTEM_PROMPT = "You are an expert at analysing documents and framing questions about them."


class RetrievalEngine:
    """Exact cosine-similarity search over every stored chunk vector."""

    def __init__(self, db: PgVectorStore, embedding_client: EmbeddingClient):
        self.db = db
        self.embedding_client = embedding_client

    def search(self, query: str, limit: int = 10) -> list[SearchResult]:
        """Return up to ``limit`` chunks ranked by similarity to ``query``.

        Ties keep the store's chunk order, so repeated searches over the same
        data return the same sequence. Fewer results are returned when fewer
        chunks exist.

        Args:
            query: Free-text query.
            limit: Maximum number of results.

        Returns:
            SearchResult list sorted by descending similarity.
        """
        if not query or not query.strip() or limit <= 0:
            return []

        start = time.perf_counter()

        query_embedding = self.embedding_client.generate_embedding(query)
        candidates = self.db.get_chunk_vectors()

        scored = [
            SearchResult(
                document_id=chunk.document_id,
                filename=chunk.filename,
                content=chunk.content,
                similarity=cosine_similarity(query_embedding, chunk.embedding),
                chunk_index=chunk.chunk_index,
            )
            for chunk in candidates
        ]
        # sorted() is stable, also with reverse=True
        results = sorted(scored, key=lambda r: r.similarity, reverse=True)[:limit]

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "retrieval completed",
            query_length=len(query),
            limit=limit,
            candidates_count=len(candidates),
            results_count=len(results),
            duration_ms=round(duration_ms, 2),
        )
        return results


def build_context(results: list[SearchResult]) -> str:
    """Format search results as "[filename] chunk text" entries separated by blank lines."""
    return "\n\n".join(f"[{r.filename}] {r.content}" for r in results)


class SourceReference(BaseModel):
    """A source reference from a retrieved chunk."""

    filename: str
    chunk_index: int
    similarity: float
    content_preview: str  # First 200 chars of chunk


class RAGResponse(BaseModel):
    """Response from a RAG query."""

    answer: str
    sources: list[SourceReference]
    chunks_used: int


class RAGAnswerer:
    """Answers questions with Claude over chunks found by a RetrievalEngine."""

    DEFAULT_SYSTEM_PROMPT = """You are a helpful assistant that answers questions based on documents from a shared company folder.

Rules:
1. Only use information from the provided context to answer the question
2. If the context doesn't contain enough information to answer, say so clearly
3. Cite the source file names shown in square brackets when possible
4. Be concise and direct in your answers"""

    def __init__(
        self,
        engine: RetrievalEngine,
        anthropic_api_key: str | None = None,
        model: str = DEFAULT_LLM_MODEL,
        system_prompt: str | None = None,
        max_tokens: int = 2048,
    ):
        """Initialize the answerer.

        Args:
            engine: RetrievalEngine used to find context chunks.
            anthropic_api_key: Anthropic API key.
            model: Claude model to use for generation.
            system_prompt: Custom system prompt. Uses default if not provided.
            max_tokens: Maximum tokens in the generated answer.
        """
        self.engine = engine
        self.model = model
        self.system_prompt = system_prompt or self.DEFAULT_SYSTEM_PROMPT
        self.max_tokens = max_tokens

        if not anthropic_api_key:
            raise ValueError("Anthropic API key required: set ANTHROPIC_API_KEY")
        self._anthropic = Anthropic(api_key=anthropic_api_key)

    def _build_sources(self, results: list[SearchResult]) -> list[SourceReference]:
        return [
            SourceReference(
                filename=r.filename,
                chunk_index=r.chunk_index,
                similarity=r.similarity,
                content_preview=r.content[:200] + "..." if len(r.content) > 200 else r.content,
            )
            for r in results
        ]

    def _generate(self, system: str, user_message: str) -> str:
        response = self._anthropic.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=system,
            messages=[{"role": "user", "content": user_message}],
        )
        if not response.content:
            raise ValueError("Empty response from Claude API")
        return response.content[0].text

    def query(self, question: str, top_k: int = 5) -> RAGResponse:
        """Answer a question using retrieved document chunks.

        Args:
            question: The question to answer.
            top_k: Number of chunks to retrieve for context.

        Returns:
            RAGResponse with answer and source references.
        """
        start = time.perf_counter()

        results = self.engine.search(question, limit=top_k)
        if not results:
            return RAGResponse(answer=NO_CONTEXT_ANSWER, sources=[], chunks_used=0)

        user_message = f"""Context:
{build_context(results)}

Question: {question}

Please answer the question based only on the provided context."""

        generation_start = time.perf_counter()
        answer = self._generate(self.system_prompt, user_message)
        generation_duration_ms = (time.perf_counter() - generation_start) * 1000

        total_duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "rag query completed",
            question_length=len(question),
            chunks_used=len(results),
            answer_length=len(answer),
            generation_duration_ms=round(generation_duration_ms, 2),
            total_duration_ms=round(total_duration_ms, 2),
        )

        return RAGResponse(
            answer=answer,
            sources=self._build_sources(results),
            chunks_used=len(results),
        )

    def summarize_document(self, document_id: UUID) -> str:
        """Summarize one stored document from all of its chunks.

        Returns:
            The summary, or NO_DOCUMENT_TEXT_ANSWER when the document has no
            stored text (the model is not called in that case).
        """
        context = self.engine.db.get_document_context([document_id])
        if not context:
            return NO_DOCUMENT_TEXT_ANSWER

        start = time.perf_counter()
        summary = self._generate(
            SUMMARY_SYSTEM_PROMPT,
            f"""Write a concise summary of the following document:

{context}

The summary should cover:
1. The main topic of the document
2. Key points
3. Conclusions, if any

Use at most {MAX_SUMMARY_WORDS} words.""",
        )
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "document summarized",
            document_id=str(document_id),
            context_length=len(context),
            summary_length=len(summary),
            duration_ms=round(duration_ms, 2),
        )
        return summary

    def suggest_questions(self, document_id: UUID) -> list[str]:
        """Propose up to five questions a reader could ask about a document.

        Returns:
            Questions parsed from the model's "- " bullet lines; empty when the
            document has no stored text.
        """
        context = self.engine.db.get_document_context([document_id])
        if not context:
            return []

        start = time.perf_counter()
        reply = self._generate(
            QUESTIONS_SYSTEM_PROMPT,
            f"""Based on the following document, suggest {MAX_SUGGESTED_QUESTIONS} questions a user might ask:

{context}

The questions should be relevant to the content and useful for understanding the document.

Answer with one question per line, each line starting with "- ".""",
        )
        questions = parse_bullet_lines(reply)[:MAX_SUGGESTED_QUESTIONS]

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "questions suggested",
            document_id=str(document_id),
            questions_count=len(questions),
            duration_ms=round(duration_ms, 2),
        )
        return questions


def parse_bullet_lines(text: str) -> list[str]:
    """Return the non-empty items of lines that start with "-"."""
    items = []
    for line in text.splitlines():
        line = line.strip()
        if line.startswith("-"):
            item = line.lstrip("-").strip()
            if item:
                items.append(item)
    return items
