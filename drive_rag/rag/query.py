"""
Retrieval orchestrator.

Embeds a question, ranks the corpus against it, builds a bounded context and
asks the language model for an answer grounded in that context only.
"""

import time
from typing import Literal

import pydantic
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..config import EXCERPT_LENGTH, MIN_QUERY_LENGTH, NO_RELEVANT_DOCS
from ..errors import AppError, RetrievalError, ValidationError
from ..logging_config import logger
from .context import build_context
from .embeddings import Embedder
from .llm import AnswerGenerator
from .similarity import ScoredRecord
from .store import KnowledgeStore

PROMPT_TEMPLATES = {
    "vi": """Bạn là một trợ lý AI thông minh. Nhiệm vụ của bạn là trả lời câu hỏi của người dùng dựa trên thông tin được cung cấp.

NGUYÊN TẮC:
1. Chỉ sử dụng thông tin từ context được cung cấp
2. Trả lời chính xác, rõ ràng và súc tích
3. Nếu không có thông tin đủ để trả lời, hãy thành thật nói rằng bạn không biết
4. Trích dẫn tên tài liệu khi có thể
5. Trả lời bằng tiếng Việt

CONTEXT (Thông tin từ tài liệu):
{context}

CÂU HỎI: {query}

TRẢ LỜI:
""",
    "en": """You are an intelligent AI assistant. Your task is to answer the user's question based on the provided information.

RULES:
1. Only use information from the provided context
2. Answer accurately, clearly, and concisely
3. If there's not enough information, honestly say you don't know
4. Cite document names when possible
5. Respond in English

CONTEXT (Information from documents):
{context}

QUESTION: {query}

ANSWER:
""",
}


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QueryOptions(_CamelModel):
    """Caller options for a query."""

    max_results: int = Field(default=5, ge=1, le=100)
    similarity_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    include_metadata: bool = True
    language: Literal["vi", "en"] = "vi"
    exclude_embeddings: bool = False


class SourceDocument(_CamelModel):
    title: str
    file_name: str
    file_type: str | None = None
    url: str | None = None
    similarity: float
    excerpt: str
    metadata: dict | None = None
    embedding: list[float] | None = None


class QueryResult(_CamelModel):
    answer: str
    sources: list[SourceDocument] = Field(default_factory=list)
    confidence: float = 0.0
    metadata: dict = Field(default_factory=dict)
    query_embedding: list[float] | None = None

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


def validate_query_text(text) -> str:
    """Reject anything that is not a string of at least MIN_QUERY_LENGTH characters."""
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Query must be a non-empty string")
    if len(text.strip()) < MIN_QUERY_LENGTH:
        raise ValidationError(
            f"Query must be at least {MIN_QUERY_LENGTH} characters long"
        )
    return text.strip()


def parse_options(options: QueryOptions | dict | None) -> QueryOptions:
    if isinstance(options, QueryOptions):
        return options
    try:
        return QueryOptions.model_validate(options or {})
    except pydantic.ValidationError as e:
        raise ValidationError(
            "Invalid query options",
            details={"errors": [f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()]},
        ) from e


def _excerpt(content: str) -> str:
    if len(content) > EXCERPT_LENGTH:
        return content[:EXCERPT_LENGTH] + "..."
    return content


def _to_source(doc: ScoredRecord, include_metadata: bool) -> SourceDocument:
    record = doc.record
    extra = {}
    if include_metadata:
        extra = {"metadata": record.metadata, "embedding": record.embedding}

    return SourceDocument(
        title=record.title or record.file_name,
        file_name=record.file_name,
        file_type=record.file_type,
        url=record.file_url,
        similarity=doc.similarity,
        excerpt=_excerpt(record.content or ""),
        **extra,
    )


def strip_embeddings(result: QueryResult) -> QueryResult:
    """Drop vector payloads from an assembled result."""
    return result.model_copy(
        update={
            "query_embedding": None,
            "sources": [s.model_copy(update={"embedding": None}) for s in result.sources],
        }
    )


def _elapsed_ms(start: float) -> int:
    return round((time.perf_counter() - start) * 1000)


class QueryEngine:
    """Answers questions from the stored corpus. Holds no per-query state."""

    def __init__(
        self,
        embedder: Embedder,
        store: KnowledgeStore,
        generator: AnswerGenerator,
    ):
        self.embedder = embedder
        self.store = store
        self.generator = generator

    def query(self, text: str, options: QueryOptions | dict | None = None) -> QueryResult:
        """
        Answer a question using the most similar stored documents.

        Args:
            text: The user's question.
            options: QueryOptions or a dict using the camelCase option names.

        Returns:
            QueryResult. An empty relevant set yields the fixed "not found"
            answer with confidence 0; that is a success, not an error.

        Raises:
            ValidationError: Bad question or options.
            RetrievalError: Embedding, search or generation failed.
        """
        text = validate_query_text(text)
        opts = parse_options(options)

        logger.info(f'🔍 RAG Query: "{text}"')

        start = time.perf_counter()
        query_embedding = self._run_stage("embedding", self.embedder.embed, text)
        embed_ms = _elapsed_ms(start)

        start = time.perf_counter()
        similar = self._run_stage(
            "search", self.store.search_similar, query_embedding, opts.max_results
        )
        search_ms = _elapsed_ms(start)

        relevant = [d for d in similar if d.similarity >= opts.similarity_threshold]

        if not relevant:
            logger.info("⚠️ No relevant documents found")
            result = QueryResult(
                answer=NO_RELEVANT_DOCS[opts.language],
                confidence=0.0,
                query_embedding=query_embedding,
                metadata={
                    "query": text,
                    "documentsFound": len(similar),
                    "relevantDocuments": 0,
                    "processingTime": embed_ms + search_ms,
                    "timings": {"embedding": embed_ms, "search": search_ms, "generation": 0},
                },
            )
            return strip_embeddings(result) if opts.exclude_embeddings else result

        logger.info(
            f"   ✓ {len(relevant)} relevant documents (threshold: {opts.similarity_threshold})"
        )

        context = build_context(relevant, max_documents=opts.max_results)
        prompt = PROMPT_TEMPLATES[opts.language].format(context=context, query=text)

        start = time.perf_counter()
        answer = self._run_stage("generation", self.generator.generate, prompt)
        gen_ms = _elapsed_ms(start)

        confidence = sum(d.similarity for d in relevant) / len(relevant)

        result = QueryResult(
            answer=answer,
            sources=[_to_source(d, opts.include_metadata) for d in relevant],
            confidence=confidence,
            query_embedding=query_embedding,
            metadata={
                "query": text,
                "documentsFound": len(similar),
                "relevantDocuments": len(relevant),
                "processingTime": embed_ms + search_ms + gen_ms,
                "timings": {"embedding": embed_ms, "search": search_ms, "generation": gen_ms},
                "embeddingDimensions": len(query_embedding),
            },
        )

        logger.info(f"✅ Query completed. Confidence: {confidence * 100:.1f}%")

        if opts.exclude_embeddings:
            result = strip_embeddings(result)
        return result

    def conversation(
        self,
        text: str,
        history: list[dict] | None = None,
        options: QueryOptions | dict | None = None,
    ) -> QueryResult:
        """Chat-style entry point. History is accepted but not yet used."""
        return self.query(text, options)

    def get_statistics(self) -> dict:
        try:
            stats = self.store.get_statistics()
        except AppError as e:
            logger.error(f"❌ Error getting statistics: {e}")
            return {"totalDocuments": 0, "status": "error", "initialized": True}

        return {
            "totalDocuments": stats["totalDocuments"],
            "status": "ready",
            "initialized": True,
        }

    @staticmethod
    def _run_stage(stage: str, func, *args):
        try:
            return func(*args)
        except Exception as e:
            logger.error(f"❌ RAG Query failed at {stage}: {e}")
            raise RetrievalError(
                f"Query failed during {stage}: {e}",
                stage=stage,
                details={"originalError": str(e)},
            ) from e
