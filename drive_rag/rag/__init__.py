"""
RAG (Retrieval-Augmented Generation) module for the Drive knowledge base.

This module provides:
- Text extraction for PDF and Word documents
- Text embeddings
- Cosine similarity ranking and context building
- Vector storage via Qdrant
- Query orchestration and incremental Drive sync
"""

from .context import build_context
from .embeddings import Embedder
from .llm import AnswerGenerator
from .parser import extract_text
from .query import QueryEngine, QueryOptions, QueryResult
from .similarity import cosine_similarity, rank_by_similarity
from .store import KnowledgeRecord, KnowledgeStore
from .sync import SyncEngine, SyncRunStats

__all__ = [
    "build_context",
    "Embedder",
    "AnswerGenerator",
    "extract_text",
    "QueryEngine",
    "QueryOptions",
    "QueryResult",
    "cosine_similarity",
    "rank_by_similarity",
    "KnowledgeRecord",
    "KnowledgeStore",
    "SyncEngine",
    "SyncRunStats",
]
