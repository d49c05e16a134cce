"""
Qdrant knowledge-base store.

One point per source file. The point id is derived from the file name, so an
upsert is a single keyed write: insert when absent, full replace otherwise.
"""

import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchValue,
    PointStruct,
    VectorParams,
)

from ..config import RAGSettings
from ..errors import ConfigurationError, StoreError
from ..logging_config import logger
from .similarity import DEFAULT_SIMILARITY_FLOOR, ScoredRecord, rank_by_similarity

SCROLL_BATCH_SIZE = 256


@dataclass
class KnowledgeRecord:
    """A stored document and its embedding."""

    file_name: str
    content: str
    title: str | None = None
    file_url: str | None = None
    file_type: str | None = None
    file_path: str | None = None
    embedding: list[float] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
    chunk_index: int = 0
    teacher_id: str | None = None
    user_id: str | None = None
    updated_at: str | None = None
    id: str | None = None

    def to_payload(self) -> dict:
        return {
            "title": self.title or self.file_name,
            "content": self.content,
            "file_name": self.file_name,
            "file_url": self.file_url,
            "file_type": self.file_type,
            "file_path": self.file_path,
            "metadata": self.metadata,
            "chunk_index": self.chunk_index,
            "teacher_id": self.teacher_id,
            "user_id": self.user_id,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_point(cls, point) -> "KnowledgeRecord":
        payload = point.payload or {}
        vector = point.vector
        if vector is None or isinstance(vector, dict):
            vector = []
        return cls(
            id=str(point.id),
            file_name=payload.get("file_name", ""),
            content=payload.get("content", ""),
            title=payload.get("title"),
            file_url=payload.get("file_url"),
            file_type=payload.get("file_type"),
            file_path=payload.get("file_path"),
            embedding=[float(v) for v in vector],
            metadata=payload.get("metadata") or {},
            chunk_index=payload.get("chunk_index", 0),
            teacher_id=payload.get("teacher_id"),
            user_id=payload.get("user_id"),
            updated_at=payload.get("updated_at"),
        )


def point_id_for(file_name: str) -> str:
    """Deterministic point id for a file name."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"knowledge_base/{file_name}"))


def _file_name_filter(file_name: str) -> Filter:
    return Filter(must=[FieldCondition(key="file_name", match=MatchValue(value=file_name))])


class KnowledgeStore:
    """Qdrant-backed store for KnowledgeRecords."""

    def __init__(
        self,
        client: QdrantClient,
        collection_name: str = "knowledge_base",
        dimension: int = 768,
        similarity_floor: float = DEFAULT_SIMILARITY_FLOOR,
    ):
        self.client = client
        self.collection_name = collection_name
        self.dimension = dimension
        self.similarity_floor = similarity_floor
        self._ensure_collection()

    @classmethod
    def from_settings(cls, settings: RAGSettings) -> "KnowledgeStore":
        """Build a store with a Qdrant client configured from settings."""
        timeout = math.ceil(settings.request_timeout)

        if settings.qdrant_location:
            client = QdrantClient(location=settings.qdrant_location)
        elif settings.qdrant_url:
            client = QdrantClient(
                url=settings.qdrant_url,
                api_key=settings.qdrant_api_key,
                timeout=timeout,
            )
        else:
            client = QdrantClient(
                host=settings.qdrant_host,
                port=settings.qdrant_port,
                api_key=settings.qdrant_api_key,
                timeout=timeout,
            )

        return cls(
            client,
            collection_name=settings.collection_name,
            dimension=settings.embedding_dimension,
            similarity_floor=settings.similarity_floor,
        )

    def _ensure_collection(self):
        """Create the collection if missing; refuse a dimension mismatch."""
        try:
            collections = self.client.get_collections().collections
            collection_names = [c.name for c in collections]

            if self.collection_name in collection_names:
                info = self.client.get_collection(self.collection_name)
                current_dim = info.config.params.vectors.size
            else:
                logger.info(
                    f"Creating collection: {self.collection_name} with dim {self.dimension}"
                )
                # Ranking happens in-process; DOT keeps stored vectors unnormalised.
                self.client.create_collection(
                    collection_name=self.collection_name,
                    vectors_config=VectorParams(size=self.dimension, distance=Distance.DOT),
                )
                return
        except Exception as e:
            raise StoreError(f"Failed to prepare collection {self.collection_name}: {e}") from e

        if current_dim != self.dimension:
            raise ConfigurationError(
                f"Collection {self.collection_name} has dimension {current_dim}, "
                f"expected {self.dimension}",
                details={"found": current_dim, "expected": self.dimension},
            )

    def find_by_key(self, file_name: str) -> KnowledgeRecord | None:
        """Return the record stored for a file name, if any."""
        try:
            points = self.client.retrieve(
                collection_name=self.collection_name,
                ids=[point_id_for(file_name)],
                with_payload=True,
                with_vectors=False,
            )
        except Exception as e:
            raise StoreError(f"Lookup failed for {file_name}: {e}") from e

        return KnowledgeRecord.from_point(points[0]) if points else None

    def upsert(self, record: KnowledgeRecord) -> KnowledgeRecord:
        """
        Insert or fully replace the record keyed by its file name.

        Args:
            record: The record to write. Its embedding must match the collection.

        Returns:
            The stored record with ``id`` and ``updated_at`` filled in.
        """
        stored = replace(
            record,
            id=point_id_for(record.file_name),
            updated_at=datetime.now(timezone.utc).isoformat(),
        )

        try:
            self.client.upsert(
                collection_name=self.collection_name,
                points=[
                    PointStruct(
                        id=stored.id,
                        vector=list(stored.embedding),
                        payload=stored.to_payload(),
                    )
                ],
                wait=True,
            )
        except Exception as e:
            raise StoreError(f"Upsert failed for {record.file_name}: {e}") from e

        logger.info(f"💾 Upserted document: {record.file_name}")
        return stored

    def scan_with_embeddings(self) -> list[KnowledgeRecord]:
        """Materialise every record that has an embedding."""
        records = []
        offset = None

        try:
            while True:
                points, offset = self.client.scroll(
                    collection_name=self.collection_name,
                    limit=SCROLL_BATCH_SIZE,
                    offset=offset,
                    with_payload=True,
                    with_vectors=True,
                )
                records.extend(KnowledgeRecord.from_point(p) for p in points)
                if offset is None:
                    break
        except Exception as e:
            raise StoreError(f"Corpus scan failed: {e}") from e

        return [r for r in records if r.embedding]

    def search_similar(
        self, query_embedding: list[float], limit: int = 10
    ) -> list[ScoredRecord]:
        """
        Rank the whole corpus against the query.

        Records scoring below ``similarity_floor`` are dropped here, before any
        caller threshold is applied, so a lower caller threshold has no effect.
        """
        corpus = self.scan_with_embeddings()
        results = rank_by_similarity(
            query_embedding, corpus, threshold=self.similarity_floor, limit=limit
        )
        logger.info(f"🔍 Found {len(results)} similar documents in {len(corpus)} scanned")
        return results

    def count(self) -> int:
        try:
            return self.client.count(collection_name=self.collection_name, exact=True).count
        except Exception as e:
            raise StoreError(f"Count failed: {e}") from e

    def delete(self, file_name: str):
        """Delete the record(s) stored for a file name."""
        try:
            self.client.delete(
                collection_name=self.collection_name,
                points_selector=FilterSelector(filter=_file_name_filter(file_name)),
                wait=True,
            )
        except Exception as e:
            raise StoreError(f"Delete failed for {file_name}: {e}") from e

        logger.info(f"🗑️ Deleted document: {file_name}")

    def get_statistics(self) -> dict:
        return {"totalDocuments": self.count(), "collection": self.collection_name}
