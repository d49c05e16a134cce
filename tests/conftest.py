"""Shared fixtures for tests."""

import uuid
from unittest.mock import MagicMock

import pytest
from qdrant_client import QdrantClient

from drive_rag.config import SyncSettings
from drive_rag.drive import SourceFile
from drive_rag.rag.store import KnowledgeRecord, KnowledgeStore


@pytest.fixture
def memory_store():
    """A knowledge store backed by Qdrant's in-process mode, 2-d vectors."""
    client = QdrantClient(":memory:")
    return KnowledgeStore(client, collection_name=f"test_{uuid.uuid4().hex}", dimension=2)


@pytest.fixture
def make_record():
    """Factory for KnowledgeRecords."""

    def _make(file_name="doc-a.pdf", embedding=None, **kwargs):
        kwargs.setdefault("content", f"Content of {file_name}")
        kwargs.setdefault("title", file_name.rsplit(".", 1)[0])
        return KnowledgeRecord(
            file_name=file_name,
            embedding=embedding if embedding is not None else [1.0, 0.0],
            **kwargs,
        )

    return _make


@pytest.fixture
def make_file():
    """Factory for listed source files."""

    def _make(name="doc.pdf", file_id=None, modified_time="2024-01-01T00:00:00.000Z",
              mime_type="application/pdf"):
        return SourceFile(
            id=file_id or f"id-{name}",
            name=name,
            mime_type=mime_type,
            modified_time=modified_time,
            size=1024,
            url=f"https://drive.google.com/file/d/id-{name}/view",
        )

    return _make


@pytest.fixture
def mock_embedder():
    """Embedder returning a fixed 2-d vector."""
    embedder = MagicMock()
    embedder.embed.return_value = [1.0, 0.0]
    return embedder


@pytest.fixture
def mock_generator():
    generator = MagicMock()
    generator.generate.return_value = "Generated answer"
    return generator


@pytest.fixture
def fast_sync_settings():
    """Sync settings without inter-file delay."""
    return SyncSettings(rate_limit_delay=0, sync_workers=1, min_text_length=10)
