"""
Composition root.

Builds each service once with its collaborators passed in explicitly.
Nothing here is cached at module level; callers own the returned container.
"""

from dataclasses import dataclass

from .config import (
    DriveSettings,
    RAGSettings,
    SyncSettings,
    drive_settings,
    rag_settings,
    sync_settings,
)
from .logging_config import logger
from .rag.embeddings import Embedder
from .rag.llm import AnswerGenerator, get_llm_client
from .rag.query import QueryEngine
from .rag.store import KnowledgeStore
from .rag.sync import SyncEngine


@dataclass
class Services:
    embedder: Embedder
    generator: AnswerGenerator
    store: KnowledgeStore
    query_engine: QueryEngine
    sync_engine: SyncEngine | None = None


def build_services(
    rag: RAGSettings | None = None,
    drive: DriveSettings | None = None,
    sync: SyncSettings | None = None,
    with_sync: bool = True,
) -> Services:
    """
    Wire up the query engine and, optionally, the sync engine.

    Args:
        rag: Model/store settings.
        drive: Drive settings (only read when ``with_sync`` is set).
        sync: Sync throughput settings.
        with_sync: Build the Drive source and sync engine too.
    """
    rag = rag or rag_settings
    drive = drive or drive_settings
    sync = sync or sync_settings

    client = get_llm_client(rag)
    embedder = Embedder(client, rag.embedding_model, max_text_length=sync.max_text_length)
    generator = AnswerGenerator(client, rag.chat_model)
    store = KnowledgeStore.from_settings(rag)

    services = Services(
        embedder=embedder,
        generator=generator,
        store=store,
        query_engine=QueryEngine(embedder, store, generator),
    )

    if with_sync:
        from .drive import DriveSource

        services.sync_engine = SyncEngine(
            source=DriveSource.from_settings(drive, timeout=rag.request_timeout),
            embedder=embedder,
            store=store,
            settings=sync,
            folder_id=drive.drive_folder_id,
            teacher_id=drive.teacher_id,
            user_id=drive.user_id,
        )

    logger.info(f"✅ Services ready (chat: {rag.chat_model}, embedding: {rag.embedding_model})")
    return services
