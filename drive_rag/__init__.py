"""
Drive knowledge-base RAG: incremental Drive sync and grounded question answering.
"""

from .config import drive_settings, paths, rag_settings, sync_settings
from .logging_config import logger

__all__ = ["rag_settings", "drive_settings", "sync_settings", "paths", "logger"]
