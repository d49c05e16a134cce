"""
Context builder.

Turns ranked documents into the text block injected into the answer prompt.
"""

from typing import Sequence

from ..config import MAX_CONTEXT_CONTENT_LENGTH, MAX_CONTEXT_DOCUMENTS

CONTEXT_SEPARATOR = "\n---\n"
TRUNCATION_MARKER = "..."


def _format_block(index: int, title: str, content: str, max_length: int) -> str:
    block = f"[Document {index}: {title}]\n{content[:max_length]}"
    if len(content) > max_length:
        block += f"\n{TRUNCATION_MARKER}"
    return block


def build_context(
    documents: Sequence,
    max_documents: int = MAX_CONTEXT_DOCUMENTS,
    max_content_length: int = MAX_CONTEXT_CONTENT_LENGTH,
) -> str:
    """
    Build a delimited context block from ranked documents.

    Args:
        documents: Records (or ScoredRecords) in ranked order.
        max_documents: Maximum number of documents to include.
        max_content_length: Character budget per document.

    Returns:
        The joined context, or an empty string when there are no documents.
    """
    blocks = []
    for i, doc in enumerate(documents[:max_documents], 1):
        record = getattr(doc, "record", doc)
        title = record.title or record.file_name
        blocks.append(_format_block(i, title, record.content or "", max_content_length))

    return CONTEXT_SEPARATOR.join(blocks)
