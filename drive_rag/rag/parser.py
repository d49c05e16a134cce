"""
Text extraction for Drive files.

PDFs are read with pypdf, Word and exported Google Docs with python-docx.
Unsupported types yield empty text rather than an error.
"""

import io
import re
import zipfile

import docx
import pypdf
from docx.opc.exceptions import PackageNotFoundError

from ..config import (
    FILE_TYPE_MAP,
    MIME_DOC,
    MIME_DOCX,
    MIME_GOOGLE_DOC,
    MIME_PDF,
)
from ..errors import FileProcessingError
from ..logging_config import logger

_WHITESPACE_RE = re.compile(r"\s+")
_EXTENSION_RE = re.compile(r"\.[^/.]+$")


def _extract_pdf(data: bytes) -> str:
    reader = pypdf.PdfReader(io.BytesIO(data))
    parts = []
    for page in reader.pages:
        page_text = (page.extract_text() or "").strip()
        if page_text:
            parts.append(page_text)
    return "\n\n".join(parts)


def _extract_word(data: bytes) -> str:
    document = docx.Document(io.BytesIO(data))
    parts = [p.text for p in document.paragraphs if p.text]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text for cell in row.cells if cell.text]
            if cells:
                parts.append(" ".join(cells))
    return "\n".join(parts)


def extract_text(data: bytes, mime_type: str, file_name: str) -> str:
    """
    Extract text content from a file based on its MIME type.

    Args:
        data: Raw file bytes.
        mime_type: MIME type reported by the source.
        file_name: File name, used for logging and error tagging.

    Returns:
        Extracted text; empty for unsupported or legacy formats.

    Raises:
        FileProcessingError: If the parser fails on a supported format.
    """
    try:
        if mime_type == MIME_PDF:
            text = _extract_pdf(data)
        elif mime_type in (MIME_DOCX, MIME_GOOGLE_DOC):
            text = _extract_word(data)
        elif mime_type == MIME_DOC:
            try:
                text = _extract_word(data)
            except (PackageNotFoundError, zipfile.BadZipFile):
                logger.warning(
                    f"⚠️ Skipped {file_name}: Old .doc format not supported. Please convert to .docx"
                )
                text = ""
        else:
            logger.warning(f"Unsupported file type: {mime_type}")
            text = ""
    except Exception as e:
        logger.error(f"Error extracting text from {file_name}: {e}")
        raise FileProcessingError(
            f"Failed to extract text from {file_name}",
            file_name=file_name,
            details={"mimeType": mime_type, "originalError": str(e)},
        ) from e

    if text:
        logger.info(f"Extracted {len(text)} characters from {file_name}")

    return text


def clean_text(text: str) -> str:
    """Collapse runs of whitespace and newlines into single spaces."""
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def get_file_type(mime_type: str) -> str:
    return FILE_TYPE_MAP.get(mime_type, "unknown")


def title_from_file_name(file_name: str) -> str:
    """File name without its extension."""
    return _EXTENSION_RE.sub("", file_name)
