from __future__ import annotations

import io
import logging

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from jobflow.errors import ExtractionError

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"


def is_pdf(raw: bytes, filename: str = "") -> bool:
    return raw.startswith(PDF_MAGIC) or filename.lower().endswith(".pdf")


def extract_pdf_text(raw: bytes) -> str:
    try:
        reader = PdfReader(io.BytesIO(raw))
    except (PdfReadError, ValueError) as exc:
        raise ExtractionError(f"unreadable PDF: {exc}") from exc

    if reader.is_encrypted:
        raise ExtractionError("cannot read encrypted PDF")

    parts = [page.extract_text() or "" for page in reader.pages]
    return "\n".join(parts)


def extract_text(raw: bytes, filename: str = "") -> str:
    if is_pdf(raw, filename):
        text = extract_pdf_text(raw)
    else:
        text = raw.decode("utf-8", errors="ignore")

    logger.debug("Extracted %d chars from %s", len(text), filename or "<upload>")
    return text.strip()
