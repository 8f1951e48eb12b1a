"""
PDF text extraction (PyMuPDF).

Only the embedded text layer is read. Scanned PDFs yield little or no text,
which simply sends them to the AI stage.
"""

import fitz  # PyMuPDF
import structlog

logger = structlog.get_logger(__name__)


class PDFTextError(Exception):
    """The PDF could not be opened or read."""


def extract_pdf_text(content: bytes) -> str:
    """
    Return the plain-text transcript of every page, separated by newlines.

    Raises:
        PDFTextError: If the bytes are not a readable PDF
    """
    try:
        with fitz.open(stream=content, filetype="pdf") as doc:
            pages = [page.get_text() for page in doc]
    except Exception as e:
        raise PDFTextError(f"Failed to read PDF text: {e}") from e

    text = "\n".join(pages)
    logger.debug("pdf_text_extracted", pages=len(pages), characters=len(text))
    return text
