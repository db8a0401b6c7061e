"""PDF decoding with PyMuPDF: text layer extraction and first-page rasterizing."""

import logging

import pymupdf

from errors import InvalidDocument

logger = logging.getLogger(__name__)

RENDER_DPI = 150


def pdf_to_text(pdf_bytes: bytes) -> str:
    """Extract the text layer of every page, joined by newlines.

    Returns an empty string for scanned PDFs without a text layer.
    Raises InvalidDocument if the bytes are not a readable PDF.
    """
    try:
        with pymupdf.open(stream=pdf_bytes, filetype="pdf") as doc:
            pages = [page.get_text() for page in doc]
    except Exception as e:
        raise InvalidDocument(f"Could not read PDF: {e}") from e

    if not pages:
        raise InvalidDocument("PDF has no pages")

    logger.debug("pdf: decoded %d pages", len(pages))
    return "\n".join(pages).strip()


def pdf_first_page_png(pdf_bytes: bytes, dpi: int = RENDER_DPI) -> bytes:
    """Render the first page as PNG so it can go through the image path."""
    try:
        with pymupdf.open(stream=pdf_bytes, filetype="pdf") as doc:
            if doc.page_count == 0:
                raise InvalidDocument("PDF has no pages")
            pix = doc[0].get_pixmap(dpi=dpi)
            return pix.tobytes("png")
    except InvalidDocument:
        raise
    except Exception as e:
        raise InvalidDocument(f"Could not render PDF: {e}") from e
