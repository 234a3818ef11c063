"""
PDF rasterization: render pages with PDFium and encode them as JPEG.

The publish pipeline consumes :func:`iter_page_images`, a producer of
``(page_number, total_pages, jpeg_bytes)`` tuples in ascending page order.
Rendering knows nothing about uploads or progress reporting.
"""

from __future__ import annotations

import io
import logging
from typing import Iterator, NamedTuple

import pypdfium2 as pdfium
from PIL import Image

from .exceptions import RenderError

logger = logging.getLogger(__name__)

DEFAULT_SCALE = 1.5
DEFAULT_JPEG_QUALITY = 80


class PageImage(NamedTuple):
    page_number: int
    total_pages: int
    data: bytes


def load_document(data: bytes) -> pdfium.PdfDocument:
    """Open a PDF held in memory. Raises RenderError for malformed input."""
    if not data:
        raise RenderError("The PDF file is empty.")
    try:
        return pdfium.PdfDocument(data)
    except pdfium.PdfiumError as exc:
        raise RenderError(f"Could not open PDF: {exc}") from exc


def page_count(document: pdfium.PdfDocument) -> int:
    return len(document)


def render_page(document: pdfium.PdfDocument, page_number: int, scale: float = DEFAULT_SCALE) -> Image.Image:
    """
    Render one page to a PIL image.

    Args:
        document: Open document from :func:`load_document`
        page_number: 1-indexed page number
        scale: Pixels per PDF point (1.0 renders at 72 dpi)
    """
    if not 1 <= page_number <= len(document):
        raise RenderError(f"Page {page_number} is out of range (1-{len(document)}).")

    page = document[page_number - 1]
    try:
        bitmap = page.render(scale=scale)
        return bitmap.to_pil()
    except pdfium.PdfiumError as exc:
        raise RenderError(f"Could not render page {page_number}: {exc}") from exc
    finally:
        page.close()


def encode_jpeg(image: Image.Image, quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    """Encode an image as a baseline JPEG. Alpha and palette modes are flattened to RGB."""
    if image.mode != "RGB":
        image = image.convert("RGB")
    buffer = io.BytesIO()
    try:
        image.save(buffer, format="JPEG", quality=quality)
    except OSError as exc:
        raise RenderError(f"Could not encode page image: {exc}") from exc
    return buffer.getvalue()


def iter_page_images(
    data: bytes,
    scale: float = DEFAULT_SCALE,
    quality: int = DEFAULT_JPEG_QUALITY,
) -> Iterator[PageImage]:
    """
    Render every page of a PDF, in ascending order.

    The document is closed once the iterator is exhausted, fails, or is
    abandoned by the consumer.
    """
    document = load_document(data)
    try:
        total = page_count(document)
        logger.info(f"Rasterizing {total} page(s) at scale {scale}, JPEG quality {quality}")
        for page_number in range(1, total + 1):
            image = render_page(document, page_number, scale)
            yield PageImage(page_number, total, encode_jpeg(image, quality))
    finally:
        document.close()
