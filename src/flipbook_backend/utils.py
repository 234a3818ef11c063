"""
Helpers for upload validation and object key layout.

This module provides helper functions for:
- Deciding whether an upload claims to be a PDF
- Deriving a publication title from the uploaded filename
- Building the object keys under which a publication is stored

The key layout is the only durable contract with the public viewer:
the PDF lives at ``{id}/{timestamp}_{filename}`` and page images at
``{id}/{page}.jpg``, 1-indexed and contiguous.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Iterable, Optional

PDF_CONTENT_TYPE = "application/pdf"
JPEG_CONTENT_TYPE = "image/jpeg"


def split_extension(filename: str) -> tuple[str, str]:
    """
    Split a filename into stem and extension components.

    Args:
        filename: The filename to split (can include path)

    Returns:
        A tuple of (stem, extension) where extension includes the dot

    Example:
        >>> split_extension("report.pdf")
        ("report", ".pdf")
        >>> split_extension("/path/to/file.tar.gz")
        ("file.tar", ".gz")
    """
    path = Path(filename)
    return path.stem, path.suffix


def allowed_pdf_extensions() -> Iterable[str]:
    return [".pdf"]


def is_pdf_upload(filename: Optional[str], content_type: Optional[str]) -> bool:
    """
    Check whether an upload claims to be a PDF.

    Either the declared content type or the filename extension is enough;
    browsers do not always send a content type for dropped files.
    """
    if (content_type or "").split(";")[0].strip().lower() == PDF_CONTENT_TYPE:
        return True
    if not filename:
        return False
    _, extension = split_extension(filename)
    return extension.lower() in allowed_pdf_extensions()


def derive_title(filename: str) -> str:
    """
    Strip the PDF extension from a filename to get a display title.

    Example:
        >>> derive_title("report.pdf")
        "report"
        >>> derive_title("notes.txt")
        "notes.txt"
    """
    stem, extension = split_extension(Path(filename).name)
    if extension.lower() in allowed_pdf_extensions():
        return stem
    return Path(filename).name


def current_timestamp_ms() -> int:
    return int(time.time() * 1000)


def pdf_object_key(publication_id: str, timestamp: int, filename: str) -> str:
    return f"{publication_id}/{timestamp}_{filename}"


def page_object_key(publication_id: str, page_number: int) -> str:
    if page_number < 1:
        raise ValueError(f"Page numbers start at 1, got {page_number}")
    return f"{publication_id}/{page_number}.jpg"
