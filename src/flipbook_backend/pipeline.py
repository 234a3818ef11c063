"""
Publish pipeline: PDF upload -> page rasterization -> metadata commit.

The steps run strictly in sequence on the caller's thread:

1. validate the upload (no remote call happens for a rejected file)
2. generate the publication id
3. store the original PDF under ``{id}/{timestamp}_{filename}``
4. render, encode and upload each page to ``{id}/{page}.jpg`` in ascending order
5. insert the metadata record

The record is the only thing readers look for, so a failure at any step
leaves nothing visible. Objects uploaded before a failure stay where they
are; nothing is rolled back and nothing is retried.

Progress is reported as ``ProgressUpdate(percent, message)``:

====== ===================================
0-10   starting, uploading the PDF
10-20  PDF stored
20-80  pages, linear in pages completed
80-90  saving metadata
90-100 done
====== ===================================
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterator, Optional
from uuid import uuid4

from .exceptions import NotAPdfError, PublishError, RenderError
from .models import ProgressUpdate, Publication
from .rasterizer import DEFAULT_JPEG_QUALITY, DEFAULT_SCALE, PageImage, iter_page_images
from .remote import PUBLICATIONS_TABLE, RemoteService
from .utils import (
    JPEG_CONTENT_TYPE,
    PDF_CONTENT_TYPE,
    current_timestamp_ms,
    derive_title,
    is_pdf_upload,
    page_object_key,
    pdf_object_key,
)

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "Uploaded via Mini Issuu"

PAGES_START = 20.0
PAGES_END = 80.0

ProgressCallback = Callable[[ProgressUpdate], None]
Rasterize = Callable[[bytes, float, int], Iterator[PageImage]]


def remap_progress(fraction: float, start: float = PAGES_START, end: float = PAGES_END) -> float:
    """Map a sub-task's completion fraction (0-1) into ``[start, end]``."""
    fraction = min(max(fraction, 0.0), 1.0)
    return start + (end - start) * fraction


class ProgressTracker:
    """Forwards progress to a callback, clamped to [0, 100] and never decreasing."""

    def __init__(self, callback: Optional[ProgressCallback] = None) -> None:
        self._callback = callback
        self.percent = 0.0
        self.message = ""

    def report(self, percent: float, message: str) -> None:
        percent = min(max(float(percent), self.percent, 0.0), 100.0)
        self.percent = percent
        self.message = message
        if self._callback is not None:
            self._callback(ProgressUpdate(percent=percent, message=message))


class PublishPipeline:
    """
    Turns one uploaded PDF into a visible Publication.

    Rendering scale and JPEG quality are fixed per pipeline instance.
    """

    def __init__(
        self,
        remote: RemoteService,
        scale: float = DEFAULT_SCALE,
        jpeg_quality: int = DEFAULT_JPEG_QUALITY,
        description: str = DEFAULT_DESCRIPTION,
        rasterize: Rasterize = iter_page_images,
    ) -> None:
        self.remote = remote
        self.scale = scale
        self.jpeg_quality = jpeg_quality
        self.description = description
        self._rasterize = rasterize

    @classmethod
    def from_settings(cls, remote: RemoteService, settings) -> "PublishPipeline":
        return cls(
            remote,
            scale=settings.render.scale,
            jpeg_quality=settings.render.jpeg_quality,
            description=settings.publication.default_description,
        )

    def validate(self, filename: Optional[str], content_type: Optional[str] = None) -> None:
        """Reject anything that does not claim to be a PDF."""
        if not filename or not is_pdf_upload(filename, content_type):
            raise NotAPdfError(filename)

    def run(
        self,
        filename: str,
        data: bytes,
        content_type: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Publication:
        """
        Publish one PDF.

        Raises:
            NotAPdfError: The upload is not a PDF; nothing was stored
            PublishError: Any later step failed; no record was created
        """
        self.validate(filename, content_type)

        progress = ProgressTracker(on_progress)
        publication_id = str(uuid4())
        timestamp = current_timestamp_ms()
        progress.report(0, "Starting upload...")
        logger.info(f"Publishing {filename!r} as {publication_id}")

        try:
            progress.report(10, "Uploading PDF...")
            self.remote.upload_object(
                "pdfs",
                pdf_object_key(publication_id, timestamp, filename),
                data,
                content_type=PDF_CONTENT_TYPE,
            )

            progress.report(PAGES_START, "Processing PDF pages...")
            page_count = self._upload_pages(publication_id, data, progress)

            progress.report(PAGES_END, "Saving metadata...")
            record = self.remote.insert_record(PUBLICATIONS_TABLE, self._record_fields(publication_id, filename, page_count))
            progress.report(90, "Metadata saved.")
        except Exception as exc:
            logger.error(f"Publishing {publication_id} failed at {progress.percent:.0f}%: {exc}")
            raise PublishError(exc, publication_id) from exc

        progress.report(100, "Done!")
        logger.info(f"Published {publication_id} with {page_count} page(s)")
        return Publication(**record)

    def _upload_pages(self, publication_id: str, data: bytes, progress: ProgressTracker) -> int:
        uploaded = 0
        for page in self._rasterize(data, self.scale, self.jpeg_quality):
            if page.page_number != uploaded + 1:
                raise RenderError(f"Expected page {uploaded + 1}, got page {page.page_number}.")

            self.remote.upload_object(
                "pages",
                page_object_key(publication_id, page.page_number),
                page.data,
                content_type=JPEG_CONTENT_TYPE,
            )
            uploaded = page.page_number
            progress.report(
                remap_progress(page.page_number / page.total_pages),
                f"Processing page {page.page_number} of {page.total_pages}...",
            )
        return uploaded

    def _record_fields(self, publication_id: str, filename: str, page_count: int) -> Dict[str, object]:
        return {
            "id": publication_id,
            "title": derive_title(filename),
            "filename": filename,
            "page_count": page_count,
            "description": self.description,
        }
