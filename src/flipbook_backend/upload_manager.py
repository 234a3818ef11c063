"""
Upload orchestration for the admin dashboard.

This module runs publish pipelines in the background and keeps their state
for polling clients:
- Upload registration after synchronous validation
- Background execution on a single worker
- Progress and event tracking
- A re-entrancy guard: only one upload runs at a time
- A bounded history: the oldest finished uploads are forgotten first

A rejected file never reaches the worker, and a finished or failed run
releases the guard immediately so the next attempt can start.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Optional
from uuid import uuid4

from .exceptions import UploadInProgressError
from .models import ProgressUpdate, UploadDetail, UploadEvent, UploadStatus, UploadSummary
from .pipeline import PublishPipeline

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50
FINISHED_STATUSES = (UploadStatus.COMPLETED, UploadStatus.FAILED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UploadRecord:
    """
    Internal state of one upload attempt.

    Attributes:
        id: Upload identifier (hex UUID); unrelated to the publication id
        filename: Original uploaded filename
        content_type: Declared content type of the upload
        status: Current execution status
        progress: Last reported percentage
        message: Last reported status text
        created_at: Registration timestamp (UTC)
        updated_at: Last modification timestamp (UTC)
        publication_id: Set once the metadata record exists
        error: User-facing failure message
        events: Chronological list of progress messages
    """

    id: str
    filename: str
    content_type: Optional[str]
    status: UploadStatus
    progress: float
    message: str
    created_at: datetime
    updated_at: datetime
    publication_id: Optional[str] = None
    error: Optional[str] = None
    events: list[UploadEvent] = field(default_factory=list)

    def to_summary(self) -> UploadSummary:
        return UploadSummary(
            id=self.id,
            filename=self.filename,
            status=self.status,
            progress=self.progress,
            message=self.message,
            created_at=self.created_at,
            updated_at=self.updated_at,
            publication_id=self.publication_id,
            refresh_listing=self.status == UploadStatus.COMPLETED,
            error=self.error,
        )

    def to_detail(self) -> UploadDetail:
        return UploadDetail(**self.to_summary().model_dump(), events=list(self.events))


class UploadManager:
    """
    Runs publish pipelines one at a time and tracks their progress.

    Thread Safety:
        All record changes and the busy flag are guarded by one lock; the
        request threads read snapshots while the worker writes progress.
    """

    def __init__(self, pipeline: PublishPipeline, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if history_limit < 1:
            raise ValueError("history_limit must be at least 1")
        self.pipeline = pipeline
        self.history_limit = history_limit
        self._uploads: Dict[str, UploadRecord] = {}
        self._lock = Lock()
        self._active_id: Optional[str] = None
        # One worker: runs never overlap, matching the guard below
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="publish")

    @property
    def is_busy(self) -> bool:
        with self._lock:
            return self._active_id is not None

    def list_uploads(self) -> list[UploadSummary]:
        with self._lock:
            records = sorted(self._uploads.values(), key=lambda r: r.created_at, reverse=True)
            return [record.to_summary() for record in records]

    def get_upload(self, upload_id: str) -> Optional[UploadDetail]:
        with self._lock:
            record = self._uploads.get(upload_id)
            return record.to_detail() if record else None

    def _update(self, upload_id: str, **kwargs: Any) -> None:
        with self._lock:
            record = self._uploads[upload_id]
            for key, value in kwargs.items():
                setattr(record, key, value)
            record.updated_at = _utcnow()

    def _append_event(self, upload_id: str, message: str) -> None:
        event = UploadEvent(timestamp=_utcnow(), message=message)
        with self._lock:
            record = self._uploads[upload_id]
            record.events.append(event)
            record.updated_at = event.timestamp

    def _on_progress(self, upload_id: str, update: ProgressUpdate) -> None:
        self._update(upload_id, progress=update.percent, message=update.message)
        self._append_event(upload_id, update.message)

    def submit(self, filename: str, content_type: Optional[str], data: bytes) -> UploadSummary:
        """
        Validate an upload and start publishing it in the background.

        Raises:
            NotAPdfError: The file is rejected; no upload is registered
            UploadInProgressError: Another upload is still running
        """
        self.pipeline.validate(filename, content_type)

        now = _utcnow()
        record = UploadRecord(
            id=uuid4().hex,
            filename=filename,
            content_type=content_type,
            status=UploadStatus.PENDING,
            progress=0.0,
            message="Waiting to start...",
            created_at=now,
            updated_at=now,
        )
        record.events.append(UploadEvent(timestamp=now, message="Upload registered."))

        with self._lock:
            if self._active_id is not None:
                raise UploadInProgressError(self._active_id)
            self._active_id = record.id
            self._uploads[record.id] = record
            self._prune_history()

        try:
            self._executor.submit(self._run, record.id, data)
        except RuntimeError:
            with self._lock:
                self._active_id = None
                del self._uploads[record.id]
            raise
        return record.to_summary()

    def _prune_history(self) -> None:
        """Drop the oldest finished records beyond ``history_limit``. Caller holds the lock."""
        excess = len(self._uploads) - self.history_limit
        if excess <= 0:
            return
        # Dict order is registration order
        finished = [upload_id for upload_id, record in self._uploads.items() if record.status in FINISHED_STATUSES]
        for upload_id in finished[:excess]:
            del self._uploads[upload_id]

    def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Block until every submitted run has finished."""
        self._executor.submit(lambda: None).result(timeout=timeout)

    def _run(self, upload_id: str, data: bytes) -> None:
        """Execute one publish run on the worker thread."""
        with self._lock:
            record = self._uploads[upload_id]
            filename, content_type = record.filename, record.content_type

        self._update(upload_id, status=UploadStatus.RUNNING)
        try:
            publication = self.pipeline.run(
                filename,
                data,
                content_type=content_type,
                on_progress=lambda update: self._on_progress(upload_id, update),
            )
            self._update(upload_id, status=UploadStatus.COMPLETED, publication_id=publication.id)
            self._append_event(upload_id, f"Publication {publication.id} is live.")
        except Exception as exc:
            logger.error(f"Upload {upload_id} failed: {exc}")
            self._update(upload_id, status=UploadStatus.FAILED, error=str(exc))
            self._append_event(upload_id, str(exc))
        finally:
            with self._lock:
                if self._active_id == upload_id:
                    self._active_id = None

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
