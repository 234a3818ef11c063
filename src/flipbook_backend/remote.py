"""
Remote service facade.

Everything the publish pipeline, the admin routes and the viewer need from
the outside world goes through RemoteService: sign-in and sessions, object
upload/download and public URLs, and record insert/select/update/delete.
Callers never touch boto3 or sqlite3 directly, which keeps the pipeline
testable against an in-memory object store.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .database import PublicationDatabase
from .exceptions import RemoteServiceError
from .models import Session
from .s3_service import S3ObjectStore
from .sessions import SessionManager

logger = logging.getLogger(__name__)

PUBLICATIONS_TABLE = "publications"


class RemoteService:
    """
    Facade over the session store, the object store and the metadata store.

    Attributes:
        storage: Object store (S3ObjectStore or anything with the same methods)
        database: Publication metadata store
        sessions: Sign-in and session lookup
        buckets: Mapping of logical bucket name ("pdfs", "pages") to the real bucket
    """

    def __init__(
        self,
        storage: S3ObjectStore,
        database: PublicationDatabase,
        sessions: SessionManager,
        buckets: Optional[Dict[str, str]] = None,
    ) -> None:
        self.storage = storage
        self.database = database
        self.sessions = sessions
        self.buckets = dict(buckets or {"pdfs": "pdfs", "pages": "pages"})

    @classmethod
    def from_settings(cls, settings, storage: Optional[S3ObjectStore] = None) -> "RemoteService":
        db_path = Path(settings.database.path)
        sessions = SessionManager(db_path, session_ttl_seconds=settings.auth.session_ttl_seconds)
        if settings.auth.admin_email and settings.auth.admin_password:
            sessions.ensure_user(settings.auth.admin_email, settings.auth.admin_password)
        return cls(
            storage=storage or S3ObjectStore.from_settings(settings),
            database=PublicationDatabase(db_path),
            sessions=sessions,
            buckets=dict(settings.storage.buckets),
        )

    def bucket(self, name: str) -> str:
        try:
            return self.buckets[name]
        except KeyError as exc:
            raise RemoteServiceError(f"Unknown bucket: {name}") from exc

    # --- Auth ---

    def sign_in(self, email: str, password: str) -> Session:
        return self.sessions.sign_in(email, password)

    def get_session(self, token: Optional[str]) -> Optional[Session]:
        return self.sessions.get_session(token)

    def sign_out(self, token: Optional[str]) -> bool:
        return self.sessions.sign_out(token)

    # --- Objects ---

    def upload_object(self, bucket: str, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        self.storage.upload_object(self.bucket(bucket), path, data, content_type=content_type)

    def get_object(self, bucket: str, path: str) -> bytes:
        return self.storage.get_object(self.bucket(bucket), path)

    def get_public_url(self, bucket: str, path: str) -> str:
        return self.storage.get_public_url(self.bucket(bucket), path)

    # --- Records ---

    def _check_table(self, table: str) -> None:
        if table != PUBLICATIONS_TABLE:
            raise RemoteServiceError(f"Unknown table: {table}")

    def insert_record(self, table: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        self._check_table(table)
        try:
            return self.database.insert_publication(fields)
        except (sqlite3.Error, ValueError, KeyError) as exc:
            logger.error(f"Insert into {table} failed: {exc}")
            raise RemoteServiceError(f"Could not save {table} record: {exc}") from exc

    def select_records(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[Tuple[str, bool]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Select records with equality filters.

        Args:
            table: Table name
            filters: Column -> value equality filters
            order: ``(column, ascending)``; defaults to newest first
        """
        self._check_table(table)
        column, ascending = order or ("created_at", False)
        try:
            return self.database.list_publications(filters, order_by=column, descending=not ascending)
        except (sqlite3.Error, ValueError) as exc:
            logger.error(f"Select from {table} failed: {exc}")
            raise RemoteServiceError(f"Could not load {table}: {exc}") from exc

    def get_record(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        records = self.select_records(table, filters={"id": record_id})
        return records[0] if records else None

    def update_record(self, table: str, record_id: str, fields: Dict[str, Any]) -> bool:
        self._check_table(table)
        try:
            return self.database.update_publication(record_id, fields)
        except (sqlite3.Error, ValueError) as exc:
            logger.error(f"Update of {table}/{record_id} failed: {exc}")
            raise RemoteServiceError(f"Could not update {table} record: {exc}") from exc

    def delete_record(self, table: str, record_id: str) -> bool:
        self._check_table(table)
        try:
            return self.database.delete_publication(record_id)
        except sqlite3.Error as exc:
            logger.error(f"Delete of {table}/{record_id} failed: {exc}")
            raise RemoteServiceError(f"Could not delete {table} record: {exc}") from exc

    def increment_views(self, publication_id: str) -> bool:
        try:
            return self.database.increment_views(publication_id)
        except sqlite3.Error as exc:
            raise RemoteServiceError(f"Could not record view: {exc}") from exc
