"""
SQLite metadata store for publications.

A row in ``publications`` is what makes a publication visible. The publish
pipeline inserts it strictly after every page image has been uploaded.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

# Default database path
DEFAULT_DB_PATH = Path("data/flipbook.db")

PUBLICATION_COLUMNS = (
    "id",
    "title",
    "filename",
    "page_count",
    "description",
    "views",
    "created_at",
)

# Columns a caller may change after insert; id and created_at are owned by the store
UPDATABLE_COLUMNS = ("title", "filename", "page_count", "description", "views")


def _ensure_db_dir(db_path: Path) -> None:
    """Ensure the database directory exists."""
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _serialize_datetime(dt: datetime) -> str:
    """Serialize datetime to ISO format string."""
    return dt.isoformat() if dt else None


def _deserialize_datetime(s: str) -> Optional[datetime]:
    """Deserialize ISO format string to datetime."""
    if not s:
        return None
    return datetime.fromisoformat(s)


def _check_columns(columns: Sequence[str], allowed: Sequence[str]) -> None:
    unknown = [column for column in columns if column not in allowed]
    if unknown:
        raise ValueError(f"Unknown publication fields: {', '.join(unknown)}")


class PublicationDatabase:
    """
    SQLite database for publication metadata.

    Every call opens its own connection, so one instance can be shared
    between the request threads and the upload worker.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        _ensure_db_dir(self.db_path)
        self._init_db()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper settings."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS publications (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    page_count INTEGER NOT NULL CHECK (page_count >= 0),
                    description TEXT NOT NULL DEFAULT '',
                    views INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_publications_created_at
                ON publications(created_at DESC)
            """)

    def insert_publication(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a publication record.

        The store assigns ``created_at``; a caller-supplied value is ignored.

        Args:
            fields: Column values; ``id``, ``title``, ``filename`` and ``page_count`` are required

        Returns:
            The stored record

        Raises:
            sqlite3.IntegrityError: If the id already exists or a constraint fails
        """
        _check_columns(list(fields), PUBLICATION_COLUMNS)
        created_at = datetime.now(timezone.utc)

        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO publications (
                    id, title, filename, page_count, description, views, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                fields["id"],
                fields["title"],
                fields["filename"],
                int(fields["page_count"]),
                fields.get("description", ""),
                int(fields.get("views", 0)),
                _serialize_datetime(created_at),
            ))

        return self.get_publication(fields["id"])

    def get_publication(self, publication_id: str) -> Optional[Dict[str, Any]]:
        """
        Retrieve a publication by ID.

        Returns:
            Publication data dictionary or None if not found
        """
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM publications WHERE id = ?", (publication_id,)
            ).fetchone()

            if not row:
                return None

            return self._row_to_dict(row)

    def list_publications(
        self,
        filters: Optional[Dict[str, Any]] = None,
        order_by: str = "created_at",
        descending: bool = True,
    ) -> List[Dict[str, Any]]:
        """
        List publications, newest first by default.

        Args:
            filters: Equality filters keyed by column name
            order_by: Column to sort by
            descending: Sort direction

        Returns:
            List of publication data dictionaries
        """
        filters = filters or {}
        _check_columns(list(filters), PUBLICATION_COLUMNS)
        _check_columns([order_by], PUBLICATION_COLUMNS)

        query = "SELECT * FROM publications"
        values: List[Any] = []
        if filters:
            query += " WHERE " + " AND ".join(f"{column} = ?" for column in filters)
            values.extend(filters.values())
        direction = "DESC" if descending else "ASC"
        # rowid breaks ties between rows inserted within the same microsecond
        query += f" ORDER BY {order_by} {direction}, rowid {direction}"

        with self._get_connection() as conn:
            rows = conn.execute(query, values).fetchall()
            return [self._row_to_dict(row) for row in rows]

    def update_publication(self, publication_id: str, fields: Dict[str, Any]) -> bool:
        """
        Update columns of an existing publication.

        Returns:
            True if a row was updated, False if not found
        """
        if not fields:
            return self.get_publication(publication_id) is not None
        _check_columns(list(fields), UPDATABLE_COLUMNS)

        assignments = ", ".join(f"{column} = ?" for column in fields)
        values = [*fields.values(), publication_id]
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"UPDATE publications SET {assignments} WHERE id = ?",
                values,
            )
            return cursor.rowcount > 0

    def increment_views(self, publication_id: str) -> bool:
        """Atomically add one to a publication's view counter."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE publications SET views = views + 1 WHERE id = ?",
                (publication_id,),
            )
            return cursor.rowcount > 0

    def delete_publication(self, publication_id: str) -> bool:
        """
        Delete a publication record.

        Stored objects are left in place.

        Returns:
            True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM publications WHERE id = ?", (publication_id,))
            return cursor.rowcount > 0

    def _row_to_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        """Convert a database row to a publication data dictionary."""
        return {
            "id": row["id"],
            "title": row["title"],
            "filename": row["filename"],
            "page_count": row["page_count"],
            "description": row["description"],
            "views": row["views"],
            "created_at": _deserialize_datetime(row["created_at"]),
        }
