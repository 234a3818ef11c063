"""
Public viewer: a page cursor over one publication.

The navigator owns the viewer state (publication and current page) that a
browser would otherwise hold in globals. Metadata is fetched once on load;
every page's image location is derived from ``(publication_id, page)``.
"""

from __future__ import annotations

import logging
from typing import Optional

from .exceptions import PublicationNotFoundError
from .models import PageView, Publication
from .remote import PUBLICATIONS_TABLE, RemoteService
from .utils import page_object_key

logger = logging.getLogger(__name__)

NEXT_KEY = "ArrowRight"
PREVIOUS_KEY = "ArrowLeft"


class ViewerNavigator:
    """Cursor over ``[1, page_count]``. Moves past either bound are no-ops."""

    def __init__(self, remote: RemoteService, publication: Publication, start_page: int = 1) -> None:
        self.remote = remote
        self.publication = publication
        if not 1 <= start_page <= max(publication.page_count, 1):
            raise ValueError(f"Page {start_page} is out of range (1-{publication.page_count}).")
        self._page = start_page

    @classmethod
    def load(cls, remote: RemoteService, publication_id: str, start_page: int = 1) -> "ViewerNavigator":
        """
        Fetch a publication's metadata and open it.

        Raises:
            PublicationNotFoundError: No record exists for ``publication_id``
            ValueError: ``start_page`` is outside the publication
        """
        record = remote.get_record(PUBLICATIONS_TABLE, publication_id)
        if record is None:
            raise PublicationNotFoundError(publication_id)
        return cls(remote, Publication(**record), start_page=start_page)

    @property
    def publication_id(self) -> str:
        return self.publication.id

    @property
    def total_pages(self) -> int:
        return self.publication.page_count

    @property
    def current_page(self) -> int:
        return self._page

    @property
    def has_next(self) -> bool:
        return self._page < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self._page > 1

    def next(self) -> bool:
        if not self.has_next:
            return False
        self._page += 1
        return True

    def previous(self) -> bool:
        if not self.has_previous:
            return False
        self._page -= 1
        return True

    def handle_key(self, key: str) -> bool:
        """Keyboard navigation: right arrow advances, left arrow goes back."""
        if key == NEXT_KEY:
            return self.next()
        if key == PREVIOUS_KEY:
            return self.previous()
        return False

    def move(self, action: Optional[str]) -> bool:
        """Apply a named move ("next", "previous") or an arrow key name."""
        if not action:
            return False
        if action == "next":
            return self.next()
        if action == "previous":
            return self.previous()
        return self.handle_key(action)

    @property
    def image_key(self) -> Optional[str]:
        # A publication without pages has no image objects
        if self.total_pages == 0:
            return None
        return page_object_key(self.publication_id, self._page)

    @property
    def image_url(self) -> Optional[str]:
        key = self.image_key
        return self.remote.get_public_url("pages", key) if key else None

    def current_view(self) -> PageView:
        return PageView(
            publication_id=self.publication_id,
            title=self.publication.title,
            page=self._page,
            total_pages=self.total_pages,
            image_key=self.image_key,
            image_url=self.image_url,
            has_previous=self.has_previous,
            has_next=self.has_next,
        )

    def record_view(self) -> None:
        """
        Count one view of the publication.

        Best effort and at most once: the result is ignored and a failure is
        only logged, never retried or raised.
        """
        try:
            self.remote.increment_views(self.publication_id)
        except Exception as exc:
            logger.debug(f"Ignoring failed view count for {self.publication_id}: {exc}")
