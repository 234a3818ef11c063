"""Custom exceptions raised by :mod:`flipbook_backend`."""

from __future__ import annotations


class FlipbookError(Exception):
    """Base exception for all errors raised by :mod:`flipbook_backend`."""


class NotAPdfError(FlipbookError):
    """Raised when an upload is not a PDF. Nothing has been stored yet."""

    def __init__(self, filename: str | None = None) -> None:
        self.filename = filename
        super().__init__("Please upload a PDF file.")


class RemoteServiceError(FlipbookError):
    """Raised when the object store or the metadata store rejects a call."""


class RenderError(FlipbookError):
    """Raised when a PDF cannot be opened or one of its pages cannot be rendered."""


class PublishError(FlipbookError):
    """Raised when a publish run fails after validation.

    The message is the one shown to the admin; the underlying failure is
    chained as ``__cause__``.
    """

    def __init__(self, cause: BaseException, publication_id: str | None = None) -> None:
        self.publication_id = publication_id
        super().__init__(f"Upload failed: {cause}")


class PublicationNotFoundError(FlipbookError):
    """Raised when a publication id has no metadata record."""

    def __init__(self, publication_id: str) -> None:
        self.publication_id = publication_id
        super().__init__("Publication not found")


class InvalidCredentialsError(FlipbookError):
    """Raised when sign-in fails."""

    def __init__(self) -> None:
        super().__init__("Invalid login credentials")


class NotAuthenticatedError(FlipbookError):
    """Raised when a session token is missing, unknown or expired."""

    def __init__(self) -> None:
        super().__init__("Not authenticated")


class UploadInProgressError(FlipbookError):
    """Raised when an upload is started while another one is still running."""

    def __init__(self, upload_id: str) -> None:
        self.upload_id = upload_id
        super().__init__("Another upload is still in progress.")
