"""
Flipbook Backend - REST API for publishing PDFs as paginated page images

This package provides a FastAPI-based web service behind a minimal
document-publishing site. It enables:

- Admin sign-in with bearer sessions
- PDF uploads that are rasterized into one JPEG per page
- Progress tracking for the running upload
- Listing and deleting publications
- A public, paginated viewer over the stored page images

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - pipeline: The publish pipeline (PDF upload, page rendering, metadata commit)
    - upload_manager: Background execution and progress tracking of uploads
    - rasterizer: PDF page rendering and JPEG encoding
    - remote: Facade over sessions, the object store and the metadata store
    - viewer: Page cursor for the public viewer
    - configuration: Settings loading and merging logic

Usage:
    Run the API server with:
        uvicorn flipbook_backend.main:app --reload --host 0.0.0.0 --port 8000

Storage Layout:
    - pdfs bucket:  {publication_id}/{timestamp}_{filename}
    - pages bucket: {publication_id}/{page_number}.jpg (1-indexed, contiguous)
    - publications table: one row per publication, inserted last
"""
