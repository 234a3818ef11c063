"""
Pytest configuration and fixtures for Flipbook Backend tests.
"""

import io
import os
import shutil
import tempfile
from pathlib import Path

import pypdfium2 as pdfium
import pytest
from fastapi.testclient import TestClient

from flipbook_backend.exceptions import RemoteServiceError

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "correct horse battery staple"

# Set test environment variables before importing the app
_DATA_DIR = tempfile.mkdtemp(prefix="flipbook_test_data_")
os.environ["FLIPBOOK_DB_PATH"] = str(Path(_DATA_DIR) / "flipbook.db")
os.environ["FLIPBOOK_ADMIN_EMAIL"] = ADMIN_EMAIL
os.environ["FLIPBOOK_ADMIN_PASSWORD"] = ADMIN_PASSWORD
os.environ["FLIPBOOK_PUBLIC_BASE_URL"] = "https://cdn.example.com"

from flipbook_backend.database import PublicationDatabase  # noqa: E402
from flipbook_backend.main import app, get_remote_service, get_upload_manager, login_limiter  # noqa: E402
from flipbook_backend.pipeline import PublishPipeline  # noqa: E402
from flipbook_backend.rasterizer import PageImage  # noqa: E402
from flipbook_backend.remote import RemoteService  # noqa: E402
from flipbook_backend.sessions import SessionManager  # noqa: E402
from flipbook_backend.upload_manager import UploadManager  # noqa: E402


class InMemoryObjectStore:
    """Object store double that keeps objects in a dict and records every call."""

    def __init__(self, public_base_url="https://cdn.example.com"):
        self.public_base_url = public_base_url
        self.objects = {}
        self.calls = []
        self.fail_on = None

    def upload_object(self, bucket, key, data, content_type=None):
        self.calls.append(("upload", bucket, key))
        if self.fail_on is not None and self.fail_on(bucket, key):
            raise RemoteServiceError(f"Storage upload failed for {key}: simulated outage")
        self.objects[(bucket, key)] = (bytes(data), content_type)

    def get_object(self, bucket, key):
        self.calls.append(("get", bucket, key))
        try:
            return self.objects[(bucket, key)][0]
        except KeyError as exc:
            raise RemoteServiceError(f"Storage download failed for {key}: NoSuchKey") from exc

    def get_public_url(self, bucket, key):
        return f"{self.public_base_url}/{bucket}/{key}"

    def keys(self, bucket):
        return sorted(key for (b, key) in self.objects if b == bucket)


def make_pdf(page_count, width=200, height=300):
    """Build a PDF with ``page_count`` blank pages."""
    document = pdfium.PdfDocument.new()
    for _ in range(page_count):
        document.new_page(width, height)
    buffer = io.BytesIO()
    document.save(buffer)
    document.close()
    return buffer.getvalue()


def fake_rasterizer(page_count, fail_at=None):
    """Rasterizer double producing ``page_count`` tiny fake JPEGs."""

    def rasterize(data, scale, quality):
        for page_number in range(1, page_count + 1):
            if page_number == fail_at:
                raise RuntimeError(f"cannot render page {page_number}")
            yield PageImage(page_number, page_count, b"\xff\xd8jpeg-%d" % page_number)

    return rasterize


@pytest.fixture(scope="session", autouse=True)
def test_data_dir():
    """Remove the app's scratch database once the session ends."""
    yield Path(_DATA_DIR)
    shutil.rmtree(_DATA_DIR, ignore_errors=True)


@pytest.fixture
def object_store():
    return InMemoryObjectStore()


@pytest.fixture
def remote(tmp_path, object_store):
    """Remote service backed by a temporary SQLite file and the in-memory store."""
    db_path = tmp_path / "flipbook.db"
    sessions = SessionManager(db_path, session_ttl_seconds=3600)
    sessions.ensure_user(ADMIN_EMAIL, ADMIN_PASSWORD)
    return RemoteService(
        storage=object_store,
        database=PublicationDatabase(db_path),
        sessions=sessions,
        buckets={"pdfs": "pdfs", "pages": "pages"},
    )


@pytest.fixture
def upload_manager(remote):
    manager = UploadManager(PublishPipeline(remote))
    yield manager
    manager.shutdown()


@pytest.fixture
def client(remote, upload_manager):
    """Create a test client wired to the temporary remote service."""
    app.dependency_overrides[get_remote_service] = lambda: remote
    app.dependency_overrides[get_upload_manager] = lambda: upload_manager
    login_limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(client):
    """Sign in as the admin and return the bearer header."""
    response = client.post("/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def sample_pdf():
    """A three-page PDF."""
    return make_pdf(3)
