"""
Tests for the publish pipeline.

Tests cover:
- Validation before any remote call
- Object layout and metadata of a successful run
- Metadata committed strictly after the last page image
- Progress reporting
- Failure at each step
"""

import pytest

from flipbook_backend.exceptions import NotAPdfError, PublishError, RemoteServiceError, RenderError
from flipbook_backend.pipeline import ProgressTracker, PublishPipeline, remap_progress
from flipbook_backend.remote import PUBLICATIONS_TABLE

from conftest import fake_rasterizer, make_pdf


@pytest.fixture
def journal(remote, object_store, monkeypatch):
    """Shared, ordered log of uploads and record inserts."""
    original_insert = remote.insert_record

    def insert_record(table, fields):
        object_store.calls.append(("insert", table, fields["id"]))
        return original_insert(table, fields)

    monkeypatch.setattr(remote, "insert_record", insert_record)
    return object_store.calls


class TestValidation:
    """Non-PDF input is rejected before anything is stored."""

    def test_txt_upload_is_rejected_without_remote_calls(self, remote, journal):
        pipeline = PublishPipeline(remote, rasterize=fake_rasterizer(3))

        with pytest.raises(NotAPdfError) as excinfo:
            pipeline.run("notes.txt", b"plain text", content_type="text/plain")

        assert str(excinfo.value) == "Please upload a PDF file."
        assert journal == []
        assert remote.select_records(PUBLICATIONS_TABLE) == []

    def test_missing_filename_is_rejected(self, remote):
        pipeline = PublishPipeline(remote)
        with pytest.raises(NotAPdfError):
            pipeline.validate(None, None)

    def test_pdf_content_type_is_enough(self, remote):
        PublishPipeline(remote).validate("scan", "application/pdf")

    def test_pdf_extension_is_enough(self, remote):
        PublishPipeline(remote).validate("Report.PDF", "application/octet-stream")


class TestSuccessfulRun:
    """A 3-page report.pdf ends up as three page images plus one record."""

    def test_report_scenario(self, remote, object_store):
        pipeline = PublishPipeline(remote, rasterize=fake_rasterizer(3))

        publication = pipeline.run("report.pdf", b"%PDF-1.7 fake", content_type="application/pdf")

        assert publication.title == "report"
        assert publication.filename == "report.pdf"
        assert publication.page_count == 3
        assert publication.description == "Uploaded via Mini Issuu"
        assert object_store.keys("pages") == [
            f"{publication.id}/1.jpg",
            f"{publication.id}/2.jpg",
            f"{publication.id}/3.jpg",
        ]

        pdf_keys = object_store.keys("pdfs")
        assert len(pdf_keys) == 1
        prefix, _, name = pdf_keys[0].partition("/")
        timestamp, _, filename = name.partition("_")
        assert prefix == publication.id
        assert timestamp.isdigit()
        assert filename == "report.pdf"

        stored = remote.get_record(PUBLICATIONS_TABLE, publication.id)
        assert stored["page_count"] == 3

    def test_page_images_are_jpeg_content(self, remote, object_store):
        publication = PublishPipeline(remote, rasterize=fake_rasterizer(1)).run("a.pdf", b"%PDF")
        data, content_type = object_store.objects[("pages", f"{publication.id}/1.jpg")]
        assert content_type == "image/jpeg"
        assert data.startswith(b"\xff\xd8")

    def test_metadata_is_inserted_after_last_page(self, remote, journal):
        publication = PublishPipeline(remote, rasterize=fake_rasterizer(3)).run("report.pdf", b"%PDF")

        assert [entry[0] for entry in journal] == ["upload", "upload", "upload", "upload", "insert"]
        assert journal[0][1] == "pdfs"
        assert [entry[2] for entry in journal[1:4]] == [f"{publication.id}/{n}.jpg" for n in (1, 2, 3)]
        assert journal[-1] == ("insert", PUBLICATIONS_TABLE, publication.id)

    def test_each_run_gets_a_fresh_id(self, remote):
        pipeline = PublishPipeline(remote, rasterize=fake_rasterizer(1))
        first = pipeline.run("a.pdf", b"%PDF")
        second = pipeline.run("a.pdf", b"%PDF")
        assert first.id != second.id

    def test_rasterizer_without_pages_publishes_zero_pages(self, remote, object_store):
        publication = PublishPipeline(remote, rasterize=fake_rasterizer(0)).run("empty.pdf", b"%PDF")
        assert publication.page_count == 0
        assert object_store.keys("pages") == []

    def test_real_pdf_is_rasterized(self, remote, object_store, sample_pdf):
        publication = PublishPipeline(remote).run("sample.pdf", sample_pdf, content_type="application/pdf")
        assert publication.page_count == 3
        assert len(object_store.keys("pages")) == 3


class TestProgress:
    def test_progress_is_non_decreasing_and_ends_at_100(self, remote):
        updates = []
        PublishPipeline(remote, rasterize=fake_rasterizer(4)).run("a.pdf", b"%PDF", on_progress=updates.append)

        percents = [update.percent for update in updates]
        assert percents == sorted(percents)
        assert percents[0] == 0
        assert percents[-1] == 100
        assert updates[-1].message == "Done!"

    def test_page_progress_is_mapped_into_20_to_80(self, remote):
        updates = []
        PublishPipeline(remote, rasterize=fake_rasterizer(4)).run("a.pdf", b"%PDF", on_progress=updates.append)

        page_updates = [u for u in updates if u.message.startswith("Processing page")]
        assert [u.percent for u in page_updates] == [35, 50, 65, 80]
        assert page_updates[0].message == "Processing page 1 of 4..."

    def test_remap_progress_bounds(self):
        assert remap_progress(0) == 20
        assert remap_progress(1) == 80
        assert remap_progress(0.5) == 50
        assert remap_progress(2) == 80

    def test_tracker_never_goes_backwards(self):
        seen = []
        tracker = ProgressTracker(seen.append)
        tracker.report(50, "half")
        tracker.report(30, "late update")
        tracker.report(150, "overflow")
        assert [u.percent for u in seen] == [50, 50, 100]


class TestFailures:
    """Any failure aborts the run and leaves no metadata record."""

    def test_pdf_upload_failure_stops_everything(self, remote, object_store, journal):
        object_store.fail_on = lambda bucket, key: bucket == "pdfs"
        pipeline = PublishPipeline(remote, rasterize=fake_rasterizer(3))

        with pytest.raises(PublishError) as excinfo:
            pipeline.run("report.pdf", b"%PDF")

        assert str(excinfo.value).startswith("Upload failed: ")
        assert "simulated outage" in str(excinfo.value)
        assert isinstance(excinfo.value.__cause__, RemoteServiceError)
        assert [entry[0] for entry in journal] == ["upload"]
        assert remote.select_records(PUBLICATIONS_TABLE) == []

    def test_page_upload_failure_keeps_earlier_pages_but_no_record(self, remote, object_store):
        object_store.fail_on = lambda bucket, key: key.endswith("/2.jpg")
        pipeline = PublishPipeline(remote, rasterize=fake_rasterizer(3))

        with pytest.raises(PublishError) as excinfo:
            pipeline.run("report.pdf", b"%PDF")

        publication_id = excinfo.value.publication_id
        assert object_store.keys("pages") == [f"{publication_id}/1.jpg"]
        assert ("upload", "pages", f"{publication_id}/3.jpg") not in object_store.calls
        assert remote.select_records(PUBLICATIONS_TABLE) == []

    def test_render_failure_aborts_remaining_pages(self, remote, object_store):
        pipeline = PublishPipeline(remote, rasterize=fake_rasterizer(3, fail_at=2))

        with pytest.raises(PublishError, match="cannot render page 2"):
            pipeline.run("report.pdf", b"%PDF")

        assert len(object_store.keys("pages")) == 1
        assert remote.select_records(PUBLICATIONS_TABLE) == []

    def test_malformed_pdf_fails_as_publish_error(self, remote):
        with pytest.raises(PublishError, match="Could not open PDF"):
            PublishPipeline(remote).run("broken.pdf", b"this is not a pdf")

    def test_pdf_without_pages_fails_after_storing_original(self, remote, object_store):
        with pytest.raises(PublishError, match="Could not open PDF") as excinfo:
            PublishPipeline(remote).run("blank.pdf", make_pdf(0), content_type="application/pdf")

        assert isinstance(excinfo.value.__cause__, RenderError)
        assert len(object_store.keys("pdfs")) == 1
        assert object_store.keys("pages") == []
        assert remote.select_records(PUBLICATIONS_TABLE) == []

    def test_metadata_failure_creates_no_record(self, remote, monkeypatch):
        def broken_insert(table, fields):
            raise RemoteServiceError("database is locked")

        monkeypatch.setattr(remote, "insert_record", broken_insert)
        updates = []

        with pytest.raises(PublishError, match="database is locked"):
            PublishPipeline(remote, rasterize=fake_rasterizer(2)).run("a.pdf", b"%PDF", on_progress=updates.append)

        assert updates[-1].message == "Saving metadata..."
        assert remote.select_records(PUBLICATIONS_TABLE) == []
