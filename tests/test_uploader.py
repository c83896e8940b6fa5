"""
Unit Tests for the Document Uploader Node

Run with: pytest tests/test_uploader.py -v
"""

from unittest.mock import MagicMock, patch

import pytest

from state import OutputDocument, UploadSummary
from storage_client import InMemoryBlobStore, StorageAPIError
from nodes.uploader import (
    UploadConfig,
    destination_filename,
    document_uploader_node,
    generate_split_filename,
    upload_all,
)


# ============================================================================
# Fixtures
# ============================================================================

def make_document(split_id, document_type, page_count=1):
    return OutputDocument(
        source_split_id=split_id,
        document_type=document_type,
        document_type_name=document_type.upper(),
        file_bytes=b"%PDF-1.7 fake" if page_count else b"",
        page_count=page_count,
        pages=list(range(1, page_count + 1)),
    )


@pytest.fixture
def documents():
    return [
        make_document("a", "vsa", 2),
        make_document("b", "pdpa"),
        make_document("c", "nric_front"),
    ]


@pytest.fixture
def clock():
    return lambda: 1700000000.0


@pytest.fixture
def store():
    return InMemoryBlobStore()


class TestFilenames:
    """Tests for destination file names."""

    def test_base_filename(self):
        assert generate_split_filename("Tan Ah-Kow", "vsa") == "TAN_AHKOW_vsa.pdf"

    def test_destination_filename(self):
        assert destination_filename("Tan Ah Kow", "vsa", "1700000000000-1") == "TAN_AH_KOW_vsa_1700000000000-1.pdf"

    def test_destination_without_disambiguator(self):
        assert destination_filename("Tan Ah Kow", "vsa") == "TAN_AH_KOW_vsa.pdf"


class TestUploadAll:
    """Tests for the upload orchestrator."""

    def test_uploads_every_document_in_order(self, documents, store, clock):
        summary = upload_all(documents, "Tan Ah Kow", store, clock=clock)

        assert summary.success_count == 3
        assert summary.failed_count == 0
        assert [o.filename for o in summary.outcomes] == [
            "TAN_AH_KOW_vsa_1700000000000-1.pdf",
            "TAN_AH_KOW_pdpa_1700000000000-2.pdf",
            "TAN_AH_KOW_nric_front_1700000000000-3.pdf",
        ]
        assert summary.message == "Successfully uploaded 3 documents from sales pack"
        assert len(store.objects) == 3

    def test_failure_does_not_stop_batch(self, documents, clock):
        store = MagicMock()
        store.upload.side_effect = [
            {"id": "1", "name": "a", "path": "a", "url": "u"},
            StorageAPIError(500, "Internal error"),
            {"id": "3", "name": "c", "path": "c", "url": "u"},
        ]

        summary = upload_all(documents, "Tan Ah Kow", store, clock=clock)

        assert store.upload.call_count == 3
        assert summary.success_count == 2
        assert summary.failed_count == 1
        assert summary.failures[0].source_split_id == "b"
        assert summary.failures[0].error_message == "Internal error"
        assert summary.outcomes[2].succeeded
        assert summary.message == "Uploaded 2 documents, 1 failed"

    def test_unexpected_errors_are_recorded(self, documents, clock):
        store = MagicMock()
        store.upload.side_effect = [ConnectionError("network down"), {"id": "2"}, {"id": "3"}]

        summary = upload_all(documents, "Tan Ah Kow", store, clock=clock)

        assert summary.failures[0].error_message == "network down"
        assert summary.success_count == 2

    def test_document_without_pages_is_not_uploaded(self, store, clock):
        summary = upload_all([make_document("a", "vsa", page_count=0)], "Tan Ah Kow", store, clock=clock)

        assert summary.failed_count == 1
        assert summary.failures[0].error_message == "Document has no pages"
        assert store.objects == {}

    def test_listing_cache_invalidated(self, documents, clock):
        store = MagicMock()
        upload_all(documents, "Tan Ah Kow", store, clock=clock)
        store.invalidate_listing_cache.assert_called_once_with("Tan Ah Kow")

    def test_invalidation_error_is_not_raised(self, documents, clock):
        store = MagicMock()
        store.invalidate_listing_cache.side_effect = RuntimeError("cache unavailable")

        summary = upload_all(documents, "Tan Ah Kow", store, clock=clock)
        assert summary.success_count == 3

    def test_progress_callback(self, documents, store, clock):
        progress = []
        upload_all(documents, "Tan Ah Kow", store, clock=clock, on_progress=lambda *args: progress.append(args))
        assert progress == [("Uploading", 1, 3), ("Uploading", 2, 3), ("Uploading", 3, 3)]

    def test_cancellation_between_documents(self, documents, store, clock):
        checks = iter([False, True])
        summary = upload_all(documents, "Tan Ah Kow", store, clock=clock, should_cancel=lambda: next(checks))

        assert summary.cancelled
        assert len(summary.outcomes) == 1
        assert len(store.objects) == 1

    def test_filenames_without_disambiguator(self, documents, store, clock):
        summary = upload_all(documents[:1], "Tan Ah Kow", store, UploadConfig(unique_filenames=False), clock=clock)
        assert summary.outcomes[0].filename == "TAN_AH_KOW_vsa.pdf"

    def test_repeated_batches_do_not_collide(self, documents, store):
        times = iter([1700000000.0, 1700000001.0])
        first = upload_all(documents, "Tan Ah Kow", store, clock=lambda: next(times))
        second = upload_all(documents, "Tan Ah Kow", store, clock=lambda: next(times))

        assert first.success_count == second.success_count == 3
        assert len(store.objects) == 6

    def test_empty_batch(self, store):
        summary = upload_all([], "Tan Ah Kow", store)
        assert summary.outcomes == []
        assert summary.message == "Successfully uploaded 0 documents from sales pack"


class TestUploadSummary:
    """Tests for summary serialisation."""

    def test_round_trip(self, documents, store, clock):
        summary = upload_all(documents, "Tan Ah Kow", store, clock=clock)
        restored = UploadSummary.from_dict(summary.to_dict())

        assert restored.success_count == 3
        assert [o.filename for o in restored.outcomes] == [o.filename for o in summary.outcomes]


class TestDocumentUploaderNode:
    """Tests for the graph node."""

    def test_requires_customer(self, documents):
        result = document_uploader_node({"output_documents": documents})
        assert result["stage"] == "failed"

    def test_no_documents(self):
        result = document_uploader_node({"customer_name": "Tan Ah Kow", "output_documents": []})
        assert result["stage"] == "complete"
        assert result["upload_summary"].outcomes == []

    def test_uploads_to_mock_storage(self, documents):
        store = InMemoryBlobStore()
        with patch("nodes.uploader.get_blob_store", return_value=store):
            result = document_uploader_node({"detected_customer_name": "TAN AH KOW", "output_documents": documents})

        assert result["stage"] == "complete"
        assert result["upload_summary"].success_count == 3
        assert all(path.startswith("shared/TAN_AH_KOW/") for path in store.objects)
