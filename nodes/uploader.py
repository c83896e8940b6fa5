"""
Document Uploader Node - Filing Split Documents for a Customer

Uploads every output PDF to blob storage, one at a time and in order.
A failed upload is recorded and the batch carries on; the summary tells
the reviewer how many documents made it and why the others did not.
"""

import os
import time
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence

from state import OutputDocument, SalesPackState, StoredDocument, UploadOutcome, UploadSummary
from storage_client import StorageAPIError, StorageClient, get_blob_store, sanitize_customer_name

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    """Where output documents are filed."""

    def upload(
        self,
        document_type: str,
        file_bytes: bytes,
        target_identity: str,
        filename: str,
    ) -> StoredDocument:
        ...

    def invalidate_listing_cache(self, target_identity: str) -> None:
        ...


ProgressCallback = Callable[[str, int, int], None]
CancelCheck = Callable[[], bool]
Clock = Callable[[], float]


@dataclass
class UploadConfig:
    """Configuration for document uploads."""

    # Append a timestamp and position so repeated uploads never collide
    unique_filenames: bool = True


def generate_split_filename(customer_name: str, document_type: str) -> str:
    """Suggested file name for a split: CUSTOMER_NAME_documenttype.pdf"""
    return f"{sanitize_customer_name(customer_name)}_{document_type}.pdf"


def destination_filename(target_identity: str, document_type: str, disambiguator: str = "") -> str:
    """
    File name a document is stored under.

    Deterministic in its inputs:
    destination_filename("Tan Ah Kow", "vsa", "1700000000000-1") == "TAN_AH_KOW_vsa_1700000000000-1.pdf"
    """
    if not disambiguator:
        return generate_split_filename(target_identity, document_type)
    return f"{sanitize_customer_name(target_identity)}_{document_type}_{disambiguator}.pdf"


def upload_all(
    documents: Sequence[OutputDocument],
    target_identity: str,
    store: BlobStore,
    config: Optional[UploadConfig] = None,
    clock: Optional[Clock] = None,
    on_progress: Optional[ProgressCallback] = None,
    should_cancel: Optional[CancelCheck] = None,
) -> UploadSummary:
    """
    Upload output documents for one customer.

    Args:
        documents: Output documents, uploaded in this order
        target_identity: Customer the documents belong to
        store: Blob store to upload to
        config: Upload configuration
        clock: Returns the current time in seconds (defaults to time.time)
        on_progress: Called with ("Uploading", current, total) before each upload
        should_cancel: Checked before each document; True stops the batch

    Returns:
        UploadSummary with one outcome per attempted document
    """
    config = config or UploadConfig()
    clock = clock or time.time
    batch_timestamp = int(clock() * 1000)

    summary = UploadSummary()
    total = len(documents)

    for position, doc in enumerate(documents, start=1):
        if should_cancel is not None and should_cancel():
            logger.info(f"Upload cancelled after {position - 1}/{total} documents")
            summary.cancelled = True
            break

        if on_progress is not None:
            on_progress("Uploading", position, total)

        disambiguator = f"{batch_timestamp}-{position}" if config.unique_filenames else ""
        filename = destination_filename(target_identity, doc.document_type, disambiguator)

        if not doc.file_bytes or doc.page_count <= 0:
            logger.warning(f"Skipping {filename}: document has no pages")
            summary.outcomes.append(UploadOutcome(
                filename=filename,
                succeeded=False,
                error_message="Document has no pages",
                source_split_id=doc.source_split_id,
                document_type=doc.document_type,
            ))
            continue

        try:
            stored = store.upload(doc.document_type, doc.file_bytes, target_identity, filename)
        except StorageAPIError as e:
            logger.error(f"Failed to upload {filename}: {e.message}")
            print(f"   ✗ Error uploading {filename}: {e.message}")
            summary.outcomes.append(UploadOutcome(
                filename=filename,
                succeeded=False,
                error_message=e.message,
                source_split_id=doc.source_split_id,
                document_type=doc.document_type,
            ))
            continue
        except Exception as e:
            logger.error(f"Failed to upload {filename}: {e}")
            print(f"   ✗ Error uploading {filename}: {e}")
            summary.outcomes.append(UploadOutcome(
                filename=filename,
                succeeded=False,
                error_message=str(e) or type(e).__name__,
                source_split_id=doc.source_split_id,
                document_type=doc.document_type,
            ))
            continue

        print(f"   ✓ Uploaded {filename}")
        summary.outcomes.append(UploadOutcome(
            filename=filename,
            succeeded=True,
            source_split_id=doc.source_split_id,
            document_type=doc.document_type,
            stored=stored,
        ))

    try:
        store.invalidate_listing_cache(target_identity)
    except Exception as e:
        logger.warning(f"Could not invalidate document listing cache for {target_identity}: {e}")

    logger.info(summary.message)
    return summary


# ============================================================================
# Pipeline Node
# ============================================================================

def document_uploader_node(state: SalesPackState) -> dict:
    """
    Node: Document Uploader

    Files every output document under the customer's name.
    """
    print("--- NODE: Document Uploader ---")

    documents: List[OutputDocument] = state.get("output_documents", [])
    target = state.get("customer_name") or state.get("detected_customer_name") or ""

    if not target:
        print("   ✗ No customer selected for upload")
        return {"stage": "failed", "error": "No customer selected for upload"}

    if not documents:
        print("   No documents to upload")
        return {"stage": "complete", "upload_summary": UploadSummary()}

    config = UploadConfig(
        unique_filenames=os.getenv("UPLOAD_UNIQUE_FILENAMES", "true").lower() == "true",
    )

    store = get_blob_store()
    try:
        summary = upload_all(documents, target, store, config)
    finally:
        if isinstance(store, StorageClient):
            store.close()
    print(f"   {summary.message}")

    return {
        "stage": "complete",
        "upload_summary": summary,
    }
