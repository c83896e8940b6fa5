"""
FastAPI Server for the Sales Pack Review API

Provides endpoints for:
- Uploading a sales pack and classifying its pages
- Fetching review sessions (suggested partition, thumbnails)
- Serving the source PDF
- Correcting the partition (change type, remove, merge)
- Splitting and uploading the reviewed documents
- Listing and deleting a customer's uploaded documents
"""

import os
import uuid
import logging
from datetime import datetime
from typing import Dict, Any, List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from pydantic import BaseModel
from dotenv import load_dotenv

from state import Partition, SalesPackState
from pack_storage import (
    save_session,
    load_session,
    list_sessions,
    delete_session,
    session_to_json,
    save_source_pdf,
    load_source_pdf,
)
from nodes.taxonomy import get_default_taxonomy
from nodes.partition import partition_from_groups
from nodes.editor import change_document_type, merge_adjacent_split, remove_split
from nodes.classifier import (
    ClassificationFailure,
    ClassifierMetrics,
    PageClassificationClient,
    analyze_sales_pack,
    build_classifier_config,
)
from nodes.splitter import (
    PartitionMismatchError,
    SourceParseFailure,
    SplitterMetrics,
    build_splitter_config,
    get_pdf_error_message,
    split_pdf,
)
from nodes.uploader import UploadConfig, upload_all
from storage_client import StorageAPIError, StorageClient, get_blob_store, sanitize_customer_name

load_dotenv()

logger = logging.getLogger(__name__)

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Sales Pack Splitter API",
    description="Review API for splitting dealership sales packs into customer documents",
    version="0.1.0",
)

# CORS for React frontend (dev server typically on 5173)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Dependencies
# ============================================================================

def get_classification_client() -> PageClassificationClient:
    return PageClassificationClient(build_classifier_config())


def get_store():
    store = get_blob_store()
    try:
        yield store
    finally:
        if isinstance(store, StorageClient):
            store.close()


# ============================================================================
# Pydantic Models for API
# ============================================================================

class SessionSummary(BaseModel):
    """Summary of a review session for list view."""
    session_id: str
    stage: str
    customer_name: Optional[str] = None
    total_pages: int = 0
    document_count: int = 0
    created_at: Optional[str] = None


class ChangeTypeRequest(BaseModel):
    document_type: str


class MergeRequest(BaseModel):
    direction: str  # 'prev' or 'next'


class CustomerRequest(BaseModel):
    customer_name: str


class DeleteDocumentsRequest(BaseModel):
    paths: List[str]


# ============================================================================
# Helpers
# ============================================================================

def _get_session_or_404(session_id: str) -> SalesPackState:
    try:
        session = load_session(session_id)
    except ValueError:
        session = None
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _session_response(session: SalesPackState) -> Dict[str, Any]:
    data = session_to_json(session)
    data.pop("page_texts", None)
    return data


def _save_partition(session: SalesPackState, partition: Partition) -> Dict[str, Any]:
    session["partition"] = partition
    save_session(session)
    return _session_response(session)


def _require_split(session: SalesPackState, split_id: str) -> Partition:
    partition = session.get("partition") or Partition()
    if partition.get(split_id) is None:
        raise HTTPException(status_code=404, detail="Split not found")
    return partition


# ============================================================================
# API Endpoints
# ============================================================================

@app.get("/api/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "sales-pack-splitter-api"}


@app.get("/api/document-types")
def list_document_types():
    """Document types a split can be assigned."""
    return get_default_taxonomy().options()


@app.get("/api/sales-packs", response_model=List[SessionSummary])
def list_sales_packs():
    """List all review sessions."""
    return [
        SessionSummary(
            session_id=session["session_id"],
            stage=session.get("stage", ""),
            customer_name=session.get("customer_name") or session.get("detected_customer_name"),
            total_pages=session.get("total_pages", 0),
            document_count=len(session.get("partition") or Partition()),
            created_at=session.get("created_at"),
        )
        for session in list_sessions()
    ]


@app.post("/api/sales-packs")
async def create_sales_pack(
    file: UploadFile = File(...),
    customer_name: Optional[str] = Form(None),
    client: PageClassificationClient = Depends(get_classification_client),
):
    """Upload a sales pack, classify its pages and open a review session."""
    pdf_bytes = await file.read()
    session_id = f"PACK-{uuid.uuid4().hex[:8].upper()}"

    print(f"   Analyzing {file.filename} ({len(pdf_bytes)} bytes) as {session_id}...")

    try:
        result = analyze_sales_pack(pdf_bytes, client)
    except SourceParseFailure as e:
        raise HTTPException(
            status_code=422,
            detail={"message": get_pdf_error_message(e.result), "result": e.result.to_dict()},
        )
    except ClassificationFailure as e:
        logger.error(f"Classification failed for {file.filename}: {e}")
        raise HTTPException(status_code=502, detail=f"Classification failed: {e}")

    partition = partition_from_groups(result.document_groups, result.pages, client.taxonomy)

    session: SalesPackState = {
        "session_id": session_id,
        "stage": "review",
        "error": None,
        "customer_name": customer_name or result.customer_name,
        "source_pdf_path": save_source_pdf(session_id, pdf_bytes),
        "source_filename": file.filename,
        "created_at": datetime.now().isoformat(),
        "total_pages": result.total_pages,
        "page_texts": result.page_texts,
        "page_classifications": result.pages,
        "detected_customer_name": result.customer_name,
        "classifier_metrics": ClassifierMetrics.from_result(result).to_dict(),
        "partition": partition,
        "pending_edits": [],
    }
    save_session(session)

    print(f"   ✓ {session_id}: {result.total_pages} pages, {len(partition)} document(s)")
    return _session_response(session)


@app.get("/api/sales-packs/{session_id}")
def get_sales_pack(session_id: str) -> Dict[str, Any]:
    """Get a review session with its current partition."""
    return _session_response(_get_session_or_404(session_id))


@app.get("/api/sales-packs/{session_id}/pdf")
def get_sales_pack_pdf(session_id: str):
    """Serve the source PDF of a session."""
    session = _get_session_or_404(session_id)
    pdf_path = session.get("source_pdf_path")

    if not pdf_path or not os.path.exists(pdf_path):
        raise HTTPException(status_code=404, detail="PDF not found")

    return FileResponse(
        path=pdf_path,
        media_type="application/pdf",
        filename=f"{session_id}.pdf",
    )


@app.delete("/api/sales-packs/{session_id}")
def delete_sales_pack(session_id: str):
    """Delete a session and its source PDF."""
    _get_session_or_404(session_id)
    delete_session(session_id)
    return {"message": "Session deleted", "session_id": session_id}


@app.put("/api/sales-packs/{session_id}/customer")
def set_customer(session_id: str, request: CustomerRequest):
    """Choose the customer the documents will be filed under."""
    session = _get_session_or_404(session_id)
    if not request.customer_name.strip():
        raise HTTPException(status_code=400, detail="Customer name is required")
    session["customer_name"] = request.customer_name.strip()
    save_session(session)
    return _session_response(session)


# ============================================================================
# Partition Edits
# ============================================================================

@app.patch("/api/sales-packs/{session_id}/splits/{split_id}")
def change_split_type(session_id: str, split_id: str, request: ChangeTypeRequest):
    """Change the document type of one split."""
    session = _get_session_or_404(session_id)
    if request.document_type not in get_default_taxonomy():
        raise HTTPException(status_code=400, detail=f"Unknown document type: {request.document_type}")
    partition = _require_split(session, split_id)
    return _save_partition(session, change_document_type(partition, split_id, request.document_type))


@app.delete("/api/sales-packs/{session_id}/splits/{split_id}")
def delete_split(session_id: str, split_id: str):
    """Remove a split; its pages are left out of the output."""
    session = _get_session_or_404(session_id)
    partition = _require_split(session, split_id)
    return _save_partition(session, remove_split(partition, split_id))


@app.post("/api/sales-packs/{session_id}/splits/{split_id}/merge")
def merge_split(session_id: str, split_id: str, request: MergeRequest):
    """Merge a split into its previous or next neighbour."""
    session = _get_session_or_404(session_id)
    partition = _require_split(session, split_id)
    try:
        merged = merge_adjacent_split(partition, split_id, request.direction)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _save_partition(session, merged)


# ============================================================================
# Split & Upload
# ============================================================================

@app.post("/api/sales-packs/{session_id}/upload")
def upload_sales_pack(session_id: str, store=Depends(get_store)):
    """Split the reviewed partition and upload every document for the customer."""
    session = _get_session_or_404(session_id)
    customer = session.get("customer_name") or session.get("detected_customer_name")
    partition = session.get("partition") or Partition()

    if not customer:
        raise HTTPException(status_code=400, detail="Select a customer before uploading")
    if not len(partition):
        raise HTTPException(status_code=400, detail="No documents to upload")

    source_bytes = load_source_pdf(session_id)
    if source_bytes is None:
        raise HTTPException(status_code=404, detail="PDF not found")

    metrics = SplitterMetrics()
    try:
        documents = split_pdf(
            source_bytes,
            partition,
            session.get("page_texts", []),
            config=build_splitter_config(),
            source_name=session.get("source_filename") or session_id,
            metrics=metrics,
        )
    except SourceParseFailure as e:
        raise HTTPException(
            status_code=422,
            detail={"message": get_pdf_error_message(e.result), "result": e.result.to_dict()},
        )
    except PartitionMismatchError as e:
        raise HTTPException(status_code=409, detail=str(e))

    summary = upload_all(
        documents,
        customer,
        store,
        UploadConfig(unique_filenames=os.getenv("UPLOAD_UNIQUE_FILENAMES", "true").lower() == "true"),
    )

    session["upload_summary"] = summary
    session["splitter_metrics"] = metrics.to_dict()
    session["stage"] = "complete"
    save_session(session)

    print(f"   {summary.message}")
    return {
        **summary.to_dict(),
        "session_id": session_id,
        "blank_pages_removed": metrics.blank_pages_removed,
        "documents_skipped": metrics.splits_skipped,
    }


# ============================================================================
# Customer Documents
# ============================================================================

@app.get("/api/customers/{customer_name}/documents")
def list_customer_documents(
    customer_name: str,
    document_type: Optional[str] = None,
    refresh: bool = False,
    store=Depends(get_store),
):
    """List a customer's uploaded documents."""
    try:
        return store.list_documents(customer_name, document_type, use_cache=not refresh)
    except StorageAPIError as e:
        raise HTTPException(status_code=502, detail=f"Storage error: {e.message}")


@app.delete("/api/customers/{customer_name}/documents")
def delete_customer_documents(customer_name: str, request: DeleteDocumentsRequest, store=Depends(get_store)):
    """Delete uploaded documents by storage path."""
    segment = sanitize_customer_name(customer_name)
    foreign = [p for p in request.paths if p.split("/")[1:2] != [segment]]
    if foreign:
        raise HTTPException(status_code=400, detail=f"Paths do not belong to {customer_name}: {foreign}")

    try:
        store.delete_documents(request.paths)
    except StorageAPIError as e:
        raise HTTPException(status_code=502, detail=f"Storage error: {e.message}")
    return {"message": "Documents deleted", "deleted": len(request.paths)}


# ============================================================================
# Run with: uvicorn server:app --reload
# ============================================================================
