"""
Blob Storage Client for customer documents.

Talks to a Supabase-Storage-style REST API:
objects are uploaded under {owner}/{CUSTOMER}/{document_type}/{filename},
read back through signed URLs, listed per customer and deleted by path.

Listings are cached per customer; uploading a batch of documents should be
followed by invalidate_listing_cache() so the next listing sees them.
"""
import os
import re
import time
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from state import StoredDocument

logger = logging.getLogger(__name__)

SIGNED_URL_TTL_SECONDS = 3600 * 24 * 7  # 7 days


class StorageAPIError(Exception):
    """Custom exception for storage API errors"""
    def __init__(self, status_code: int, message: str, response: Optional[Dict] = None):
        self.status_code = status_code
        self.message = message
        self.response = response
        super().__init__(f"Storage API Error {status_code}: {message}")


def sanitize_customer_name(name: str) -> str:
    """
    Make a customer name safe for file names and storage paths.

    Drops everything but letters, digits and whitespace, turns whitespace
    runs into underscores and uppercases: "Tan Ah-Kow" -> "TAN_AHKOW".
    """
    safe = re.sub(r"[^a-zA-Z0-9\s]", "", name or "")
    return re.sub(r"\s+", "_", safe).upper()


@dataclass
class StorageConfig:
    """Configuration for the blob storage client."""
    url: str = ""
    api_key: str = ""
    bucket: str = "customer-documents"
    owner_id: str = "shared"  # first path segment, one per dealership account
    signed_url_ttl_s: int = SIGNED_URL_TTL_SECONDS
    listing_cache_ttl_s: float = 300.0
    timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "StorageConfig":
        return cls(
            url=os.getenv("STORAGE_URL", ""),
            api_key=os.getenv("STORAGE_API_KEY", ""),
            bucket=os.getenv("STORAGE_BUCKET", "customer-documents"),
            owner_id=os.getenv("STORAGE_OWNER_ID", "shared"),
        )


def build_object_path(owner_id: str, target_identity: str, document_type: str, filename: str) -> str:
    return f"{owner_id}/{sanitize_customer_name(target_identity)}/{document_type}/{filename}"


class ListingCache:
    """Per-customer cache of document listings with a time-to-live."""

    def __init__(self, ttl_s: float = 300.0):
        self.ttl_s = ttl_s
        self._entries: Dict[Tuple[str, str], Tuple[float, List[StoredDocument]]] = {}

    def get(self, target_identity: str, document_type: Optional[str]) -> Optional[List[StoredDocument]]:
        entry = self._entries.get((sanitize_customer_name(target_identity), document_type or ""))
        if entry is None:
            return None
        stored_at, documents = entry
        if time.monotonic() - stored_at > self.ttl_s:
            return None
        return documents

    def put(self, target_identity: str, document_type: Optional[str], documents: List[StoredDocument]) -> None:
        key = (sanitize_customer_name(target_identity), document_type or "")
        self._entries[key] = (time.monotonic(), documents)

    def invalidate(self, target_identity: str) -> None:
        self.invalidate_segment(sanitize_customer_name(target_identity))

    def invalidate_segment(self, segment: str) -> None:
        """Drop listings for an already sanitized customer path segment."""
        for key in [k for k in self._entries if k[0] == segment]:
            del self._entries[key]


class StorageClient:
    """
    Blob storage REST client

    Supports:
    - Object upload (one PDF per request)
    - Signed download URLs
    - Per-customer listings with caching
    - Object deletion
    """

    def __init__(
        self,
        config: Optional[StorageConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize storage client.

        Args:
            config: Storage configuration (defaults to environment variables)
            transport: Optional httpx transport, used by tests
        """
        self.config = config or StorageConfig.from_env()

        if not self.config.url:
            raise ValueError("Storage URL is required")
        if not self.config.api_key:
            raise ValueError("Storage API key is required")

        self._client = httpx.Client(
            base_url=f"{self.config.url.rstrip('/')}/storage/v1",
            headers={
                "Authorization": f"Bearer {self.config.api_key}",
                "apikey": self.config.api_key,
                "Accept": "application/json",
            },
            timeout=self.config.timeout,
            transport=transport,
        )
        self.listing_cache = ListingCache(self.config.listing_cache_ttl_s)

    def close(self) -> None:
        """Close the HTTP client"""
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _handle_response(self, resp: httpx.Response) -> Any:
        """
        Handle API response.

        Raises:
            StorageAPIError: If response status is not 2xx
        """
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            try:
                error_data = resp.json()
            except ValueError:
                error_data = {"message": resp.text}
            if not isinstance(error_data, dict):
                error_data = {"message": str(error_data)}

            raise StorageAPIError(
                resp.status_code,
                error_data.get("message") or error_data.get("error") or str(e),
                error_data,
            )

        if resp.status_code == 204 or not resp.content:
            return {}

        return resp.json()

    def _object_url(self, path: str) -> str:
        return f"/object/{self.config.bucket}/{quote(path)}"

    # ========================================================================
    # OBJECTS
    # ========================================================================

    def upload(
        self,
        document_type: str,
        file_bytes: bytes,
        target_identity: str,
        filename: str,
    ) -> StoredDocument:
        """
        Upload a PDF for a customer.

        Args:
            document_type: Document type, used as the folder
            file_bytes: PDF content
            target_identity: Customer name
            filename: Destination file name

        Returns:
            Stored document record with a signed URL
        """
        path = build_object_path(self.config.owner_id, target_identity, document_type, filename)

        resp = self._client.post(
            self._object_url(path),
            content=file_bytes,
            headers={
                "Content-Type": "application/pdf",
                "Cache-Control": "3600",
                "x-upsert": "false",
            },
        )
        data = self._handle_response(resp)

        return {
            "id": data.get("Id") or data.get("id") or path,
            "name": filename,
            "path": path,
            "url": self.create_signed_url(path),
            "size": len(file_bytes),
            "mime_type": "application/pdf",
            "uploaded_at": datetime.now(timezone.utc).isoformat(),
        }

    def create_signed_url(self, path: str, expires_in: Optional[int] = None) -> str:
        """Get a time-limited download URL for an object."""
        resp = self._client.post(
            f"/object/sign/{self.config.bucket}/{quote(path)}",
            json={"expiresIn": expires_in or self.config.signed_url_ttl_s},
        )
        data = self._handle_response(resp)
        signed = data.get("signedURL") or data.get("signedUrl") or ""
        if signed.startswith("http"):
            return signed
        return f"{str(self._client.base_url).rstrip('/')}{signed}" if signed else ""

    def download(self, path: str) -> bytes:
        resp = self._client.get(self._object_url(path))
        if resp.is_error:
            self._handle_response(resp)
        return resp.content

    def list_documents(
        self,
        target_identity: str,
        document_type: Optional[str] = None,
        use_cache: bool = True,
    ) -> List[StoredDocument]:
        """
        List a customer's documents, newest first.

        Args:
            target_identity: Customer name
            document_type: Restrict to one document type folder
            use_cache: Serve from the listing cache when fresh

        Returns:
            Stored document records with signed URLs
        """
        if use_cache:
            cached = self.listing_cache.get(target_identity, document_type)
            if cached is not None:
                return cached

        prefix = f"{self.config.owner_id}/{sanitize_customer_name(target_identity)}"
        if document_type:
            prefix = f"{prefix}/{document_type}"

        resp = self._client.post(
            f"/object/list/{self.config.bucket}",
            json={
                "prefix": prefix,
                "limit": 100,
                "offset": 0,
                "sortBy": {"column": "created_at", "order": "desc"},
            },
        )
        files = self._handle_response(resp) or []

        documents: List[StoredDocument] = []
        for f in files:
            if f.get("id") is None:  # Skip folders
                continue
            path = f"{prefix}/{f['name']}"
            metadata = f.get("metadata") or {}
            documents.append({
                "id": f["id"],
                "name": f["name"],
                "path": path,
                "url": self.create_signed_url(path),
                "size": metadata.get("size", 0),
                "mime_type": metadata.get("mimetype", "application/octet-stream"),
                "uploaded_at": f.get("created_at") or datetime.now(timezone.utc).isoformat(),
            })

        self.listing_cache.put(target_identity, document_type, documents)
        return documents

    def delete_documents(self, paths: List[str]) -> None:
        """Delete objects by path."""
        if not paths:
            return
        resp = self._client.request(
            "DELETE",
            f"/object/{self.config.bucket}",
            json={"prefixes": paths},
        )
        self._handle_response(resp)

        # paths are {owner}/{CUSTOMER}/...
        for path in paths:
            parts = path.split("/")
            if len(parts) > 1:
                self.listing_cache.invalidate_segment(parts[1])

    def invalidate_listing_cache(self, target_identity: str) -> None:
        self.listing_cache.invalidate(target_identity)


class InMemoryBlobStore:
    """
    Blob store kept in process memory.

    Used in mock mode (USE_MOCK_STORAGE=true) and by tests. Behaves like
    StorageClient, including the listing cache.
    """

    def __init__(self, owner_id: str = "shared"):
        self.owner_id = owner_id
        self.objects: Dict[str, bytes] = {}
        self.records: Dict[str, StoredDocument] = {}
        self.listing_cache = ListingCache()

    def upload(
        self,
        document_type: str,
        file_bytes: bytes,
        target_identity: str,
        filename: str,
    ) -> StoredDocument:
        path = build_object_path(self.owner_id, target_identity, document_type, filename)
        if path in self.objects:
            raise StorageAPIError(409, "The resource already exists", {"path": path})

        self.objects[path] = file_bytes
        record: StoredDocument = {
            "id": uuid.uuid4().hex,
            "name": filename,
            "path": path,
            "url": f"memory://{path}",
            "size": len(file_bytes),
            "mime_type": "application/pdf",
            "uploaded_at": datetime.now(timezone.utc).isoformat(),
        }
        self.records[path] = record
        return record

    def download(self, path: str) -> bytes:
        if path not in self.objects:
            raise StorageAPIError(404, "Object not found", {"path": path})
        return self.objects[path]

    def list_documents(
        self,
        target_identity: str,
        document_type: Optional[str] = None,
        use_cache: bool = True,
    ) -> List[StoredDocument]:
        if use_cache:
            cached = self.listing_cache.get(target_identity, document_type)
            if cached is not None:
                return cached

        prefix = f"{self.owner_id}/{sanitize_customer_name(target_identity)}/"
        if document_type:
            prefix = f"{prefix}{document_type}/"

        documents = sorted(
            (r for p, r in self.records.items() if p.startswith(prefix)),
            key=lambda r: r["uploaded_at"],
            reverse=True,
        )
        self.listing_cache.put(target_identity, document_type, documents)
        return documents

    def delete_documents(self, paths: List[str]) -> None:
        for path in paths:
            self.objects.pop(path, None)
            self.records.pop(path, None)
            parts = path.split("/")
            if len(parts) > 1:
                self.listing_cache.invalidate_segment(parts[1])

    def invalidate_listing_cache(self, target_identity: str) -> None:
        self.listing_cache.invalidate(target_identity)


_memory_store: Optional[InMemoryBlobStore] = None


def get_blob_store():
    """
    Get the blob store for the current environment.

    USE_MOCK_STORAGE=true gives a process-wide InMemoryBlobStore,
    otherwise a StorageClient configured from the environment.
    """
    global _memory_store
    if os.getenv("USE_MOCK_STORAGE", "false").lower() == "true":
        if _memory_store is None:
            _memory_store = InMemoryBlobStore(os.getenv("STORAGE_OWNER_ID", "shared"))
        return _memory_store
    return StorageClient(StorageConfig.from_env())
