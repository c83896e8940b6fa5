"""
Unit Tests for the Blob Storage Client

The REST API is replaced with an httpx.MockTransport.

Run with: pytest tests/test_storage_client.py -v
"""

import json

import httpx
import pytest

from storage_client import (
    InMemoryBlobStore,
    ListingCache,
    StorageAPIError,
    StorageClient,
    StorageConfig,
    build_object_path,
    get_blob_store,
    sanitize_customer_name,
)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def config():
    return StorageConfig(url="https://storage.example.com/", api_key="test-key", owner_id="dealer-1")


class FakeStorageAPI:
    """Records requests and answers like the storage REST API."""

    def __init__(self):
        self.requests = []
        self.fail_uploads = False
        self.listing = [
            {"id": "f1", "name": "TAN_AH_KOW_vsa_1.pdf", "created_at": "2026-01-02T00:00:00Z",
             "metadata": {"size": 1234, "mimetype": "application/pdf"}},
            {"id": None, "name": "pdpa"},
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.startswith("/storage/v1/object/sign/"):
            object_path = path[len("/storage/v1/object/sign/"):]
            return httpx.Response(200, json={"signedURL": f"/object/sign/{object_path}?token=abc"})
        if path.startswith("/storage/v1/object/list/"):
            return httpx.Response(200, json=self.listing)
        if request.method == "POST" and path.startswith("/storage/v1/object/"):
            if self.fail_uploads:
                return httpx.Response(400, json={"statusCode": "409", "error": "Duplicate", "message": "The resource already exists"})
            return httpx.Response(200, json={"Key": path, "Id": "obj-1"})
        if request.method == "DELETE":
            return httpx.Response(200, json=[])
        if request.method == "GET":
            return httpx.Response(200, content=b"%PDF-1.7 stored")
        return httpx.Response(404, json={"message": "Not found"})


@pytest.fixture
def api():
    return FakeStorageAPI()


@pytest.fixture
def client(config, api):
    with StorageClient(config, transport=httpx.MockTransport(api)) as client:
        yield client


# ============================================================================
# Helpers
# ============================================================================

class TestPaths:
    """Tests for name sanitising and object paths."""

    @pytest.mark.parametrize("raw,expected", [
        ("Tan Ah Kow", "TAN_AH_KOW"),
        ("Tan Ah-Kow", "TAN_AHKOW"),
        ("  Lim   Bee Hoon ", "_LIM_BEE_HOON_"),
        ("", ""),
    ])
    def test_sanitize_customer_name(self, raw, expected):
        assert sanitize_customer_name(raw) == expected

    def test_build_object_path(self):
        assert build_object_path("dealer-1", "Tan Ah Kow", "vsa", "x.pdf") == "dealer-1/TAN_AH_KOW/vsa/x.pdf"


class TestListingCache:
    """Tests for the per-customer listing cache."""

    def test_put_and_get(self):
        cache = ListingCache()
        cache.put("Tan Ah Kow", None, [{"id": "1"}])
        assert cache.get("TAN AH KOW", None) == [{"id": "1"}]
        assert cache.get("Tan Ah Kow", "vsa") is None

    def test_invalidate_drops_all_types(self):
        cache = ListingCache()
        cache.put("Tan Ah Kow", None, [])
        cache.put("Tan Ah Kow", "vsa", [])
        cache.put("Lim Bee Hoon", None, [])

        cache.invalidate("Tan Ah Kow")

        assert cache.get("Tan Ah Kow", None) is None
        assert cache.get("Tan Ah Kow", "vsa") is None
        assert cache.get("Lim Bee Hoon", None) == []

    def test_expiry(self):
        cache = ListingCache(ttl_s=-1)
        cache.put("Tan Ah Kow", None, [])
        assert cache.get("Tan Ah Kow", None) is None


# ============================================================================
# StorageClient
# ============================================================================

class TestStorageClient:
    """Tests for the REST client."""

    def test_requires_credentials(self):
        with pytest.raises(ValueError):
            StorageClient(StorageConfig(url="", api_key="k"))
        with pytest.raises(ValueError):
            StorageClient(StorageConfig(url="https://storage.example.com", api_key=""))

    def test_upload(self, client, api):
        stored = client.upload("vsa", b"%PDF-1.7", "Tan Ah Kow", "TAN_AH_KOW_vsa_1.pdf")

        upload_request = api.requests[0]
        assert upload_request.method == "POST"
        assert upload_request.url.path == "/storage/v1/object/customer-documents/dealer-1/TAN_AH_KOW/vsa/TAN_AH_KOW_vsa_1.pdf"
        assert upload_request.headers["Authorization"] == "Bearer test-key"
        assert upload_request.headers["Content-Type"] == "application/pdf"
        assert upload_request.content == b"%PDF-1.7"

        assert stored["id"] == "obj-1"
        assert stored["path"] == "dealer-1/TAN_AH_KOW/vsa/TAN_AH_KOW_vsa_1.pdf"
        assert stored["url"].startswith("https://storage.example.com/storage/v1/object/sign/")
        assert stored["size"] == 8

    def test_upload_error(self, client, api):
        api.fail_uploads = True
        with pytest.raises(StorageAPIError) as exc_info:
            client.upload("vsa", b"%PDF-1.7", "Tan Ah Kow", "x.pdf")

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "The resource already exists"

    def test_signed_url_request(self, client, api):
        client.create_signed_url("dealer-1/TAN_AH_KOW/vsa/x.pdf", expires_in=60)
        assert json.loads(api.requests[0].content) == {"expiresIn": 60}

    def test_list_documents_skips_folders(self, client):
        documents = client.list_documents("Tan Ah Kow")

        assert len(documents) == 1
        assert documents[0]["path"] == "dealer-1/TAN_AH_KOW/TAN_AH_KOW_vsa_1.pdf"
        assert documents[0]["size"] == 1234

    def test_list_documents_uses_cache(self, client, api):
        client.list_documents("Tan Ah Kow")
        calls = len(api.requests)

        client.list_documents("Tan Ah Kow")
        assert len(api.requests) == calls

        client.invalidate_listing_cache("Tan Ah Kow")
        client.list_documents("Tan Ah Kow")
        assert len(api.requests) > calls

    def test_list_documents_by_type(self, client, api):
        client.list_documents("Tan Ah Kow", "vsa")
        list_request = next(r for r in api.requests if "/object/list/" in r.url.path)
        assert json.loads(list_request.content)["prefix"] == "dealer-1/TAN_AH_KOW/vsa"

    def test_delete_documents_invalidates_cache(self, client, api):
        client.list_documents("Tan Ah Kow")
        client.delete_documents(["dealer-1/TAN_AH_KOW/vsa/x.pdf"])

        delete_request = next(r for r in api.requests if r.method == "DELETE")
        assert json.loads(delete_request.content) == {"prefixes": ["dealer-1/TAN_AH_KOW/vsa/x.pdf"]}
        assert client.listing_cache.get("Tan Ah Kow", None) is None

    def test_download(self, client):
        assert client.download("dealer-1/TAN_AH_KOW/vsa/x.pdf") == b"%PDF-1.7 stored"


# ============================================================================
# InMemoryBlobStore
# ============================================================================

class TestInMemoryBlobStore:
    """Tests for the in-process store used in mock mode."""

    def test_upload_list_download(self):
        store = InMemoryBlobStore()
        stored = store.upload("vsa", b"pdf", "Tan Ah Kow", "a.pdf")

        assert store.download(stored["path"]) == b"pdf"
        assert [d["name"] for d in store.list_documents("Tan Ah Kow")] == ["a.pdf"]
        assert store.list_documents("Tan Ah Kow", "pdpa") == []

    def test_duplicate_upload(self):
        store = InMemoryBlobStore()
        store.upload("vsa", b"pdf", "Tan Ah Kow", "a.pdf")
        with pytest.raises(StorageAPIError) as exc_info:
            store.upload("vsa", b"pdf", "Tan Ah Kow", "a.pdf")
        assert exc_info.value.status_code == 409

    def test_listing_is_cached_until_invalidated(self):
        store = InMemoryBlobStore()
        assert store.list_documents("Tan Ah Kow") == []

        store.upload("vsa", b"pdf", "Tan Ah Kow", "a.pdf")
        assert store.list_documents("Tan Ah Kow") == []

        store.invalidate_listing_cache("Tan Ah Kow")
        assert len(store.list_documents("Tan Ah Kow")) == 1

    def test_delete(self):
        store = InMemoryBlobStore()
        stored = store.upload("vsa", b"pdf", "Tan Ah Kow", "a.pdf")
        store.delete_documents([stored["path"]])

        assert store.list_documents("Tan Ah Kow") == []
        with pytest.raises(StorageAPIError):
            store.download(stored["path"])


class TestGetBlobStore:
    """Tests for choosing a store from the environment."""

    def test_mock_storage(self, monkeypatch):
        monkeypatch.setenv("USE_MOCK_STORAGE", "true")
        store = get_blob_store()
        assert isinstance(store, InMemoryBlobStore)
        assert get_blob_store() is store

    def test_real_storage(self, monkeypatch):
        monkeypatch.setenv("USE_MOCK_STORAGE", "false")
        monkeypatch.setenv("STORAGE_URL", "https://storage.example.com")
        monkeypatch.setenv("STORAGE_API_KEY", "key")
        store = get_blob_store()
        try:
            assert isinstance(store, StorageClient)
        finally:
            store.close()
