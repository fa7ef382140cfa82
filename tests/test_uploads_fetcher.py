from __future__ import annotations

import httpx
import pytest

from catalogstudio.media.fetcher import ImageFetchError, ImageFetcher, resolve_url
from catalogstudio.media.uploads import (
    UploadReferenceError,
    extract_upload_file_id,
    load_uploaded_files,
    require_upload_file_ids,
)
from tests.conftest import REQUEST_ORIGIN


@pytest.mark.parametrize(
    "reference,expected",
    [
        ("/api/uploads/12/file", 12),
        ("/api/uploads/12/file/", 12),
        (f"{REQUEST_ORIGIN}/api/uploads/7/file", 7),
        ("https://evil.example/api/uploads/7/file", None),
        ("https://cdn.example/image.png", None),
        ("/api/uploads/abc/file", None),
        ("", None),
    ],
)
def test_extract_upload_file_id(reference: str, expected) -> None:
    assert extract_upload_file_id(reference, request_origin=REQUEST_ORIGIN) == expected


def test_require_upload_file_ids_rejects_foreign_references() -> None:
    assert require_upload_file_ids(["/api/uploads/1/file", "/api/uploads/2/file"]) == [1, 2]
    with pytest.raises(UploadReferenceError, match="upload_reference_required"):
        require_upload_file_ids(["/api/uploads/1/file", "https://cdn.example/x.png"])


def test_load_uploaded_files_is_tenant_scoped(session, seeder) -> None:
    owner = seeder.tenant()
    other = seeder.tenant()
    mine = seeder.upload(owner.id)
    theirs = seeder.upload(other.id)

    found = load_uploaded_files(session, tenant_id=owner.id, file_ids=[mine.id, mine.id])
    assert list(found) == [mine.id]

    with pytest.raises(UploadReferenceError, match="upload_not_found"):
        load_uploaded_files(session, tenant_id=owner.id, file_ids=[mine.id, theirs.id])


def test_resolve_url() -> None:
    assert resolve_url("http://app.test/", "/api/uploads/1/file") == "http://app.test/api/uploads/1/file"
    assert resolve_url("http://app.test", "https://blob.test/a.png") == "https://blob.test/a.png"
    with pytest.raises(ImageFetchError):
        resolve_url("http://app.test", "relative/path.png")


def test_fetcher_forwards_auth_only_to_same_origin() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen[request.url.host] = request.headers.get("Authorization")
        return httpx.Response(200, content=b"bytes", headers={"content-type": "image/webp; charset=binary"})

    fetcher = ImageFetcher(
        request_origin="http://app.test",
        auth_headers={"Authorization": "Bearer token"},
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )

    image = fetcher.fetch_image("/api/uploads/3/file", label="Product image 1:")
    fetcher.fetch("https://blob.test/uploads/3.jpg")

    assert image.data == b"bytes"
    assert image.mime_type == "image/webp"
    assert image.label == "Product image 1:"
    assert seen == {"app.test": "Bearer token", "blob.test": None}


def test_fetcher_raises_on_error_status(fetcher) -> None:
    with pytest.raises(ImageFetchError, match="status=404"):
        fetcher.fetch("https://elsewhere.test/missing.png")

    asset = fetcher.fetch("https://blob.test/uploads/5.jpg")
    assert asset.data == b"upload-5.jpg"
    assert asset.content_type == "image/jpeg"
