"""Object storage for generated artifacts with deterministic paths."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import hashlib
from pathlib import Path
from typing import Protocol

from catalogstudio.core.config import get_settings


class ObjectStorageError(RuntimeError):
    """Raised when an object cannot be written or read."""


@dataclass(frozen=True)
class StoredObject:
    path: str
    url: str
    content_type: str
    size_bytes: int
    sha256: str


class ObjectStorage(Protocol):
    def put(self, path: str, data: bytes, content_type: str) -> StoredObject:
        raise NotImplementedError

    def read(self, path: str) -> bytes:
        raise NotImplementedError


def mime_extension(mime_type: str) -> str:
    normalized = (mime_type or "").strip().lower()
    mapping = {
        "image/png": "png",
        "image/jpeg": "jpg",
        "image/jpg": "jpg",
        "image/webp": "webp",
    }
    return mapping.get(normalized, "png")


def _workflow_dir(workflow_key: str) -> str:
    family, purpose = workflow_key.split(".")[:2]
    return f"{family.replace('_', '-')}-{purpose}"


def build_output_path(
    *,
    tenant_id: str,
    variant_id: int,
    workflow_key: str,
    job_id: str,
    variation_index: int,
    mime_type: str,
) -> str:
    return (
        f"tenant-{tenant_id}/variant-{variant_id}/{_workflow_dir(workflow_key)}/"
        f"{job_id}/{variation_index}.{mime_extension(mime_type)}"
    )


def build_mask_path(*, tenant_id: str, variant_id: int, job_id: str, view: str, mime_type: str) -> str:
    return f"tenant-{tenant_id}/variant-{variant_id}/apparel-mask/{job_id}/{view}.{mime_extension(mime_type)}"


class FilesystemObjectStorage:
    def __init__(self, *, root: Path, public_base_url: str = "") -> None:
        self._root = root
        self._public_base_url = public_base_url.strip().rstrip("/")

    def _resolve(self, path: str) -> Path:
        relative = Path(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise ObjectStorageError(f"object_path_invalid path={path}")
        return self._root / relative

    def _public_url(self, path: str) -> str:
        return f"{self._public_base_url}/media/{path}"

    def put(self, path: str, data: bytes, content_type: str) -> StoredObject:
        full_path = self._resolve(path)
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_bytes(data)
        except OSError as exc:
            raise ObjectStorageError(f"object_write_failed path={path}") from exc
        return StoredObject(
            path=path,
            url=self._public_url(path),
            content_type=content_type,
            size_bytes=len(data),
            sha256=hashlib.sha256(data).hexdigest(),
        )

    def read(self, path: str) -> bytes:
        full_path = self._resolve(path)
        try:
            return full_path.read_bytes()
        except OSError as exc:
            raise ObjectStorageError(f"object_read_failed path={path}") from exc


def _media_storage_root() -> Path:
    settings = get_settings()
    configured = Path(settings.media_storage_path)
    if configured.is_absolute():
        return configured
    return Path.cwd() / configured


@lru_cache(maxsize=1)
def get_object_storage() -> ObjectStorage:
    settings = get_settings()
    return FilesystemObjectStorage(root=_media_storage_root(), public_base_url=settings.app_public_base_url)


def reset_object_storage_cache() -> None:
    get_object_storage.cache_clear()
