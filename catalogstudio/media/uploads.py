"""Upload-backed image references accepted by generation requests."""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional
from urllib.parse import urlsplit

from sqlalchemy import select
from sqlalchemy.orm import Session

from catalogstudio.storage.models import UploadedFile


_UPLOAD_PATH_PATTERN = re.compile(r"^/api/uploads/(\d+)/file/?$")


class UploadReferenceError(ValueError):
    """Raised when an image reference is not backed by a tenant upload."""


def upload_reference(file_id: int) -> str:
    return f"/api/uploads/{file_id}/file"


def _same_origin(url: str, origin: str) -> bool:
    left = urlsplit(url)
    right = urlsplit(origin)
    return (left.scheme, left.netloc) == (right.scheme, right.netloc)


def extract_upload_file_id(reference: str, *, request_origin: str = "") -> Optional[int]:
    """Return the upload id for ``/api/uploads/{id}/file`` style references, else None.

    Absolute URLs are accepted only when they point at ``request_origin``.
    """

    value = (reference or "").strip()
    if not value:
        return None
    if value.startswith("http://") or value.startswith("https://"):
        if not request_origin or not _same_origin(value, request_origin):
            return None
    path = urlsplit(value).path
    match = _UPLOAD_PATH_PATTERN.match(path)
    if match is None:
        return None
    return int(match.group(1))


def require_upload_file_ids(references: Iterable[str], *, request_origin: str = "") -> List[int]:
    file_ids: List[int] = []
    for reference in references:
        file_id = extract_upload_file_id(reference, request_origin=request_origin)
        if file_id is None:
            raise UploadReferenceError(f"upload_reference_required reference={reference}")
        file_ids.append(file_id)
    return file_ids


def load_uploaded_files(session: Session, *, tenant_id: str, file_ids: Iterable[int]) -> Dict[int, UploadedFile]:
    wanted = sorted(set(file_ids))
    if not wanted:
        return {}
    rows = session.scalars(
        select(UploadedFile).where(
            UploadedFile.tenant_id == tenant_id,
            UploadedFile.id.in_(wanted),
        )
    ).all()
    found = {row.id: row for row in rows}
    missing = [file_id for file_id in wanted if file_id not in found]
    if missing:
        raise UploadReferenceError(f"upload_not_found ids={','.join(str(item) for item in missing)}")
    return found
