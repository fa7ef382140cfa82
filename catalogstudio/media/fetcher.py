"""Fetch uploaded or generated images as raw bytes for inference calls."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional

import httpx

from catalogstudio.inference.base import ImageInput


class ImageFetchError(RuntimeError):
    """Raised when a referenced image cannot be downloaded."""


@dataclass(frozen=True)
class FetchedAsset:
    url: str
    data: bytes
    content_type: str


def resolve_url(origin: str, reference: str) -> str:
    value = (reference or "").strip()
    if value.startswith("http://") or value.startswith("https://"):
        return value
    if value.startswith("/"):
        return f"{origin.rstrip('/')}{value}"
    raise ImageFetchError(f"image_reference_unresolvable reference={value}")


class ImageFetcher:
    """Downloads images; auth headers are attached only to same-origin URLs."""

    def __init__(
        self,
        *,
        request_origin: str,
        auth_headers: Optional[Mapping[str, str]] = None,
        timeout_seconds: int = 30,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._origin = request_origin.rstrip("/")
        self._auth_headers = dict(auth_headers or {})
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client

    def headers_for(self, url: str) -> Dict[str, str]:
        if self._origin and url.startswith(self._origin + "/"):
            return dict(self._auth_headers)
        return {}

    def fetch(self, reference: str) -> FetchedAsset:
        url = resolve_url(self._origin, reference)
        headers = self.headers_for(url)
        try:
            if self._client is not None:
                response = self._client.get(url, headers=headers)
            else:
                with httpx.Client(timeout=self._timeout_seconds, follow_redirects=True) as client:
                    response = client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            raise ImageFetchError(f"image_fetch_error url={url} detail={exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise ImageFetchError(f"image_fetch_failed url={url} status={response.status_code}")

        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        return FetchedAsset(
            url=url,
            data=response.content,
            content_type=content_type or "application/octet-stream",
        )

    def fetch_image(self, reference: str, *, label: Optional[str] = None) -> ImageInput:
        asset = self.fetch(reference)
        mime_type = asset.content_type if asset.content_type.startswith("image/") else "image/png"
        return ImageInput(data=asset.data, mime_type=mime_type, label=label)
