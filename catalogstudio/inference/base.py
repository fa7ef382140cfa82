"""Backend contracts for text and image inference."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence


class InferenceError(RuntimeError):
    """Raised when an inference backend returns no usable result."""


@dataclass(frozen=True)
class ImageInput:
    data: bytes
    mime_type: str = "image/png"
    label: Optional[str] = None

    def with_label(self, label: Optional[str]) -> "ImageInput":
        return ImageInput(data=self.data, mime_type=self.mime_type, label=label)


@dataclass(frozen=True)
class GeneratedImage:
    data: bytes
    mime_type: str = "image/png"


class InferenceBackend(Protocol):
    provider_name: str

    def generate_text(self, *, prompt: str, images: Sequence[ImageInput] = ()) -> str:
        raise NotImplementedError

    def generate_image(
        self,
        *,
        prompt: str,
        images: Sequence[ImageInput] = (),
        aspect_ratio: str = "1:1",
    ) -> GeneratedImage:
        raise NotImplementedError
