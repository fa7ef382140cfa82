"""Deterministic mock inference backend for local/dev usage."""

from __future__ import annotations

import base64
from typing import Sequence

from catalogstudio.inference.base import GeneratedImage, ImageInput


_PLACEHOLDER_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


class MockInferenceBackend:
    provider_name = "mock"

    def generate_text(self, *, prompt: str, images: Sequence[ImageInput] = ()) -> str:
        del prompt, images
        return "{}"

    def generate_image(
        self,
        *,
        prompt: str,
        images: Sequence[ImageInput] = (),
        aspect_ratio: str = "1:1",
    ) -> GeneratedImage:
        del prompt, images, aspect_ratio
        return GeneratedImage(data=_PLACEHOLDER_PNG, mime_type="image/png")
