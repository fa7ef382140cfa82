"""Factory to resolve the active inference backend."""

from __future__ import annotations

from functools import lru_cache

from catalogstudio.core.config import get_settings
from catalogstudio.inference.base import InferenceBackend
from catalogstudio.inference.gemini import GeminiInferenceBackend
from catalogstudio.inference.mock import MockInferenceBackend


@lru_cache(maxsize=1)
def get_inference_backend() -> InferenceBackend:
    settings = get_settings()
    provider = settings.inference_provider.strip().lower()
    if provider == "gemini":
        return GeminiInferenceBackend(
            api_key=settings.gemini_api_key,
            text_model=settings.gemini_text_model,
            image_model=settings.gemini_image_model,
            base_url=settings.gemini_api_base_url,
            timeout_seconds=settings.gemini_timeout_seconds,
        )
    return MockInferenceBackend()


def reset_inference_backend_cache() -> None:
    get_inference_backend.cache_clear()
