"""Inference backends for text and image generation."""

from catalogstudio.inference.base import GeneratedImage, ImageInput, InferenceBackend, InferenceError
from catalogstudio.inference.factory import get_inference_backend, reset_inference_backend_cache
from catalogstudio.inference.gemini import GeminiInferenceBackend
from catalogstudio.inference.mock import MockInferenceBackend
from catalogstudio.inference.structured import (
    StructuredOutputError,
    extract_json_from_text,
    generate_structured,
    parse_structured,
)

__all__ = [
    "GeneratedImage",
    "ImageInput",
    "InferenceBackend",
    "InferenceError",
    "GeminiInferenceBackend",
    "MockInferenceBackend",
    "StructuredOutputError",
    "extract_json_from_text",
    "generate_structured",
    "get_inference_backend",
    "parse_structured",
    "reset_inference_backend_cache",
]
