"""Structured-output calls: JSON extraction from model text and schema validation."""

from __future__ import annotations

import json
from typing import Any, Sequence, Type, TypeVar

from pydantic import BaseModel, ValidationError

from catalogstudio.core.metrics import record_inference_call
from catalogstudio.inference.base import ImageInput, InferenceBackend, InferenceError


ModelT = TypeVar("ModelT", bound=BaseModel)


class StructuredOutputError(InferenceError):
    """Raised when model text cannot be parsed into the expected schema."""


def extract_json_from_text(text: str) -> Any:
    """Parse ``text`` as JSON, falling back to the span between the first '{' and the last '}'."""

    candidate = (text or "").strip()
    try:
        return json.loads(candidate)
    except ValueError:
        pass

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end <= start:
        raise StructuredOutputError("structured_output_json_not_found")
    try:
        return json.loads(candidate[start : end + 1])
    except ValueError as exc:
        raise StructuredOutputError("structured_output_json_invalid") from exc


def parse_structured(text: str, schema: Type[ModelT]) -> ModelT:
    payload = extract_json_from_text(text)
    if not isinstance(payload, dict):
        raise StructuredOutputError("structured_output_not_object")
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise StructuredOutputError(f"structured_output_schema_mismatch schema={schema.__name__}") from exc


def generate_structured(
    backend: InferenceBackend,
    *,
    kind: str,
    prompt: str,
    schema: Type[ModelT],
    images: Sequence[ImageInput] = (),
) -> ModelT:
    try:
        text = backend.generate_text(prompt=prompt, images=images)
        result = parse_structured(text, schema)
    except InferenceError:
        record_inference_call(kind=kind, outcome="failed")
        raise
    record_inference_call(kind=kind, outcome="ok")
    return result
