from __future__ import annotations

from typing import Optional

from pydantic import BaseModel
import pytest

from catalogstudio.core.metrics import render_prometheus_metrics
from catalogstudio.inference.base import InferenceError
from catalogstudio.inference.structured import (
    StructuredOutputError,
    extract_json_from_text,
    generate_structured,
    parse_structured,
)
from tests.conftest import FakeInferenceBackend


class _Summary(BaseModel):
    summary: Optional[str] = None
    score: int = 0


def test_extract_json_from_plain_and_wrapped_text() -> None:
    assert extract_json_from_text('{"summary": "ok"}') == {"summary": "ok"}
    wrapped = 'Here you go:\n```json\n{"summary": "ok", "score": 2}\n```\nThanks'
    assert extract_json_from_text(wrapped) == {"summary": "ok", "score": 2}


def test_extract_json_errors() -> None:
    with pytest.raises(StructuredOutputError, match="structured_output_json_not_found"):
        extract_json_from_text("no json here")
    with pytest.raises(StructuredOutputError, match="structured_output_json_invalid"):
        extract_json_from_text("prefix {not: valid} suffix")


def test_parse_structured_rejects_non_objects_and_schema_mismatch() -> None:
    with pytest.raises(StructuredOutputError, match="structured_output_not_object"):
        parse_structured("[1, 2]", _Summary)
    with pytest.raises(StructuredOutputError, match="schema_mismatch"):
        parse_structured('{"score": "many"}', _Summary)


def test_structured_output_error_is_an_inference_error() -> None:
    assert issubclass(StructuredOutputError, InferenceError)


def test_generate_structured_records_outcomes() -> None:
    backend = FakeInferenceBackend(text_responses={"describe": {"summary": "Warm light", "score": 3}})

    result = generate_structured(backend, kind="unit", prompt="describe this", schema=_Summary)
    assert result.summary == "Warm light"
    assert result.score == 3

    backend.text_responses["broken"] = "not json"
    with pytest.raises(StructuredOutputError):
        generate_structured(backend, kind="unit", prompt="broken output", schema=_Summary)

    body = render_prometheus_metrics(app_name="catalogstudio", app_version="0.1.0", env="test")
    assert 'catalogstudio_inference_calls_total{kind="unit",outcome="ok"} 1' in body
    assert 'catalogstudio_inference_calls_total{kind="unit",outcome="failed"} 1' in body
