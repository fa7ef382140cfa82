from __future__ import annotations

import base64
import json
from typing import Any, Dict, List

import httpx
import pytest

from catalogstudio.inference.base import ImageInput, InferenceError
from catalogstudio.inference.factory import get_inference_backend, reset_inference_backend_cache
from catalogstudio.inference.gemini import GeminiInferenceBackend
from catalogstudio.inference.mock import MockInferenceBackend
from catalogstudio.core.config import get_settings


def _backend(handler, captured: List[Dict[str, Any]]) -> GeminiInferenceBackend:
    def _capture(request: httpx.Request) -> httpx.Response:
        captured.append({"url": str(request.url), "body": json.loads(request.content)})
        return handler(request)

    return GeminiInferenceBackend(
        api_key="gemini-key",
        text_model="text-model",
        image_model="image-model",
        base_url="https://gemini.test/v1beta",
        client=httpx.Client(transport=httpx.MockTransport(_capture)),
    )


def test_generate_text_joins_non_thought_parts_and_labels_images() -> None:
    captured: List[Dict[str, Any]] = []
    backend = _backend(
        lambda request: httpx.Response(
            200,
            json={
                "candidates": [
                    {
                        "content": {
                            "parts": [
                                {"text": "thinking...", "thought": True},
                                {"text": '{"summary": '},
                                {"text": '"ok"}'},
                            ]
                        }
                    }
                ]
            },
        ),
        captured,
    )

    text = backend.generate_text(
        prompt="Summarize",
        images=[ImageInput(data=b"abc", mime_type="image/jpeg", label="Product image 1:")],
    )

    assert text == '{"summary": "ok"}'
    assert captured[0]["url"] == "https://gemini.test/v1beta/models/text-model:generateContent?key=gemini-key"
    parts = captured[0]["body"]["contents"][0]["parts"]
    assert parts[0] == {"text": "Summarize"}
    assert parts[1] == {"text": "Product image 1:"}
    assert parts[2] == {"inlineData": {"mimeType": "image/jpeg", "data": base64.b64encode(b"abc").decode("ascii")}}


def test_generate_image_requests_image_modality_and_decodes_inline_data() -> None:
    captured: List[Dict[str, Any]] = []
    encoded = base64.b64encode(b"png-bytes").decode("ascii")
    backend = _backend(
        lambda request: httpx.Response(
            200,
            json={
                "candidates": [
                    {
                        "content": {
                            "parts": [
                                {"text": "Here is your image"},
                                {"inlineData": {"mimeType": "image/png", "data": encoded}},
                            ]
                        }
                    }
                ]
            },
        ),
        captured,
    )

    image = backend.generate_image(prompt="Render", aspect_ratio="4:5")

    assert image.data == b"png-bytes"
    assert image.mime_type == "image/png"
    config = captured[0]["body"]["generationConfig"]
    assert config["responseModalities"] == ["TEXT", "IMAGE"]
    assert config["imageConfig"] == {"aspectRatio": "4:5"}
    assert "image-model" in captured[0]["url"]


def test_generate_image_without_image_part_fails() -> None:
    backend = _backend(
        lambda request: httpx.Response(
            200,
            json={"candidates": [{"content": {"parts": [{"inlineData": {"mimeType": "text/plain", "data": "eA=="}}]}}]},
        ),
        [],
    )
    with pytest.raises(InferenceError, match="gemini_image_output_not_found"):
        backend.generate_image(prompt="Render")


def test_http_errors_become_inference_errors() -> None:
    backend = _backend(lambda request: httpx.Response(500, text="upstream exploded"), [])
    with pytest.raises(InferenceError, match="gemini_request_failed status=500"):
        backend.generate_text(prompt="hello")

    empty = _backend(lambda request: httpx.Response(200, json={"candidates": []}), [])
    with pytest.raises(InferenceError, match="gemini_text_output_not_found"):
        empty.generate_text(prompt="hello")


def test_missing_api_key_fails_before_any_request() -> None:
    backend = GeminiInferenceBackend(api_key="", text_model="t", image_model="i")
    with pytest.raises(InferenceError, match="gemini_api_key_missing"):
        backend.generate_text(prompt="hello")


def test_factory_selects_backend_from_settings(monkeypatch) -> None:
    assert isinstance(get_inference_backend(), MockInferenceBackend)

    monkeypatch.setenv("INFERENCE_PROVIDER", "gemini")
    monkeypatch.setenv("GEMINI_API_KEY", "key")
    get_settings.cache_clear()
    reset_inference_backend_cache()

    assert isinstance(get_inference_backend(), GeminiInferenceBackend)
