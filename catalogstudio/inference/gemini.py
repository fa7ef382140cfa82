"""Gemini generateContent backend for text and image inference."""

from __future__ import annotations

import base64
from typing import Any, Dict, Iterator, List, Optional, Sequence

import httpx

from catalogstudio.inference.base import GeneratedImage, ImageInput, InferenceError


class GeminiInferenceBackend:
    provider_name = "gemini"

    def __init__(
        self,
        *,
        api_key: str,
        text_model: str,
        image_model: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout_seconds: int = 120,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._api_key = api_key.strip()
        self._text_model = text_model.strip()
        self._image_model = image_model.strip()
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client

    def _endpoint(self, model: str) -> str:
        if not self._api_key:
            raise InferenceError("gemini_api_key_missing")
        if not model:
            raise InferenceError("gemini_model_missing")
        return f"{self._base_url}/models/{model}:generateContent?key={self._api_key}"

    @staticmethod
    def _parts(prompt: str, images: Sequence[ImageInput]) -> List[Dict[str, Any]]:
        parts: List[Dict[str, Any]] = [{"text": prompt}]
        for image in images:
            if image.label:
                parts.append({"text": image.label})
            parts.append(
                {
                    "inlineData": {
                        "mimeType": image.mime_type,
                        "data": base64.b64encode(image.data).decode("ascii"),
                    }
                }
            )
        return parts

    def _post(self, model: str, request_body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            if self._client is not None:
                response = self._client.post(self._endpoint(model), json=request_body)
            else:
                with httpx.Client(timeout=self._timeout_seconds) as client:
                    response = client.post(self._endpoint(model), json=request_body)
        except httpx.HTTPError as exc:
            raise InferenceError(f"gemini_request_error detail={exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            detail = response.text.strip()
            if len(detail) > 240:
                detail = detail[:240] + "..."
            raise InferenceError(f"gemini_request_failed status={response.status_code} detail={detail}")

        try:
            body = response.json()
        except ValueError as exc:
            raise InferenceError("gemini_invalid_json_response") from exc
        if not isinstance(body, dict):
            raise InferenceError("gemini_invalid_json_response")
        return body

    @staticmethod
    def _iter_parts(body: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        candidates = body.get("candidates")
        if not isinstance(candidates, list):
            raise InferenceError("gemini_missing_candidates")
        for candidate in candidates:
            if not isinstance(candidate, dict):
                continue
            content = candidate.get("content")
            if not isinstance(content, dict):
                continue
            parts = content.get("parts")
            if not isinstance(parts, list):
                continue
            for part in parts:
                if isinstance(part, dict):
                    yield part

    def generate_text(self, *, prompt: str, images: Sequence[ImageInput] = ()) -> str:
        body = self._post(self._text_model, {"contents": [{"parts": self._parts(prompt, images)}]})
        texts = [
            str(part["text"])
            for part in self._iter_parts(body)
            if isinstance(part.get("text"), str) and not part.get("thought")
        ]
        joined = "".join(texts).strip()
        if not joined:
            raise InferenceError("gemini_text_output_not_found")
        return joined

    def generate_image(
        self,
        *,
        prompt: str,
        images: Sequence[ImageInput] = (),
        aspect_ratio: str = "1:1",
    ) -> GeneratedImage:
        request_body = {
            "contents": [{"parts": self._parts(prompt, images)}],
            "generationConfig": {
                "responseModalities": ["TEXT", "IMAGE"],
                "imageConfig": {"aspectRatio": aspect_ratio},
            },
        }
        body = self._post(self._image_model, request_body)

        for part in self._iter_parts(body):
            inline_data = part.get("inlineData") or part.get("inline_data")
            if not isinstance(inline_data, dict):
                continue
            mime_type = str(inline_data.get("mimeType") or inline_data.get("mime_type") or "").strip().lower()
            encoded = str(inline_data.get("data") or "").strip()
            if not mime_type.startswith("image/") or not encoded:
                continue
            try:
                data = base64.b64decode(encoded)
            except ValueError as exc:
                raise InferenceError("gemini_image_invalid_inline_data") from exc
            return GeneratedImage(data=data, mime_type=mime_type)

        raise InferenceError("gemini_image_output_not_found")
