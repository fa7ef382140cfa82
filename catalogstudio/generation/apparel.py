"""Apparel sub-pipeline: garment view classification, background masking and attribute analysis."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator

from catalogstudio.core.logger import get_logger
from catalogstudio.core.metrics import record_inference_call
from catalogstudio.generation.prompts import (
    GARMENT_ANALYSIS_PROMPT,
    GARMENT_CLASSIFICATION_PROMPT,
    GARMENT_MASKING_PROMPT,
)
from catalogstudio.inference.base import ImageInput, InferenceBackend, InferenceError
from catalogstudio.inference.structured import generate_structured
from catalogstudio.storage.object_store import ObjectStorage, StoredObject, build_mask_path


logger = get_logger("catalogstudio.generation.apparel")

VIEW_FRONT = "front"
VIEW_BACK = "back"

_GENDER_SYNONYMS = {
    "male": "male",
    "man": "male",
    "men": "male",
    "mens": "male",
    "men's": "male",
    "boy": "male",
    "female": "female",
    "woman": "female",
    "women": "female",
    "womens": "female",
    "women's": "female",
    "ladies": "female",
    "girl": "female",
    "unisex": "unisex",
}
_CATEGORY_SYNONYMS = {
    "top": "top",
    "tops": "top",
    "upper": "top",
    "bottom": "bottom",
    "bottoms": "bottom",
    "lower": "bottom",
    "fullbody": "fullbody",
    "full_body": "fullbody",
    "full body": "fullbody",
    "full-body": "fullbody",
}


class GarmentViewClassification(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    front_index: Optional[int] = Field(default=None, alias="frontIndex")
    back_index: Optional[int] = Field(default=None, alias="backIndex")
    front_close_index: Optional[int] = Field(default=None, alias="frontCloseIndex")
    back_close_index: Optional[int] = Field(default=None, alias="backCloseIndex")
    need_masking: bool = False

    def within(self, image_count: int) -> "GarmentViewClassification":
        def _bounded(value: Optional[int]) -> Optional[int]:
            if value is None or value < 0 or value >= image_count:
                return None
            return value

        return GarmentViewClassification(
            front_index=_bounded(self.front_index),
            back_index=_bounded(self.back_index),
            front_close_index=_bounded(self.front_close_index),
            back_close_index=_bounded(self.back_close_index),
            need_masking=self.need_masking,
        )


class StylingSuggestions(BaseModel):
    topwear: str = ""
    bottomwear: str = ""
    footwear: str = ""
    notes: str = ""

    @field_validator("topwear", "bottomwear", "footwear", "notes", mode="before")
    @classmethod
    def _text_or_empty(cls, value: Any) -> str:
        return value.strip() if isinstance(value, str) else ""


class GarmentAnalysis(BaseModel):
    gender: Optional[str] = None
    garment_category: Optional[str] = None
    garment_type: Optional[str] = None
    occasion: Optional[str] = None
    styling_suggestions: StylingSuggestions = Field(default_factory=StylingSuggestions)
    is_bottom_jeans: bool = False

    @field_validator("gender", mode="before")
    @classmethod
    def _normalize_gender(cls, value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return None
        return _GENDER_SYNONYMS.get(value.strip().lower())

    @field_validator("garment_category", mode="before")
    @classmethod
    def _normalize_category(cls, value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return None
        return _CATEGORY_SYNONYMS.get(value.strip().lower())

    @field_validator("garment_type", "occasion", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        if not isinstance(value, str) or not value.strip():
            return None
        return value.strip()

    @field_validator("styling_suggestions", mode="before")
    @classmethod
    def _suggestions_object(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}

    @field_validator("is_bottom_jeans", mode="before")
    @classmethod
    def _truthy(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in {"true", "yes", "1"}
        return bool(value)


@dataclass(frozen=True)
class MaskedView:
    view: str
    image: ImageInput
    stored: StoredObject


def classify_garment_views(backend: InferenceBackend, images: Sequence[ImageInput]) -> GarmentViewClassification:
    if not images:
        return GarmentViewClassification()
    prompt = GARMENT_CLASSIFICATION_PROMPT.format(last_index=len(images) - 1)
    result = generate_structured(
        backend,
        kind="garment_classification",
        prompt=prompt,
        schema=GarmentViewClassification,
        images=images,
    )
    return result.within(len(images))


def mask_garment_views(
    backend: InferenceBackend,
    storage: ObjectStorage,
    *,
    images: Sequence[ImageInput],
    classification: GarmentViewClassification,
    tenant_id: str,
    variant_id: int,
    job_id: str,
) -> Dict[str, MaskedView]:
    """Cut out each identified front/back view. Missing views are skipped."""

    masked: Dict[str, MaskedView] = {}
    if not classification.need_masking:
        return masked

    for view, index in ((VIEW_FRONT, classification.front_index), (VIEW_BACK, classification.back_index)):
        if index is None:
            continue
        try:
            output = backend.generate_image(prompt=GARMENT_MASKING_PROMPT, images=[images[index]])
        except InferenceError:
            record_inference_call(kind="garment_mask", outcome="failed")
            raise
        record_inference_call(kind="garment_mask", outcome="ok")
        path = build_mask_path(
            tenant_id=tenant_id,
            variant_id=variant_id,
            job_id=job_id,
            view=view,
            mime_type=output.mime_type,
        )
        stored = storage.put(path, output.data, output.mime_type)
        masked[view] = MaskedView(
            view=view,
            image=ImageInput(data=output.data, mime_type=output.mime_type),
            stored=stored,
        )
        logger.info("garment_view_masked", job_id=job_id, view=view, path=stored.path)
    return masked


def analyze_garment(backend: InferenceBackend, image: ImageInput) -> GarmentAnalysis:
    return generate_structured(
        backend,
        kind="garment_analysis",
        prompt=GARMENT_ANALYSIS_PROMPT,
        schema=GarmentAnalysis,
        images=[image],
    )


def analysis_facts(analysis: GarmentAnalysis) -> str:
    facts: List[str] = []
    if analysis.garment_type:
        facts.append(f"Garment type: {analysis.garment_type}.")
    if analysis.garment_category:
        facts.append(f"Category: {analysis.garment_category}.")
    if analysis.occasion:
        facts.append(f"Occasion: {analysis.occasion}.")
    if analysis.gender:
        facts.append(f"Target wearer: {analysis.gender}.")
    suggestions = analysis.styling_suggestions
    styling = [
        f"{label}: {value}"
        for label, value in (
            ("topwear", suggestions.topwear),
            ("bottomwear", suggestions.bottomwear),
            ("footwear", suggestions.footwear),
        )
        if value
    ]
    if styling:
        facts.append(f"Styling: {'; '.join(styling)}.")
    if suggestions.notes:
        facts.append(f"Styling notes: {suggestions.notes}")
    if analysis.is_bottom_jeans:
        facts.append("The bottom is denim jeans; keep the wash and fading exact.")
    return " ".join(facts)
