"""Request vocabulary and the validated generation input."""

from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


MAX_PRODUCT_IMAGES = 4
MAX_VARIATIONS = 10
ASPECT_RATIOS = ("1:1", "2:3", "3:2", "3:4", "4:3", "4:5", "5:4", "9:16", "16:9", "21:9")


class CategoryFamily(str, Enum):
    APPAREL = "apparel"
    NON_APPAREL = "non_apparel"


class Purpose(str, Enum):
    CATALOG = "catalog"
    ADS = "ads"
    INFOGRAPHICS = "infographics"


class MoodboardStrength(str, Enum):
    STRICT = "strict"
    INSPIRED = "inspired"


class OutputFormat(str, Enum):
    PNG = "png"
    JPG = "jpg"
    WEBP = "webp"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    READY = "ready"
    FAILED = "failed"


ACTIVE_JOB_STATUSES = (JobStatus.QUEUED.value, JobStatus.RUNNING.value)
TERMINAL_JOB_STATUSES = (JobStatus.READY.value, JobStatus.FAILED.value)


def clamp_variations(count: int) -> int:
    return max(1, min(MAX_VARIATIONS, int(count)))


class GenerationInput(BaseModel):
    """Validated request settings shared by every workflow."""

    model_config = ConfigDict(extra="ignore", frozen=True, protected_namespaces=())

    product_images: List[str] = Field(min_length=1, max_length=MAX_PRODUCT_IMAGES)
    purpose: Purpose = Purpose.CATALOG
    moodboard_id: Optional[int] = None
    moodboard_strength: MoodboardStrength = MoodboardStrength.INSPIRED
    number_of_variations: int = Field(default=1, ge=1, le=MAX_VARIATIONS)
    model_enabled: bool = False
    model_image: Optional[str] = None
    background_image: Optional[str] = None
    output_format: OutputFormat = OutputFormat.PNG
    aspect_ratio: str = "1:1"
    custom_instructions: List[str] = Field(default_factory=list, max_length=MAX_VARIATIONS)

    @field_validator("product_images")
    @classmethod
    def _strip_images(cls, value: List[str]) -> List[str]:
        cleaned = [item.strip() for item in value]
        if any(not item for item in cleaned):
            raise ValueError("product image references must not be empty")
        return cleaned

    @field_validator("purpose", mode="before")
    @classmethod
    def _default_purpose(cls, value: Any) -> Any:
        if value is None:
            return Purpose.CATALOG
        normalized = str(value).strip().lower()
        if normalized not in {item.value for item in Purpose}:
            return Purpose.CATALOG
        return normalized

    @field_validator("model_image", "background_image", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("aspect_ratio")
    @classmethod
    def _check_aspect_ratio(cls, value: str) -> str:
        normalized = value.strip()
        if normalized not in ASPECT_RATIOS:
            raise ValueError(f"aspect_ratio must be one of: {', '.join(ASPECT_RATIOS)}")
        return normalized

    @field_validator("custom_instructions", mode="before")
    @classmethod
    def _coerce_instructions(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value.strip() else []
        return value

    def instruction_for(self, variation_index: int) -> str:
        """Instruction for a 1-based variation; a single instruction applies to all variations."""

        if not self.custom_instructions:
            return ""
        if len(self.custom_instructions) == 1:
            return self.custom_instructions[0].strip()
        position = variation_index - 1
        if position < len(self.custom_instructions):
            return self.custom_instructions[position].strip()
        return ""

    def all_instructions_text(self) -> str:
        return " ".join(item.strip() for item in self.custom_instructions if item.strip())
