"""Background resolution: uploaded image, then instructions vs moodboard, then studio default."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from pydantic import BaseModel

from catalogstudio.generation.cascade import Resolution, ResolverTier, is_usable_description, run_cascade
from catalogstudio.generation.prompts import BACKGROUND_CHOICE_PROMPT, BACKGROUND_FROM_IMAGE_PROMPT
from catalogstudio.inference.base import ImageInput, InferenceBackend
from catalogstudio.inference.structured import generate_structured


STUDIO_DEFAULT_BACKGROUND = (
    "Clean studio backdrop (light neutral), soft even lighting, realistic soft shadow, no props."
)

SOURCE_UPLOADED_IMAGE = "uploaded_image"
SOURCE_CUSTOM_INSTRUCTIONS = "custom_instructions"
SOURCE_MOODBOARD = "moodboard"
SOURCE_DEFAULT = "default"


class BackgroundFromImage(BaseModel):
    background_description: Optional[str] = None
    confidence: Optional[float] = None


class BackgroundChoice(BaseModel):
    chosen_source: Optional[str] = SOURCE_DEFAULT
    background_description: Optional[str] = None
    confidence: Optional[float] = None


@dataclass(frozen=True)
class BackgroundContext:
    background_image: Optional[ImageInput] = None
    custom_instructions: str = ""
    moodboard_summary: str = ""


def _from_uploaded_image(backend: InferenceBackend):
    def resolve(context: BackgroundContext) -> Optional[Tuple[str, str]]:
        if context.background_image is None:
            return None
        result = generate_structured(
            backend,
            kind="background_from_image",
            prompt=BACKGROUND_FROM_IMAGE_PROMPT,
            schema=BackgroundFromImage,
            images=[context.background_image],
        )
        if not is_usable_description(result.background_description):
            return None
        return (result.background_description or "").strip(), SOURCE_UPLOADED_IMAGE

    return resolve


def _from_instructions_or_moodboard(backend: InferenceBackend):
    def resolve(context: BackgroundContext) -> Optional[Tuple[str, str]]:
        prompt = BACKGROUND_CHOICE_PROMPT.format(
            custom=context.custom_instructions.strip() or "(none)",
            moodboard=context.moodboard_summary.strip() or "(none)",
        )
        result = generate_structured(backend, kind="background_choice", prompt=prompt, schema=BackgroundChoice)
        source = (result.chosen_source or "").strip().lower()
        if source not in {SOURCE_CUSTOM_INSTRUCTIONS, SOURCE_MOODBOARD}:
            return None
        if not is_usable_description(result.background_description):
            return None
        return (result.background_description or "").strip(), source

    return resolve


def resolve_background(backend: InferenceBackend, context: BackgroundContext) -> Resolution[str]:
    tiers = (
        ResolverTier(
            name="uploaded_image",
            applies=lambda ctx: ctx.background_image is not None,
            resolve=_from_uploaded_image(backend),
        ),
        ResolverTier(
            name="instructions_or_moodboard",
            applies=lambda ctx: bool(ctx.custom_instructions.strip() or ctx.moodboard_summary.strip()),
            resolve=_from_instructions_or_moodboard(backend),
        ),
    )
    return run_cascade(
        "background",
        tiers,
        context,
        default=STUDIO_DEFAULT_BACKGROUND,
        default_source=SOURCE_DEFAULT,
    )
