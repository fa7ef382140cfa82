"""Human-model guidance when a model is requested without a reference photo."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict

from catalogstudio.generation.cascade import Resolution, ResolverTier, is_usable_description, run_cascade
from catalogstudio.generation.prompts import MODEL_CHOICE_PROMPT
from catalogstudio.inference.base import InferenceBackend
from catalogstudio.inference.structured import generate_structured


DEFAULT_MODEL_DESCRIPTION = (
    "A neutral ecommerce model in a natural pose, centered framing, unobtrusive styling."
)

SOURCE_REFERENCE_IMAGE = "reference_image"


class ModelChoice(BaseModel):
    chosen_source: Optional[str] = "default"
    model_description: Optional[str] = None
    confidence: Optional[float] = None

    model_config = ConfigDict(protected_namespaces=())


@dataclass(frozen=True)
class ModelContext:
    custom_instructions: str = ""
    moodboard_summary: str = ""


def _from_instructions_or_moodboard(backend: InferenceBackend):
    def resolve(context: ModelContext) -> Optional[Tuple[str, str]]:
        prompt = MODEL_CHOICE_PROMPT.format(
            custom=context.custom_instructions.strip() or "(none)",
            moodboard=context.moodboard_summary.strip() or "(none)",
        )
        result = generate_structured(backend, kind="model_choice", prompt=prompt, schema=ModelChoice)
        source = (result.chosen_source or "").strip().lower()
        if source not in {"custom_instructions", "moodboard"}:
            return None
        if not is_usable_description(result.model_description):
            return None
        return (result.model_description or "").strip(), source

    return resolve


def resolve_model_guidance(
    backend: InferenceBackend,
    *,
    model_enabled: bool,
    model_image_supplied: bool,
    context: ModelContext,
) -> Optional[Resolution[str]]:
    """None when no model is requested; a supplied photo wins without any inference call."""

    if not model_enabled:
        return None
    if model_image_supplied:
        return Resolution(value="", source=SOURCE_REFERENCE_IMAGE, tier=SOURCE_REFERENCE_IMAGE, degraded=False)

    tiers = (
        ResolverTier(
            name="instructions_or_moodboard",
            applies=lambda ctx: bool(ctx.custom_instructions.strip() or ctx.moodboard_summary.strip()),
            resolve=_from_instructions_or_moodboard(backend),
        ),
    )
    return run_cascade("model", tiers, context, default=DEFAULT_MODEL_DESCRIPTION)
