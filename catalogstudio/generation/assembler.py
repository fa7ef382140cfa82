"""Deterministic prompt assembly shared by every workflow.

Segment order never changes: fidelity, purpose, category, style, background,
model, garment facts, anchor consistency, instruction. Empty segments are
skipped. Nothing here reads the clock or a random source.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from catalogstudio.generation.types import CategoryFamily, GenerationInput, Purpose


FIDELITY_GUIDELINE = (
    "Keep product fidelity: do not change product color, shape, branding, or text. "
    "Make sure the product is fully visible and is the clear focus of the image."
)

PURPOSE_GUIDELINES = {
    Purpose.CATALOG: (
        "Goal: ecommerce catalog image. Clean, evenly lit, true-to-life colors, product centered "
        "with consistent framing. No text overlays, watermarks or logos that are not on the product."
    ),
    Purpose.ADS: (
        "Goal: ecommerce advertising image. Scroll-stopping composition with one clear focal point "
        "and breathing room for headline copy. Do not render text unless asked."
    ),
    Purpose.INFOGRAPHICS: (
        "Goal: ecommerce infographic. Product clearly visible with clean negative space for feature "
        "callouts. Any rendered text must be short, legible and accurate. Do not invent product claims."
    ),
}

CATEGORY_GUIDELINES = {
    CategoryFamily.APPAREL: (
        "Category: apparel. Preserve the garment cut, fit, fabric texture, print placement and "
        "trims exactly as in the garment images."
    ),
    CategoryFamily.NON_APPAREL: (
        "Category: product. Preserve proportions, materials and surface finish. Place the product "
        "naturally in the scene with realistic scale, contact shadows and reflections."
    ),
}

MODEL_REFERENCE_GUIDELINE = "Model: use the supplied model reference image as the model."
ANCHOR_GUIDELINE = (
    "Consistency: match the background, lighting and framing of the anchor image so this "
    "variation belongs to the same set."
)


@dataclass(frozen=True)
class PromptContext:
    family: CategoryFamily
    purpose: Purpose
    product_title: str = ""
    style_appendix: str = ""
    background_description: str = ""
    model_enabled: bool = False
    model_reference_supplied: bool = False
    model_guidance: str = ""
    analysis_facts: str = ""


def _model_segment(context: PromptContext) -> str:
    if not context.model_enabled:
        return ""
    if context.model_reference_supplied:
        return MODEL_REFERENCE_GUIDELINE
    if context.model_guidance.strip():
        return f"Model guidance: {context.model_guidance.strip()}"
    return ""


def assemble_prompt(context: PromptContext, *, instruction: str = "", anchored: bool = False) -> str:
    fidelity = FIDELITY_GUIDELINE
    if context.product_title.strip():
        fidelity = f"Product: {context.product_title.strip()}. {fidelity}"

    segments = [
        fidelity,
        PURPOSE_GUIDELINES[context.purpose],
        CATEGORY_GUIDELINES[context.family],
        f"Brand style: {context.style_appendix.strip()}" if context.style_appendix.strip() else "",
        f"Background: {context.background_description.strip()}" if context.background_description.strip() else "",
        _model_segment(context),
        f"Garment details: {context.analysis_facts.strip()}" if context.analysis_facts.strip() else "",
        ANCHOR_GUIDELINE if anchored else "",
        f"Additional instructions: {instruction.strip()}" if instruction.strip() else "",
    ]
    return "\n".join(segment for segment in segments if segment)


def assemble_variation_prompts(
    context: PromptContext,
    generation_input: GenerationInput,
    *,
    count: int,
    use_anchor: bool,
) -> List[str]:
    """One prompt per 1-based variation; only the instruction slot and anchor note differ."""

    return [
        assemble_prompt(
            context,
            instruction=generation_input.instruction_for(index),
            anchored=use_anchor and index > 1,
        )
        for index in range(1, count + 1)
    ]
