"""Instruction templates for the structured and image inference calls."""

from __future__ import annotations


GARMENT_CLASSIFICATION_PROMPT = (
    "You are classifying apparel product photos. Identify which image shows the garment front, "
    "which shows the back, and which are close-up details of the front or back. "
    "Decide whether the photos need background removal before they can be used as clean "
    "garment references (need_masking=true when the garment is worn, held, or shot on a busy background). "
    "Respond with JSON only: "
    '{{"frontIndex": int|null, "backIndex": int|null, "frontCloseIndex": int|null, '
    '"backCloseIndex": int|null, "need_masking": bool}}. '
    "Use null when a view is not present. These images correspond to indices 0..{last_index}."
)

GARMENT_MASKING_PROMPT = (
    "Remove the background from this garment photo. Return only the garment, centered on a plain "
    "pure white background. Preserve every detail: color, fabric texture, prints, labels, stitching "
    "and shape. Do not add a person, mannequin, shadow or props."
)

GARMENT_ANALYSIS_PROMPT = (
    "Analyze the garment in this image for an ecommerce photoshoot. Respond with JSON only: "
    '{"gender": "male"|"female"|"unisex"|null, "garment_category": "top"|"bottom"|"fullbody"|null, '
    '"garment_type": string|null, "occasion": string|null, '
    '"styling_suggestions": {"topwear": string, "bottomwear": string, "footwear": string, "notes": string}, '
    '"is_bottom_jeans": bool}. '
    "Styling suggestions describe complementary items that do not compete with the garment."
)

BACKGROUND_FROM_IMAGE_PROMPT = (
    "Describe this background image so it can be recreated exactly behind a product: surfaces, "
    "materials, colors, lighting direction and quality, depth of field and any props. "
    "Do not describe people or products. Respond with JSON only: "
    '{"background_description": string, "confidence": number between 0 and 1}.'
)

BACKGROUND_CHOICE_PROMPT = (
    "Choose the background for an ecommerce product image. Pick exactly one source; never blend them.\n"
    "Custom instructions from the user: {custom}\n"
    "Moodboard background summary: {moodboard}\n"
    "Prefer custom instructions when they describe a background. Otherwise use the moodboard summary "
    "when it describes a usable background. Otherwise choose default.\n"
    'Respond with JSON only: {{"chosen_source": "custom_instructions"|"moodboard"|"default", '
    '"background_description": string, "confidence": number between 0 and 1}}.'
)

MODEL_CHOICE_PROMPT = (
    "Decide how the human model should look in an ecommerce product image. Pick exactly one source; "
    "never blend them.\n"
    "Custom instructions from the user: {custom}\n"
    "Moodboard model summary: {moodboard}\n"
    "Prefer custom instructions when they describe the model. Otherwise use the moodboard summary. "
    "Otherwise choose default.\n"
    'Respond with JSON only: {{"chosen_source": "custom_instructions"|"moodboard"|"default", '
    '"model_description": string, "confidence": number between 0 and 1}}.'
)

MOODBOARD_KIND_PROMPTS = {
    "background": (
        "Summarize the shared background style of these reference images in two sentences: "
        "surfaces, colors, lighting and mood."
    ),
    "model": (
        "Summarize the human models in these reference images in two sentences: casting, pose, "
        "expression, styling and framing."
    ),
    "reference_positive": (
        "Summarize the visual style these reference images share in two sentences: composition, "
        "palette, lighting and mood to emulate."
    ),
    "reference_negative": (
        "Summarize the visual traits of these images that must be avoided, in two sentences."
    ),
}

MOODBOARD_SUMMARY_SUFFIX = ' Respond with JSON only: {"summary": string}.'
