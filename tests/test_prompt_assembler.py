from __future__ import annotations

from catalogstudio.generation.assembler import (
    ANCHOR_GUIDELINE,
    CATEGORY_GUIDELINES,
    FIDELITY_GUIDELINE,
    MODEL_REFERENCE_GUIDELINE,
    PURPOSE_GUIDELINES,
    PromptContext,
    assemble_prompt,
    assemble_variation_prompts,
)
from catalogstudio.generation.types import CategoryFamily, Purpose
from catalogstudio.generation.workflows import resolve_workflow


def _full_context() -> PromptContext:
    return PromptContext(
        family=CategoryFamily.APPAREL,
        purpose=Purpose.CATALOG,
        product_title="Linen Shirt",
        style_appendix="Tone: calm",
        background_description="Sunlit plaster wall with soft shadows",
        model_enabled=True,
        model_guidance="Tall model, relaxed pose",
        analysis_facts="Garment type: shirt.",
    )


def test_segments_follow_fixed_order() -> None:
    prompt = assemble_prompt(_full_context(), instruction="Roll up the sleeves", anchored=True)
    lines = prompt.split("\n")

    assert lines == [
        f"Product: Linen Shirt. {FIDELITY_GUIDELINE}",
        PURPOSE_GUIDELINES[Purpose.CATALOG],
        CATEGORY_GUIDELINES[CategoryFamily.APPAREL],
        "Brand style: Tone: calm",
        "Background: Sunlit plaster wall with soft shadows",
        "Model guidance: Tall model, relaxed pose",
        "Garment details: Garment type: shirt.",
        ANCHOR_GUIDELINE,
        "Additional instructions: Roll up the sleeves",
    ]


def test_empty_segments_are_skipped() -> None:
    context = PromptContext(family=CategoryFamily.NON_APPAREL, purpose=Purpose.ADS)
    prompt = assemble_prompt(context)

    assert prompt.split("\n") == [
        FIDELITY_GUIDELINE,
        PURPOSE_GUIDELINES[Purpose.ADS],
        CATEGORY_GUIDELINES[CategoryFamily.NON_APPAREL],
    ]


def test_model_reference_image_overrides_guidance_and_disabled_model_adds_nothing() -> None:
    with_reference = PromptContext(
        family=CategoryFamily.APPAREL,
        purpose=Purpose.ADS,
        model_enabled=True,
        model_reference_supplied=True,
        model_guidance="ignored",
    )
    assert MODEL_REFERENCE_GUIDELINE in assemble_prompt(with_reference)
    assert "ignored" not in assemble_prompt(with_reference)

    disabled = PromptContext(
        family=CategoryFamily.APPAREL,
        purpose=Purpose.ADS,
        model_enabled=False,
        model_guidance="Tall model",
    )
    assert "Tall model" not in assemble_prompt(disabled)


def test_assembly_is_idempotent() -> None:
    context = _full_context()
    assert assemble_prompt(context, instruction="x") == assemble_prompt(context, instruction="x")


def test_variation_prompts_add_anchor_from_second_variation_only() -> None:
    workflow = resolve_workflow("home", "catalog")
    generation_input = workflow.validate_input(
        {
            "product_images": ["a"],
            "number_of_variations": 3,
            "custom_instructions": ["One", "Two", "Three"],
        }
    )
    prompts = workflow.build_prompts(generation_input, product_title="Mug")

    assert len(prompts) == 3
    assert ANCHOR_GUIDELINE not in prompts[0]
    assert ANCHOR_GUIDELINE in prompts[1]
    assert ANCHOR_GUIDELINE in prompts[2]
    assert prompts[0].endswith("Additional instructions: One")
    assert prompts[2].endswith("Additional instructions: Three")
    assert all(prompt.startswith("Product: Mug.") for prompt in prompts)


def test_apparel_variation_prompts_never_anchor() -> None:
    context = PromptContext(family=CategoryFamily.APPAREL, purpose=Purpose.CATALOG)
    generation_input = resolve_workflow("apparel", "catalog").validate_input(
        {"product_images": ["a"], "number_of_variations": 2}
    )
    prompts = assemble_variation_prompts(context, generation_input, count=2, use_anchor=False)

    assert prompts[0] == prompts[1]
    assert ANCHOR_GUIDELINE not in prompts[1]
