"""Workflow executors: the inline resolver-to-synthesis path and the apparel multi-step path."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Protocol, Sequence

from catalogstudio.core.logger import get_logger
from catalogstudio.core.metrics import record_resolution_degraded
from catalogstudio.generation.apparel import (
    VIEW_BACK,
    VIEW_FRONT,
    GarmentAnalysis,
    GarmentViewClassification,
    MaskedView,
    analysis_facts,
    analyze_garment,
    classify_garment_views,
    mask_garment_views,
)
from catalogstudio.generation.assembler import PromptContext, assemble_variation_prompts
from catalogstudio.generation.background import BackgroundContext, resolve_background
from catalogstudio.generation.errors import StorageFailure, UpstreamInferenceFailure
from catalogstudio.generation.model_subject import ModelContext, resolve_model_guidance
from catalogstudio.generation.moodboard import KIND_BACKGROUND, KIND_MODEL, StyleEnrichment
from catalogstudio.generation.synthesis import AnchorImage, SynthesisPlan, SynthesizedOutput, run_synthesis_loop
from catalogstudio.generation.types import GenerationInput
from catalogstudio.generation.workflows import ExecutorKind, Workflow
from catalogstudio.inference.base import ImageInput, InferenceBackend, InferenceError
from catalogstudio.storage.object_store import ObjectStorage, ObjectStorageError


logger = get_logger("catalogstudio.generation.executors")


class ExecutionRecorder(Protocol):
    def record_prompts(self, prompts: Sequence[str], details: Mapping[str, Any]) -> None:
        raise NotImplementedError

    def record_output(self, output: SynthesizedOutput) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class JobInputs:
    job_id: str
    tenant_id: str
    variant_id: int
    workflow: Workflow
    generation_input: GenerationInput
    style: StyleEnrichment
    product_images: Sequence[ImageInput]
    product_title: str = ""
    model_image: Optional[ImageInput] = None
    background_image: Optional[ImageInput] = None
    positive_references: Sequence[ImageInput] = ()
    negative_references: Sequence[ImageInput] = ()
    skip_indices: FrozenSet[int] = field(default_factory=frozenset)
    initial_anchor: Optional[AnchorImage] = None
    prior_prompts: Sequence[str] = ()
    prior_details: Mapping[str, Any] = field(default_factory=dict)
    prior_masked_images: Mapping[str, ImageInput] = field(default_factory=dict)

    @property
    def resumes_prior_plan(self) -> bool:
        """A retry keeps the prompts already used for stored outputs."""

        return bool(self.skip_indices) and bool(self.prior_prompts)


@dataclass(frozen=True)
class ExecutionResult:
    prompts: List[str]
    outputs: List[SynthesizedOutput]
    details: Dict[str, Any]


def _resolve_scene(backend: InferenceBackend, inputs: JobInputs) -> Dict[str, Any]:
    instructions = inputs.generation_input.all_instructions_text()
    background = resolve_background(
        backend,
        BackgroundContext(
            background_image=inputs.background_image,
            custom_instructions=instructions,
            moodboard_summary=inputs.style.summary(KIND_BACKGROUND),
        ),
    )
    model = resolve_model_guidance(
        backend,
        model_enabled=inputs.generation_input.model_enabled,
        model_image_supplied=inputs.model_image is not None,
        context=ModelContext(
            custom_instructions=instructions,
            moodboard_summary=inputs.style.summary(KIND_MODEL),
        ),
    )
    return {"background": background, "model": model}


def _prompt_context(inputs: JobInputs, scene: Mapping[str, Any], *, facts: str = "") -> PromptContext:
    model = scene["model"]
    return PromptContext(
        family=inputs.workflow.family,
        purpose=inputs.workflow.purpose,
        product_title=inputs.product_title,
        style_appendix=inputs.style.style_appendix,
        background_description=scene["background"].value,
        model_enabled=inputs.generation_input.model_enabled,
        model_reference_supplied=inputs.model_image is not None,
        model_guidance=model.value if model is not None else "",
        analysis_facts=facts,
    )


def _scene_details(scene: Mapping[str, Any]) -> Dict[str, Any]:
    background = scene["background"]
    model = scene["model"]
    return {
        "background": {
            "description": background.value,
            "source": background.source,
            "degraded": background.degraded,
        },
        "model": None
        if model is None
        else {"description": model.value, "source": model.source, "degraded": model.degraded},
    }


def _synthesize(
    backend: InferenceBackend,
    storage: ObjectStorage,
    inputs: JobInputs,
    recorder: ExecutionRecorder,
    *,
    prompts: List[str],
    product_images: Sequence[ImageInput],
    details: Dict[str, Any],
) -> ExecutionResult:
    recorder.record_prompts(prompts, details)
    plan = SynthesisPlan(
        tenant_id=inputs.tenant_id,
        variant_id=inputs.variant_id,
        job_id=inputs.job_id,
        workflow_key=inputs.workflow.key.value,
        prompts=prompts,
        product_images=product_images,
        model_image=inputs.model_image,
        positive_references=inputs.positive_references,
        negative_references=inputs.negative_references,
        aspect_ratio=inputs.generation_input.aspect_ratio,
        use_anchor=inputs.workflow.uses_anchor,
        skip_indices=inputs.skip_indices,
    )
    outputs = run_synthesis_loop(
        backend,
        storage,
        plan,
        anchor=inputs.initial_anchor,
        on_output=recorder.record_output,
    )
    return ExecutionResult(prompts=prompts, outputs=outputs, details=details)


def execute_inline_workflow(
    backend: InferenceBackend,
    storage: ObjectStorage,
    inputs: JobInputs,
    recorder: ExecutionRecorder,
) -> ExecutionResult:
    if inputs.resumes_prior_plan:
        logger.info("generation_prompts_reused", job_id=inputs.job_id, skipped=sorted(inputs.skip_indices))
        return _synthesize(
            backend,
            storage,
            inputs,
            recorder,
            prompts=list(inputs.prior_prompts),
            product_images=inputs.product_images,
            details=dict(inputs.prior_details),
        )

    scene = _resolve_scene(backend, inputs)
    prompts = assemble_variation_prompts(
        _prompt_context(inputs, scene),
        inputs.generation_input,
        count=inputs.generation_input.number_of_variations,
        use_anchor=inputs.workflow.uses_anchor,
    )
    return _synthesize(
        backend,
        storage,
        inputs,
        recorder,
        prompts=prompts,
        product_images=inputs.product_images,
        details=_scene_details(scene),
    )


def _garment_images(
    images: Sequence[ImageInput],
    classification: GarmentViewClassification,
    masked: Mapping[str, MaskedView],
) -> List[ImageInput]:
    garment_images = list(images)
    for view, index in ((VIEW_FRONT, classification.front_index), (VIEW_BACK, classification.back_index)):
        if index is not None and view in masked:
            garment_images[index] = masked[view].image
    return garment_images


def _front_image(
    images: Sequence[ImageInput],
    classification: GarmentViewClassification,
    masked: Mapping[str, MaskedView],
) -> ImageInput:
    if VIEW_FRONT in masked:
        return masked[VIEW_FRONT].image
    if classification.front_index is not None:
        return images[classification.front_index]
    return images[0]


def _resume_apparel_plan(
    backend: InferenceBackend,
    storage: ObjectStorage,
    inputs: JobInputs,
    recorder: ExecutionRecorder,
) -> ExecutionResult:
    garment = inputs.prior_details.get("garment") or {}
    classification = GarmentViewClassification.model_validate(garment.get("classification") or {})
    garment_images = list(inputs.product_images)
    for view, index in ((VIEW_FRONT, classification.front_index), (VIEW_BACK, classification.back_index)):
        if index is not None and view in inputs.prior_masked_images and index < len(garment_images):
            garment_images[index] = inputs.prior_masked_images[view]
    logger.info("generation_prompts_reused", job_id=inputs.job_id, skipped=sorted(inputs.skip_indices))
    return _synthesize(
        backend,
        storage,
        inputs,
        recorder,
        prompts=list(inputs.prior_prompts),
        product_images=garment_images,
        details=dict(inputs.prior_details),
    )


def execute_apparel_catalog_workflow(
    backend: InferenceBackend,
    storage: ObjectStorage,
    inputs: JobInputs,
    recorder: ExecutionRecorder,
) -> ExecutionResult:
    images = inputs.product_images
    if inputs.resumes_prior_plan:
        return _resume_apparel_plan(backend, storage, inputs, recorder)

    try:
        classification = classify_garment_views(backend, images)
    except InferenceError as exc:
        raise UpstreamInferenceFailure("classify", str(exc)) from exc

    try:
        masked = mask_garment_views(
            backend,
            storage,
            images=images,
            classification=classification,
            tenant_id=inputs.tenant_id,
            variant_id=inputs.variant_id,
            job_id=inputs.job_id,
        )
    except InferenceError as exc:
        raise UpstreamInferenceFailure("mask", str(exc)) from exc
    except ObjectStorageError as exc:
        raise StorageFailure("mask", str(exc)) from exc

    try:
        analysis = analyze_garment(backend, _front_image(images, classification, masked))
        analysis_degraded = False
    except InferenceError as exc:
        record_resolution_degraded(resolver="garment_analysis", tier="analyze")
        logger.warning("resolution_degraded", resolver="garment_analysis", tier="analyze", error=str(exc))
        analysis = GarmentAnalysis()
        analysis_degraded = True

    scene = _resolve_scene(backend, inputs)
    prompts = assemble_variation_prompts(
        _prompt_context(inputs, scene, facts=analysis_facts(analysis)),
        inputs.generation_input,
        count=inputs.generation_input.number_of_variations,
        use_anchor=False,
    )
    details = _scene_details(scene)
    details["garment"] = {
        "classification": classification.model_dump(),
        "masked_views": {view: item.stored.url for view, item in sorted(masked.items())},
        "masked_objects": {
            view: {"path": item.stored.path, "mime_type": item.image.mime_type}
            for view, item in sorted(masked.items())
        },
        "analysis": analysis.model_dump(),
        "analysis_degraded": analysis_degraded,
    }
    return _synthesize(
        backend,
        storage,
        inputs,
        recorder,
        prompts=prompts,
        product_images=_garment_images(images, classification, masked),
        details=details,
    )


Executor = Callable[[InferenceBackend, ObjectStorage, JobInputs, ExecutionRecorder], ExecutionResult]

EXECUTORS: Dict[ExecutorKind, Executor] = {
    ExecutorKind.INLINE: execute_inline_workflow,
    ExecutorKind.APPAREL_MULTISTEP: execute_apparel_catalog_workflow,
}

_missing_executors = [kind.value for kind in ExecutorKind if kind not in EXECUTORS]
if _missing_executors:
    raise RuntimeError(f"executor_registry_incomplete missing={','.join(_missing_executors)}")


def execute_workflow(
    backend: InferenceBackend,
    storage: ObjectStorage,
    inputs: JobInputs,
    recorder: ExecutionRecorder,
) -> ExecutionResult:
    return EXECUTORS[inputs.workflow.executor](backend, storage, inputs, recorder)
