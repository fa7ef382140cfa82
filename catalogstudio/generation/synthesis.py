"""Per-variation image synthesis with an explicit anchor accumulator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, FrozenSet, List, Optional, Sequence, Tuple

from catalogstudio.core.logger import get_logger
from catalogstudio.core.metrics import record_inference_call
from catalogstudio.generation.errors import StorageFailure, UpstreamInferenceFailure
from catalogstudio.generation.types import clamp_variations
from catalogstudio.inference.base import ImageInput, InferenceBackend, InferenceError
from catalogstudio.storage.object_store import ObjectStorage, ObjectStorageError, StoredObject, build_output_path


logger = get_logger("catalogstudio.generation.synthesis")

ANCHOR_LABEL = "Image 1 (Reference/Anchor): keep the scene, lighting and framing consistent with this image."
MODEL_LABEL = "Model reference image:"
POSITIVE_REFERENCE_LABEL = "Style reference (emulate this look):"
NEGATIVE_REFERENCE_LABEL = "Negative reference (avoid this look):"


@dataclass(frozen=True)
class AnchorImage:
    image: ImageInput
    variation_index: int
    blob_url: str


@dataclass(frozen=True)
class SynthesisPlan:
    tenant_id: str
    variant_id: int
    job_id: str
    workflow_key: str
    prompts: Sequence[str]
    product_images: Sequence[ImageInput]
    model_image: Optional[ImageInput] = None
    positive_references: Sequence[ImageInput] = ()
    negative_references: Sequence[ImageInput] = ()
    aspect_ratio: str = "1:1"
    use_anchor: bool = False
    skip_indices: FrozenSet[int] = field(default_factory=frozenset)


@dataclass(frozen=True)
class SynthesizedOutput:
    variation_index: int
    prompt: str
    stored: StoredObject
    mime_type: str


def reference_images(plan: SynthesisPlan, *, anchor: Optional[AnchorImage]) -> List[ImageInput]:
    """Anchor first, then the model reference, then product images, then moodboard references."""

    images: List[ImageInput] = []
    if plan.use_anchor and anchor is not None:
        images.append(anchor.image.with_label(ANCHOR_LABEL))
    if plan.model_image is not None:
        images.append(plan.model_image.with_label(MODEL_LABEL))
    for position, image in enumerate(plan.product_images, start=1):
        images.append(image.with_label(f"Product image {position}:"))
    images.extend(image.with_label(POSITIVE_REFERENCE_LABEL) for image in plan.positive_references)
    images.extend(image.with_label(NEGATIVE_REFERENCE_LABEL) for image in plan.negative_references)
    return images


def synthesize_variation(
    backend: InferenceBackend,
    storage: ObjectStorage,
    plan: SynthesisPlan,
    *,
    variation_index: int,
    anchor: Optional[AnchorImage],
) -> Tuple[SynthesizedOutput, Optional[AnchorImage]]:
    prompt = plan.prompts[variation_index - 1]
    try:
        generated = backend.generate_image(
            prompt=prompt,
            images=reference_images(plan, anchor=anchor),
            aspect_ratio=plan.aspect_ratio,
        )
    except InferenceError as exc:
        record_inference_call(kind="synthesis", outcome="failed")
        raise UpstreamInferenceFailure("synthesis", f"{exc} variation={variation_index}") from exc
    record_inference_call(kind="synthesis", outcome="ok")

    path = build_output_path(
        tenant_id=plan.tenant_id,
        variant_id=plan.variant_id,
        workflow_key=plan.workflow_key,
        job_id=plan.job_id,
        variation_index=variation_index,
        mime_type=generated.mime_type,
    )
    try:
        stored = storage.put(path, generated.data, generated.mime_type)
    except ObjectStorageError as exc:
        raise StorageFailure("storage", f"{exc} variation={variation_index}") from exc

    output = SynthesizedOutput(
        variation_index=variation_index,
        prompt=prompt,
        stored=stored,
        mime_type=generated.mime_type,
    )
    next_anchor = anchor
    if plan.use_anchor and anchor is None:
        next_anchor = AnchorImage(
            image=ImageInput(data=generated.data, mime_type=generated.mime_type),
            variation_index=variation_index,
            blob_url=stored.url,
        )
    return output, next_anchor


def run_synthesis_loop(
    backend: InferenceBackend,
    storage: ObjectStorage,
    plan: SynthesisPlan,
    *,
    anchor: Optional[AnchorImage] = None,
    on_output: Optional[Callable[[SynthesizedOutput], None]] = None,
) -> List[SynthesizedOutput]:
    """Generate variations sequentially; ``on_output`` runs as soon as each one is stored."""

    count = clamp_variations(len(plan.prompts))
    outputs: List[SynthesizedOutput] = []
    for variation_index in range(1, count + 1):
        if variation_index in plan.skip_indices:
            continue
        output, anchor = synthesize_variation(
            backend,
            storage,
            plan,
            variation_index=variation_index,
            anchor=anchor,
        )
        outputs.append(output)
        if on_output is not None:
            on_output(output)
        logger.info(
            "generation_variation_stored",
            job_id=plan.job_id,
            variation_index=variation_index,
            blob_url=output.stored.url,
        )
    return outputs
