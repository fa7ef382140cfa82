"""Job admission: validation, concurrency valve, credit gate and job fan-out."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from catalogstudio.billing.credits import (
    CreditReservation,
    check_credits,
    deduct_credits,
    report_overage_usage,
)
from catalogstudio.billing.metering import MeteringClient, get_metering_client
from catalogstudio.billing.plans import USAGE_TYPE_IMAGE
from catalogstudio.core.config import get_settings
from catalogstudio.core.logger import get_logger
from catalogstudio.core.metrics import record_admission_denied, record_jobs_admitted
from catalogstudio.generation.errors import AdmissionDeniedError, InputValidationError
from catalogstudio.generation.moodboard import StyleEnrichment, resolve_style
from catalogstudio.generation.types import ACTIVE_JOB_STATUSES, GenerationInput, JobStatus
from catalogstudio.generation.workflows import Workflow, resolve_workflow
from catalogstudio.media.uploads import UploadReferenceError, load_uploaded_files, require_upload_file_ids
from catalogstudio.storage.models import (
    GenerationBatch,
    GenerationJob,
    OutputFolder,
    Product,
    ProductVariant,
)


logger = get_logger("catalogstudio.generation.admission")

REASON_CONCURRENCY_LIMIT = "concurrency_limit"


@dataclass(frozen=True)
class VariantRequest:
    variant_id: int
    product_images: List[str]


@dataclass(frozen=True)
class AdmittedJob:
    job_id: str
    variant_id: int
    product_id: int
    schema_key: str
    variation_count: int
    prompts: List[str]
    target_folder_id: str


@dataclass(frozen=True)
class AdmissionResult:
    tenant_id: str
    jobs: List[AdmittedJob]
    reservation: CreditReservation
    remaining: int
    batch_id: Optional[str] = None
    shared_folder_id: Optional[str] = None
    meter_event_id: Optional[str] = None

    @property
    def is_overage(self) -> bool:
        return self.reservation.is_overage


@dataclass(frozen=True)
class _PreparedVariant:
    variant: ProductVariant
    product: Product
    workflow: Workflow
    generation_input: GenerationInput
    product_image_file_ids: List[int]
    model_image_file_id: Optional[int]
    background_image_file_id: Optional[int]


def _json_dumps(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, sort_keys=True)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def count_active_jobs(session: Session, *, tenant_id: str) -> int:
    total = session.scalar(
        select(func.count(GenerationJob.id)).where(
            GenerationJob.tenant_id == tenant_id,
            GenerationJob.status.in_(ACTIVE_JOB_STATUSES),
        )
    )
    return int(total or 0)


def _deny(reason: str, *, remaining: Optional[int], required: Optional[int]) -> AdmissionDeniedError:
    record_admission_denied(reason=reason)
    logger.info("generation_admission_denied", reason=reason, remaining=remaining, required=required)
    return AdmissionDeniedError(reason, remaining=remaining, required=required)


def _load_variant(session: Session, *, tenant_id: str, variant_id: int) -> tuple[ProductVariant, Product]:
    row = session.execute(
        select(ProductVariant, Product)
        .join(Product, Product.id == ProductVariant.product_id)
        .where(
            ProductVariant.id == variant_id,
            ProductVariant.tenant_id == tenant_id,
            ProductVariant.deleted_at.is_(None),
            Product.deleted_at.is_(None),
        )
    ).first()
    if row is None:
        raise InputValidationError(f"variant_not_found variant_id={variant_id}", field="variant_id")
    return row[0], row[1]


def _single_upload_id(reference: Optional[str], *, field: str, request_origin: str) -> Optional[int]:
    if reference is None:
        return None
    try:
        return require_upload_file_ids([reference], request_origin=request_origin)[0]
    except UploadReferenceError as exc:
        raise InputValidationError(str(exc), field=field) from exc


def _prepare_variant(
    session: Session,
    *,
    tenant_id: str,
    request: VariantRequest,
    settings_payload: Mapping[str, Any],
    request_origin: str,
) -> _PreparedVariant:
    variant, product = _load_variant(session, tenant_id=tenant_id, variant_id=request.variant_id)
    workflow = resolve_workflow(product.category, settings_payload.get("purpose"))
    generation_input = workflow.validate_input({**settings_payload, "product_images": request.product_images})

    try:
        product_file_ids = require_upload_file_ids(generation_input.product_images, request_origin=request_origin)
    except UploadReferenceError as exc:
        raise InputValidationError(str(exc), field="product_images") from exc
    model_file_id = _single_upload_id(generation_input.model_image, field="model_image", request_origin=request_origin)
    background_file_id = _single_upload_id(
        generation_input.background_image,
        field="background_image",
        request_origin=request_origin,
    )

    referenced = list(product_file_ids)
    referenced.extend(item for item in (model_file_id, background_file_id) if item is not None)
    try:
        load_uploaded_files(session, tenant_id=tenant_id, file_ids=referenced)
    except UploadReferenceError as exc:
        raise InputValidationError(str(exc), field="product_images") from exc

    return _PreparedVariant(
        variant=variant,
        product=product,
        workflow=workflow,
        generation_input=generation_input,
        product_image_file_ids=product_file_ids,
        model_image_file_id=model_file_id,
        background_image_file_id=background_file_id,
    )


def _product_title(product: Product, variant: ProductVariant) -> str:
    if variant.title and variant.title.strip().lower() != "default":
        return f"{product.title} - {variant.title}"
    return product.title


def _job_input_payload(prepared: _PreparedVariant, style: StyleEnrichment) -> Dict[str, Any]:
    return {
        "schema_key": prepared.workflow.key.value,
        "input": prepared.generation_input.model_dump(mode="json"),
        "product_title": _product_title(prepared.product, prepared.variant),
        "product_image_file_ids": prepared.product_image_file_ids,
        "model_image_file_id": prepared.model_image_file_id,
        "background_image_file_id": prepared.background_image_file_id,
        "moodboard_snapshot": style.snapshot.to_payload() if style.snapshot is not None else None,
        "style_appendix": style.style_appendix,
    }


def _admit(
    session: Session,
    *,
    tenant_id: str,
    requests: Sequence[VariantRequest],
    settings_payload: Mapping[str, Any],
    batch_name: Optional[str],
    request_origin: Optional[str],
    metering: Optional[MeteringClient],
) -> AdmissionResult:
    settings = get_settings()
    origin = request_origin if request_origin is not None else settings.request_origin

    if not requests:
        raise InputValidationError("variants_required", field="variants")
    if len(requests) > settings.generation_max_batch_variants:
        raise InputValidationError(
            f"too_many_variants max={settings.generation_max_batch_variants}",
            field="variants",
        )
    variant_ids = [item.variant_id for item in requests]
    if len(set(variant_ids)) != len(variant_ids):
        raise InputValidationError("duplicate_variant_ids", field="variants")

    prepared = [
        _prepare_variant(
            session,
            tenant_id=tenant_id,
            request=request,
            settings_payload=settings_payload,
            request_origin=origin,
        )
        for request in requests
    ]
    first_input = prepared[0].generation_input
    style = resolve_style(
        session,
        tenant_id=tenant_id,
        moodboard_id=first_input.moodboard_id,
        strength=first_input.moodboard_strength.value,
        max_assets_per_kind=settings.moodboard_max_assets_per_kind,
    )
    total_units = sum(item.generation_input.number_of_variations for item in prepared)

    active = count_active_jobs(session, tenant_id=tenant_id)
    if active >= settings.generation_max_active_jobs_per_tenant:
        raise _deny(REASON_CONCURRENCY_LIMIT, remaining=None, required=total_units)

    check = check_credits(session, tenant_id=tenant_id, usage_type=USAGE_TYPE_IMAGE, count=total_units)
    if not check.allowed:
        raise _deny(check.reason or "no_credits", remaining=check.remaining, required=total_units)

    try:
        batch: Optional[GenerationBatch] = None
        shared_folder: Optional[OutputFolder] = None
        if batch_name is not None:
            shared_folder = OutputFolder(tenant_id=tenant_id, scope_type="batch", name=batch_name)
            session.add(shared_folder)
            session.flush()
            batch = GenerationBatch(
                tenant_id=tenant_id,
                name=batch_name,
                settings_json=_json_dumps(dict(settings_payload)),
                variant_count=len(prepared),
                image_count=total_units,
                shared_folder_id=shared_folder.id,
            )
            session.add(batch)
            session.flush()
            shared_folder.batch_id = batch.id

        reservation = deduct_credits(
            session,
            check=check,
            reference_type="generation_batch" if batch is not None else "generation_job",
            reference_id=batch.id if batch is not None else None,
            payload={"variant_ids": variant_ids},
        )

        admitted: List[AdmittedJob] = []
        for item in prepared:
            title = _product_title(item.product, item.variant)
            folder = OutputFolder(
                tenant_id=tenant_id,
                scope_type="variant",
                name=title,
                product_id=item.product.id,
                variant_id=item.variant.id,
                batch_id=batch.id if batch is not None else None,
            )
            session.add(folder)
            session.flush()

            prompts = item.workflow.build_prompts(
                item.generation_input,
                product_title=title,
                style_appendix=style.style_appendix,
            )
            variation_count = item.generation_input.number_of_variations
            if len(prompts) != variation_count:
                raise RuntimeError("prompt_count_mismatch")

            job = GenerationJob(
                tenant_id=tenant_id,
                product_id=item.product.id,
                variant_id=item.variant.id,
                batch_id=batch.id if batch is not None else None,
                status=JobStatus.QUEUED.value,
                schema_key=item.workflow.key.value,
                input_json=_json_dumps(_job_input_payload(item, style)),
                variation_count=variation_count,
                prompts_json=_json_dumps(prompts),
                credit_reservation_id=reservation.reservation_id,
                is_overage=reservation.is_overage,
                target_folder_id=folder.id,
                shared_folder_id=shared_folder.id if shared_folder is not None else None,
            )
            session.add(job)
            session.flush()
            admitted.append(
                AdmittedJob(
                    job_id=job.id,
                    variant_id=item.variant.id,
                    product_id=item.product.id,
                    schema_key=job.schema_key,
                    variation_count=variation_count,
                    prompts=prompts,
                    target_folder_id=folder.id,
                )
            )
        session.commit()
    except Exception:
        session.rollback()
        raise

    meter_event_id = report_overage_usage(
        session,
        reservation=reservation,
        metering=metering if metering is not None else get_metering_client(),
    )
    for job in admitted:
        record_jobs_admitted(workflow_key=job.schema_key)
    logger.info(
        "generation_jobs_admitted",
        tenant_id=tenant_id,
        batch_id=batch.id if batch is not None else None,
        job_count=len(admitted),
        total_units=total_units,
        is_overage=reservation.is_overage,
        reservation_id=reservation.reservation_id,
    )
    return AdmissionResult(
        tenant_id=tenant_id,
        jobs=admitted,
        reservation=reservation,
        remaining=check.remaining,
        batch_id=batch.id if batch is not None else None,
        shared_folder_id=shared_folder.id if shared_folder is not None else None,
        meter_event_id=meter_event_id,
    )


def submit_generation(
    session: Session,
    *,
    tenant_id: str,
    variant_id: int,
    payload: Mapping[str, Any],
    request_origin: Optional[str] = None,
    metering: Optional[MeteringClient] = None,
) -> AdmissionResult:
    """Admit one job for a single variant."""

    return _admit(
        session,
        tenant_id=tenant_id,
        requests=[VariantRequest(variant_id=variant_id, product_images=list(payload.get("product_images") or []))],
        settings_payload={key: value for key, value in payload.items() if key != "product_images"},
        batch_name=None,
        request_origin=request_origin,
        metering=metering,
    )


def submit_batch(
    session: Session,
    *,
    tenant_id: str,
    name: str,
    variants: Sequence[VariantRequest],
    settings_payload: Mapping[str, Any],
    request_origin: Optional[str] = None,
    metering: Optional[MeteringClient] = None,
) -> AdmissionResult:
    """Admit one job per variant under a shared batch and output folder."""

    cleaned_name = (name or "").strip()
    if not cleaned_name:
        raise InputValidationError("batch_name_required", field="name")
    return _admit(
        session,
        tenant_id=tenant_id,
        requests=variants,
        settings_payload=settings_payload,
        batch_name=cleaned_name,
        request_origin=request_origin,
        metering=metering,
    )


def retry_generation_job(session: Session, *, tenant_id: str, job_id: str) -> GenerationJob:
    """Re-queue a failed job. Existing outputs are kept and their indices are skipped on rerun."""

    job = session.scalar(
        select(GenerationJob).where(GenerationJob.tenant_id == tenant_id, GenerationJob.id == job_id)
    )
    if job is None:
        raise LookupError("Generation job not found")
    if job.status != JobStatus.FAILED.value:
        raise InputValidationError(f"job_not_retryable status={job.status}", field="status")

    settings = get_settings()
    if count_active_jobs(session, tenant_id=tenant_id) >= settings.generation_max_active_jobs_per_tenant:
        raise _deny(REASON_CONCURRENCY_LIMIT, remaining=None, required=None)

    job.status = JobStatus.QUEUED.value
    job.failed_stage = None
    job.error_message = None
    job.finished_at = None
    job.updated_at = _now_utc()
    session.commit()
    logger.info("generation_job_requeued", tenant_id=tenant_id, job_id=job_id, attempts=job.attempts)
    return job
