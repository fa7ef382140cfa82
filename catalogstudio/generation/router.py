"""Generation API routes: admission, job/batch inspection, retry and credits."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from catalogstudio.auth.dependencies import require_tenant_role
from catalogstudio.auth.jwt import AuthContext
from catalogstudio.billing.credits import get_credit_balance
from catalogstudio.billing.metering import MeteringClient, get_metering_client
from catalogstudio.core.config import get_settings
from catalogstudio.generation.admission import (
    REASON_CONCURRENCY_LIMIT,
    AdmissionResult,
    VariantRequest,
    retry_generation_job,
    submit_batch,
    submit_generation,
)
from catalogstudio.generation.errors import AdmissionDeniedError, InputValidationError
from catalogstudio.generation.jobs import get_batch_progress, get_job, job_prompts, list_job_outputs
from catalogstudio.generation.moodboard_analysis import refresh_moodboard_summaries
from catalogstudio.inference.base import InferenceBackend
from catalogstudio.inference.factory import get_inference_backend
from catalogstudio.media.fetcher import ImageFetcher, ImageFetchError
from catalogstudio.media.uploads import UploadReferenceError
from catalogstudio.schemas.generation import (
    AdmissionResponse,
    AdmittedJobItem,
    CreditBalanceResponse,
    GenerationBatchCreateRequest,
    GenerationBatchResponse,
    GenerationJobCreateRequest,
    GenerationJobResponse,
    GenerationOutputItem,
    MoodboardSummariesResponse,
    UsageBalanceItem,
)
from catalogstudio.storage.db import get_session
from catalogstudio.storage.models import GenerationJob


router = APIRouter(prefix="/generation", tags=["generation"])

_member_roles = require_tenant_role("owner", "admin", "member")


def get_request_image_fetcher(request: Request) -> ImageFetcher:
    """Fetcher that forwards the caller's credentials to same-origin upload URLs."""

    settings = get_settings()
    authorization = request.headers.get("authorization")
    return ImageFetcher(
        request_origin=settings.request_origin,
        auth_headers={"Authorization": authorization} if authorization else None,
        timeout_seconds=settings.image_fetch_timeout_seconds,
    )


def _invalid_input(exc: InputValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"error": "invalid_input", "message": str(exc), "field": exc.field},
    )


def _admission_denied(exc: AdmissionDeniedError) -> HTTPException:
    status_code = (
        status.HTTP_429_TOO_MANY_REQUESTS
        if exc.reason == REASON_CONCURRENCY_LIMIT
        else status.HTTP_402_PAYMENT_REQUIRED
    )
    return HTTPException(status_code=status_code, detail=exc.to_payload())


def _admission_response(result: AdmissionResult) -> AdmissionResponse:
    return AdmissionResponse(
        tenant_id=result.tenant_id,
        jobs=[
            AdmittedJobItem(
                job_id=job.job_id,
                variant_id=job.variant_id,
                product_id=job.product_id,
                schema_key=job.schema_key,
                variation_count=job.variation_count,
                target_folder_id=job.target_folder_id,
            )
            for job in result.jobs
        ],
        reservation_id=result.reservation.reservation_id,
        is_overage=result.is_overage,
        remaining=result.remaining,
        batch_id=result.batch_id,
        shared_folder_id=result.shared_folder_id,
    )


def _job_response(session: Session, job: GenerationJob) -> GenerationJobResponse:
    return GenerationJobResponse(
        id=job.id,
        tenant_id=job.tenant_id,
        status=job.status,
        schema_key=job.schema_key,
        product_id=job.product_id,
        variant_id=job.variant_id,
        batch_id=job.batch_id,
        variation_count=job.variation_count,
        prompts=job_prompts(job),
        outputs=[
            GenerationOutputItem(
                id=output.id,
                variation_index=output.variation_index,
                blob_url=output.blob_url,
                mime_type=output.mime_type,
                prompt=output.prompt_text,
                created_at=output.created_at,
            )
            for output in list_job_outputs(session, job_id=job.id)
        ],
        is_overage=job.is_overage,
        failed_stage=job.failed_stage,
        error_message=job.error_message,
        attempts=job.attempts,
        created_at=job.created_at,
        started_at=job.started_at,
        finished_at=job.finished_at,
    )


@router.post("/jobs", response_model=AdmissionResponse, status_code=status.HTTP_201_CREATED)
def create_generation_job(
    payload: GenerationJobCreateRequest,
    auth: AuthContext = Depends(_member_roles),
    session: Session = Depends(get_session),
    metering: MeteringClient = Depends(get_metering_client),
) -> AdmissionResponse:
    try:
        result = submit_generation(
            session,
            tenant_id=auth.tenant_id,
            variant_id=payload.variant_id,
            payload={
                **payload.settings.model_dump(exclude_none=True),
                "product_images": payload.product_images,
            },
            request_origin=get_settings().request_origin,
            metering=metering,
        )
    except InputValidationError as exc:
        raise _invalid_input(exc) from exc
    except AdmissionDeniedError as exc:
        raise _admission_denied(exc) from exc
    return _admission_response(result)


@router.post("/batches", response_model=AdmissionResponse, status_code=status.HTTP_201_CREATED)
def create_generation_batch(
    payload: GenerationBatchCreateRequest,
    auth: AuthContext = Depends(_member_roles),
    session: Session = Depends(get_session),
    metering: MeteringClient = Depends(get_metering_client),
) -> AdmissionResponse:
    try:
        result = submit_batch(
            session,
            tenant_id=auth.tenant_id,
            name=payload.name,
            variants=[
                VariantRequest(variant_id=item.variant_id, product_images=list(item.product_images))
                for item in payload.variants
            ],
            settings_payload=payload.settings.model_dump(exclude_none=True),
            request_origin=get_settings().request_origin,
            metering=metering,
        )
    except InputValidationError as exc:
        raise _invalid_input(exc) from exc
    except AdmissionDeniedError as exc:
        raise _admission_denied(exc) from exc
    return _admission_response(result)


@router.get("/jobs/{job_id}", response_model=GenerationJobResponse)
def read_generation_job(
    job_id: str,
    auth: AuthContext = Depends(_member_roles),
    session: Session = Depends(get_session),
) -> GenerationJobResponse:
    try:
        job = get_job(session, tenant_id=auth.tenant_id, job_id=job_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _job_response(session, job)


@router.post("/jobs/{job_id}/retry", response_model=GenerationJobResponse)
def retry_job(
    job_id: str,
    auth: AuthContext = Depends(_member_roles),
    session: Session = Depends(get_session),
) -> GenerationJobResponse:
    try:
        job = retry_generation_job(session, tenant_id=auth.tenant_id, job_id=job_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InputValidationError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except AdmissionDeniedError as exc:
        raise _admission_denied(exc) from exc
    return _job_response(session, job)


@router.get("/batches/{batch_id}", response_model=GenerationBatchResponse)
def read_generation_batch(
    batch_id: str,
    auth: AuthContext = Depends(_member_roles),
    session: Session = Depends(get_session),
) -> GenerationBatchResponse:
    try:
        progress = get_batch_progress(session, tenant_id=auth.tenant_id, batch_id=batch_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return GenerationBatchResponse(
        id=progress.batch.id,
        name=progress.batch.name,
        status=progress.status,
        counts=progress.counts,
        job_ids=progress.job_ids,
        variant_count=progress.batch.variant_count,
        image_count=progress.batch.image_count,
        shared_folder_id=progress.batch.shared_folder_id,
        created_at=progress.batch.created_at,
    )


@router.get("/credits", response_model=CreditBalanceResponse)
def read_credit_balance(
    auth: AuthContext = Depends(_member_roles),
    session: Session = Depends(get_session),
) -> CreditBalanceResponse:
    balance = get_credit_balance(session, tenant_id=auth.tenant_id)
    if balance is None:
        return CreditBalanceResponse(tenant_id=auth.tenant_id, has_subscription=False)
    return CreditBalanceResponse(
        tenant_id=auth.tenant_id,
        has_subscription=True,
        plan_tier=balance.plan_tier,
        period_end=balance.period_end,
        days_remaining=balance.days_remaining,
        image=UsageBalanceItem(**balance.image.__dict__),
        text=UsageBalanceItem(**balance.text.__dict__),
        overage_spent_cents=balance.overage_spent_cents,
    )


@router.post("/moodboards/{moodboard_id}/analyze", response_model=MoodboardSummariesResponse)
def analyze_moodboard(
    moodboard_id: int,
    auth: AuthContext = Depends(require_tenant_role("owner", "admin")),
    session: Session = Depends(get_session),
    backend: InferenceBackend = Depends(get_inference_backend),
    fetcher: ImageFetcher = Depends(get_request_image_fetcher),
) -> MoodboardSummariesResponse:
    try:
        summaries = refresh_moodboard_summaries(
            session,
            tenant_id=auth.tenant_id,
            moodboard_id=moodboard_id,
            backend=backend,
            fetcher=fetcher,
            max_assets_per_kind=get_settings().moodboard_max_assets_per_kind,
        )
    except InputValidationError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except UploadReferenceError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ImageFetchError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return MoodboardSummariesResponse(moodboard_id=moodboard_id, summaries=summaries)
