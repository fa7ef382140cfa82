"""Job execution: claim, rehydrate inputs, run the workflow executor and record outcomes."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
import json
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from catalogstudio.core.config import get_settings
from catalogstudio.core.logger import get_logger, job_log_context
from catalogstudio.core.metrics import record_job_finished
from catalogstudio.generation.errors import PipelineStageError, StorageFailure
from catalogstudio.generation.executors import JobInputs, execute_workflow
from catalogstudio.generation.jobs import job_input, job_prompts, list_job_outputs
from catalogstudio.generation.moodboard import MoodboardSnapshot, StyleEnrichment
from catalogstudio.generation.synthesis import AnchorImage, SynthesizedOutput
from catalogstudio.generation.types import JobStatus
from catalogstudio.generation.workflows import get_workflow
from catalogstudio.inference.base import ImageInput, InferenceBackend
from catalogstudio.inference.factory import get_inference_backend
from catalogstudio.media.fetcher import ImageFetcher, ImageFetchError
from catalogstudio.media.uploads import UploadReferenceError, load_uploaded_files
from catalogstudio.storage.db import get_session_factory
from catalogstudio.storage.models import GenerationJob, GenerationOutput, UploadedFile
from catalogstudio.storage.object_store import ObjectStorage, ObjectStorageError, get_object_storage


logger = get_logger("catalogstudio.generation.worker")


def _json_dumps(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, sort_keys=True)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def default_image_fetcher() -> ImageFetcher:
    settings = get_settings()
    return ImageFetcher(
        request_origin=settings.request_origin,
        timeout_seconds=settings.image_fetch_timeout_seconds,
    )


class _JobRecorder:
    def __init__(self, session: Session, job: GenerationJob) -> None:
        self._session = session
        self._job = job

    def record_prompts(self, prompts: Sequence[str], details: Mapping[str, Any]) -> None:
        payload = job_input(self._job)
        payload["pipeline"] = dict(details)
        self._job.prompts_json = _json_dumps(list(prompts))
        self._job.input_json = _json_dumps(payload)
        self._job.updated_at = _now_utc()
        self._session.commit()

    def record_output(self, output: SynthesizedOutput) -> None:
        self._session.add(
            GenerationOutput(
                tenant_id=self._job.tenant_id,
                job_id=self._job.id,
                variant_id=self._job.variant_id,
                folder_id=self._job.target_folder_id,
                variation_index=output.variation_index,
                blob_url=output.stored.url,
                storage_path=output.stored.path,
                mime_type=output.mime_type,
                size_bytes=output.stored.size_bytes,
                sha256=output.stored.sha256,
                prompt_text=output.prompt,
            )
        )
        self._job.updated_at = _now_utc()
        self._session.commit()


def _claim_job(session: Session, job_id: str) -> bool:
    now = _now_utc()
    result = session.execute(
        update(GenerationJob)
        .where(GenerationJob.id == job_id, GenerationJob.status == JobStatus.QUEUED.value)
        .values(
            status=JobStatus.RUNNING.value,
            started_at=now,
            updated_at=now,
            attempts=GenerationJob.attempts + 1,
        )
    )
    session.commit()
    return result.rowcount == 1


def _fetch_uploads(
    fetcher: ImageFetcher,
    files: Mapping[int, UploadedFile],
    file_ids: Sequence[int],
) -> List[ImageInput]:
    return [fetcher.fetch_image(files[file_id].blob_url) for file_id in file_ids]


def _load_inputs(
    session: Session,
    job: GenerationJob,
    *,
    storage: ObjectStorage,
    fetcher: ImageFetcher,
) -> JobInputs:
    payload = job_input(job)
    workflow = get_workflow(job.schema_key)
    generation_input = workflow.validate_input(payload.get("input") or {})

    snapshot_payload = payload.get("moodboard_snapshot")
    snapshot = MoodboardSnapshot.from_payload(snapshot_payload) if snapshot_payload else None
    style = StyleEnrichment(snapshot=snapshot, style_appendix=str(payload.get("style_appendix") or ""))

    product_ids = [int(item) for item in payload.get("product_image_file_ids") or []]
    model_id = payload.get("model_image_file_id")
    background_id = payload.get("background_image_file_id")
    referenced = list(product_ids)
    referenced.extend(int(item) for item in (model_id, background_id) if item is not None)
    referenced.extend(style.positive_reference_ids)
    referenced.extend(style.negative_reference_ids)
    files = load_uploaded_files(session, tenant_id=job.tenant_id, file_ids=referenced)

    existing = list_job_outputs(session, job_id=job.id)
    anchor: Optional[AnchorImage] = None
    if workflow.uses_anchor:
        first = next((item for item in existing if item.variation_index == 1), None)
        if first is not None:
            anchor = AnchorImage(
                image=ImageInput(data=storage.read(first.storage_path), mime_type=first.mime_type),
                variation_index=1,
                blob_url=first.blob_url,
            )

    prior_prompts: List[str] = []
    prior_details: Dict[str, Any] = {}
    prior_masked: Dict[str, ImageInput] = {}
    stored_prompts = job_prompts(job)
    if existing and len(stored_prompts) == job.variation_count:
        prior_prompts = stored_prompts
        pipeline = payload.get("pipeline")
        prior_details = dict(pipeline) if isinstance(pipeline, dict) else {}
        masked_objects = (prior_details.get("garment") or {}).get("masked_objects") or {}
        for view, stored in masked_objects.items():
            prior_masked[view] = ImageInput(data=storage.read(stored["path"]), mime_type=stored["mime_type"])

    model_image: Optional[ImageInput] = None
    if model_id is not None and generation_input.model_enabled:
        model_image = _fetch_uploads(fetcher, files, [int(model_id)])[0]

    return JobInputs(
        job_id=job.id,
        tenant_id=job.tenant_id,
        variant_id=job.variant_id,
        workflow=workflow,
        generation_input=generation_input,
        style=style,
        product_title=str(payload.get("product_title") or ""),
        product_images=_fetch_uploads(fetcher, files, product_ids),
        model_image=model_image,
        background_image=(
            _fetch_uploads(fetcher, files, [int(background_id)])[0] if background_id is not None else None
        ),
        positive_references=_fetch_uploads(fetcher, files, style.positive_reference_ids),
        negative_references=_fetch_uploads(fetcher, files, style.negative_reference_ids),
        skip_indices=frozenset(item.variation_index for item in existing),
        initial_anchor=anchor,
        prior_prompts=prior_prompts,
        prior_details=prior_details,
        prior_masked_images=prior_masked,
    )


def _finish(session: Session, job: GenerationJob, *, status: str, stage: Optional[str], message: Optional[str]) -> None:
    now = _now_utc()
    job.status = status
    job.failed_stage = stage
    job.error_message = message
    job.finished_at = now
    job.updated_at = now
    session.commit()
    record_job_finished(workflow_key=job.schema_key, status=status)


def run_generation_job(
    session: Session,
    job_id: str,
    *,
    backend: Optional[InferenceBackend] = None,
    storage: Optional[ObjectStorage] = None,
    fetcher: Optional[ImageFetcher] = None,
) -> GenerationJob:
    """Run one queued job to a terminal status. Outputs already stored are kept on failure."""

    if not _claim_job(session, job_id):
        job = session.get(GenerationJob, job_id)
        if job is None:
            raise LookupError("Generation job not found")
        logger.info("generation_job_not_claimed", job_id=job_id, status=job.status)
        return job

    job = session.get(GenerationJob, job_id, populate_existing=True)
    if job is None:
        raise LookupError("Generation job not found")
    backend = backend or get_inference_backend()
    storage = storage or get_object_storage()
    fetcher = fetcher or default_image_fetcher()

    with job_log_context(job_id=job.id, tenant_id=job.tenant_id):
        logger.info("generation_job_started", schema_key=job.schema_key, attempt=job.attempts)
        try:
            try:
                inputs = _load_inputs(session, job, storage=storage, fetcher=fetcher)
            except (ImageFetchError, UploadReferenceError, ObjectStorageError) as exc:
                raise StorageFailure("fetch", str(exc)) from exc
            result = execute_workflow(backend, storage, inputs, _JobRecorder(session, job))
        except PipelineStageError as exc:
            session.rollback()
            _finish(session, job, status=JobStatus.FAILED.value, stage=exc.stage, message=str(exc))
            logger.warning("generation_job_failed", stage=exc.stage, error=str(exc))
            return job
        except Exception as exc:
            session.rollback()
            _finish(session, job, status=JobStatus.FAILED.value, stage="internal", message=str(exc))
            logger.exception("generation_job_crashed", error=str(exc))
            return job

    stored_indices = {item.variation_index for item in list_job_outputs(session, job_id=job.id)}
    missing = [index for index in range(1, job.variation_count + 1) if index not in stored_indices]
    if missing:
        _finish(
            session,
            job,
            status=JobStatus.FAILED.value,
            stage="synthesis",
            message=f"missing_outputs indices={','.join(str(item) for item in missing)}",
        )
        return job

    _finish(session, job, status=JobStatus.READY.value, stage=None, message=None)
    logger.info("generation_job_ready", job_id=job.id, outputs=len(result.outputs))
    return job


def select_runnable_jobs(session: Session, *, limit: int, max_running_per_tenant: int) -> List[str]:
    """Oldest queued jobs first, skipping tenants already at their running cap."""

    running_rows = session.execute(
        select(GenerationJob.tenant_id, func.count(GenerationJob.id))
        .where(GenerationJob.status == JobStatus.RUNNING.value)
        .group_by(GenerationJob.tenant_id)
    ).all()
    running: Dict[str, int] = {tenant_id: int(count) for tenant_id, count in running_rows}

    queued = session.execute(
        select(GenerationJob.id, GenerationJob.tenant_id)
        .where(GenerationJob.status == JobStatus.QUEUED.value)
        .order_by(GenerationJob.created_at.asc(), GenerationJob.id.asc())
    ).all()
    selected: List[str] = []
    for job_id, tenant_id in queued:
        if len(selected) >= limit:
            break
        if running.get(tenant_id, 0) >= max_running_per_tenant:
            continue
        running[tenant_id] = running.get(tenant_id, 0) + 1
        selected.append(job_id)
    return selected


def process_queued_jobs(
    session_factory: Optional[Callable[[], Session]] = None,
    *,
    limit: Optional[int] = None,
    max_workers: Optional[int] = None,
    backend: Optional[InferenceBackend] = None,
    storage: Optional[ObjectStorage] = None,
    fetcher: Optional[ImageFetcher] = None,
) -> List[str]:
    settings = get_settings()
    factory = session_factory or get_session_factory()

    with factory() as session:
        job_ids = select_runnable_jobs(
            session,
            limit=limit or settings.worker_batch_size,
            max_running_per_tenant=settings.generation_max_active_jobs_per_tenant,
        )
    if not job_ids:
        return []

    def _run(job_id: str) -> str:
        with factory() as job_session:
            job = run_generation_job(job_session, job_id, backend=backend, storage=storage, fetcher=fetcher)
            return job.status

    with ThreadPoolExecutor(max_workers=max_workers or settings.worker_concurrency) as pool:
        statuses = list(pool.map(_run, job_ids))

    logger.info("generation_worker_pass", job_ids=job_ids, statuses=statuses)
    return job_ids
