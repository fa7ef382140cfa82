"""Read-side helpers for generation jobs and batches."""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import Any, Dict, Iterable, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from catalogstudio.generation.types import JobStatus
from catalogstudio.storage.models import GenerationBatch, GenerationJob, GenerationOutput


BATCH_STATUS_PARTIALLY_FAILED = "partially_failed"


@dataclass(frozen=True)
class BatchProgress:
    batch: GenerationBatch
    status: str
    counts: Dict[str, int]
    job_ids: List[str]


def job_input(job: GenerationJob) -> Dict[str, Any]:
    payload = json.loads(job.input_json or "{}")
    return payload if isinstance(payload, dict) else {}


def job_prompts(job: GenerationJob) -> List[str]:
    payload = json.loads(job.prompts_json or "[]")
    return [str(item) for item in payload] if isinstance(payload, list) else []


def get_job(session: Session, *, tenant_id: str, job_id: str) -> GenerationJob:
    job = session.scalar(
        select(GenerationJob).where(GenerationJob.tenant_id == tenant_id, GenerationJob.id == job_id)
    )
    if job is None:
        raise LookupError("Generation job not found")
    return job


def list_job_outputs(session: Session, *, job_id: str) -> List[GenerationOutput]:
    return list(
        session.scalars(
            select(GenerationOutput)
            .where(GenerationOutput.job_id == job_id)
            .order_by(GenerationOutput.variation_index.asc())
        ).all()
    )


def derive_batch_status(statuses: Iterable[str]) -> str:
    """Aggregate member job statuses; nothing about the batch status is stored."""

    values = list(statuses)
    if not values:
        return JobStatus.QUEUED.value
    if all(value == JobStatus.QUEUED.value for value in values):
        return JobStatus.QUEUED.value
    if any(value in (JobStatus.QUEUED.value, JobStatus.RUNNING.value) for value in values):
        return JobStatus.RUNNING.value
    if all(value == JobStatus.READY.value for value in values):
        return JobStatus.READY.value
    if all(value == JobStatus.FAILED.value for value in values):
        return JobStatus.FAILED.value
    return BATCH_STATUS_PARTIALLY_FAILED


def get_batch_progress(session: Session, *, tenant_id: str, batch_id: str) -> BatchProgress:
    batch = session.scalar(
        select(GenerationBatch).where(GenerationBatch.tenant_id == tenant_id, GenerationBatch.id == batch_id)
    )
    if batch is None:
        raise LookupError("Generation batch not found")

    rows = session.execute(
        select(GenerationJob.id, GenerationJob.status)
        .where(GenerationJob.batch_id == batch_id)
        .order_by(GenerationJob.created_at.asc(), GenerationJob.id.asc())
    ).all()
    counts = {status.value: 0 for status in JobStatus}
    for _, status in rows:
        counts[status] = counts.get(status, 0) + 1
    return BatchProgress(
        batch=batch,
        status=derive_batch_status(status for _, status in rows),
        counts=counts,
        job_ids=[job_id for job_id, _ in rows],
    )
