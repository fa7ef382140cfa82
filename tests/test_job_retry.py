from __future__ import annotations

from sqlalchemy import select, update

from catalogstudio.generation.admission import retry_generation_job, submit_generation
from catalogstudio.generation.jobs import job_prompts, list_job_outputs
from catalogstudio.generation.synthesis import ANCHOR_LABEL
from catalogstudio.generation.worker import process_queued_jobs, run_generation_job, select_runnable_jobs
from catalogstudio.storage.models import GenerationJob, UploadedFile
from tests.conftest import FakeInferenceBackend
from tests.test_worker_apparel import _admit_apparel_job, _apparel_backend


CHOICE = "Choose the background"


def _admit(session, seeder, metering, tenant, *, variations: int = 1) -> str:
    variant = seeder.variant(tenant.id)
    result = submit_generation(
        session,
        tenant_id=tenant.id,
        variant_id=variant.id,
        payload={"product_images": seeder.upload_refs(tenant.id, 1), "number_of_variations": variations},
        metering=metering,
    )
    return result.jobs[0].job_id


def test_failed_job_keeps_outputs_and_retry_resumes_with_stored_anchor(
    session, seeder, metering, storage, fetcher
) -> None:
    tenant = seeder.tenant()
    job_id = _admit(session, seeder, metering, tenant, variations=3)
    backend = FakeInferenceBackend(fail_image_calls={2})

    failed = run_generation_job(session, job_id, backend=backend, storage=storage, fetcher=fetcher)

    assert failed.status == "failed"
    assert failed.failed_stage == "synthesis"
    assert "variation=2" in failed.error_message
    assert [output.variation_index for output in list_job_outputs(session, job_id=job_id)] == [1]

    requeued = retry_generation_job(session, tenant_id=tenant.id, job_id=job_id)
    assert requeued.status == "queued"
    assert requeued.failed_stage is None

    done = run_generation_job(session, job_id, backend=backend, storage=storage, fetcher=fetcher)

    assert done.status == "ready"
    assert done.attempts == 2
    assert [output.variation_index for output in list_job_outputs(session, job_id=job_id)] == [1, 2, 3]
    resumed_calls = backend.image_calls[2:]
    assert len(resumed_calls) == 2
    for call in resumed_calls:
        assert call["images"][0].label == ANCHOR_LABEL
        assert call["images"][0].data == b"image-1"


def test_running_job_is_not_claimed_twice(session, seeder, metering, storage, fetcher) -> None:
    tenant = seeder.tenant()
    job_id = _admit(session, seeder, metering, tenant)
    session.execute(update(GenerationJob).where(GenerationJob.id == job_id).values(status="running"))
    session.commit()
    backend = FakeInferenceBackend()

    job = run_generation_job(session, job_id, backend=backend, storage=storage, fetcher=fetcher)

    assert job.status == "running"
    assert backend.image_calls == []


def test_unreachable_upload_fails_job_at_fetch(session, seeder, metering, storage, fetcher) -> None:
    tenant = seeder.tenant()
    job_id = _admit(session, seeder, metering, tenant)
    for uploaded in session.scalars(select(UploadedFile).where(UploadedFile.tenant_id == tenant.id)):
        uploaded.blob_url = "https://gone.test/missing.jpg"
    session.commit()
    backend = FakeInferenceBackend()

    job = run_generation_job(session, job_id, backend=backend, storage=storage, fetcher=fetcher)

    assert job.status == "failed"
    assert job.failed_stage == "fetch"
    assert backend.image_calls == []


def test_select_runnable_jobs_respects_per_tenant_running_cap(session, seeder, metering) -> None:
    busy = seeder.tenant()
    running_id = _admit(session, seeder, metering, busy)
    waiting_id = _admit(session, seeder, metering, busy)
    idle = seeder.tenant()
    idle_id = _admit(session, seeder, metering, idle)
    session.execute(update(GenerationJob).where(GenerationJob.id == running_id).values(status="running"))
    session.commit()

    assert select_runnable_jobs(session, limit=10, max_running_per_tenant=1) == [idle_id]
    assert set(select_runnable_jobs(session, limit=10, max_running_per_tenant=2)) == {waiting_id, idle_id}
    assert len(select_runnable_jobs(session, limit=1, max_running_per_tenant=2)) == 1


def test_process_queued_jobs_runs_each_job_to_terminal_status(
    session_factory, session, seeder, metering, storage, fetcher
) -> None:
    first = _admit(session, seeder, metering, seeder.tenant())
    second = _admit(session, seeder, metering, seeder.tenant(), variations=2)

    processed = process_queued_jobs(
        session_factory,
        limit=5,
        max_workers=1,
        backend=FakeInferenceBackend(),
        storage=storage,
        fetcher=fetcher,
    )

    assert set(processed) == {first, second}
    session.expire_all()
    assert session.get(GenerationJob, first).status == "ready"
    assert session.get(GenerationJob, second).status == "ready"
    assert process_queued_jobs(session_factory, max_workers=1, backend=FakeInferenceBackend()) == []


def _background_backend(description: str, **kwargs) -> FakeInferenceBackend:
    return FakeInferenceBackend(
        text_responses={
            CHOICE: {"chosen_source": "custom_instructions", "background_description": description, "confidence": 0.9}
        },
        **kwargs,
    )


def test_retry_reuses_recorded_prompts_instead_of_resolving_again(
    session, seeder, metering, storage, fetcher
) -> None:
    tenant = seeder.tenant()
    variant = seeder.variant(tenant.id)
    job_id = submit_generation(
        session,
        tenant_id=tenant.id,
        variant_id=variant.id,
        payload={
            "product_images": seeder.upload_refs(tenant.id, 1),
            "number_of_variations": 3,
            "custom_instructions": ["Shoot it on a kitchen counter"],
        },
        metering=metering,
    ).jobs[0].job_id

    first = _background_backend("White marble kitchen counter at dawn", fail_image_calls={2})
    failed = run_generation_job(session, job_id, backend=first, storage=storage, fetcher=fetcher)
    assert failed.status == "failed"
    recorded = job_prompts(failed)

    retry_generation_job(session, tenant_id=tenant.id, job_id=job_id)
    second = _background_backend("Dark walnut kitchen counter at night")
    done = run_generation_job(session, job_id, backend=second, storage=storage, fetcher=fetcher)

    assert done.status == "ready"
    assert second.text_calls == []
    assert job_prompts(done) == recorded
    outputs = list_job_outputs(session, job_id=job_id)
    assert [output.prompt_text for output in outputs] == recorded
    for output in outputs:
        assert "Background: White marble kitchen counter at dawn" in output.prompt_text
        assert "Dark walnut" not in output.prompt_text
    assert [call["prompt"] for call in second.image_calls] == recorded[1:]


def test_apparel_retry_reuses_stored_masks_and_prompts(session, seeder, metering, storage, fetcher) -> None:
    job_id = _admit_apparel_job(session, seeder, metering)
    first = _apparel_backend(fail_image_calls={4})

    failed = run_generation_job(session, job_id, backend=first, storage=storage, fetcher=fetcher)
    assert failed.status == "failed"
    assert failed.failed_stage == "synthesis"
    recorded = job_prompts(failed)

    retry_generation_job(session, tenant_id=failed.tenant_id, job_id=job_id)
    second = _apparel_backend()
    done = run_generation_job(session, job_id, backend=second, storage=storage, fetcher=fetcher)

    assert done.status == "ready"
    assert second.text_calls == []
    assert len(second.image_calls) == 1
    resumed = second.image_calls[0]
    assert resumed["prompt"] == recorded[1]
    assert [image.data for image in resumed["images"]] == [b"image-1", b"image-2"]
    assert job_prompts(done) == recorded
