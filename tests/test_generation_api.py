from __future__ import annotations

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import update

import catalogstudio.api.main as api_main
from catalogstudio.auth.jwt import AuthContext, create_access_token
from catalogstudio.billing.metering import get_metering_client
from catalogstudio.generation.router import get_request_image_fetcher
from catalogstudio.inference.factory import get_inference_backend
from catalogstudio.storage.db import get_session
from catalogstudio.storage.models import GenerationJob
from tests.conftest import FakeInferenceBackend, build_fetcher


@pytest.fixture
def backend() -> FakeInferenceBackend:
    return FakeInferenceBackend(
        text_responses={
            "Summarize the shared background style": {"summary": "Pale oak tables under diffuse daylight."},
        }
    )


@pytest.fixture
def client(session_factory, metering, backend):
    def _session_override():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    api_main.app.dependency_overrides[get_session] = _session_override
    api_main.app.dependency_overrides[get_metering_client] = lambda: metering
    api_main.app.dependency_overrides[get_inference_backend] = lambda: backend
    api_main.app.dependency_overrides[get_request_image_fetcher] = build_fetcher
    try:
        yield TestClient(api_main.app)
    finally:
        api_main.app.dependency_overrides.clear()


def _headers(tenant_id: str, *, role: str = "owner") -> dict:
    token, _ = create_access_token(AuthContext(user_id="user-1", tenant_id=tenant_id, role=role, email="a@b.test"))
    return {"Authorization": f"Bearer {token}"}


def _create_job(client, tenant_id: str, variant_id: int, refs, **settings):
    return client.post(
        "/generation/jobs",
        json={"variant_id": variant_id, "product_images": refs, "settings": settings},
        headers=_headers(tenant_id, role="member"),
    )


def test_create_and_read_job(client, seeder) -> None:
    tenant = seeder.tenant()
    variant = seeder.variant(tenant.id)
    refs = seeder.upload_refs(tenant.id, 1)

    created = _create_job(client, tenant.id, variant.id, refs, number_of_variations=2, purpose="ads")

    assert created.status_code == 201
    body = created.json()
    assert body["tenant_id"] == tenant.id
    assert body["is_overage"] is False
    assert body["remaining"] == 48
    assert body["jobs"][0]["schema_key"] == "non_apparel.ads.v1"

    job_id = body["jobs"][0]["job_id"]
    read = client.get(f"/generation/jobs/{job_id}", headers=_headers(tenant.id))
    assert read.status_code == 200
    job = read.json()
    assert job["status"] == "queued"
    assert job["variation_count"] == 2
    assert len(job["prompts"]) == 2
    assert job["outputs"] == []

    other = seeder.tenant()
    assert client.get(f"/generation/jobs/{job_id}", headers=_headers(other.id)).status_code == 404


def test_auth_is_required(client, seeder) -> None:
    tenant = seeder.tenant()
    variant = seeder.variant(tenant.id)

    response = client.post(
        "/generation/jobs",
        json={"variant_id": variant.id, "product_images": seeder.upload_refs(tenant.id, 1)},
    )
    assert response.status_code == 401

    viewer = client.get("/generation/credits", headers=_headers(tenant.id, role="viewer"))
    assert viewer.status_code == 403


def test_invalid_input_maps_to_400(client, seeder) -> None:
    tenant = seeder.tenant()
    variant = seeder.variant(tenant.id)

    response = _create_job(client, tenant.id, variant.id, ["https://cdn.example/photo.jpg"])

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["error"] == "invalid_input"
    assert detail["field"] == "product_images"


def test_request_schema_rejects_out_of_range_variations(client, seeder) -> None:
    tenant = seeder.tenant()
    variant = seeder.variant(tenant.id)

    response = _create_job(client, tenant.id, variant.id, seeder.upload_refs(tenant.id, 1), number_of_variations=11)
    assert response.status_code == 422


def test_credit_denial_maps_to_402(client, seeder) -> None:
    tenant = seeder.tenant(plan_tier=None)
    variant = seeder.variant(tenant.id)

    response = _create_job(client, tenant.id, variant.id, seeder.upload_refs(tenant.id, 1))

    assert response.status_code == 402
    assert response.json()["detail"]["reason"] == "no_subscription"


def test_concurrency_limit_maps_to_429(client, seeder) -> None:
    tenant = seeder.tenant()
    for _ in range(3):
        variant = seeder.variant(tenant.id)
        assert _create_job(client, tenant.id, variant.id, seeder.upload_refs(tenant.id, 1)).status_code == 201

    variant = seeder.variant(tenant.id)
    response = _create_job(client, tenant.id, variant.id, seeder.upload_refs(tenant.id, 1))

    assert response.status_code == 429
    assert response.json()["detail"]["reason"] == "concurrency_limit"


def test_batch_create_and_progress(client, seeder) -> None:
    tenant = seeder.tenant()
    variants = [seeder.variant(tenant.id, title=f"Lamp {index}") for index in range(2)]

    created = client.post(
        "/generation/batches",
        json={
            "name": "Autumn launch",
            "variants": [
                {"variant_id": variant.id, "product_images": seeder.upload_refs(tenant.id, 1)} for variant in variants
            ],
            "settings": {"number_of_variations": 2},
        },
        headers=_headers(tenant.id),
    )

    assert created.status_code == 201
    body = created.json()
    assert len(body["jobs"]) == 2
    assert body["batch_id"]
    assert body["shared_folder_id"]

    progress = client.get(f"/generation/batches/{body['batch_id']}", headers=_headers(tenant.id))
    assert progress.status_code == 200
    payload = progress.json()
    assert payload["status"] == "queued"
    assert payload["counts"]["queued"] == 2
    assert payload["image_count"] == 4
    assert sorted(payload["job_ids"]) == sorted(job["job_id"] for job in body["jobs"])

    missing = client.get("/generation/batches/unknown", headers=_headers(tenant.id))
    assert missing.status_code == 404


def test_retry_endpoint(client, session, seeder) -> None:
    tenant = seeder.tenant()
    variant = seeder.variant(tenant.id)
    job_id = _create_job(client, tenant.id, variant.id, seeder.upload_refs(tenant.id, 1)).json()["jobs"][0]["job_id"]

    conflict = client.post(f"/generation/jobs/{job_id}/retry", headers=_headers(tenant.id))
    assert conflict.status_code == 409

    session.execute(
        update(GenerationJob)
        .where(GenerationJob.id == job_id)
        .values(status="failed", failed_stage="synthesis", error_message="upstream")
    )
    session.commit()

    retried = client.post(f"/generation/jobs/{job_id}/retry", headers=_headers(tenant.id))
    assert retried.status_code == 200
    assert retried.json()["status"] == "queued"
    assert retried.json()["failed_stage"] is None

    assert client.post("/generation/jobs/unknown/retry", headers=_headers(tenant.id)).status_code == 404


def test_credit_balance_endpoint(client, seeder) -> None:
    tenant = seeder.tenant(remaining=10)
    response = client.get("/generation/credits", headers=_headers(tenant.id, role="member"))

    assert response.status_code == 200
    body = response.json()
    assert body["has_subscription"] is True
    assert body["plan_tier"] == "starter"
    assert body["image"] == {"included": 50, "used": 40, "remaining": 10, "overage_used": 0}

    unsubscribed = seeder.tenant(plan_tier=None)
    body = client.get("/generation/credits", headers=_headers(unsubscribed.id)).json()
    assert body["has_subscription"] is False
    assert body["image"] is None


def test_moodboard_analysis_endpoint(client, seeder, backend) -> None:
    tenant = seeder.tenant()
    upload = seeder.upload(tenant.id)
    moodboard = seeder.moodboard(tenant.id, assets=[("background", upload.id)])

    forbidden = client.post(
        f"/generation/moodboards/{moodboard.id}/analyze",
        headers=_headers(tenant.id, role="member"),
    )
    assert forbidden.status_code == 403

    response = client.post(f"/generation/moodboards/{moodboard.id}/analyze", headers=_headers(tenant.id))
    assert response.status_code == 200
    summaries = response.json()["summaries"]
    assert summaries["backgrounds_analysis_summary"] == "Pale oak tables under diffuse daylight."
    assert summaries["models_analysis_summary"] == ""
    assert len(backend.text_calls) == 1

    other = seeder.tenant()
    missing = client.post(f"/generation/moodboards/{moodboard.id}/analyze", headers=_headers(other.id))
    assert missing.status_code == 404
