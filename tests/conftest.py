from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import hashlib
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple
import uuid

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from catalogstudio.billing.credits import provision_credits
from catalogstudio.billing.metering import reset_metering_client_cache
from catalogstudio.billing.plans import load_plans
from catalogstudio.core.config import get_settings
from catalogstudio.core.metrics import reset_metrics
from catalogstudio.inference.base import GeneratedImage, ImageInput, InferenceError
from catalogstudio.inference.factory import reset_inference_backend_cache
from catalogstudio.media.fetcher import ImageFetcher
from catalogstudio.media.uploads import upload_reference
from catalogstudio.storage.db import Base, engine_options, load_models
from catalogstudio.storage.models import (
    CreditLedgerEntry,
    Moodboard,
    MoodboardAsset,
    Product,
    ProductVariant,
    Tenant,
    UploadedFile,
)
from catalogstudio.storage.object_store import ObjectStorageError, StoredObject, reset_object_storage_cache


PLANS_PATH = Path(__file__).resolve().parents[1] / "config" / "plans.yaml"
REQUEST_ORIGIN = "http://localhost:3000"


def _reset_caches() -> None:
    get_settings.cache_clear()
    load_plans.cache_clear()
    reset_metering_client_cache()
    reset_inference_backend_cache()
    reset_object_storage_cache()
    reset_metrics()


@pytest.fixture(autouse=True)
def _test_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("PLANS_FILE_PATH", str(PLANS_PATH))
    monkeypatch.setenv("REQUEST_ORIGIN", REQUEST_ORIGIN)
    monkeypatch.setenv("MEDIA_STORAGE_PATH", str(tmp_path / "media"))
    monkeypatch.setenv("INFERENCE_PROVIDER", "mock")
    monkeypatch.setenv("METERING_ENABLED", "false")
    _reset_caches()
    yield
    _reset_caches()


@pytest.fixture
def session_factory() -> sessionmaker:
    load_models()
    engine = create_engine("sqlite+pysqlite://", **engine_options("sqlite+pysqlite://"))
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory: sessionmaker):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


class FakeInferenceBackend:
    """Answers text calls by prompt marker and numbers every generated image."""

    provider_name = "fake"

    def __init__(
        self,
        *,
        text_responses: Optional[Dict[str, Any]] = None,
        fail_image_calls: Iterable[int] = (),
    ) -> None:
        self.text_responses: Dict[str, Any] = dict(text_responses or {})
        self.fail_image_calls: Set[int] = set(fail_image_calls)
        self.text_calls: List[Tuple[str, List[ImageInput]]] = []
        self.image_calls: List[Dict[str, Any]] = []

    def generate_text(self, *, prompt: str, images: Sequence[ImageInput] = ()) -> str:
        self.text_calls.append((prompt, list(images)))
        for marker, response in self.text_responses.items():
            if marker in prompt:
                if isinstance(response, Exception):
                    raise response
                return response if isinstance(response, str) else json.dumps(response)
        return "{}"

    def generate_image(
        self,
        *,
        prompt: str,
        images: Sequence[ImageInput] = (),
        aspect_ratio: str = "1:1",
    ) -> GeneratedImage:
        self.image_calls.append({"prompt": prompt, "images": list(images), "aspect_ratio": aspect_ratio})
        call_number = len(self.image_calls)
        if call_number in self.fail_image_calls:
            raise InferenceError(f"fake_image_failure call={call_number}")
        return GeneratedImage(data=f"image-{call_number}".encode("ascii"), mime_type="image/png")

    def text_prompts_containing(self, marker: str) -> List[str]:
        return [prompt for prompt, _ in self.text_calls if marker in prompt]


class InMemoryObjectStorage:
    def __init__(self, *, fail_writes: bool = False) -> None:
        self.objects: Dict[str, bytes] = {}
        self.fail_writes = fail_writes

    def put(self, path: str, data: bytes, content_type: str) -> StoredObject:
        if self.fail_writes:
            raise ObjectStorageError(f"object_write_failed path={path}")
        self.objects[path] = data
        return StoredObject(
            path=path,
            url=f"https://cdn.test/media/{path}",
            content_type=content_type,
            size_bytes=len(data),
            sha256=hashlib.sha256(data).hexdigest(),
        )

    def read(self, path: str) -> bytes:
        if path not in self.objects:
            raise ObjectStorageError(f"object_read_failed path={path}")
        return self.objects[path]


@dataclass
class RecordingMeteringClient:
    calls: List[Dict[str, Any]] = field(default_factory=list)

    def report_usage(
        self,
        *,
        event_name: str,
        customer_ref: str,
        quantity: int,
        timestamp: Optional[datetime] = None,
    ) -> Optional[str]:
        self.calls.append(
            {
                "event_name": event_name,
                "customer_ref": customer_ref,
                "quantity": quantity,
                "timestamp": timestamp,
            }
        )
        return f"mtr_{len(self.calls)}"


def blob_url(file_id: int) -> str:
    return f"https://blob.test/uploads/{file_id}.jpg"


def _blob_handler(request: httpx.Request) -> httpx.Response:
    if request.url.host != "blob.test":
        return httpx.Response(404, text="not found")
    name = request.url.path.rsplit("/", 1)[-1]
    return httpx.Response(200, content=f"upload-{name}".encode("ascii"), headers={"content-type": "image/jpeg"})


def build_fetcher() -> ImageFetcher:
    return ImageFetcher(
        request_origin=REQUEST_ORIGIN,
        client=httpx.Client(transport=httpx.MockTransport(_blob_handler)),
    )


@pytest.fixture
def fetcher() -> ImageFetcher:
    return build_fetcher()


@pytest.fixture
def storage() -> InMemoryObjectStorage:
    return InMemoryObjectStorage()


@pytest.fixture
def metering() -> RecordingMeteringClient:
    return RecordingMeteringClient()


class CatalogSeeder:
    """Creates tenants, catalog rows, uploads and moodboards for tests."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def tenant(
        self,
        *,
        plan_tier: Optional[str] = "starter",
        remaining: Optional[int] = None,
        overage_enabled: bool = True,
        overage_limit_cents: Optional[int] = None,
        stripe_customer_id: Optional[str] = "cus_test",
    ) -> Tenant:
        tenant = Tenant(
            id=str(uuid.uuid4()),
            name=f"tenant-{uuid.uuid4().hex[:8]}",
            stripe_customer_id=stripe_customer_id,
            overage_enabled=overage_enabled,
            overage_limit_cents=overage_limit_cents,
        )
        self.session.add(tenant)
        self.session.flush()
        if plan_tier is not None:
            now = datetime.now(timezone.utc)
            period = provision_credits(
                self.session,
                tenant_id=tenant.id,
                plan_tier=plan_tier,
                period_start=now - timedelta(days=1),
                period_end=now + timedelta(days=29),
            )
            if remaining is not None:
                used = period.image_credits_included - remaining
                if used > 0:
                    self.session.add(
                        CreditLedgerEntry(
                            tenant_id=tenant.id,
                            credit_period_id=period.id,
                            reservation_id=str(uuid.uuid4()),
                            entry_type="deduction",
                            usage_type="image",
                            credits=used,
                            is_overage=False,
                            overage_cost_cents=0,
                            reference_type="seed",
                            payload_json="{}",
                        )
                    )
        self.session.commit()
        return tenant

    def upload(self, tenant_id: str) -> UploadedFile:
        uploaded = UploadedFile(
            tenant_id=tenant_id,
            blob_url="pending",
            original_name="photo.jpg",
            content_type="image/jpeg",
            size_bytes=1024,
        )
        self.session.add(uploaded)
        self.session.flush()
        uploaded.blob_url = blob_url(uploaded.id)
        self.session.commit()
        return uploaded

    def upload_refs(self, tenant_id: str, count: int) -> List[str]:
        return [upload_reference(self.upload(tenant_id).id) for _ in range(count)]

    def variant(
        self,
        tenant_id: str,
        *,
        category: Optional[str] = "home",
        title: str = "Ceramic Mug",
        variant_title: str = "Default",
    ) -> ProductVariant:
        product = Product(tenant_id=tenant_id, title=title, category=category)
        self.session.add(product)
        self.session.flush()
        variant = ProductVariant(tenant_id=tenant_id, product_id=product.id, title=variant_title)
        self.session.add(variant)
        self.session.commit()
        return variant

    def moodboard(
        self,
        tenant_id: str,
        *,
        style_profile: Optional[Dict[str, Any]] = None,
        assets: Iterable[Tuple[str, int]] = (),
    ) -> Moodboard:
        moodboard = Moodboard(
            tenant_id=tenant_id,
            name="Spring lookbook",
            style_profile_json=json.dumps(style_profile or {}),
        )
        self.session.add(moodboard)
        self.session.flush()
        for kind, file_id in assets:
            self.session.add(
                MoodboardAsset(
                    tenant_id=tenant_id,
                    moodboard_id=moodboard.id,
                    uploaded_file_id=file_id,
                    kind=kind,
                )
            )
        self.session.commit()
        return moodboard


@pytest.fixture
def seeder(session: Session) -> CatalogSeeder:
    return CatalogSeeder(session)
