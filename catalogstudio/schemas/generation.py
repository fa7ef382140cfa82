"""Schemas for generation admission and job inspection endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class GenerationSettings(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    purpose: Optional[str] = Field(default=None, max_length=32)
    moodboard_id: Optional[int] = None
    moodboard_strength: Optional[str] = Field(default=None, max_length=16)
    number_of_variations: int = Field(default=1, ge=1, le=10)
    model_enabled: bool = False
    model_image: Optional[str] = Field(default=None, max_length=1024)
    background_image: Optional[str] = Field(default=None, max_length=1024)
    output_format: Optional[str] = Field(default=None, max_length=8)
    aspect_ratio: Optional[str] = Field(default=None, max_length=8)
    custom_instructions: Optional[Union[str, List[str]]] = None


class GenerationJobCreateRequest(BaseModel):
    variant_id: int
    product_images: List[str] = Field(min_length=1, max_length=4)
    settings: GenerationSettings = Field(default_factory=GenerationSettings)


class BatchVariantItem(BaseModel):
    variant_id: int
    product_images: List[str] = Field(min_length=1, max_length=4)


class GenerationBatchCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    variants: List[BatchVariantItem] = Field(min_length=1, max_length=100)
    settings: GenerationSettings = Field(default_factory=GenerationSettings)


class AdmittedJobItem(BaseModel):
    job_id: str
    variant_id: int
    product_id: int
    schema_key: str
    variation_count: int
    target_folder_id: str


class AdmissionResponse(BaseModel):
    tenant_id: str
    jobs: List[AdmittedJobItem]
    reservation_id: str
    is_overage: bool
    remaining: int
    batch_id: Optional[str] = None
    shared_folder_id: Optional[str] = None


class GenerationOutputItem(BaseModel):
    id: str
    variation_index: int
    blob_url: str
    mime_type: str
    prompt: str
    created_at: datetime


class GenerationJobResponse(BaseModel):
    id: str
    tenant_id: str
    status: str
    schema_key: str
    product_id: int
    variant_id: int
    batch_id: Optional[str]
    variation_count: int
    prompts: List[str]
    outputs: List[GenerationOutputItem]
    is_overage: bool
    failed_stage: Optional[str]
    error_message: Optional[str]
    attempts: int
    created_at: datetime
    started_at: Optional[datetime]
    finished_at: Optional[datetime]


class GenerationBatchResponse(BaseModel):
    id: str
    name: str
    status: str
    counts: Dict[str, int]
    job_ids: List[str]
    variant_count: int
    image_count: int
    shared_folder_id: Optional[str]
    created_at: datetime


class UsageBalanceItem(BaseModel):
    included: int
    used: int
    remaining: int
    overage_used: int


class CreditBalanceResponse(BaseModel):
    tenant_id: str
    has_subscription: bool
    plan_tier: Optional[str] = None
    period_end: Optional[datetime] = None
    days_remaining: int = 0
    image: Optional[UsageBalanceItem] = None
    text: Optional[UsageBalanceItem] = None
    overage_spent_cents: int = 0


class MoodboardSummariesResponse(BaseModel):
    moodboard_id: int
    summaries: Dict[str, str]
