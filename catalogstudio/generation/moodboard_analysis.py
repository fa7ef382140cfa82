"""Recompute per-kind moodboard summaries from the moodboard's reference images."""

from __future__ import annotations

from datetime import datetime, timezone
import json
from typing import Dict, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from catalogstudio.core.logger import get_logger
from catalogstudio.generation.moodboard import (
    ASSET_KINDS,
    SUMMARY_KEYS,
    get_moodboard,
    load_asset_file_ids,
    load_style_profile,
)
from catalogstudio.generation.prompts import MOODBOARD_KIND_PROMPTS, MOODBOARD_SUMMARY_SUFFIX
from catalogstudio.inference.base import InferenceBackend, InferenceError
from catalogstudio.inference.structured import generate_structured
from catalogstudio.media.fetcher import ImageFetcher
from catalogstudio.media.uploads import load_uploaded_files


logger = get_logger("catalogstudio.generation.moodboard_analysis")


class KindSummary(BaseModel):
    summary: Optional[str] = None


def refresh_moodboard_summaries(
    session: Session,
    *,
    tenant_id: str,
    moodboard_id: int,
    backend: InferenceBackend,
    fetcher: ImageFetcher,
    max_assets_per_kind: int = 3,
) -> Dict[str, str]:
    """Summarize each asset kind with one call. A failed kind keeps its previous summary."""

    moodboard = get_moodboard(session, tenant_id=tenant_id, moodboard_id=moodboard_id)
    asset_ids = load_asset_file_ids(session, moodboard_id=moodboard.id, max_per_kind=max_assets_per_kind)
    files = load_uploaded_files(
        session,
        tenant_id=tenant_id,
        file_ids=[file_id for kind in ASSET_KINDS for file_id in asset_ids[kind]],
    )
    profile = load_style_profile(moodboard)

    for kind in ASSET_KINDS:
        key = SUMMARY_KEYS[kind]
        file_ids = asset_ids[kind]
        if not file_ids:
            profile.pop(key, None)
            continue
        images = [fetcher.fetch_image(files[file_id].blob_url) for file_id in file_ids]
        try:
            result = generate_structured(
                backend,
                kind=f"moodboard_{kind}",
                prompt=MOODBOARD_KIND_PROMPTS[kind] + MOODBOARD_SUMMARY_SUFFIX,
                schema=KindSummary,
                images=images,
            )
        except InferenceError as exc:
            logger.warning("moodboard_summary_failed", moodboard_id=moodboard.id, kind=kind, error=str(exc))
            continue
        summary = (result.summary or "").strip()
        if summary:
            profile[key] = summary

    moodboard.style_profile_json = json.dumps(profile, separators=(",", ":"), ensure_ascii=True, sort_keys=True)
    moodboard.updated_at = datetime.now(timezone.utc)
    session.commit()
    logger.info("moodboard_summaries_refreshed", moodboard_id=moodboard.id)
    return {SUMMARY_KEYS[kind]: str(profile.get(SUMMARY_KEYS[kind], "")) for kind in ASSET_KINDS}
