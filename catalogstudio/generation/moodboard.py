"""Moodboard style resolution and point-in-time snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from catalogstudio.generation.errors import InputValidationError
from catalogstudio.generation.types import MoodboardStrength
from catalogstudio.storage.models import Moodboard, MoodboardAsset


KIND_BACKGROUND = "background"
KIND_MODEL = "model"
KIND_REFERENCE_POSITIVE = "reference_positive"
KIND_REFERENCE_NEGATIVE = "reference_negative"
ASSET_KINDS = (KIND_BACKGROUND, KIND_MODEL, KIND_REFERENCE_POSITIVE, KIND_REFERENCE_NEGATIVE)

SUMMARY_KEYS = {
    KIND_BACKGROUND: "backgrounds_analysis_summary",
    KIND_MODEL: "models_analysis_summary",
    KIND_REFERENCE_POSITIVE: "reference_positive_summary",
    KIND_REFERENCE_NEGATIVE: "reference_negative_summary",
}


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _text_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def build_style_appendix(style_profile: Mapping[str, Any], strength: str) -> str:
    """Render the style appendix. The negative summary is only included for strict strength."""

    typography = style_profile.get("typography")
    if not isinstance(typography, dict):
        typography = {}

    parts: List[str] = []
    tone = _text(typography.get("tone"))
    if tone:
        parts.append(f"Tone: {tone}")
    font_family = _text(typography.get("font_family"))
    if font_family:
        parts.append(f"Font family: {font_family}")
    text_case = _text(typography.get("case"))
    if text_case:
        parts.append(f"Text case: {text_case}")
    rules = _text_list(typography.get("rules"))
    if rules:
        parts.append(f"Typography rules: {'; '.join(rules)}")
    do_not = _text_list(style_profile.get("do_not"))
    if do_not:
        parts.append(f"Do not: {'; '.join(do_not)}")
    positive = _text(style_profile.get(SUMMARY_KEYS[KIND_REFERENCE_POSITIVE]))
    if positive:
        parts.append(f"Style references (positive): {positive}")
    negative = _text(style_profile.get(SUMMARY_KEYS[KIND_REFERENCE_NEGATIVE]))
    if negative and strength == MoodboardStrength.STRICT.value:
        parts.append(f"Avoid these styles (negative references): {negative}")
    return " | ".join(parts)


@dataclass(frozen=True)
class MoodboardSnapshot:
    moodboard_id: int
    name: str
    strength: str
    style_profile: Dict[str, Any] = field(default_factory=dict)
    asset_file_ids: Dict[str, Tuple[int, ...]] = field(default_factory=dict)

    def file_ids(self, kind: str) -> Tuple[int, ...]:
        return tuple(self.asset_file_ids.get(kind, ()))

    def summary(self, kind: str) -> str:
        return _text(self.style_profile.get(SUMMARY_KEYS[kind]))

    @property
    def is_strict(self) -> bool:
        return self.strength == MoodboardStrength.STRICT.value

    def to_payload(self) -> Dict[str, Any]:
        return {
            "moodboard_id": self.moodboard_id,
            "name": self.name,
            "strength": self.strength,
            "style_profile": self.style_profile,
            "asset_file_ids": {kind: list(self.file_ids(kind)) for kind in ASSET_KINDS},
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "MoodboardSnapshot":
        raw_ids = payload.get("asset_file_ids") or {}
        return cls(
            moodboard_id=int(payload["moodboard_id"]),
            name=str(payload.get("name") or ""),
            strength=str(payload.get("strength") or MoodboardStrength.INSPIRED.value),
            style_profile=dict(payload.get("style_profile") or {}),
            asset_file_ids={kind: tuple(int(item) for item in raw_ids.get(kind, [])) for kind in ASSET_KINDS},
        )


@dataclass(frozen=True)
class StyleEnrichment:
    snapshot: Optional[MoodboardSnapshot] = None
    style_appendix: str = ""

    @property
    def positive_reference_ids(self) -> Tuple[int, ...]:
        if self.snapshot is None or not self.snapshot.is_strict:
            return ()
        return self.snapshot.file_ids(KIND_REFERENCE_POSITIVE)

    @property
    def negative_reference_ids(self) -> Tuple[int, ...]:
        if self.snapshot is None or not self.snapshot.is_strict:
            return ()
        return self.snapshot.file_ids(KIND_REFERENCE_NEGATIVE)

    def summary(self, kind: str) -> str:
        if self.snapshot is None:
            return ""
        return self.snapshot.summary(kind)


def enrichment_from_snapshot(snapshot: Optional[MoodboardSnapshot]) -> StyleEnrichment:
    if snapshot is None:
        return StyleEnrichment()
    return StyleEnrichment(
        snapshot=snapshot,
        style_appendix=build_style_appendix(snapshot.style_profile, snapshot.strength),
    )


def load_style_profile(moodboard: Moodboard) -> Dict[str, Any]:
    try:
        profile = json.loads(moodboard.style_profile_json or "{}")
    except ValueError:
        return {}
    return profile if isinstance(profile, dict) else {}


def get_moodboard(session: Session, *, tenant_id: str, moodboard_id: int) -> Moodboard:
    moodboard = session.scalar(
        select(Moodboard).where(
            Moodboard.tenant_id == tenant_id,
            Moodboard.id == moodboard_id,
            Moodboard.deleted_at.is_(None),
        )
    )
    if moodboard is None:
        raise InputValidationError("moodboard_not_found", field="moodboard_id")
    return moodboard


def _unique(values: Iterable[int]) -> List[int]:
    seen = set()
    ordered = []
    for value in values:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


def load_asset_file_ids(
    session: Session,
    *,
    moodboard_id: int,
    max_per_kind: Optional[int] = None,
) -> Dict[str, Tuple[int, ...]]:
    rows = session.execute(
        select(MoodboardAsset.kind, MoodboardAsset.uploaded_file_id)
        .where(MoodboardAsset.moodboard_id == moodboard_id)
        .order_by(MoodboardAsset.created_at.asc(), MoodboardAsset.id.asc())
    ).all()
    grouped: Dict[str, List[int]] = {kind: [] for kind in ASSET_KINDS}
    for kind, file_id in rows:
        if kind in grouped:
            grouped[kind].append(int(file_id))
    result: Dict[str, Tuple[int, ...]] = {}
    for kind, file_ids in grouped.items():
        unique = _unique(file_ids)
        if max_per_kind is not None:
            unique = unique[:max_per_kind]
        result[kind] = tuple(unique)
    return result


def resolve_style(
    session: Session,
    *,
    tenant_id: str,
    moodboard_id: Optional[int],
    strength: str,
    max_assets_per_kind: int = 3,
) -> StyleEnrichment:
    if moodboard_id is None:
        return StyleEnrichment()

    moodboard = get_moodboard(session, tenant_id=tenant_id, moodboard_id=moodboard_id)
    snapshot = MoodboardSnapshot(
        moodboard_id=moodboard.id,
        name=moodboard.name,
        strength=strength,
        style_profile=load_style_profile(moodboard),
        asset_file_ids=load_asset_file_ids(session, moodboard_id=moodboard.id, max_per_kind=max_assets_per_kind),
    )
    return enrichment_from_snapshot(snapshot)
