"""Plan tier loading and overage pricing."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

import yaml

from catalogstudio.core.config import get_settings


USAGE_TYPE_IMAGE = "image"
USAGE_TYPE_TEXT = "text"
USAGE_TYPES = (USAGE_TYPE_IMAGE, USAGE_TYPE_TEXT)

_REQUIRED_KEYS = ("image_credits", "text_credits", "overage_image_cents", "overage_text_cents")


@dataclass(frozen=True)
class PlanTier:
    name: str
    image_credits: int
    text_credits: int
    overage_image_cents: int
    overage_text_cents: int

    def included_credits(self, usage_type: str) -> int:
        return self.image_credits if usage_type == USAGE_TYPE_IMAGE else self.text_credits

    def overage_rate_cents(self, usage_type: str) -> int:
        return self.overage_image_cents if usage_type == USAGE_TYPE_IMAGE else self.overage_text_cents


def _resolve_plan_path() -> Path:
    settings = get_settings()
    configured = Path(settings.plans_file_path)
    if configured.is_absolute():
        return configured
    return Path.cwd() / configured


@lru_cache(maxsize=1)
def load_plans() -> Dict[str, PlanTier]:
    plan_path = _resolve_plan_path()
    with plan_path.open("r", encoding="utf-8") as file:
        content = yaml.safe_load(file) or {}
    if not isinstance(content, dict):
        raise ValueError("Invalid plans file format")

    plans: Dict[str, PlanTier] = {}
    for plan_name, values in content.items():
        if not isinstance(plan_name, str) or not isinstance(values, dict):
            continue
        missing = [key for key in _REQUIRED_KEYS if not isinstance(values.get(key), int)]
        if missing:
            raise ValueError(f"Plan '{plan_name}' is missing integer keys: {', '.join(missing)}")
        plans[plan_name] = PlanTier(name=plan_name, **{key: int(values[key]) for key in _REQUIRED_KEYS})
    return plans


def get_plan(tier: Optional[str]) -> Optional[PlanTier]:
    if not tier:
        return None
    return load_plans().get(tier)


def calculate_overage_cost(tier: str, usage_type: str, count: int) -> int:
    """Return the overage cost in cents for ``count`` units beyond the included allotment."""

    if usage_type not in USAGE_TYPES:
        raise ValueError(f"Unsupported usage type: {usage_type}")
    plan = get_plan(tier)
    if plan is None:
        raise ValueError(f"Plan is not configured: {tier}")
    return plan.overage_rate_cents(usage_type) * max(count, 0)
