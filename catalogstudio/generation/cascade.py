"""Ordered resolver tiers evaluated by a small generic cascade runner."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

from catalogstudio.core.logger import get_logger
from catalogstudio.core.metrics import record_resolution_degraded
from catalogstudio.inference.base import InferenceError


logger = get_logger("catalogstudio.generation.cascade")

ContextT = TypeVar("ContextT")
ValueT = TypeVar("ValueT")

GENERIC_DESCRIPTIONS = frozenset({"none", "n/a", "na", "default", "studio", "plain background"})
MIN_DESCRIPTION_LENGTH = 12


def is_usable_description(text: Optional[str]) -> bool:
    cleaned = (text or "").strip()
    if len(cleaned) < MIN_DESCRIPTION_LENGTH:
        return False
    return cleaned.lower() not in GENERIC_DESCRIPTIONS


@dataclass(frozen=True)
class ResolverTier(Generic[ContextT, ValueT]):
    """``applies`` gates the tier; ``resolve`` returns ``(value, source)`` or None to fall through."""

    name: str
    applies: Callable[[ContextT], bool]
    resolve: Callable[[ContextT], Optional[Tuple[ValueT, str]]]


@dataclass(frozen=True)
class Resolution(Generic[ValueT]):
    value: ValueT
    source: str
    tier: str
    degraded: bool
    fell_through: Tuple[str, ...] = ()


def _fall_through(resolver: str, tier: str, misses: List[str], *, error: Optional[str] = None) -> None:
    misses.append(tier)
    record_resolution_degraded(resolver=resolver, tier=tier)
    logger.warning("resolution_degraded", resolver=resolver, tier=tier, error=error)


def run_cascade(
    resolver: str,
    tiers: Sequence[ResolverTier[ContextT, ValueT]],
    context: ContextT,
    *,
    default: ValueT,
    default_source: str = "default",
) -> Resolution[ValueT]:
    misses: List[str] = []
    for tier in tiers:
        if not tier.applies(context):
            continue
        try:
            answer = tier.resolve(context)
        except InferenceError as exc:
            _fall_through(resolver, tier.name, misses, error=str(exc))
            continue
        if answer is None:
            _fall_through(resolver, tier.name, misses)
            continue
        value, source = answer
        return Resolution(
            value=value,
            source=source,
            tier=tier.name,
            degraded=bool(misses),
            fell_through=tuple(misses),
        )

    return Resolution(
        value=default,
        source=default_source,
        tier="default",
        degraded=bool(misses),
        fell_through=tuple(misses),
    )
