"""Append-only credit ledger: checks, deductions, refunds and balances.

Balances are never stored. Every figure is derived by summing ledger entries
for the tenant's current metering period.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
import math
from typing import Any, Dict, Optional, Tuple
import uuid

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from catalogstudio.billing.metering import MeteringClient, meter_event_name
from catalogstudio.billing.plans import USAGE_TYPES, get_plan
from catalogstudio.core.logger import get_logger
from catalogstudio.core.metrics import record_credits_deducted
from catalogstudio.storage.models import CreditLedgerEntry, CreditPeriod, Tenant


logger = get_logger("catalogstudio.billing.credits")

REASON_NO_SUBSCRIPTION = "no_subscription"
REASON_OVERAGE_DISABLED = "overage_disabled"
REASON_LIMIT_REACHED = "limit_reached"
REASON_NO_CREDITS = "no_credits"

ENTRY_DEDUCTION = "deduction"
ENTRY_REFUND = "refund"


@dataclass(frozen=True)
class CreditCheckResult:
    allowed: bool
    tenant_id: str
    usage_type: str
    requested: int
    remaining: int
    is_overage: bool = False
    overage_count: int = 0
    overage_cost_cents: int = 0
    reason: Optional[str] = None
    credit_period_id: Optional[str] = None
    plan_tier: Optional[str] = None


@dataclass(frozen=True)
class CreditReservation:
    reservation_id: str
    tenant_id: str
    credit_period_id: str
    usage_type: str
    included_count: int
    overage_count: int
    overage_cost_cents: int

    @property
    def is_overage(self) -> bool:
        return self.overage_count > 0

    @property
    def total(self) -> int:
        return self.included_count + self.overage_count


@dataclass(frozen=True)
class UsageBalance:
    included: int
    used: int
    remaining: int
    overage_used: int


@dataclass(frozen=True)
class CreditBalance:
    tenant_id: str
    plan_tier: str
    period_start: datetime
    period_end: datetime
    days_remaining: int
    image: UsageBalance
    text: UsageBalance
    overage_spent_cents: int


def _json_dumps(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, sort_keys=True)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _require_usage_type(usage_type: str) -> None:
    if usage_type not in USAGE_TYPES:
        raise ValueError(f"Unsupported usage type: {usage_type}")


def _get_tenant(session: Session, tenant_id: str) -> Tenant:
    tenant = session.scalar(select(Tenant).where(Tenant.id == tenant_id))
    if tenant is None:
        raise LookupError("Tenant not found")
    return tenant


def get_current_credit_period(
    session: Session,
    *,
    tenant_id: str,
    now: Optional[datetime] = None,
) -> Optional[CreditPeriod]:
    reference = now or _now_utc()
    return session.scalar(
        select(CreditPeriod)
        .where(
            CreditPeriod.tenant_id == tenant_id,
            CreditPeriod.period_start <= reference,
            CreditPeriod.period_end > reference,
        )
        .order_by(CreditPeriod.period_start.desc())
        .limit(1)
    )


def _period_usage(session: Session, *, credit_period_id: str, usage_type: str) -> Tuple[int, int]:
    rows = session.execute(
        select(CreditLedgerEntry.is_overage, func.coalesce(func.sum(CreditLedgerEntry.credits), 0))
        .where(
            CreditLedgerEntry.credit_period_id == credit_period_id,
            CreditLedgerEntry.usage_type == usage_type,
        )
        .group_by(CreditLedgerEntry.is_overage)
    ).all()
    included_used = 0
    overage_used = 0
    for is_overage, total in rows:
        if is_overage:
            overage_used = int(total)
        else:
            included_used = int(total)
    return included_used, overage_used


def _period_overage_spent_cents(session: Session, *, credit_period_id: str) -> int:
    total = session.scalar(
        select(func.coalesce(func.sum(CreditLedgerEntry.overage_cost_cents), 0)).where(
            CreditLedgerEntry.credit_period_id == credit_period_id,
        )
    )
    return int(total or 0)


def check_credits(
    session: Session,
    *,
    tenant_id: str,
    usage_type: str,
    count: int,
    now: Optional[datetime] = None,
) -> CreditCheckResult:
    _require_usage_type(usage_type)
    if count <= 0:
        raise ValueError("Requested credit count must be positive")

    tenant = _get_tenant(session, tenant_id)
    period = get_current_credit_period(session, tenant_id=tenant_id, now=now)
    plan = get_plan(period.plan_tier) if period is not None else None
    if period is None or plan is None:
        return CreditCheckResult(
            allowed=False,
            tenant_id=tenant_id,
            usage_type=usage_type,
            requested=count,
            remaining=0,
            reason=REASON_NO_SUBSCRIPTION,
        )

    included = period.image_credits_included if usage_type == "image" else period.text_credits_included
    included_used, _ = _period_usage(session, credit_period_id=period.id, usage_type=usage_type)
    remaining = included - included_used

    if remaining >= count:
        return CreditCheckResult(
            allowed=True,
            tenant_id=tenant_id,
            usage_type=usage_type,
            requested=count,
            remaining=remaining - count,
            credit_period_id=period.id,
            plan_tier=plan.name,
        )

    visible_remaining = max(remaining, 0)
    if not tenant.overage_enabled:
        return CreditCheckResult(
            allowed=False,
            tenant_id=tenant_id,
            usage_type=usage_type,
            requested=count,
            remaining=visible_remaining,
            reason=REASON_NO_CREDITS if visible_remaining == 0 else REASON_OVERAGE_DISABLED,
            credit_period_id=period.id,
            plan_tier=plan.name,
        )

    overage_count = count - visible_remaining
    overage_cost = plan.overage_rate_cents(usage_type) * overage_count
    if tenant.overage_limit_cents is not None:
        spent = _period_overage_spent_cents(session, credit_period_id=period.id)
        if spent + overage_cost > tenant.overage_limit_cents:
            return CreditCheckResult(
                allowed=False,
                tenant_id=tenant_id,
                usage_type=usage_type,
                requested=count,
                remaining=visible_remaining,
                overage_count=overage_count,
                overage_cost_cents=overage_cost,
                reason=REASON_LIMIT_REACHED,
                credit_period_id=period.id,
                plan_tier=plan.name,
            )

    return CreditCheckResult(
        allowed=True,
        tenant_id=tenant_id,
        usage_type=usage_type,
        requested=count,
        remaining=0,
        is_overage=True,
        overage_count=overage_count,
        overage_cost_cents=overage_cost,
        credit_period_id=period.id,
        plan_tier=plan.name,
    )


def deduct_credits(
    session: Session,
    *,
    check: CreditCheckResult,
    reference_type: str,
    reference_id: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> CreditReservation:
    """Append deduction entries for an admitted check. The caller owns the commit."""

    if not check.allowed or check.credit_period_id is None:
        raise ValueError("Cannot deduct credits for a rejected check")

    reservation_id = str(uuid.uuid4())
    included_count = check.requested - check.overage_count
    encoded_payload = _json_dumps(payload or {})

    if included_count > 0:
        session.add(
            CreditLedgerEntry(
                tenant_id=check.tenant_id,
                credit_period_id=check.credit_period_id,
                reservation_id=reservation_id,
                entry_type=ENTRY_DEDUCTION,
                usage_type=check.usage_type,
                credits=included_count,
                is_overage=False,
                overage_cost_cents=0,
                reference_type=reference_type,
                reference_id=reference_id,
                payload_json=encoded_payload,
            )
        )
    if check.overage_count > 0:
        session.add(
            CreditLedgerEntry(
                tenant_id=check.tenant_id,
                credit_period_id=check.credit_period_id,
                reservation_id=reservation_id,
                entry_type=ENTRY_DEDUCTION,
                usage_type=check.usage_type,
                credits=check.overage_count,
                is_overage=True,
                overage_cost_cents=check.overage_cost_cents,
                reference_type=reference_type,
                reference_id=reference_id,
                payload_json=encoded_payload,
            )
        )
    session.flush()

    record_credits_deducted(usage_type=check.usage_type, is_overage=False, count=included_count)
    record_credits_deducted(usage_type=check.usage_type, is_overage=True, count=check.overage_count)
    logger.info(
        "credits_deducted",
        tenant_id=check.tenant_id,
        reservation_id=reservation_id,
        usage_type=check.usage_type,
        included_count=included_count,
        overage_count=check.overage_count,
        overage_cost_cents=check.overage_cost_cents,
    )
    return CreditReservation(
        reservation_id=reservation_id,
        tenant_id=check.tenant_id,
        credit_period_id=check.credit_period_id,
        usage_type=check.usage_type,
        included_count=included_count,
        overage_count=check.overage_count,
        overage_cost_cents=check.overage_cost_cents,
    )


def report_overage_usage(
    session: Session,
    *,
    reservation: CreditReservation,
    metering: MeteringClient,
    now: Optional[datetime] = None,
) -> Optional[str]:
    """Emit a meter event for the overage portion only. Never raises on billing failures."""

    if reservation.overage_count <= 0:
        return None
    tenant = _get_tenant(session, reservation.tenant_id)
    if not tenant.stripe_customer_id:
        logger.warning(
            "metering_event_failed",
            tenant_id=tenant.id,
            reservation_id=reservation.reservation_id,
            error="stripe_customer_missing",
        )
        return None
    return metering.report_usage(
        event_name=meter_event_name(reservation.usage_type),
        customer_ref=tenant.stripe_customer_id,
        quantity=reservation.overage_count,
        timestamp=now,
    )


def refund_credits(
    session: Session,
    *,
    tenant_id: str,
    reservation_id: str,
    count: Optional[int] = None,
    reason: str = "manual",
) -> int:
    """Append negative entries for a reservation, overage first. Returns credits refunded."""

    entries = list(
        session.scalars(
            select(CreditLedgerEntry).where(
                CreditLedgerEntry.tenant_id == tenant_id,
                CreditLedgerEntry.reservation_id == reservation_id,
            )
        ).all()
    )
    if not entries:
        raise LookupError("Credit reservation not found")

    overage_net = sum(entry.credits for entry in entries if entry.is_overage)
    overage_cost_net = sum(entry.overage_cost_cents for entry in entries if entry.is_overage)
    included_net = sum(entry.credits for entry in entries if not entry.is_overage)
    refundable = overage_net + included_net
    requested = refundable if count is None else min(max(count, 0), refundable)
    if requested <= 0:
        return 0

    first = entries[0]
    overage_refund = min(requested, overage_net)
    included_refund = requested - overage_refund
    payload = _json_dumps({"reason": reason})

    if overage_refund > 0:
        unit_cost = math.floor(overage_cost_net / overage_net) if overage_net else 0
        session.add(
            CreditLedgerEntry(
                tenant_id=tenant_id,
                credit_period_id=first.credit_period_id,
                reservation_id=reservation_id,
                entry_type=ENTRY_REFUND,
                usage_type=first.usage_type,
                credits=-overage_refund,
                is_overage=True,
                overage_cost_cents=-(unit_cost * overage_refund),
                reference_type=first.reference_type,
                reference_id=first.reference_id,
                payload_json=payload,
            )
        )
    if included_refund > 0:
        session.add(
            CreditLedgerEntry(
                tenant_id=tenant_id,
                credit_period_id=first.credit_period_id,
                reservation_id=reservation_id,
                entry_type=ENTRY_REFUND,
                usage_type=first.usage_type,
                credits=-included_refund,
                is_overage=False,
                overage_cost_cents=0,
                reference_type=first.reference_type,
                reference_id=first.reference_id,
                payload_json=payload,
            )
        )
    session.flush()
    logger.info(
        "credits_refunded",
        tenant_id=tenant_id,
        reservation_id=reservation_id,
        refunded=requested,
        overage_refunded=overage_refund,
        reason=reason,
    )
    return requested


def provision_credits(
    session: Session,
    *,
    tenant_id: str,
    plan_tier: str,
    period_start: datetime,
    period_end: datetime,
    stripe_subscription_id: Optional[str] = None,
) -> CreditPeriod:
    plan = get_plan(plan_tier)
    if plan is None:
        raise ValueError(f"Plan is not configured: {plan_tier}")
    if period_end <= period_start:
        raise ValueError("Credit period must end after it starts")

    tenant = _get_tenant(session, tenant_id)
    tenant.plan_tier = plan.name
    tenant.subscription_status = "active"

    period = CreditPeriod(
        tenant_id=tenant_id,
        plan_tier=plan.name,
        period_start=period_start,
        period_end=period_end,
        image_credits_included=plan.image_credits,
        text_credits_included=plan.text_credits,
        stripe_subscription_id=stripe_subscription_id,
    )
    session.add(period)
    session.flush()
    logger.info(
        "credits_provisioned",
        tenant_id=tenant_id,
        plan_tier=plan.name,
        credit_period_id=period.id,
        image_credits=plan.image_credits,
        text_credits=plan.text_credits,
    )
    return period


def get_credit_balance(
    session: Session,
    *,
    tenant_id: str,
    now: Optional[datetime] = None,
) -> Optional[CreditBalance]:
    reference = now or _now_utc()
    period = get_current_credit_period(session, tenant_id=tenant_id, now=reference)
    if period is None:
        return None

    def _usage(usage_type: str, included: int) -> UsageBalance:
        used, overage_used = _period_usage(session, credit_period_id=period.id, usage_type=usage_type)
        return UsageBalance(
            included=included,
            used=used,
            remaining=max(included - used, 0),
            overage_used=overage_used,
        )

    period_end = _as_utc(period.period_end)
    seconds_left = max((period_end - _as_utc(reference)).total_seconds(), 0.0)
    return CreditBalance(
        tenant_id=tenant_id,
        plan_tier=period.plan_tier,
        period_start=_as_utc(period.period_start),
        period_end=period_end,
        days_remaining=math.ceil(seconds_left / 86400),
        image=_usage("image", period.image_credits_included),
        text=_usage("text", period.text_credits_included),
        overage_spent_cents=_period_overage_spent_cents(session, credit_period_id=period.id),
    )
