"""Usage metering for overage billing through Stripe meter events."""

from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, Optional, Protocol

import httpx

from catalogstudio.core.config import get_settings
from catalogstudio.core.logger import get_logger


logger = get_logger("catalogstudio.billing.metering")


class MeteringClient(Protocol):
    def report_usage(
        self,
        *,
        event_name: str,
        customer_ref: str,
        quantity: int,
        timestamp: Optional[datetime] = None,
    ) -> Optional[str]:
        raise NotImplementedError


class DisabledMeteringClient:
    def report_usage(
        self,
        *,
        event_name: str,
        customer_ref: str,
        quantity: int,
        timestamp: Optional[datetime] = None,
    ) -> Optional[str]:
        logger.info(
            "metering_event_skipped",
            event_name=event_name,
            customer_ref=customer_ref,
            quantity=quantity,
        )
        return None


class StripeMeteringClient:
    """Sends meter events; failures are logged and never raised."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.stripe.com",
        timeout_seconds: int = 20,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._api_key = api_key.strip()
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client

    def _post(self, form: Dict[str, str]) -> httpx.Response:
        url = f"{self._base_url}/v1/billing/meter_events"
        headers = {"Authorization": f"Bearer {self._api_key}"}
        if self._client is not None:
            return self._client.post(url, data=form, headers=headers)
        with httpx.Client(timeout=self._timeout_seconds) as client:
            return client.post(url, data=form, headers=headers)

    def report_usage(
        self,
        *,
        event_name: str,
        customer_ref: str,
        quantity: int,
        timestamp: Optional[datetime] = None,
    ) -> Optional[str]:
        if not self._api_key:
            logger.warning("metering_event_failed", event_name=event_name, error="stripe_api_key_missing")
            return None
        if quantity <= 0:
            return None

        occurred_at = timestamp or datetime.now(timezone.utc)
        form = {
            "event_name": event_name,
            "payload[value]": str(int(quantity)),
            "payload[stripe_customer_id]": customer_ref,
            "timestamp": str(int(occurred_at.timestamp())),
        }
        try:
            response = self._post(form)
        except httpx.HTTPError as exc:
            logger.warning("metering_event_failed", event_name=event_name, customer_ref=customer_ref, error=str(exc))
            return None

        if response.status_code < 200 or response.status_code >= 300:
            logger.warning(
                "metering_event_failed",
                event_name=event_name,
                customer_ref=customer_ref,
                status_code=response.status_code,
                detail=response.text[:240],
            )
            return None

        try:
            body: Dict[str, Any] = response.json()
        except ValueError:
            body = {}
        event_id = body.get("identifier") or body.get("id")
        logger.info(
            "metering_event_reported",
            event_name=event_name,
            customer_ref=customer_ref,
            quantity=quantity,
            event_id=event_id,
        )
        return str(event_id) if event_id else None


def meter_event_name(usage_type: str) -> str:
    settings = get_settings()
    if usage_type == "text":
        return settings.text_meter_event_name
    return settings.image_meter_event_name


@lru_cache(maxsize=1)
def get_metering_client() -> MeteringClient:
    settings = get_settings()
    if not settings.metering_enabled:
        return DisabledMeteringClient()
    return StripeMeteringClient(
        api_key=settings.stripe_api_key,
        base_url=settings.stripe_api_base_url,
        timeout_seconds=settings.stripe_timeout_seconds,
    )


def reset_metering_client_cache() -> None:
    get_metering_client.cache_clear()
