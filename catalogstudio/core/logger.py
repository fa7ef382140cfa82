"""structlog configuration shared by the API process and the generation worker."""

from __future__ import annotations

from contextlib import contextmanager
import logging
from typing import Any, Iterator, MutableMapping

import structlog

from catalogstudio.core.config import get_settings


_CONTEXT_KEYS = ("request_id", "tenant_id", "job_id")
_configured = False


def _service_fields(logger: Any, method_name: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    settings = get_settings()
    event_dict.setdefault("service", settings.app_name)
    event_dict.setdefault("env", settings.env)
    for key in _CONTEXT_KEYS:
        event_dict.setdefault(key, None)
    return event_dict


def configure_logging(*, force: bool = False) -> None:
    global _configured
    if _configured and not force:
        return

    level_name = get_settings().log_level.upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _service_fields,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
        logger_factory=structlog.PrintLoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def bind_request_context(request_id: str, tenant_id: str | None = None) -> None:
    structlog.contextvars.bind_contextvars(request_id=request_id, tenant_id=tenant_id)


def clear_log_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def job_log_context(job_id: str, tenant_id: str) -> Iterator[None]:
    """Bind a job's identifiers for every event logged inside the block."""

    tokens = structlog.contextvars.bind_contextvars(job_id=job_id, tenant_id=tenant_id)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
