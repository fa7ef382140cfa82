"""In-process metrics collector with Prometheus text exposition."""

from __future__ import annotations

from collections import defaultdict
from threading import Lock
import time
from typing import Dict, List, Tuple


_lock = Lock()
_started_at = time.time()

_http_requests_total: Dict[Tuple[str, str, str], int] = defaultdict(int)
_http_request_duration_sum: Dict[Tuple[str, str], float] = defaultdict(float)
_http_request_duration_count: Dict[Tuple[str, str], int] = defaultdict(int)
_generation_jobs_admitted_total: Dict[str, int] = defaultdict(int)
_admission_denied_total: Dict[str, int] = defaultdict(int)
_generation_jobs_finished_total: Dict[Tuple[str, str], int] = defaultdict(int)
_inference_calls_total: Dict[Tuple[str, str], int] = defaultdict(int)
_resolution_degraded_total: Dict[Tuple[str, str], int] = defaultdict(int)
_credits_deducted_total: Dict[Tuple[str, str], int] = defaultdict(int)


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _normalize_label(value: str, *, fallback: str = "unknown") -> str:
    normalized = (value or "").strip()
    return normalized or fallback


def record_http_request(*, method: str, path: str, status_code: int, duration_seconds: float) -> None:
    status = str(status_code)
    method_label = method.upper()
    path_label = path or "unknown"
    duration = max(duration_seconds, 0.0)

    with _lock:
        _http_requests_total[(method_label, path_label, status)] += 1
        _http_request_duration_sum[(method_label, path_label)] += duration
        _http_request_duration_count[(method_label, path_label)] += 1


def record_jobs_admitted(*, workflow_key: str, count: int = 1) -> None:
    if count <= 0:
        return
    with _lock:
        _generation_jobs_admitted_total[_normalize_label(workflow_key)] += int(count)


def record_admission_denied(*, reason: str) -> None:
    with _lock:
        _admission_denied_total[_normalize_label(reason)] += 1


def record_job_finished(*, workflow_key: str, status: str) -> None:
    with _lock:
        _generation_jobs_finished_total[(_normalize_label(workflow_key), _normalize_label(status))] += 1


def record_inference_call(*, kind: str, outcome: str) -> None:
    with _lock:
        _inference_calls_total[(_normalize_label(kind), _normalize_label(outcome))] += 1


def record_resolution_degraded(*, resolver: str, tier: str) -> None:
    with _lock:
        _resolution_degraded_total[(_normalize_label(resolver), _normalize_label(tier))] += 1


def record_credits_deducted(*, usage_type: str, is_overage: bool, count: int) -> None:
    if count <= 0:
        return
    with _lock:
        key = (_normalize_label(usage_type), "true" if is_overage else "false")
        _credits_deducted_total[key] += int(count)


def _render_counter(
    lines: List[str],
    *,
    name: str,
    help_text: str,
    label_names: Tuple[str, ...],
    values: Dict,
) -> None:
    lines.extend([f"# HELP {name} {help_text}", f"# TYPE {name} counter"])
    for key, value in sorted(values.items()):
        label_values = key if isinstance(key, tuple) else (key,)
        labels = ",".join(
            f'{label}="{_escape_label(str(label_value))}"'
            for label, label_value in zip(label_names, label_values)
        )
        lines.append(f"{name}{{{labels}}} {value}")


def render_prometheus_metrics(*, app_name: str, app_version: str, env: str) -> str:
    uptime = max(time.time() - _started_at, 0.0)

    with _lock:
        http_total = dict(_http_requests_total)
        duration_sum = dict(_http_request_duration_sum)
        duration_count = dict(_http_request_duration_count)
        jobs_admitted = dict(_generation_jobs_admitted_total)
        admission_denied = dict(_admission_denied_total)
        jobs_finished = dict(_generation_jobs_finished_total)
        inference_calls = dict(_inference_calls_total)
        resolution_degraded = dict(_resolution_degraded_total)
        credits_deducted = dict(_credits_deducted_total)

    lines = [
        "# HELP catalogstudio_build_info Build metadata.",
        "# TYPE catalogstudio_build_info gauge",
        (
            f'catalogstudio_build_info{{app_name="{_escape_label(app_name)}",'
            f'version="{_escape_label(app_version)}",env="{_escape_label(env)}"}} 1'
        ),
        "# HELP catalogstudio_process_uptime_seconds Process uptime in seconds.",
        "# TYPE catalogstudio_process_uptime_seconds gauge",
        f"catalogstudio_process_uptime_seconds {uptime:.6f}",
    ]

    _render_counter(
        lines,
        name="catalogstudio_http_requests_total",
        help_text="Total HTTP requests.",
        label_names=("method", "path", "status"),
        values=http_total,
    )
    lines.extend(
        [
            "# HELP catalogstudio_http_request_duration_seconds Request duration summary.",
            "# TYPE catalogstudio_http_request_duration_seconds summary",
        ]
    )
    for (method, path), value in sorted(duration_sum.items()):
        lines.append(
            (
                f'catalogstudio_http_request_duration_seconds_sum{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}"}} {value:.6f}'
            )
        )
    for (method, path), value in sorted(duration_count.items()):
        lines.append(
            (
                f'catalogstudio_http_request_duration_seconds_count{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}"}} {value}'
            )
        )

    _render_counter(
        lines,
        name="catalogstudio_generation_jobs_admitted_total",
        help_text="Generation jobs admitted by workflow.",
        label_names=("workflow",),
        values=jobs_admitted,
    )
    _render_counter(
        lines,
        name="catalogstudio_admission_denied_total",
        help_text="Generation submissions rejected at admission.",
        label_names=("reason",),
        values=admission_denied,
    )
    _render_counter(
        lines,
        name="catalogstudio_generation_jobs_finished_total",
        help_text="Generation jobs reaching a terminal status.",
        label_names=("workflow", "status"),
        values=jobs_finished,
    )
    _render_counter(
        lines,
        name="catalogstudio_inference_calls_total",
        help_text="Inference backend calls by kind and outcome.",
        label_names=("kind", "outcome"),
        values=inference_calls,
    )
    _render_counter(
        lines,
        name="catalogstudio_resolution_degraded_total",
        help_text="Resolver tiers that fell through.",
        label_names=("resolver", "tier"),
        values=resolution_degraded,
    )
    _render_counter(
        lines,
        name="catalogstudio_credits_deducted_total",
        help_text="Credits deducted by usage type.",
        label_names=("usage_type", "is_overage"),
        values=credits_deducted,
    )

    return "\n".join(lines) + "\n"


def reset_metrics() -> None:
    global _started_at
    with _lock:
        _http_requests_total.clear()
        _http_request_duration_sum.clear()
        _http_request_duration_count.clear()
        _generation_jobs_admitted_total.clear()
        _admission_denied_total.clear()
        _generation_jobs_finished_total.clear()
        _inference_calls_total.clear()
        _resolution_degraded_total.clear()
        _credits_deducted_total.clear()
        _started_at = time.time()
