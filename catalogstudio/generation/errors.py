"""Error taxonomy for generation admission and job execution."""

from __future__ import annotations

from typing import Any, Dict, Optional


class GenerationError(RuntimeError):
    """Base class for generation failures."""


class InputValidationError(GenerationError):
    """Malformed or out-of-range request. No job is created and no credits are touched."""

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class UnsupportedWorkflowError(InputValidationError):
    pass


class AdmissionDeniedError(GenerationError):
    """Credit or concurrency gate rejection carrying a typed reason."""

    def __init__(self, reason: str, *, remaining: Optional[int] = None, required: Optional[int] = None) -> None:
        super().__init__(f"admission_denied reason={reason}")
        self.reason = reason
        self.remaining = remaining
        self.required = required

    def to_payload(self) -> Dict[str, Any]:
        return {
            "error": "admission_denied",
            "reason": self.reason,
            "remaining": self.remaining,
            "required": self.required,
        }


class PipelineStageError(GenerationError):
    """A job-fatal failure attributed to one pipeline stage."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(message)
        self.stage = stage


class UpstreamInferenceFailure(PipelineStageError):
    pass


class StorageFailure(PipelineStageError):
    pass
