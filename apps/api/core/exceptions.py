"""
Custom exception classes and error handling.

Two families live here:
- API exceptions (HTTPException subclasses) for consistent error responses.
- Pipeline exceptions raised by the assessment evaluation pipeline.

Pipeline propagation policy:
    ConsentDenied       fatal, raised before any analysis runs
    AnalyzerFailure     recoverable, recorded in error_details (partial status)
    PersistenceFailure  fatal for the run, carries the computed evaluation
    NotificationFailure never escapes the pipeline, logged and swallowed
    PipelineCancelled   cooperative cancellation between stages
"""
from fastapi import HTTPException, status
from typing import Any, Dict, Optional


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )


class ValidationError(APIException):
    """Validation error."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )


class ForbiddenError(APIException):
    """Access denied."""

    def __init__(self, detail: str = "Access denied", error_code: str = "FORBIDDEN"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code=error_code
        )


# ---------------------------------------------------------------------------
# Pipeline errors
# ---------------------------------------------------------------------------

class PipelineError(Exception):
    """Base class for assessment pipeline errors."""


class ConsentDenied(PipelineError):
    """Athlete has not consented to the requested processing purpose."""

    def __init__(self, athlete_id: str, purpose: str):
        super().__init__(
            f"Athlete {athlete_id} has not provided consent for {purpose}"
        )
        self.athlete_id = athlete_id
        self.purpose = purpose


class AnalyzerFailure(PipelineError):
    """An analytic stage (integrity, movement, performance) failed."""

    def __init__(self, stage: str, message: str):
        super().__init__(message)
        self.stage = stage
        self.message = message


class PersistenceFailure(PipelineError):
    """
    The result store rejected the write.

    The computed evaluation is attached so callers can still surface it.
    """

    def __init__(self, message: str, evaluation: Any = None):
        super().__init__(message)
        self.evaluation = evaluation


class NotificationFailure(PipelineError):
    """The recruitment notification transport failed."""


class PipelineCancelled(PipelineError):
    """The run was cancelled between stages."""

    def __init__(self, stage: str, reason: str = "cancelled"):
        super().__init__(f"Assessment run {reason} before stage '{stage}'")
        self.stage = stage
        self.reason = reason


class AssessmentNotFound(PipelineError):
    """No stored evaluation exists for the assessment id."""

    def __init__(self, assessment_id: str):
        super().__init__(f"Assessment not found: {assessment_id}")
        self.assessment_id = assessment_id
