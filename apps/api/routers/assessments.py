"""
Assessment Evaluation Endpoints

POST /v1/assessments/evaluate                     Run the pipeline synchronously.
POST /v1/assessments/evaluate/async               Enqueue the Celery task; poll progress by run_id.
GET  /v1/assessments/{assessment_id}              Stored result.
GET  /v1/assessments/athletes/{athlete_id}        Stored results, newest first.
GET  /v1/assessments/athletes/{athlete_id}/insights
GET  /v1/assessments/progress/{run_id}            Latest progress snapshot.
POST /v1/assessments/consent                      Grant or revoke a consent purpose.
POST /v1/assessments/{assessment_id}/reprocess    Re-run a stored assessment, overwriting its result.

A partial evaluation (a stage failed) is still a 200; the failures are in
`error_details`. Missing consent is a 403.
"""
from __future__ import annotations

import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from core.exceptions import ConsentDenied, ForbiddenError, NotFoundError, PersistenceFailure, ValidationError
from schemas import (
    AsyncEvaluateResponse,
    AthleteInsightsResponse,
    ConsentUpdateRequest,
    ConsentUpdateResponse,
    EvaluateRequest,
    EvaluationResponse,
    ProgressResponse,
    ReprocessRequest,
)
from services.assessment_consent import CONSENT_PURPOSES
from services.assessment_pipeline import AssessmentPipeline, get_default_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/assessments", tags=["assessments"])


def get_pipeline() -> AssessmentPipeline:
    return get_default_pipeline()


@router.post("/evaluate", response_model=EvaluationResponse)
def evaluate_assessment(
    body: EvaluateRequest,
    pipeline: AssessmentPipeline = Depends(get_pipeline),
):
    """
    Evaluate one assessment and return the full result.

    When the result cannot be stored the computed evaluation is still
    returned, with status 503.
    """
    athlete = body.athlete.to_domain()
    record = body.assessment.to_domain(athlete.id)
    video = body.video.to_domain() if body.video else None

    try:
        evaluation = pipeline.run(athlete, record, video, body.options.to_domain(), run_id=body.run_id)
    except ConsentDenied as e:
        raise ForbiddenError(str(e), error_code="CONSENT_REQUIRED")
    except PersistenceFailure as e:
        return _persistence_failure_response(e)

    return EvaluationResponse.from_evaluation(evaluation)


@router.post("/evaluate/async", response_model=AsyncEvaluateResponse, status_code=202)
def evaluate_assessment_async(body: EvaluateRequest) -> AsyncEvaluateResponse:
    """Queue an evaluation. Consent is checked when the worker picks it up."""
    from tasks.assessment_tasks import evaluate_assessment_task

    run_id = body.run_id or str(uuid.uuid4())
    assessment_id = body.assessment.id or str(uuid.uuid4())
    payload = body.model_copy(update={
        "run_id": run_id,
        "assessment": body.assessment.model_copy(update={"id": assessment_id}),
    }).model_dump(mode="json")

    result = evaluate_assessment_task.delay(payload)
    logger.info(f"Queued assessment {assessment_id} (run {run_id}, task {result.id})")
    return AsyncEvaluateResponse(task_id=str(result.id), run_id=run_id, assessment_id=assessment_id)


@router.get("/progress/{run_id}", response_model=ProgressResponse)
def get_progress(run_id: str, pipeline: AssessmentPipeline = Depends(get_pipeline)) -> ProgressResponse:
    progress = pipeline.ctx.progress.get(run_id)
    if progress is None:
        raise NotFoundError("Assessment run", run_id)
    return ProgressResponse(**progress.to_dict())


@router.get("/athletes/{athlete_id}", response_model=List[EvaluationResponse])
def list_athlete_assessments(
    athlete_id: str,
    pipeline: AssessmentPipeline = Depends(get_pipeline),
) -> List[EvaluationResponse]:
    return [EvaluationResponse.from_payload(s.payload) for s in pipeline.list_results(athlete_id)]


@router.get("/athletes/{athlete_id}/insights", response_model=AthleteInsightsResponse)
def get_athlete_insights(
    athlete_id: str,
    pipeline: AssessmentPipeline = Depends(get_pipeline),
) -> AthleteInsightsResponse:
    return AthleteInsightsResponse(**pipeline.athlete_insights(athlete_id).to_dict())


@router.post("/consent", response_model=ConsentUpdateResponse)
def update_consent(
    body: ConsentUpdateRequest,
    request: Request,
    pipeline: AssessmentPipeline = Depends(get_pipeline),
) -> ConsentUpdateResponse:
    """
    Grant or revoke a consent purpose for an athlete.

    Always writes an audit log row. Revocation blocks every run that has not
    yet passed its consent check.
    """
    if body.purpose not in CONSENT_PURPOSES:
        raise ValidationError(f"Unknown consent purpose: {body.purpose}", field="purpose")

    gate = pipeline.ctx.consent
    kwargs = dict(
        ip_address=_get_client_ip(request),
        user_agent=request.headers.get("user-agent", "unknown"),
        source=body.source or "api",
    )
    if body.granted:
        gate.grant(body.athlete_id, body.purpose, **kwargs)
    else:
        gate.revoke(body.athlete_id, body.purpose, **kwargs)

    return ConsentUpdateResponse(
        athlete_id=body.athlete_id,
        purpose=body.purpose,
        granted=gate.has_consent(body.athlete_id, body.purpose),
    )


@router.post("/{assessment_id}/reprocess", response_model=EvaluationResponse)
def reprocess_assessment(
    assessment_id: str,
    body: ReprocessRequest,
    pipeline: AssessmentPipeline = Depends(get_pipeline),
):
    """Re-run a stored assessment (unknown id is a 404) and overwrite its result."""
    video = body.video.to_domain() if body.video else None
    try:
        evaluation = pipeline.reprocess(assessment_id, video, body.options.to_domain())
    except ConsentDenied as e:
        raise ForbiddenError(str(e), error_code="CONSENT_REQUIRED")
    except PersistenceFailure as e:
        return _persistence_failure_response(e)
    return EvaluationResponse.from_evaluation(evaluation)


@router.get("/{assessment_id}", response_model=EvaluationResponse)
def get_assessment(assessment_id: str, pipeline: AssessmentPipeline = Depends(get_pipeline)) -> EvaluationResponse:
    stored = pipeline.get_result(assessment_id)
    if stored is None:
        raise NotFoundError("Assessment", assessment_id)
    return EvaluationResponse.from_payload(stored.payload)


def _get_client_ip(request: Request) -> str:
    """Extract client IP from request headers (handles proxies)."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if request.client:
        return request.client.host
    return "unknown"


def _persistence_failure_response(e: PersistenceFailure) -> JSONResponse:
    content = {"detail": str(e), "error_code": "PERSISTENCE_FAILED"}
    if e.evaluation is not None:
        content["evaluation"] = EvaluationResponse.from_evaluation(e.evaluation).model_dump(mode="json")
    return JSONResponse(status_code=503, content=content)
