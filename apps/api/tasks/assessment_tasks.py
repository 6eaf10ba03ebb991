"""
Assessment Evaluation Celery Tasks

Runs the evaluation pipeline off the request path. The API enqueues with
.delay() and clients poll /v1/assessments/progress/{run_id}; the worker
publishes progress through the shared Redis registry.

Task contract:
- Payload is the JSON form of schemas.EvaluateRequest
- Consent is checked at execution time, not enqueue time
  (an athlete may revoke consent after a task is enqueued)
- ConsentDenied and cancellation are final, never retried
- PersistenceFailure retries up to 3 times with backoff
"""

import logging
from typing import Any, Dict, List

from celery import Task

from tasks import celery_app
from core.exceptions import ConsentDenied, PersistenceFailure, PipelineCancelled
from services.assessment_pipeline import AssessmentRequest, get_default_pipeline

logger = logging.getLogger(__name__)

PERSISTENCE_MAX_RETRIES = 3


def _request_from_payload(payload: Dict[str, Any]) -> AssessmentRequest:
    from schemas import EvaluateRequest

    body = EvaluateRequest.model_validate(payload)
    athlete = body.athlete.to_domain()
    return AssessmentRequest(
        athlete=athlete,
        record=body.assessment.to_domain(athlete.id),
        video=body.video.to_domain() if body.video else None,
        options=body.options.to_domain(),
        run_id=body.run_id,
    )


@celery_app.task(name="tasks.evaluate_assessment", bind=True, max_retries=PERSISTENCE_MAX_RETRIES)
def evaluate_assessment_task(self: Task, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Evaluate one assessment.

    Returns a summary dict; the full result is in the assessment store.
    """
    request = _request_from_payload(payload)
    pipeline = get_default_pipeline()

    try:
        evaluation = pipeline.run(
            request.athlete,
            request.record,
            request.video,
            request.options,
            run_id=request.run_id,
        )
    except ConsentDenied as e:
        logger.info(f"Assessment task skipped (no consent): {request.record.id}")
        return {"status": "consent_denied", "assessment_id": request.record.id, "error": str(e)}
    except PipelineCancelled as e:
        return {"status": "cancelled", "assessment_id": request.record.id, "error": str(e)}
    except PersistenceFailure as e:
        logger.warning(
            f"Assessment task storage failed for {request.record.id} "
            f"(attempt {self.request.retries + 1}): {e}"
        )
        raise self.retry(exc=e, countdown=2 ** self.request.retries)

    return {
        "status": "ok",
        "assessment_id": request.record.id,
        "run_id": evaluation.run_id,
        "processing_status": evaluation.processing_status.value,
        "overall_status": evaluation.composite.overall_status.value if evaluation.composite else None,
        "error_details": evaluation.error_details,
    }


@celery_app.task(name="tasks.evaluate_assessment_batch", bind=True)
def evaluate_assessment_batch_task(self: Task, payloads: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Evaluate many assessments; one failing item never stops the batch."""
    requests = [_request_from_payload(p) for p in payloads]
    outcomes = get_default_pipeline().run_batch(requests)

    succeeded = sum(1 for o in outcomes if o.ok)
    logger.info(f"Assessment batch task: {succeeded}/{len(outcomes)} evaluated")
    return {
        "status": "ok",
        "total": len(outcomes),
        "succeeded": succeeded,
        "failed": len(outcomes) - succeeded,
        "items": [o.to_dict() for o in outcomes],
    }
