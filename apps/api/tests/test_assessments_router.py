"""
API tests for /v1/assessments.

The pipeline dependency is overridden with an in-memory pipeline from the
`build_pipeline` fixture, so requests never reach a database or Redis.
"""
from dataclasses import asdict
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from main import app
from routers.assessments import get_pipeline
from services.assessment_store import AssessmentStore

from fixtures.video_fixtures import make_frames


@pytest.fixture
def client_for(build_pipeline):
    """TestClient whose pipeline dependency is built with `build_pipeline(**kwargs)`."""
    def _client(**kwargs):
        pipeline = build_pipeline(**kwargs)
        app.dependency_overrides[get_pipeline] = lambda: pipeline
        return TestClient(app)

    yield _client
    app.dependency_overrides.clear()


@pytest.fixture
def client(client_for):
    return client_for()


def _body(score=80, assessment_id="assess-1", athlete_id="ath-1", day=1, with_video=True, **extra):
    body = {
        "athlete": {"id": athlete_id, "name": "Test Athlete", "age": 20, "gender": "male", "sports": ["athletics"]},
        "assessment": {
            "id": assessment_id,
            "test_type": "strength",
            "raw_score": score,
            "submitted_at": f"2025-03-{day:02d}T09:00:00+00:00",
        },
    }
    if with_video:
        body["video"] = {"id": "video-1", "frame_rate": 30, "frames": [asdict(f) for f in make_frames()]}
    body.update(extra)
    return body


class TestEvaluate:

    def test_evaluate_returns_full_result(self, client):
        response = client.post("/v1/assessments/evaluate", json=_body())

        assert response.status_code == 200
        data = response.json()
        assert data["processing_status"] == "complete"
        assert data["composite"]["overall_status"] == "approved"
        assert data["stages"]["integrity"]["value"]["integrity_score"] == 88
        assert data["stages"]["movement"]["value"]["repetitions"]["detected"] == 10
        assert data["notified"] is False

    def test_missing_video_is_partial_not_error(self, client):
        response = client.post("/v1/assessments/evaluate", json=_body(with_video=False))

        assert response.status_code == 200
        data = response.json()
        assert data["processing_status"] == "partial"
        assert data["error_details"] == [
            "Integrity analysis: no video submitted",
            "Movement analysis: no video submitted",
        ]

    def test_no_consent_is_forbidden(self, client):
        response = client.post("/v1/assessments/evaluate", json=_body(athlete_id="ath-2"))

        assert response.status_code == 403
        assert response.json()["error_code"] == "CONSENT_REQUIRED"

    def test_storage_failure_returns_evaluation(self, client_for):
        failing = MagicMock(spec=AssessmentStore)
        failing.list_by_athlete.return_value = []
        failing.put.side_effect = RuntimeError("database is down")
        client = client_for(store_override=failing)

        response = client.post("/v1/assessments/evaluate", json=_body(with_video=False))

        assert response.status_code == 503
        data = response.json()
        assert data["error_code"] == "PERSISTENCE_FAILED"
        assert data["evaluation"]["assessment"]["id"] == "assess-1"

    def test_invalid_body(self, client):
        body = _body(with_video=False)
        body["athlete"]["age"] = 2
        assert client.post("/v1/assessments/evaluate", json=body).status_code == 422


class TestStoredResults:

    def test_get_assessment(self, client):
        client.post("/v1/assessments/evaluate", json=_body(with_video=False))

        response = client.get("/v1/assessments/assess-1")

        assert response.status_code == 200
        assert response.json()["assessment"]["raw_score"] == 80

    def test_get_missing_assessment(self, client):
        response = client.get("/v1/assessments/missing")
        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"

    def test_list_newest_first(self, client):
        client.post("/v1/assessments/evaluate", json=_body(assessment_id="a-1", day=1, with_video=False))
        client.post("/v1/assessments/evaluate", json=_body(assessment_id="a-2", day=8, with_video=False))

        response = client.get("/v1/assessments/athletes/ath-1")

        assert [r["assessment"]["id"] for r in response.json()] == ["a-2", "a-1"]

    def test_insights(self, client):
        client.post("/v1/assessments/evaluate", json=_body(score=90, assessment_id="a-1", day=1))
        client.post("/v1/assessments/evaluate", json=_body(score=70, assessment_id="a-2", day=8))

        data = client.get("/v1/assessments/athletes/ath-1/insights").json()

        assert data["total_assessments"] == 2
        assert data["completed_analyses"] == 2
        assert data["integrity_pass_rate"] == 100.0
        assert data["top_performances"][0]["assessment_id"] == "a-1"
        assert data["recent_trends"][0]["test_type"] == "strength"


class TestReprocess:

    def test_reprocess_with_video(self, client):
        client.post("/v1/assessments/evaluate", json=_body(with_video=False))

        video = _body()["video"]
        response = client.post("/v1/assessments/assess-1/reprocess", json={"video": video})

        assert response.status_code == 200
        assert response.json()["processing_status"] == "complete"
        assert client.get("/v1/assessments/assess-1").json()["processing_status"] == "complete"

    def test_reprocess_unknown_assessment(self, client):
        response = client.post("/v1/assessments/missing/reprocess", json={})
        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"


class TestProgress:

    def test_progress_after_run(self, client):
        client.post("/v1/assessments/evaluate", json=_body(with_video=False, run_id="run-42"))

        response = client.get("/v1/assessments/progress/run-42")

        assert response.status_code == 200
        assert response.json()["stage"] == "complete"
        assert response.json()["percent"] == 100

    def test_unknown_run(self, client):
        assert client.get("/v1/assessments/progress/nope").status_code == 404


class TestConsentEndpoint:

    def test_grant_enables_evaluation(self, client):
        response = client.post("/v1/assessments/consent", json={"athlete_id": "ath-2", "granted": True})

        assert response.status_code == 200
        assert response.json() == {"athlete_id": "ath-2", "purpose": "assessment_analysis", "granted": True}
        evaluated = client.post("/v1/assessments/evaluate", json=_body(athlete_id="ath-2", with_video=False))
        assert evaluated.status_code == 200

    def test_revoke_blocks_evaluation(self, client, consent):
        response = client.post("/v1/assessments/consent", json={"athlete_id": "ath-1", "granted": False},
                               headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})

        assert response.json()["granted"] is False
        assert consent.audit[-1]["action"] == "revoked"
        assert client.post("/v1/assessments/evaluate", json=_body()).status_code == 403

    def test_unknown_purpose(self, client):
        response = client.post(
            "/v1/assessments/consent",
            json={"athlete_id": "ath-1", "purpose": "marketing", "granted": True},
        )
        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR_PURPOSE"


class TestAsyncEvaluate:

    def test_enqueues_task(self, client):
        with patch("tasks.assessment_tasks.evaluate_assessment_task.delay") as delay:
            delay.return_value = MagicMock(id="task-1")
            response = client.post("/v1/assessments/evaluate/async", json=_body(run_id="run-7"))

        assert response.status_code == 202
        assert response.json() == {
            "task_id": "task-1",
            "run_id": "run-7",
            "assessment_id": "assess-1",
            "status": "queued",
        }
        payload = delay.call_args.args[0]
        assert payload["run_id"] == "run-7"
        assert len(payload["video"]["frames"]) == 300

    def test_generates_ids(self, client):
        body = _body(with_video=False)
        del body["assessment"]["id"]
        with patch("tasks.assessment_tasks.evaluate_assessment_task.delay") as delay:
            delay.return_value = MagicMock(id="task-2")
            data = client.post("/v1/assessments/evaluate/async", json=body).json()

        payload = delay.call_args.args[0]
        assert payload["assessment"]["id"] == data["assessment_id"]
        assert payload["run_id"] == data["run_id"]


class TestHealth:

    def test_ping(self, client):
        assert client.get("/ping").json() == {"pong": True}
