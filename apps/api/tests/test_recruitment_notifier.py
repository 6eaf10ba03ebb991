"""
Tests for the recruitment alert transports.
"""
from unittest.mock import MagicMock, patch

import pytest
import requests

from core.exceptions import NotificationFailure
from services.recruitment_notifier import (
    HttpRecruitmentNotifier,
    LoggingNotifier,
    build_alert,
    get_notifier,
)


def _response(status_code=200, text="ok"):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    return response


def _send(notifier):
    notifier.notify("ath-1", "strength", 99, 95.5, ["Outstanding strength performance"],
                    athlete_name="Test Athlete", sport="athletics")


class TestBuildAlert:

    def test_alert_shape(self):
        alert = build_alert("ath-1", "speed", 12.1, 97.0, ["a", "b"], severity="high")
        assert alert["type"] == "assessment_milestone"
        assert alert["severity"] == "high"
        assert alert["sport"] == "general"
        assert alert["highlights"] == ["a", "b"]
        assert "timestamp" in alert


class TestLoggingNotifier:

    def test_keeps_sent_alerts(self):
        notifier = LoggingNotifier()
        _send(notifier)
        assert len(notifier.sent) == 1
        assert notifier.sent[0]["athlete_name"] == "Test Athlete"
        assert notifier.sent[0]["sport"] == "athletics"


class TestHttpRecruitmentNotifier:

    def test_posts_json_with_bearer_token(self):
        session = MagicMock()
        session.post.return_value = _response(200)
        notifier = HttpRecruitmentNotifier(url="https://recruit.example/alerts", api_key="secret",
                                           timeout=5, session=session)

        _send(notifier)

        args, kwargs = session.post.call_args
        assert args == ("https://recruit.example/alerts",)
        assert kwargs["headers"]["Authorization"] == "Bearer secret"
        assert kwargs["json"]["score"] == 99
        assert kwargs["json"]["percentile"] == 95.5
        assert kwargs["timeout"] == 5

    def test_no_auth_header_without_key(self):
        session = MagicMock()
        session.post.return_value = _response(202)
        notifier = HttpRecruitmentNotifier(url="https://recruit.example/alerts", api_key="", session=session)

        _send(notifier)

        assert "Authorization" not in session.post.call_args.kwargs["headers"]

    def test_error_status_raises(self):
        session = MagicMock()
        session.post.return_value = _response(500, "upstream down")
        notifier = HttpRecruitmentNotifier(url="https://recruit.example/alerts", api_key="k", session=session)

        with pytest.raises(NotificationFailure, match="HTTP 500"):
            _send(notifier)

    def test_transport_error_raises(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("connection refused")
        notifier = HttpRecruitmentNotifier(url="https://recruit.example/alerts", api_key="k", session=session)

        with pytest.raises(NotificationFailure):
            _send(notifier)

    def test_requires_url(self):
        with patch("services.recruitment_notifier.settings") as settings:
            settings.RECRUITMENT_ALERT_URL = None
            with pytest.raises(ValueError):
                HttpRecruitmentNotifier(url="")


class TestGetNotifier:

    def test_logging_notifier_without_endpoint(self):
        with patch("services.recruitment_notifier.settings") as settings:
            settings.RECRUITMENT_ALERT_URL = None
            assert isinstance(get_notifier(), LoggingNotifier)

    def test_http_notifier_with_endpoint(self):
        with patch("services.recruitment_notifier.settings") as settings:
            settings.RECRUITMENT_ALERT_URL = "https://recruit.example/alerts"
            settings.RECRUITMENT_API_KEY = "k"
            settings.EXTERNAL_API_TIMEOUT = 10
            assert isinstance(get_notifier(), HttpRecruitmentNotifier)
