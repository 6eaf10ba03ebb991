"""
Recruitment authority notification transport.

The pipeline sends one talent alert per qualifying run. Transport errors
surface as NotificationFailure; the pipeline logs and swallows them so a
notification outage never fails an evaluation.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import requests

from core.config import settings
from core.exceptions import NotificationFailure

logger = logging.getLogger(__name__)

ALERT_TYPE = "assessment_milestone"


def build_alert(
    athlete_id: str,
    test_type: str,
    score: float,
    percentile: float,
    highlights: Sequence[str],
    athlete_name: Optional[str] = None,
    sport: Optional[str] = None,
    severity: str = "medium",
) -> Dict[str, Any]:
    return {
        "type": ALERT_TYPE,
        "severity": severity,
        "athlete_id": athlete_id,
        "athlete_name": athlete_name,
        "sport": sport or "general",
        "test_type": test_type,
        "score": score,
        "percentile": percentile,
        "highlights": list(highlights),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class RecruitmentNotifier(ABC):

    @abstractmethod
    def notify(
        self,
        athlete_id: str,
        test_type: str,
        score: float,
        percentile: float,
        highlights: Sequence[str],
        **context: Any,
    ) -> None:
        """Send a talent alert. Raises NotificationFailure on transport errors."""
        pass


class LoggingNotifier(RecruitmentNotifier):
    """Writes alerts to the log and keeps them in `sent` (used when no endpoint is configured)."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    def notify(self, athlete_id, test_type, score, percentile, highlights, **context) -> None:
        alert = build_alert(athlete_id, test_type, score, percentile, highlights, **context)
        self.sent.append(alert)
        logger.info(
            f"Talent alert: athlete={athlete_id} test={test_type} score={score} percentile={percentile}",
            extra={"extra_fields": {"alert": alert}},
        )


class HttpRecruitmentNotifier(RecruitmentNotifier):
    """POSTs alerts as JSON to the recruitment authority endpoint."""

    def __init__(self, url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: Optional[int] = None, session: Optional[requests.Session] = None):
        self.url = url or settings.RECRUITMENT_ALERT_URL
        if not self.url:
            raise ValueError("RECRUITMENT_ALERT_URL is not configured")
        self.api_key = api_key if api_key is not None else settings.RECRUITMENT_API_KEY
        self.timeout = timeout or settings.EXTERNAL_API_TIMEOUT
        self._http = session or requests

    def notify(self, athlete_id, test_type, score, percentile, highlights, **context) -> None:
        alert = build_alert(athlete_id, test_type, score, percentile, highlights, **context)
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            r = self._http.post(self.url, json=alert, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise NotificationFailure(f"Recruitment alert request failed: {e}") from e

        if r.status_code >= 400:
            raise NotificationFailure(
                f"Recruitment alert rejected: HTTP {r.status_code} {r.text[:200]}"
            )
        logger.info(f"Talent alert delivered: athlete={athlete_id} test={test_type}")


def get_notifier() -> RecruitmentNotifier:
    if settings.RECRUITMENT_ALERT_URL:
        return HttpRecruitmentNotifier()
    return LoggingNotifier()
