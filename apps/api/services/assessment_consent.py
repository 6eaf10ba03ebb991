"""
Assessment Processing Consent

Provides the consent operations the evaluation pipeline depends on:
- has_consent(athlete_id, purpose) -> bool  [checked before any analysis runs]
- grant(athlete_id, purpose, ...)
- revoke(athlete_id, purpose, ...)
- record_access(athlete_id, access_type, purpose, data_types, ...)

Deny by default: an athlete with no consent record for a purpose has not
consented. Revocation takes effect for every run that has not yet passed
its consent check.

Every grant/revoke writes to consent_audit_log, even when the state does
not change, so the audit trail stays complete.
"""
from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

ASSESSMENT_ANALYSIS = "assessment_analysis"
TALENT_IDENTIFICATION = "talent_identification"
PERFORMANCE_ANALYTICS = "performance_analytics"
DATA_SHARING = "data_sharing"

CONSENT_PURPOSES = (ASSESSMENT_ANALYSIS, TALENT_IDENTIFICATION, PERFORMANCE_ANALYTICS, DATA_SHARING)

# Access log entry written after integrity analysis
INTEGRITY_ACCESS_TYPE = "integrity_analysis"
INTEGRITY_ACCESS_PURPOSE = "assessment_validation"
INTEGRITY_DATA_TYPES = ("video", "movement_patterns")


@dataclass
class AccessRecord:
    athlete_id: str
    access_type: str
    purpose: str
    data_types: List[str]
    accessor: str = "system"
    success: bool = True
    details: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _check_purpose(purpose: str) -> None:
    if purpose not in CONSENT_PURPOSES:
        raise ValueError(f"Unknown consent purpose: {purpose}")


class ConsentGate(ABC):
    """Consent checks and data-access auditing for athlete data."""

    @abstractmethod
    def has_consent(self, athlete_id: str, purpose: str) -> bool:
        pass

    @abstractmethod
    def grant(self, athlete_id: str, purpose: str, ip_address: Optional[str] = None,
              user_agent: Optional[str] = None, source: str = "api") -> None:
        pass

    @abstractmethod
    def revoke(self, athlete_id: str, purpose: str, ip_address: Optional[str] = None,
               user_agent: Optional[str] = None, source: str = "api") -> None:
        pass

    @abstractmethod
    def record_access(
        self,
        athlete_id: str,
        access_type: str,
        purpose: str,
        data_types: Sequence[str],
        accessor: str = "system",
        success: bool = True,
        details: Optional[str] = None,
    ) -> None:
        pass


class InMemoryConsentGate(ConsentGate):
    """
    Process-local consent state.

    `granted` seeds (athlete_id, purpose) pairs that start out consented.
    """

    def __init__(self, granted: Sequence[Tuple[str, str]] = ()):
        self._lock = threading.Lock()
        self._consent: Dict[Tuple[str, str], bool] = {}
        self.audit: List[Dict[str, str]] = []
        self.access_log: List[AccessRecord] = []
        for athlete_id, purpose in granted:
            self._consent[(athlete_id, purpose)] = True

    def has_consent(self, athlete_id: str, purpose: str) -> bool:
        with self._lock:
            return self._consent.get((athlete_id, purpose), False)

    def grant(self, athlete_id, purpose, ip_address=None, user_agent=None, source="api") -> None:
        _check_purpose(purpose)
        with self._lock:
            self._consent[(athlete_id, purpose)] = True
            self.audit.append({"athlete_id": athlete_id, "consent_type": purpose, "action": "granted", "source": source})
        logger.info(f"Consent granted: athlete={athlete_id} purpose={purpose} source={source}")

    def revoke(self, athlete_id, purpose, ip_address=None, user_agent=None, source="api") -> None:
        _check_purpose(purpose)
        with self._lock:
            self._consent[(athlete_id, purpose)] = False
            self.audit.append({"athlete_id": athlete_id, "consent_type": purpose, "action": "revoked", "source": source})
        logger.info(f"Consent revoked: athlete={athlete_id} purpose={purpose} source={source}")

    def record_access(self, athlete_id, access_type, purpose, data_types, accessor="system",
                      success=True, details=None) -> None:
        with self._lock:
            self.access_log.append(AccessRecord(
                athlete_id=athlete_id,
                access_type=access_type,
                purpose=purpose,
                data_types=list(data_types),
                accessor=accessor,
                success=success,
                details=details,
            ))


class SqlConsentGate(ConsentGate):
    """Consent backed by athlete_consent, consent_audit_log and data_access_log."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        if session_factory is None:
            from core.database import SessionLocal
            session_factory = SessionLocal
        self._session_factory = session_factory

    def has_consent(self, athlete_id: str, purpose: str) -> bool:
        """
        True only when a consent row exists for the purpose and is granted.

        Read errors deny: a consent check that cannot be answered blocks the run.
        """
        from models import AthleteConsent

        db = self._session_factory()
        try:
            row = (
                db.query(AthleteConsent)
                .filter(AthleteConsent.athlete_id == athlete_id, AthleteConsent.purpose == purpose)
                .first()
            )
            return bool(row and row.granted)
        except Exception as e:
            logger.warning(f"Could not read consent for athlete {athlete_id} purpose={purpose}: {e}; denying")
            return False
        finally:
            db.close()

    def grant(self, athlete_id, purpose, ip_address=None, user_agent=None, source="api") -> None:
        """
        Grant consent for a purpose.

        Sets granted=True and granted_at=now(), clears revoked_at.
        """
        _check_purpose(purpose)
        now = datetime.now(timezone.utc)
        db = self._session_factory()
        try:
            row = self._get_or_create(db, athlete_id, purpose)
            row.granted = True
            row.granted_at = now
            row.revoked_at = None
            _write_audit_log(db, athlete_id, purpose, "granted", ip_address, user_agent, source)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        logger.info(f"Consent granted: athlete={athlete_id} purpose={purpose} source={source}")

    def revoke(self, athlete_id, purpose, ip_address=None, user_agent=None, source="api") -> None:
        """
        Revoke consent for a purpose.

        Sets granted=False and revoked_at=now(), preserves granted_at.
        """
        _check_purpose(purpose)
        now = datetime.now(timezone.utc)
        db = self._session_factory()
        try:
            row = self._get_or_create(db, athlete_id, purpose)
            row.granted = False
            row.revoked_at = now
            _write_audit_log(db, athlete_id, purpose, "revoked", ip_address, user_agent, source)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        logger.info(f"Consent revoked: athlete={athlete_id} purpose={purpose} source={source}")

    def record_access(self, athlete_id, access_type, purpose, data_types, accessor="system",
                      success=True, details=None) -> None:
        from models import DataAccessLog

        db = self._session_factory()
        try:
            db.add(DataAccessLog(
                athlete_id=athlete_id,
                accessor=accessor,
                access_type=access_type,
                purpose=purpose,
                data_types=list(data_types),
                success=success,
                details=details,
            ))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _get_or_create(db: Session, athlete_id: str, purpose: str):
        from models import AthleteConsent

        row = (
            db.query(AthleteConsent)
            .filter(AthleteConsent.athlete_id == athlete_id, AthleteConsent.purpose == purpose)
            .first()
        )
        if row is None:
            row = AthleteConsent(athlete_id=athlete_id, purpose=purpose, granted=False)
            db.add(row)
        return row


def _write_audit_log(
    db: Session,
    athlete_id: str,
    purpose: str,
    action: str,
    ip_address: Optional[str],
    user_agent: Optional[str],
    source: str,
) -> None:
    """Write one row to consent_audit_log. Called by grant and revoke."""
    from models import ConsentAuditLog

    db.add(ConsentAuditLog(
        athlete_id=athlete_id,
        consent_type=purpose,
        action=action,
        ip_address=ip_address,
        user_agent=user_agent,
        source=source,
    ))
