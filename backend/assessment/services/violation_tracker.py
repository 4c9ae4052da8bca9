"""
Integrity violation recording.

Recording is best-effort: it runs off the request path and a failure must
never reach the student. ``record`` itself raises so callers and tests can
see what happened; ``record_violation_in_background`` is the swallowing
entry point used by the API.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from assessment.core.datetime_utils import client_timestamp_or_now
from assessment.core.db_error_handling import handle_db_error
from assessment.core.error_responses import ErrorMessages
from assessment.core.exceptions import NotFoundError
from assessment.core.graceful_failure import graceful_failure
from assessment.models import TestViolation
from assessment.observability import metrics
from assessment.repositories import Repositories, counter_for_violation

logger = logging.getLogger(__name__)


@dataclass
class ViolationSummary:
    attempt_id: int
    total_violations: int
    window_switches: int
    screenshot_attempts: int
    phone_calls: int
    other_violations: int
    violations: List[TestViolation] = field(default_factory=list)


@dataclass
class ViolationReport:
    """One client-reported event, as received in a batch."""

    attempt_id: int
    violation_type: str
    details: Any = None
    timestamp: Optional[datetime] = None


def normalize_details(details: Any) -> Optional[Dict[str, Any]]:
    """Plain strings are wrapped as {"message": ...}; other values are kept."""
    if details is None:
        return None
    if isinstance(details, str):
        return {"message": details}
    if isinstance(details, dict):
        return details
    return {"value": details}


class ViolationTracker:
    def __init__(self, repos: Repositories):
        self.repos = repos
        self.db = repos.db

    def record(
        self,
        attempt_id: int,
        violation_type: str,
        details: Any = None,
        timestamp: Optional[datetime] = None,
    ) -> TestViolation:
        """
        Append a violation and bump the attempt counters in one transaction.

        Counters are incremented in SQL, so concurrent reports never lose
        an update.

        Raises:
            NotFoundError: The attempt does not exist.
            PersistenceError: The write failed (rolled back).
        """
        with handle_db_error(self.db, "record violation", log_level=logging.WARNING):
            violation = self._append(
                ViolationReport(attempt_id, violation_type, details, timestamp)
            )
            self.db.commit()

        metrics.record_violation(violation_type)
        logger.info(
            f"Recorded {violation_type} violation ({counter_for_violation(violation_type)})",
            extra={"attempt_id": attempt_id},
        )
        return violation

    def record_many(self, reports: Sequence[ViolationReport]) -> List[TestViolation]:
        """
        Append a batch of violations in a single transaction.

        Either every event is stored or none is: an unknown attempt id rolls
        back the whole batch.

        Raises:
            NotFoundError: One of the attempts does not exist.
            PersistenceError: The write failed (rolled back).
        """
        with handle_db_error(self.db, "record violations", log_level=logging.WARNING):
            violations = [self._append(report) for report in reports]
            self.db.commit()

        for report in reports:
            metrics.record_violation(report.violation_type)
        logger.info(
            f"Recorded {len(violations)} violations across "
            f"{len({r.attempt_id for r in reports})} attempts"
        )
        return violations

    def _append(self, report: ViolationReport) -> TestViolation:
        updated = self.repos.attempts.increment_violation_counters(
            report.attempt_id, report.violation_type
        )
        if updated == 0:
            raise NotFoundError(ErrorMessages.ATTEMPT_NOT_FOUND)
        return self.repos.violations.add(
            report.attempt_id,
            report.violation_type,
            normalize_details(report.details),
            client_timestamp_or_now(report.timestamp),
        )

    def summary(self, attempt_id: int) -> ViolationSummary:
        attempt = self.repos.attempts.get(attempt_id)
        if attempt is None:
            raise NotFoundError(ErrorMessages.ATTEMPT_NOT_FOUND)
        self.db.refresh(attempt)
        return ViolationSummary(
            attempt_id=attempt.id,
            total_violations=attempt.total_violations,
            window_switches=attempt.window_switches,
            screenshot_attempts=attempt.screenshot_attempts,
            phone_calls=attempt.phone_calls,
            other_violations=attempt.other_violations,
            violations=self.repos.violations.list_for_attempt(attempt.id),
        )


def record_violation_in_background(
    attempt_id: int,
    violation_type: str,
    details: Any = None,
    timestamp: Optional[datetime] = None,
    *,
    session_factory: Callable[[], Session],
) -> None:
    """Record a violation in its own session; failures are logged and dropped."""
    with session_factory() as db:
        with graceful_failure(
            "record violation",
            logger,
            context={"attempt_id": attempt_id, "violation_type": violation_type},
        ):
            ViolationTracker(Repositories.from_session(db)).record(
                attempt_id, violation_type, details, timestamp
            )


def record_violations_in_background(
    reports: Sequence[ViolationReport],
    *,
    session_factory: Callable[[], Session],
) -> None:
    """Record a batch of violations in its own session; failures are logged and dropped."""
    with session_factory() as db:
        with graceful_failure(
            "record violations",
            logger,
            context={"attempt_ids": sorted({r.attempt_id for r in reports})},
        ):
            ViolationTracker(Repositories.from_session(db)).record_many(reports)
