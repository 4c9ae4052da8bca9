"""
Violation event persistence (append-only).
"""
from datetime import datetime
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from assessment.models import TestViolation


class ViolationRepository:
    def __init__(self, db: Session):
        self.db = db

    def add(
        self,
        attempt_id: int,
        violation_type: str,
        details: Optional[dict[str, Any]],
        created_at: datetime,
    ) -> TestViolation:
        violation = TestViolation(
            attempt_id=attempt_id,
            violation_type=violation_type,
            details=details,
            created_at=created_at,
        )
        self.db.add(violation)
        self.db.flush()
        return violation

    def list_for_attempt(self, attempt_id: int) -> List[TestViolation]:
        return (
            self.db.query(TestViolation)
            .filter(TestViolation.attempt_id == attempt_id)
            .order_by(TestViolation.created_at, TestViolation.id)
            .all()
        )

    def list_for_attempts(self, attempt_ids: Iterable[int]) -> Dict[int, List[TestViolation]]:
        """Violations of several attempts in one query, grouped by attempt id."""
        ids = list(attempt_ids)
        grouped: Dict[int, List[TestViolation]] = defaultdict(list)
        if not ids:
            return grouped
        rows = (
            self.db.query(TestViolation)
            .filter(TestViolation.attempt_id.in_(ids))
            .order_by(TestViolation.created_at, TestViolation.id)
            .all()
        )
        for row in rows:
            grouped[row.attempt_id].append(row)
        return grouped
