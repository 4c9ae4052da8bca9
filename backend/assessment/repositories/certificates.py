"""
Certificate persistence.
"""
from typing import List, Optional

from sqlalchemy.orm import Session

from assessment.models import Certificate


class CertificateRepository:
    def __init__(self, db: Session):
        self.db = db

    def find_active_for_attempt(self, attempt_id: int) -> Optional[Certificate]:
        return (
            self.db.query(Certificate)
            .filter(Certificate.attempt_id == attempt_id, Certificate.is_active.is_(True))
            .first()
        )

    def get_active_by_code(self, certificate_code: str) -> Optional[Certificate]:
        return (
            self.db.query(Certificate)
            .filter(
                Certificate.certificate_code == certificate_code,
                Certificate.is_active.is_(True),
            )
            .first()
        )

    def list_for_student(self, student_id: int) -> List[Certificate]:
        return (
            self.db.query(Certificate)
            .filter(Certificate.student_id == student_id, Certificate.is_active.is_(True))
            .order_by(Certificate.issued_at.desc())
            .all()
        )

    def add(self, certificate: Certificate) -> Certificate:
        """Stage and flush; raises IntegrityError on a duplicate active certificate."""
        self.db.add(certificate)
        self.db.flush()
        return certificate
