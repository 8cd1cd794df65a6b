# app/core/exceptions.py - Fee engine error taxonomy
from typing import Optional


class FeeEngineError(Exception):
    """Base class for fee/snapshot core errors"""


class PupilNotGroupedError(FeeEngineError):
    """Raised when fees are composed for a pupil that was never grouped"""

    def __init__(self, pupil_id: str):
        self.pupil_id = pupil_id
        super().__init__(f"No group found for pupil {pupil_id}")


class AcademicYearNotFoundError(FeeEngineError):
    def __init__(self, academic_year_id: Optional[str] = None, term_id: Optional[str] = None):
        self.academic_year_id = academic_year_id
        self.term_id = term_id
        if academic_year_id:
            message = f"Academic year {academic_year_id} not found"
        else:
            message = f"Academic year for term {term_id} not found"
        super().__init__(message)


class TermNotFoundError(FeeEngineError):
    def __init__(self, term_id: str, academic_year_name: str):
        self.term_id = term_id
        super().__init__(f"Term {term_id} not found in academic year {academic_year_name}")


class TrackingValidationError(FeeEngineError):
    """Requirement tracking creation refused for a pupil/term"""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Cannot create requirement tracking: {reason}")


class SnapshotNotAllowedError(FeeEngineError):
    """Snapshots are only stored for terms that have ended"""

    def __init__(self, term_id: str, term_status: str):
        self.term_id = term_id
        self.term_status = term_status
        super().__init__(f"Cannot store a snapshot for {term_status} term {term_id}; only ended terms are frozen")
