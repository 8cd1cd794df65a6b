# app/schemas/snapshot.py - Pupil term snapshots and snapshot maintenance results
from datetime import date, datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List

from app.schemas.academic import AcademicYear
from app.schemas.pupil import Pupil, Section


class TermStatus(str, Enum):
    PAST = "past"
    CURRENT = "current"
    FUTURE = "future"


class PupilSnapshot(BaseModel):
    """A stored snapshot, or a virtual one built from live data (never persisted)"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    pupil_id: str
    term_id: str
    academic_year_id: str
    class_id: str
    section: Optional[Section] = None
    admission_number: str
    date_of_birth: Optional[date] = None
    is_active: bool = True
    snapshot_date: datetime
    term_start_date: date
    term_end_date: date
    is_virtual: bool = False


# Coverage
class MissingSnapshot(BaseModel):
    pupil_id: str
    pupil_name: str
    term_id: str
    term_name: str
    academic_year: str


class SnapshotCoverage(BaseModel):
    total_expected_snapshots: int
    existing_snapshots: int
    missing_snapshots: int
    missing_snapshot_details: List[MissingSnapshot] = []

    @property
    def coverage_percentage(self) -> int:
        if self.total_expected_snapshots == 0:
            return 0
        return round(self.existing_snapshots / self.total_expected_snapshots * 100)


# Bulk operation results
class SnapshotError(BaseModel):
    term_id: str
    pupil_id: Optional[str] = None
    snapshot_id: Optional[str] = None
    error: str


class SnapshotBackfillResult(BaseModel):
    created: int = 0
    skipped: int = 0
    errors: List[SnapshotError] = Field(default_factory=list)


class SnapshotCleanupResult(BaseModel):
    deleted: int = 0
    errors: List[SnapshotError] = Field(default_factory=list)


class SnapshotStatsByTermStatus(BaseModel):
    past_terms_snapshots: int = 0
    current_terms_snapshots: int = 0
    future_terms_snapshots: int = 0
    total_snapshots: int = 0


class SnapshotMaintenanceResult(BaseModel):
    terms_checked: int = 0
    snapshots_created: int = 0
    errors: List[SnapshotError] = Field(default_factory=list)
    message: str = ""
    ran_at: Optional[datetime] = None


# API bodies
class SnapshotRosterRequest(BaseModel):
    pupils: List[Pupil]
    academic_years: List[AcademicYear]


class SnapshotYearsRequest(BaseModel):
    academic_years: List[AcademicYear]
