# app/schemas/pupil.py
from datetime import date
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Literal

Section = Literal["day", "boarding"]


class PupilStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    GRADUATED = "Graduated"
    TRANSFERRED = "Transferred"


class DataSource(str, Enum):
    """Where resolved pupil attributes came from"""
    LIVE = "live"                    # term still open, current attributes
    SNAPSHOT = "snapshot"            # term closed, frozen attributes found
    FALLBACK_LIVE = "fallback_live"  # term closed, no snapshot available


class AssignedFee(BaseModel):
    fee_structure_id: str
    assigned_at: Optional[date] = None
    notes: Optional[str] = None


class PromotionRecord(BaseModel):
    promoted_on: date
    from_class_id: Optional[str] = None
    to_class_id: str


def _normalize_section(v):
    if v is None:
        return v
    if isinstance(v, str):
        v = v.strip().lower()
        return v or None
    return v


class Pupil(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    first_name: str
    last_name: str
    class_id: str
    section: Optional[Section] = None
    admission_number: str
    registration_date: Optional[date] = None
    date_of_birth: Optional[date] = None
    gender: Optional[Literal["Male", "Female"]] = None
    status: PupilStatus = PupilStatus.ACTIVE
    assigned_fees: List[AssignedFee] = Field(default_factory=list)
    promotion_history: List[PromotionRecord] = Field(default_factory=list)

    @field_validator("section", mode="before")
    @classmethod
    def normalize_section(cls, v):
        return _normalize_section(v)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class HistoricalPupilData(BaseModel):
    """Pupil attributes that decide class/section-dependent records for a term"""
    class_id: str
    section: Optional[Section] = None
    admission_number: str
    date_of_birth: Optional[date] = None

    @field_validator("section", mode="before")
    @classmethod
    def normalize_section(cls, v):
        return _normalize_section(v)

    @classmethod
    def from_pupil(cls, pupil: Pupil) -> "HistoricalPupilData":
        return cls(
            class_id=pupil.class_id,
            section=pupil.section,
            admission_number=pupil.admission_number,
            date_of_birth=pupil.date_of_birth,
        )


class ResolvedPupilData(HistoricalPupilData):
    source: DataSource

    def attributes(self) -> HistoricalPupilData:
        return HistoricalPupilData(**self.model_dump(include={"class_id", "section", "admission_number", "date_of_birth"}))
