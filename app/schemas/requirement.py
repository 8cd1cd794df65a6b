# app/schemas/requirement.py - Pupil requirement items (books, stationery, ...) and their tracking
from datetime import date, datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Literal, Union
from decimal import Decimal

from app.schemas.academic import AcademicYear
from app.schemas.pupil import DataSource, Pupil, Section


class RequirementItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    group: str = "General"
    price: Decimal = Decimal("0.00")
    quantity: Optional[int] = Field(default=None, ge=0)
    gender: Literal["all", "male", "female"] = "all"
    class_type: Literal["all", "specific"] = "all"
    class_ids: Optional[List[str]] = None
    section_type: Literal["all", "specific"] = "all"
    section: Optional[Section] = None
    frequency: Literal["termly", "yearly", "one-time"] = "termly"
    description: Optional[str] = None
    is_active: bool = True


class TrackingValidation(BaseModel):
    is_valid: bool
    reason: Optional[str] = None


class PupilSnapshotData(BaseModel):
    class_id: str
    section: Optional[Section] = None
    admission_number: str
    date_of_birth: Optional[date] = None
    data_source: DataSource


class RequirementTrackingData(BaseModel):
    """Caller-supplied tracking details"""
    payment_status: Literal["pending", "partial", "paid"] = "pending"
    paid_amount: Decimal = Decimal("0.00")
    payment_date: Optional[date] = None
    coverage_mode: Literal["cash", "item"] = "cash"
    total_item_quantity_required: Optional[int] = None
    item_quantity_provided: Optional[int] = None
    release_status: Literal["pending", "partial", "full"] = "pending"
    history: List[dict] = Field(default_factory=list)


class RequirementTracking(RequirementTrackingData):
    id: Optional[str] = None
    pupil_id: str
    requirement_id: Union[str, List[str]]
    academic_year_id: str
    term_id: str
    pupil_snapshot_data: PupilSnapshotData
    created_at: datetime
    updated_at: datetime


# API bodies
class PreviousPeriodsRequest(BaseModel):
    current_term_id: str
    current_academic_year: AcademicYear
    academic_years: List[AcademicYear]
    registration_date: Optional[date] = None


class ValidTermsRequest(BaseModel):
    academic_years: List[AcademicYear]
    registration_date: Optional[date] = None


class HistoricalPupilDataRequest(BaseModel):
    pupil: Pupil
    term_id: str
    academic_year: AcademicYear


class ApplicableRequirementsRequest(BaseModel):
    requirements: List[RequirementItem]
    pupil: Pupil
    term_id: str
    academic_year: AcademicYear


class RequirementTrackingRequest(BaseModel):
    pupil: Pupil
    term_id: str
    academic_year: AcademicYear
    requirement: RequirementItem
    tracking: RequirementTrackingData = Field(default_factory=RequirementTrackingData)
