# app/schemas/fee_schema.py
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Literal, NamedTuple
from datetime import date
from decimal import Decimal

from app.schemas.academic import AcademicYear
from app.schemas.pupil import Pupil, Section

DISCOUNT_CATEGORY = "Discount"
ZERO = Decimal("0.00")


# Fee catalogue
class FeeStructure(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str = Field(..., min_length=1, max_length=128)
    amount: Decimal  # negative amounts are discounts
    category: str = "Tuition"
    class_id: Optional[str] = None
    academic_year_id: str
    term_id: str
    is_assignment_fee: bool = False
    is_required: bool = True
    linked_fee_id: Optional[str] = None  # base fee a discount applies to

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Ensure fee name is not just whitespace"""
        if not v.strip():
            raise ValueError('Fee name cannot be empty or whitespace')
        return v.strip()

    @property
    def is_discount(self) -> bool:
        return self.category == DISCOUNT_CATEGORY or self.amount < 0


class Payment(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    pupil_id: str
    fee_id: Optional[str] = None
    amount: Decimal
    payment_date: Optional[date] = None


# Grouping
class GroupKey(NamedTuple):
    """Fee-determining characteristics shared by every pupil in a group"""
    class_id: str
    section: str
    academic_year_id: str
    term_id: str

    def __str__(self) -> str:
        return "|".join(self)


class PupilGroup(BaseModel):
    class_id: str
    section: Section
    academic_year_id: str
    term_id: str
    pupils: List[str] = Field(default_factory=list)

    @property
    def group_key(self) -> GroupKey:
        return GroupKey(self.class_id, self.section, self.academic_year_id, self.term_id)


# Cached base fees
class BaseFeeLine(BaseModel):
    fee_structure_id: str
    name: str
    amount: Decimal
    category: str
    is_required: bool


class CachedGroupFees(BaseModel):
    group_key: str
    base_fees: List[BaseFeeLine] = []
    total_base_fees: Decimal = ZERO
    calculated_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at < now


# Per-pupil components
class AssignmentFeeLine(BaseModel):
    fee_structure_id: str
    name: str
    amount: Decimal


class DiscountLine(BaseModel):
    fee_structure_id: str
    name: str
    amount: Decimal  # always positive
    linked_fee_id: Optional[str] = None


class PupilVariableComponents(BaseModel):
    pupil_id: str
    assignment_fees: List[AssignmentFeeLine] = []
    discounts: List[DiscountLine] = []
    total_paid: Decimal = ZERO
    last_calculated: float


class AppliedDiscount(BaseModel):
    id: str
    name: str
    amount: Decimal
    type: Literal["fixed", "percentage"] = "fixed"


class ApplicableFee(BaseModel):
    fee_structure_id: str
    name: str
    amount: Decimal
    paid: Decimal = ZERO
    balance: Decimal = ZERO
    original_amount: Optional[Decimal] = None
    discount: Optional[AppliedDiscount] = None


class OptimizedPupilFees(BaseModel):
    total_fees: Decimal = ZERO
    total_paid: Decimal = ZERO
    balance: Decimal = ZERO
    applicable_fees: List[ApplicableFee] = []
    from_cache: bool = False
    calculation_time: float = 0.0  # milliseconds

    @classmethod
    def empty(cls) -> "OptimizedPupilFees":
        """Zeroed result used when a pupil fails inside a batch"""
        return cls()


class CacheStats(BaseModel):
    total_groups: int
    total_pupils: int
    expired_groups: int
    active_groups: int
    cache_efficiency: str
    hits: int = 0
    misses: int = 0
    base_fee_calculations: int = 0


class MaintenanceResult(BaseModel):
    expired_groups_removed: int
    orphaned_pupils_removed: int


# API bodies
class PupilFeesRequest(BaseModel):
    pupil: Pupil
    fee_structures: List[FeeStructure]
    payments: List[Payment] = []
    academic_years: List[AcademicYear]
    term_id: str


class BatchFeesRequest(BaseModel):
    pupils: List[Pupil]
    fee_structures: List[FeeStructure]
    payments: List[Payment] = []
    academic_years: List[AcademicYear]
    term_id: str

    def payments_by_pupil(self) -> Dict[str, List[Payment]]:
        grouped: Dict[str, List[Payment]] = {}
        for payment in self.payments:
            grouped.setdefault(payment.pupil_id, []).append(payment)
        return grouped


class BatchFeesResponse(BaseModel):
    results: Dict[str, OptimizedPupilFees]
    stats: CacheStats


class InvalidateCacheRequest(BaseModel):
    academic_year_id: str
    term_id: str


class InvalidateCacheResponse(BaseModel):
    groups_removed: int


class PreloadCacheRequest(BaseModel):
    class_ids: List[str]
    fee_structures: List[FeeStructure]
    academic_years: List[AcademicYear]
