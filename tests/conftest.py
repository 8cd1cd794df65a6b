import os
from datetime import date
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ENV", "dev")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.models import Base
from app.schemas.academic import AcademicYear, Term
from app.schemas.fee_schema import FeeStructure, Payment
from app.schemas.pupil import AssignedFee, Pupil
from app.services.fee_compositor import FeeCompositor
from app.services.fee_group_cache import FeeGroupCache


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_year(year_id="2024", start=date(2024, 1, 1), end=date(2024, 12, 31), terms=None, name=None):
    if terms is None:
        terms = [
            Term(id=f"{year_id}-t1", name="Term 1", start_date=date(start.year, 2, 1), end_date=date(start.year, 4, 30)),
            Term(id=f"{year_id}-t2", name="Term 2", start_date=date(start.year, 5, 20), end_date=date(start.year, 8, 10)),
            Term(id=f"{year_id}-t3", name="Term 3", start_date=date(start.year, 9, 1), end_date=date(start.year, 11, 30)),
        ]
    return AcademicYear(id=year_id, name=name or f"Academic Year {year_id}", start_date=start, end_date=end, terms=terms)


def make_pupil(pupil_id="p1", class_id="P5", section="day", **extra):
    fields = dict(
        id=pupil_id,
        first_name="Amina",
        last_name="Nakato",
        class_id=class_id,
        section=section,
        admission_number=f"ADM-{pupil_id}",
        date_of_birth=date(2014, 3, 9),
    )
    fields.update(extra)
    return Pupil(**fields)


def assign(*fee_ids):
    return [AssignedFee(fee_structure_id=fee_id) for fee_id in fee_ids]


def make_fee(fee_id, amount, class_id="P5", academic_year_id="2024", term_id="2024-t1", **extra):
    return FeeStructure(
        id=fee_id,
        name=extra.pop("name", fee_id.replace("-", " ").title()),
        amount=Decimal(str(amount)),
        class_id=class_id,
        academic_year_id=academic_year_id,
        term_id=term_id,
        **extra
    )


def make_payment(pupil_id, amount, fee_id=None):
    return Payment(pupil_id=pupil_id, fee_id=fee_id, amount=Decimal(str(amount)), payment_date=date(2024, 2, 10))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return FeeGroupCache(ttl_seconds=30 * 60, maintenance_interval_seconds=10 * 60, clock=clock)


@pytest.fixture
def compositor(cache):
    return FeeCompositor(cache)


@pytest.fixture
def year_2024():
    return make_year()


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()
