# app/schemas/academic.py - Academic year and term shapes consumed by the fee core
from datetime import date
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Optional, List


class Term(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError(f"Term {self.name} ends before it starts")
        return self


class AcademicYear(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    start_date: date
    end_date: date
    is_active: bool = False
    terms: List[Term] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_terms_ordered(self):
        """Terms must be chronological and must not overlap"""
        for previous, current in zip(self.terms, self.terms[1:]):
            if current.start_date <= previous.end_date:
                raise ValueError(
                    f"Term {current.name} must start after {previous.name} ends in {self.name}"
                )
        return self

    def find_term(self, term_id: str) -> Optional[Term]:
        return next((term for term in self.terms if term.id == term_id), None)

    def term_index(self, term_id: str) -> int:
        """Position of the term in this year, -1 when absent"""
        for index, term in enumerate(self.terms):
            if term.id == term_id:
                return index
        return -1


class AcademicPeriod(BaseModel):
    """A term together with the academic year that owns it"""
    term_id: str
    term_name: str
    academic_year: AcademicYear


def find_academic_year_for_term(academic_years: List[AcademicYear], term_id: str) -> Optional[AcademicYear]:
    return next(
        (year for year in academic_years if any(term.id == term_id for term in year.terms)),
        None
    )
