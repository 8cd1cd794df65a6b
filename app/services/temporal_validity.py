# app/services/temporal_validity.py
"""
Registration-date aware filtering of academic years, terms and requirements.

A pupil without a registration date sees every period. Otherwise a year is
visible when it ended on or after registration, and a term when the pupil
was registered on or before the day it started.
"""
import logging
from datetime import date
from typing import List, Optional

from app.schemas.academic import AcademicPeriod, AcademicYear, Term
from app.schemas.pupil import Pupil
from app.schemas.requirement import RequirementItem, TrackingValidation

logger = logging.getLogger(__name__)


def is_academic_year_valid_for_pupil(academic_year: AcademicYear, registration_date: Optional[date] = None) -> bool:
    if registration_date is None:
        return True
    return academic_year.end_date >= registration_date


def is_term_valid_for_pupil(term: Term, registration_date: Optional[date] = None) -> bool:
    if registration_date is None:
        return True
    return registration_date <= term.start_date


def get_valid_academic_years_for_pupil(
    academic_years: List[AcademicYear],
    registration_date: Optional[date] = None
) -> List[AcademicYear]:
    if registration_date is None:
        return academic_years
    return [year for year in academic_years if is_academic_year_valid_for_pupil(year, registration_date)]


def get_valid_terms_for_pupil(academic_year: AcademicYear, registration_date: Optional[date] = None) -> List[Term]:
    if registration_date is None:
        return academic_year.terms
    return [term for term in academic_year.terms if is_term_valid_for_pupil(term, registration_date)]


def is_pupil_valid_for_term(pupil: Pupil, term: Term) -> bool:
    """Whether the pupil belongs in per-term lists (requirements, attendance) for this term"""
    if pupil.registration_date is None:
        return True
    return term.start_date >= pupil.registration_date


def get_previous_periods(
    current_term_id: str,
    current_academic_year: AcademicYear,
    academic_years: List[AcademicYear],
    registration_date: Optional[date] = None
) -> List[AcademicPeriod]:
    """
    Every (term, year) pair before the current term, oldest first.

    Years starting after the current year are skipped, as are years and terms
    that precede the pupil's registration. When current_term_id is not part of
    current_academic_year no term of that year is returned.
    """
    periods: List[AcademicPeriod] = []
    current_term_index = current_academic_year.term_index(current_term_id)
    logger.debug(f"Current term {current_term_id} found at index {current_term_index} in {current_academic_year.name}")

    for year in sorted(academic_years, key=lambda y: y.start_date):
        if year.start_date > current_academic_year.start_date:
            logger.debug(f"Skipping future year {year.name}")
            continue

        if not is_academic_year_valid_for_pupil(year, registration_date):
            logger.debug(f"Skipping year {year.name}: ended before registration ({registration_date})")
            continue

        if year.id == current_academic_year.id:
            candidate_terms = year.terms[:max(current_term_index, 0)]
        else:
            candidate_terms = year.terms

        for term in candidate_terms:
            if not is_term_valid_for_pupil(term, registration_date):
                logger.debug(f"Skipping term {term.name}: started before registration")
                continue
            periods.append(AcademicPeriod(term_id=term.id, term_name=term.name, academic_year=year))

    logger.info(f"Found {len(periods)} previous periods before term {current_term_id}")
    return periods


def _pupil_gender_key(pupil: Pupil) -> str:
    if pupil.gender == "Male":
        return "male"
    if pupil.gender == "Female":
        return "female"
    return "all"


def filter_applicable_requirements(
    requirements: List[RequirementItem],
    pupil: Pupil,
    term_id: str,
    academic_year: AcademicYear
) -> List[RequirementItem]:
    """Requirements that apply to the pupil in the given term"""
    term = academic_year.find_term(term_id)
    if term is None:
        logger.info(f"Term {term_id} not found in academic year {academic_year.name}")
        return []

    if not is_term_valid_for_pupil(term, pupil.registration_date):
        logger.info(f"Term {term.name} started before pupil {pupil.id} was registered ({pupil.registration_date})")
        return []

    applicable = []
    for requirement in requirements:
        if requirement.gender != "all" and requirement.gender != _pupil_gender_key(pupil):
            continue
        if requirement.class_type == "specific" and requirement.class_ids is not None:
            if pupil.class_id not in requirement.class_ids:
                continue
        if requirement.section_type == "specific" and requirement.section:
            if requirement.section != pupil.section:
                continue
        if not requirement.is_active:
            continue
        applicable.append(requirement)

    logger.debug(f"Filtered requirements for pupil {pupil.id}: {len(applicable)} of {len(requirements)}")
    return applicable


def validate_requirement_tracking_creation(
    pupil: Pupil,
    term_id: str,
    academic_year: AcademicYear,
    requirement: RequirementItem
) -> TrackingValidation:
    term = academic_year.find_term(term_id)
    if term is None:
        return TrackingValidation(
            is_valid=False,
            reason=f"Term {term_id} not found in academic year {academic_year.name}"
        )

    if not is_term_valid_for_pupil(term, pupil.registration_date):
        return TrackingValidation(
            is_valid=False,
            reason=(
                f"Pupil was not registered when term {term.name} started "
                f"(registration: {pupil.registration_date}, term start: {term.start_date})"
            )
        )

    if not filter_applicable_requirements([requirement], pupil, term_id, academic_year):
        return TrackingValidation(
            is_valid=False,
            reason=f'Requirement "{requirement.name}" is not applicable to this pupil for term {term.name}'
        )

    return TrackingValidation(is_valid=True)
