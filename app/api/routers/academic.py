# app/api/routers/academic.py - Term eligibility and historical pupil data
from fastapi import APIRouter, Depends, HTTPException, status
from typing import List
import logging

from app.api.deps.services import get_snapshot_provider
from app.core.exceptions import TermNotFoundError, TrackingValidationError
from app.schemas.academic import AcademicPeriod, AcademicYear
from app.schemas.pupil import ResolvedPupilData
from app.schemas.requirement import (
    ApplicableRequirementsRequest, HistoricalPupilDataRequest, PreviousPeriodsRequest,
    RequirementItem, RequirementTracking, RequirementTrackingRequest, ValidTermsRequest
)
from app.services.pupil_snapshots import SnapshotProvider, resolve_historical_pupil_data
from app.services.requirement_tracking import create_enhanced_requirement_tracking
from app.services.temporal_validity import (
    filter_applicable_requirements, get_previous_periods,
    get_valid_academic_years_for_pupil, get_valid_terms_for_pupil
)

logger = logging.getLogger(__name__)
router = APIRouter()

# ==================== TERM ELIGIBILITY ====================

@router.post("/previous-periods", response_model=List[AcademicPeriod])
async def previous_periods(data: PreviousPeriodsRequest):
    """Terms before the current one that the pupil was registered for"""
    return get_previous_periods(
        data.current_term_id,
        data.current_academic_year,
        data.academic_years,
        data.registration_date,
    )


@router.post("/valid-terms", response_model=List[AcademicYear])
async def valid_terms(data: ValidTermsRequest):
    """Academic years valid for the pupil, each narrowed to its valid terms"""
    years = get_valid_academic_years_for_pupil(data.academic_years, data.registration_date)
    return [
        year.model_copy(update={"terms": get_valid_terms_for_pupil(year, data.registration_date)})
        for year in years
    ]

# ==================== HISTORICAL DATA ====================

@router.post("/historical-pupil-data", response_model=ResolvedPupilData)
async def historical_pupil_data(
    data: HistoricalPupilDataRequest,
    provider: SnapshotProvider = Depends(get_snapshot_provider)
):
    resolved = await resolve_historical_pupil_data(data.pupil, data.term_id, data.academic_year, provider)
    if resolved is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Term {data.term_id} not found in academic year {data.academic_year.name}"
        )
    return resolved

# ==================== REQUIREMENTS ====================

@router.post("/requirements/applicable", response_model=List[RequirementItem])
async def applicable_requirements(data: ApplicableRequirementsRequest):
    return filter_applicable_requirements(data.requirements, data.pupil, data.term_id, data.academic_year)


@router.post("/requirements/tracking", response_model=RequirementTracking, status_code=status.HTTP_201_CREATED)
async def requirement_tracking(
    data: RequirementTrackingRequest,
    provider: SnapshotProvider = Depends(get_snapshot_provider)
):
    try:
        return await create_enhanced_requirement_tracking(
            data.pupil,
            data.term_id,
            data.academic_year,
            data.requirement,
            data.tracking,
            provider,
        )
    except TrackingValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.reason)
    except TermNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
