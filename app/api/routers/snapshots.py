# app/api/routers/snapshots.py - Pupil snapshot coverage, backfill and daily maintenance
from fastapi import APIRouter, Depends, HTTPException, status
import logging

from app.api.deps.services import get_snapshot_repository
from app.core.config import settings
from app.core.exceptions import SnapshotNotAllowedError, TermNotFoundError
from app.schemas.pupil import Pupil
from app.schemas.requirement import HistoricalPupilDataRequest
from app.schemas.snapshot import (
    PupilSnapshot, SnapshotBackfillResult, SnapshotCleanupResult, SnapshotCoverage,
    SnapshotMaintenanceResult, SnapshotRosterRequest, SnapshotStatsByTermStatus,
    SnapshotYearsRequest
)
from app.services.pupil_snapshots import PupilSnapshotRepository

logger = logging.getLogger(__name__)
router = APIRouter()

# ==================== DAILY MAINTENANCE ====================

@router.get("/maintenance/snapshots")
async def snapshot_maintenance_info():
    """Describe the maintenance endpoint for schedulers"""
    return {
        "endpoint": "/api/maintenance/snapshots",
        "method": "POST",
        "description": "Creates snapshots for terms that ended recently",
        "window_days": settings.SNAPSHOT_MAINTENANCE_WINDOW_DAYS,
    }


@router.post("/maintenance/snapshots", response_model=SnapshotMaintenanceResult)
def run_snapshot_maintenance(
    data: SnapshotRosterRequest,
    repository: PupilSnapshotRepository = Depends(get_snapshot_repository)
):
    """Freeze pupil data for terms that ended within the maintenance window"""
    try:
        result = repository.run_daily_snapshot_maintenance(data.pupils, data.academic_years)
    except Exception as e:
        logger.error(f"Snapshot maintenance failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Snapshot maintenance failed: {e}"
        )
    logger.info(result.message)
    return result

# ==================== COVERAGE & BACKFILL ====================

@router.post("/snapshots/coverage", response_model=SnapshotCoverage)
def snapshot_coverage(
    data: SnapshotRosterRequest,
    repository: PupilSnapshotRepository = Depends(get_snapshot_repository)
):
    return repository.check_snapshot_coverage(data.pupils, data.academic_years)


@router.post("/snapshots/backfill", response_model=SnapshotBackfillResult)
def backfill_snapshots(
    data: SnapshotRosterRequest,
    repository: PupilSnapshotRepository = Depends(get_snapshot_repository)
):
    """Create every missing snapshot for ended terms"""
    return repository.create_missing_snapshots(data.pupils, data.academic_years)


@router.post("/snapshots/cleanup", response_model=SnapshotCleanupResult)
def cleanup_snapshots(
    data: SnapshotYearsRequest,
    repository: PupilSnapshotRepository = Depends(get_snapshot_repository)
):
    """Delete snapshots stored for current and upcoming terms"""
    return repository.delete_snapshots_for_current_and_upcoming_terms(data.academic_years)


@router.post("/snapshots/stats", response_model=SnapshotStatsByTermStatus)
def snapshot_stats(
    data: SnapshotYearsRequest,
    repository: PupilSnapshotRepository = Depends(get_snapshot_repository)
):
    return repository.get_snapshot_stats_by_term_status(data.academic_years)

# ==================== SINGLE PUPIL ====================

@router.post("/snapshots/get-or-create", response_model=PupilSnapshot)
async def get_or_create_snapshot(
    data: HistoricalPupilDataRequest,
    repository: PupilSnapshotRepository = Depends(get_snapshot_repository)
):
    try:
        return await repository.get_or_create_snapshot(data.pupil, data.term_id, data.academic_year)
    except TermNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except SnapshotNotAllowedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.post("/snapshots/virtual-pupil", response_model=Pupil)
async def virtual_pupil(
    data: HistoricalPupilDataRequest,
    repository: PupilSnapshotRepository = Depends(get_snapshot_repository)
):
    """The pupil as they were during the term"""
    try:
        snapshot = await repository.get_or_create_snapshot(data.pupil, data.term_id, data.academic_year)
    except TermNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return repository.create_virtual_pupil_from_snapshot(data.pupil, snapshot)
