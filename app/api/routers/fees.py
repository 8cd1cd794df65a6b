# app/api/routers/fees.py
from fastapi import APIRouter, Depends, HTTPException, status
import logging

from app.api.deps.services import get_fee_cache, get_fee_compositor
from app.core.exceptions import AcademicYearNotFoundError, PupilNotGroupedError
from app.schemas.academic import find_academic_year_for_term
from app.schemas.fee_schema import (
    BatchFeesRequest, BatchFeesResponse, CacheStats, InvalidateCacheRequest,
    InvalidateCacheResponse, MaintenanceResult, OptimizedPupilFees,
    PreloadCacheRequest, PupilFeesRequest
)
from app.services.fee_compositor import FeeCompositor
from app.services.fee_group_cache import FeeGroupCache

logger = logging.getLogger(__name__)
router = APIRouter()

# ==================== FEE CALCULATION ====================

@router.post("/batch", response_model=BatchFeesResponse)
async def batch_pupil_fees(
    data: BatchFeesRequest,
    compositor: FeeCompositor = Depends(get_fee_compositor)
):
    """Fee breakdowns for a roster of pupils in one term"""
    try:
        results = await compositor.batch_process_pupils(
            data.pupils,
            data.fee_structures,
            data.payments_by_pupil(),
            data.academic_years,
            data.term_id,
        )
    except AcademicYearNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return BatchFeesResponse(results=results, stats=compositor.cache.get_cache_stats())


@router.post("/pupil", response_model=OptimizedPupilFees)
async def pupil_fees(
    data: PupilFeesRequest,
    compositor: FeeCompositor = Depends(get_fee_compositor)
):
    """Fee breakdown for a single pupil"""
    academic_year = find_academic_year_for_term(data.academic_years, data.term_id)
    if academic_year is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Academic year for term {data.term_id} not found"
        )

    compositor.cache.group_pupils([data.pupil], academic_year.id, data.term_id)
    try:
        return await compositor.get_optimized_pupil_fees(
            data.pupil,
            data.fee_structures,
            data.payments,
            data.academic_years,
            data.term_id,
        )
    except AcademicYearNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PupilNotGroupedError as e:
        # Swept between grouping and composition
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

# ==================== CACHE LIFECYCLE ====================

@router.get("/cache/stats", response_model=CacheStats)
async def cache_stats(cache: FeeGroupCache = Depends(get_fee_cache)):
    return cache.get_cache_stats()


@router.post("/cache/invalidate", response_model=InvalidateCacheResponse)
async def invalidate_term_cache(
    data: InvalidateCacheRequest,
    cache: FeeGroupCache = Depends(get_fee_cache)
):
    """Call after fee structures for a term change"""
    removed = cache.invalidate_cache_for_term(data.academic_year_id, data.term_id)
    return InvalidateCacheResponse(groups_removed=removed)


@router.post("/cache/maintenance", response_model=MaintenanceResult)
async def run_cache_maintenance(cache: FeeGroupCache = Depends(get_fee_cache)):
    return cache.perform_cache_maintenance()


@router.post("/cache/preload", response_model=CacheStats)
async def preload_cache(
    data: PreloadCacheRequest,
    cache: FeeGroupCache = Depends(get_fee_cache)
):
    await cache.preload_common_groups(data.class_ids, data.academic_years, data.fee_structures)
    return cache.get_cache_stats()


@router.delete("/cache", status_code=status.HTTP_204_NO_CONTENT)
async def clear_cache(cache: FeeGroupCache = Depends(get_fee_cache)):
    """Full reset, for global fee schedule edits"""
    cache.clear_cache()
