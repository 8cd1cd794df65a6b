# app/services/fee_group_cache.py
"""
Time-expiring cache of base fees per pupil group.

One FeeGroupCache is created at application start and shared through
dependency injection. Entries live for the configured TTL, can be dropped
per term, and are swept periodically by a background task. A re-entrant
lock guards every read-modify-write, since FastAPI runs sync endpoints on
worker threads alongside the sweep.
"""
import asyncio
import contextlib
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from app.core.config import settings
from app.core.exceptions import AcademicYearNotFoundError
from app.schemas.academic import AcademicYear
from app.schemas.fee_schema import (
    BaseFeeLine, CachedGroupFees, CacheStats, FeeStructure, GroupKey,
    MaintenanceResult, PupilGroup, PupilVariableComponents, ZERO
)
from app.schemas.pupil import Pupil
from app.services.fee_grouping import group_pupils_by_fee_characteristics

logger = logging.getLogger(__name__)


class FeeGroupCache:
    """Group base-fee cache with pupil -> group lookup"""

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        maintenance_interval_seconds: Optional[float] = None,
        default_section: Optional[str] = None,
        preload_sections: Optional[List[str]] = None,
        clock: Callable[[], float] = time.time
    ):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.fee_cache_ttl_seconds
        self.maintenance_interval_seconds = (
            maintenance_interval_seconds
            if maintenance_interval_seconds is not None
            else settings.fee_cache_maintenance_interval_seconds
        )
        self.default_section = default_section or settings.DEFAULT_SECTION
        self.preload_sections = preload_sections or list(settings.PRELOAD_SECTIONS)
        self.clock = clock

        self._group_cache: Dict[GroupKey, CachedGroupFees] = {}
        self._pupil_group_map: Dict[str, GroupKey] = {}
        self._variable_components: Dict[str, PupilVariableComponents] = {}
        self._lock = threading.RLock()
        self._maintenance_task: Optional[asyncio.Task] = None

        self._hits = 0
        self._misses = 0
        self._base_fee_calculations = 0

    # ==================== GROUPING ====================

    def group_pupils(self, pupils: List[Pupil], academic_year_id: str, term_id: str) -> Dict[GroupKey, PupilGroup]:
        """Group a roster and remember each pupil's group for later composition"""
        with self._lock:
            return group_pupils_by_fee_characteristics(
                pupils,
                academic_year_id,
                term_id,
                pupil_group_map=self._pupil_group_map,
                default_section=self.default_section,
            )

    def get_group_key(self, pupil_id: str) -> Optional[GroupKey]:
        with self._lock:
            return self._pupil_group_map.get(pupil_id)

    # ==================== BASE FEES ====================

    def calculate_group_base_fees(
        self,
        group: PupilGroup,
        fee_structures: List[FeeStructure],
        academic_years: List[AcademicYear]
    ) -> CachedGroupFees:
        """Compute and store the base fees every pupil in the group pays"""
        start = time.perf_counter()

        # Stands in for every pupil of the group: same class and section, no individual assignments
        representative = Pupil(
            id="group-representative",
            first_name="Representative",
            last_name="Pupil",
            class_id=group.class_id,
            section=group.section,
            admission_number="REP001",
        )

        if not any(year.id == group.academic_year_id for year in academic_years):
            raise AcademicYearNotFoundError(academic_year_id=group.academic_year_id)

        base_fees = [
            BaseFeeLine(
                fee_structure_id=fee.id,
                name=fee.name,
                amount=fee.amount,
                category=fee.category,
                is_required=fee.is_required,
            )
            for fee in fee_structures
            if fee.academic_year_id == group.academic_year_id
            and fee.term_id == group.term_id
            and fee.class_id == representative.class_id
            and not fee.is_assignment_fee
            and not fee.is_discount
        ]
        total_base_fees = sum((fee.amount for fee in base_fees), ZERO)

        now = self.clock()
        cached = CachedGroupFees(
            group_key=str(group.group_key),
            base_fees=base_fees,
            total_base_fees=total_base_fees,
            calculated_at=now,
            expires_at=now + self.ttl_seconds,
        )

        with self._lock:
            self._group_cache[group.group_key] = cached
            self._base_fee_calculations += 1

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Cached base fees for group {group.group_key}: {len(base_fees)} fees, "
            f"total {total_base_fees}, {elapsed_ms:.2f}ms, {len(group.pupils)} pupils"
        )
        return cached

    def get_cached_group_fees(self, group_key: GroupKey) -> Optional[CachedGroupFees]:
        """Live entry for the group, or None when absent or expired"""
        with self._lock:
            cached = self._group_cache.get(group_key)
            if cached is None or cached.is_expired(self.clock()):
                return None
            return cached

    def get_or_calculate_group_fees(
        self,
        group: PupilGroup,
        fee_structures: List[FeeStructure],
        academic_years: List[AcademicYear]
    ) -> Tuple[CachedGroupFees, bool]:
        """Cached base fees for the group and whether they came from the cache"""
        with self._lock:
            cached = self.get_cached_group_fees(group.group_key)
            if cached is not None:
                self._hits += 1
                return cached, True

            self._misses += 1
            logger.info(f"Cache miss/expired for group {group.group_key}, recalculating")
            return self.calculate_group_base_fees(group, fee_structures, academic_years), False

    def store_variable_components(self, components: PupilVariableComponents):
        with self._lock:
            self._variable_components[components.pupil_id] = components

    def get_variable_components(self, pupil_id: str) -> Optional[PupilVariableComponents]:
        with self._lock:
            return self._variable_components.get(pupil_id)

    async def preload_common_groups(
        self,
        class_ids: List[str],
        academic_years: List[AcademicYear],
        fee_structures: List[FeeStructure]
    ) -> int:
        """Warm the cache for every class/section in every term; returns groups loaded"""
        logger.info("Preloading cache for common class groups...")

        async def preload(class_id: str, section: str, year: AcademicYear, term_id: str) -> bool:
            try:
                group = PupilGroup(class_id=class_id, section=section, academic_year_id=year.id, term_id=term_id)
                self.calculate_group_base_fees(group, fee_structures, academic_years)
                return True
            except Exception as e:
                logger.warning(f"Failed to preload cache for {class_id}/{section} term {term_id}: {e}")
                return False

        combinations = [
            (class_id, section, year, term.id)
            for year in academic_years
            for term in year.terms
            for class_id in class_ids
            for section in self.preload_sections
        ]
        results = await asyncio.gather(*(preload(*combination) for combination in combinations))
        loaded = sum(1 for ok in results if ok)

        logger.info(f"Preloaded cache for {loaded} of {len(combinations)} groups")
        return loaded

    # ==================== LIFECYCLE ====================

    def invalidate_cache_for_term(self, academic_year_id: str, term_id: str) -> int:
        """Drop every group built for this academic year and term"""
        with self._lock:
            keys = [
                key for key in self._group_cache
                if key.academic_year_id == academic_year_id and key.term_id == term_id
            ]
            for key in keys:
                del self._group_cache[key]
                logger.debug(f"Invalidated cache for group: {key}")

        logger.info(f"Cache invalidation complete: {len(keys)} groups cleared for term {term_id}")
        return len(keys)

    def perform_cache_maintenance(self) -> MaintenanceResult:
        """Remove expired groups and pupil mappings that point at removed groups"""
        with self._lock:
            now = self.clock()
            expired = [key for key, cached in self._group_cache.items() if cached.is_expired(now)]
            for key in expired:
                del self._group_cache[key]

            orphaned = [
                pupil_id for pupil_id, key in self._pupil_group_map.items()
                if key not in self._group_cache
            ]
            for pupil_id in orphaned:
                del self._pupil_group_map[pupil_id]

        logger.info(
            f"Cache maintenance: removed {len(expired)} expired groups and "
            f"{len(orphaned)} orphaned pupil mappings"
        )
        return MaintenanceResult(expired_groups_removed=len(expired), orphaned_pupils_removed=len(orphaned))

    def clear_cache(self):
        with self._lock:
            self._group_cache.clear()
            self._pupil_group_map.clear()
            self._variable_components.clear()
            self._hits = 0
            self._misses = 0
            self._base_fee_calculations = 0
        logger.info("Fee cache cleared")

    def get_cache_stats(self) -> CacheStats:
        with self._lock:
            now = self.clock()
            total_groups = len(self._group_cache)
            expired_groups = sum(1 for cached in self._group_cache.values() if cached.is_expired(now))
            active_groups = total_groups - expired_groups
            efficiency = f"{active_groups / total_groups * 100:.1f}%" if total_groups > 0 else "0%"

            return CacheStats(
                total_groups=total_groups,
                total_pupils=len(self._pupil_group_map),
                expired_groups=expired_groups,
                active_groups=active_groups,
                cache_efficiency=efficiency,
                hits=self._hits,
                misses=self._misses,
                base_fee_calculations=self._base_fee_calculations,
            )

    # ==================== BACKGROUND MAINTENANCE ====================

    def start_background_maintenance(self) -> asyncio.Task:
        """Start the periodic sweep on the running event loop (idempotent)"""
        if self._maintenance_task is not None and not self._maintenance_task.done():
            return self._maintenance_task

        self._maintenance_task = asyncio.get_running_loop().create_task(self._maintenance_loop())
        logger.info(f"Background cache maintenance started (every {self.maintenance_interval_seconds}s)")
        return self._maintenance_task

    async def stop_background_maintenance(self):
        task = self._maintenance_task
        self._maintenance_task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Background cache maintenance stopped")

    async def _maintenance_loop(self):
        while True:
            await asyncio.sleep(self.maintenance_interval_seconds)
            try:
                self.perform_cache_maintenance()
            except Exception:
                logger.exception("Background cache maintenance failed")


__all__ = ["FeeGroupCache"]
