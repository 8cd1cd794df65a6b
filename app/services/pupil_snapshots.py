# app/services/pupil_snapshots.py
"""
Historical pupil data for closed terms.

When a term ends the pupil's class, section, admission number and date of
birth are frozen in a snapshot so later promotions or corrections do not
rewrite old fee, attendance and requirement records. Snapshots are only
ever stored for ended terms; open and upcoming terms are answered with a
virtual snapshot built from live data.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Iterator, List, Optional, Protocol, Set, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.core.exceptions import SnapshotNotAllowedError, TermNotFoundError
from app.models.snapshot import PupilTermSnapshot
from app.schemas.academic import AcademicYear, Term
from app.schemas.pupil import DataSource, HistoricalPupilData, Pupil, ResolvedPupilData
from app.schemas.snapshot import (
    MissingSnapshot, PupilSnapshot, SnapshotBackfillResult, SnapshotCleanupResult,
    SnapshotCoverage, SnapshotError, SnapshotMaintenanceResult, SnapshotStatsByTermStatus,
    TermStatus
)

logger = logging.getLogger(__name__)


class SnapshotProvider(Protocol):
    async def get_historical_pupil_data(
        self,
        pupil: Pupil,
        term_id: str,
        academic_year: AcademicYear
    ) -> Optional[HistoricalPupilData]:
        ...


def get_term_status(term: Term, today: Optional[date] = None) -> TermStatus:
    today = today or date.today()
    if today > term.end_date:
        return TermStatus.PAST
    if today >= term.start_date:
        return TermStatus.CURRENT
    return TermStatus.FUTURE


def is_term_ended(term: Term, today: Optional[date] = None) -> bool:
    return get_term_status(term, today) == TermStatus.PAST


def _terms_with_status(
    academic_years: List[AcademicYear],
    statuses: Set[TermStatus],
    today: date
) -> Iterator[Tuple[AcademicYear, Term]]:
    for year in academic_years:
        for term in year.terms:
            if get_term_status(term, today) in statuses:
                yield year, term


def _registered_for(pupil: Pupil, term: Term) -> bool:
    return pupil.registration_date is None or term.start_date >= pupil.registration_date


class PupilSnapshotRepository:
    """Reads and writes pupil term snapshots and recovers historical attributes"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # ==================== STORAGE ====================

    def create_snapshot(
        self,
        pupil: Pupil,
        term_id: str,
        academic_year: AcademicYear,
        data: Optional[HistoricalPupilData] = None,
        today: Optional[date] = None
    ) -> str:
        """
        Freeze the pupil's attributes for an ended term.

        data overrides the pupil's current attributes, for recovered history.
        Raises SnapshotNotAllowedError for current and upcoming terms.
        """
        term = academic_year.find_term(term_id)
        if term is None:
            raise TermNotFoundError(term_id, academic_year.name)

        status = get_term_status(term, today)
        if status != TermStatus.PAST:
            raise SnapshotNotAllowedError(term_id, status.value)

        attributes = data or HistoricalPupilData.from_pupil(pupil)
        snapshot = PupilTermSnapshot(
            pupil_id=pupil.id,
            term_id=term_id,
            academic_year_id=academic_year.id,
            class_id=attributes.class_id,
            section=attributes.section,
            admission_number=attributes.admission_number,
            date_of_birth=attributes.date_of_birth,
            is_active=True,
            snapshot_date=datetime.now(timezone.utc),
            term_start_date=term.start_date,
            term_end_date=term.end_date,
        )

        session: Session = self.session_factory()
        try:
            session.add(snapshot)
            session.commit()
            logger.info(f"Created snapshot {snapshot.id} for pupil {pupil.id} term {term_id} (class {snapshot.class_id})")
            return snapshot.id
        except Exception as e:
            session.rollback()
            logger.error(f"Error creating snapshot for pupil {pupil.id} term {term_id}: {e}")
            raise
        finally:
            session.close()

    def get_snapshot(self, pupil_id: str, term_id: str) -> Optional[PupilTermSnapshot]:
        with self.session_factory() as session:
            return session.execute(
                select(PupilTermSnapshot).where(
                    PupilTermSnapshot.pupil_id == pupil_id,
                    PupilTermSnapshot.term_id == term_id,
                    PupilTermSnapshot.is_active.is_(True)
                ).order_by(PupilTermSnapshot.snapshot_date.desc())
            ).scalars().first()

    def get_pupil_snapshots(self, pupil_id: str) -> List[PupilTermSnapshot]:
        with self.session_factory() as session:
            return list(session.execute(
                select(PupilTermSnapshot).where(
                    PupilTermSnapshot.pupil_id == pupil_id,
                    PupilTermSnapshot.is_active.is_(True)
                ).order_by(PupilTermSnapshot.term_start_date)
            ).scalars().all())

    # ==================== HISTORICAL DATA ====================

    async def get_historical_pupil_data(
        self,
        pupil: Pupil,
        term_id: str,
        academic_year: AcademicYear
    ) -> Optional[HistoricalPupilData]:
        """
        Recover what the pupil looked like during a term.

        Tries, in order: the term's own snapshot, the pupil's promotion
        history, and the latest earlier snapshot from the same academic year.
        Returns None when none of them apply.
        """
        snapshot = self.get_snapshot(pupil.id, term_id)
        if snapshot is not None:
            return self._to_historical(snapshot, pupil)

        term = academic_year.find_term(term_id)
        if term is None:
            return None

        class_from_promotions = self._class_from_promotion_history(pupil, term)
        if class_from_promotions is not None:
            logger.info(f"Recovered class {class_from_promotions} for pupil {pupil.id} term {term_id} from promotion history")
            return HistoricalPupilData(
                class_id=class_from_promotions,
                section=pupil.section,
                admission_number=pupil.admission_number,
                date_of_birth=pupil.date_of_birth,
            )

        earlier = [
            s for s in self.get_pupil_snapshots(pupil.id)
            if s.academic_year_id == academic_year.id and s.term_start_date < term.start_date
        ]
        if earlier:
            latest = max(earlier, key=lambda s: s.term_start_date)
            logger.warning(f"Using snapshot from earlier term {latest.term_id} for pupil {pupil.id} term {term_id}")
            return self._to_historical(latest, pupil)

        return None

    async def get_or_create_snapshot(
        self,
        pupil: Pupil,
        term_id: str,
        academic_year: AcademicYear,
        today: Optional[date] = None
    ) -> PupilSnapshot:
        """
        Snapshot for the pupil in a term.

        Current and upcoming terms get a virtual snapshot of live data. Ended
        terms return the stored snapshot, or store one built from recovered
        history. Current data is never persisted for an ended term: with no
        recoverable history a virtual snapshot is returned and the gap logged.
        """
        term = academic_year.find_term(term_id)
        if term is None:
            raise TermNotFoundError(term_id, academic_year.name)

        status = get_term_status(term, today)
        if status != TermStatus.PAST:
            logger.debug(f"Term {term.name} is {status.value}, returning live data for pupil {pupil.id}")
            return self._virtual_snapshot(pupil, term, academic_year, f"virtual-{pupil.id}-{term_id}")

        existing = self.get_snapshot(pupil.id, term_id)
        if existing is not None:
            return PupilSnapshot.model_validate(existing)

        historical = await self.get_historical_pupil_data(pupil, term_id, academic_year)
        if historical is None:
            logger.error(
                f"No snapshot or recoverable history for pupil {pupil.id} in ended term {term.name}; "
                f"returning unsaved live data"
            )
            return self._virtual_snapshot(pupil, term, academic_year, f"unrecovered-{pupil.id}-{term_id}")

        self.create_snapshot(pupil, term_id, academic_year, data=historical, today=today)
        return PupilSnapshot.model_validate(self.get_snapshot(pupil.id, term_id))

    @staticmethod
    def _virtual_snapshot(pupil: Pupil, term: Term, academic_year: AcademicYear, snapshot_id: str) -> PupilSnapshot:
        return PupilSnapshot(
            id=snapshot_id,
            pupil_id=pupil.id,
            term_id=term.id,
            academic_year_id=academic_year.id,
            class_id=pupil.class_id,
            section=pupil.section,
            admission_number=pupil.admission_number,
            date_of_birth=pupil.date_of_birth,
            snapshot_date=datetime.now(timezone.utc),
            term_start_date=term.start_date,
            term_end_date=term.end_date,
            is_virtual=True,
        )

    @staticmethod
    def _class_from_promotion_history(pupil: Pupil, term: Term) -> Optional[str]:
        if not pupil.promotion_history:
            return None

        class_id = None
        for promotion in sorted(pupil.promotion_history, key=lambda p: p.promoted_on):
            if promotion.promoted_on <= term.start_date:
                class_id = promotion.to_class_id
            elif promotion.promoted_on <= term.end_date:
                # Promoted mid-term: the pupil spent most of it in the old class
                class_id = promotion.from_class_id or promotion.to_class_id
                break
            else:
                # First promotion after the term: the pupil was still in its source class
                if class_id is None:
                    class_id = promotion.from_class_id
                break
        return class_id or pupil.class_id

    @staticmethod
    def _to_historical(snapshot: PupilTermSnapshot, pupil: Pupil) -> HistoricalPupilData:
        return HistoricalPupilData(
            class_id=snapshot.class_id,
            section=snapshot.section,
            admission_number=snapshot.admission_number or pupil.admission_number,
            date_of_birth=snapshot.date_of_birth or pupil.date_of_birth,
        )

    @staticmethod
    def create_virtual_pupil_from_snapshot(pupil: Pupil, snapshot) -> Pupil:
        """Pupil as of the snapshot's term; accepts a stored or virtual snapshot"""
        return pupil.model_copy(update={
            "class_id": snapshot.class_id,
            "section": snapshot.section,
            "admission_number": snapshot.admission_number,
            "date_of_birth": snapshot.date_of_birth or pupil.date_of_birth,
        })

    # ==================== COVERAGE & BACKFILL ====================

    def check_snapshot_coverage(
        self,
        pupils: List[Pupil],
        academic_years: List[AcademicYear],
        today: Optional[date] = None
    ) -> SnapshotCoverage:
        """Snapshot coverage over ended terms; open and future terms never have snapshots"""
        today = today or date.today()
        ended = list(_terms_with_status(academic_years, {TermStatus.PAST}, today))
        expected = 0
        existing = 0
        missing: List[MissingSnapshot] = []

        for pupil in pupils:
            for year, term in ended:
                if not _registered_for(pupil, term):
                    continue
                expected += 1
                if self.get_snapshot(pupil.id, term.id) is not None:
                    existing += 1
                else:
                    missing.append(MissingSnapshot(
                        pupil_id=pupil.id,
                        pupil_name=pupil.full_name,
                        term_id=term.id,
                        term_name=term.name,
                        academic_year=year.name,
                    ))

        coverage = SnapshotCoverage(
            total_expected_snapshots=expected,
            existing_snapshots=existing,
            missing_snapshots=expected - existing,
            missing_snapshot_details=missing,
        )
        logger.info(
            f"Snapshot coverage for {len(ended)} ended terms: "
            f"{existing}/{expected} ({coverage.coverage_percentage}%)"
        )
        return coverage

    def create_missing_snapshots(
        self,
        pupils: List[Pupil],
        academic_years: List[AcademicYear],
        today: Optional[date] = None
    ) -> SnapshotBackfillResult:
        """Snapshot every ended term a pupil was registered for and lacks one"""
        today = today or date.today()
        result = SnapshotBackfillResult()

        for pupil in pupils:
            for year, term in _terms_with_status(academic_years, {TermStatus.PAST}, today):
                if not _registered_for(pupil, term) or self.get_snapshot(pupil.id, term.id) is not None:
                    result.skipped += 1
                    continue
                try:
                    self.create_snapshot(pupil, term.id, year, today=today)
                    result.created += 1
                except Exception as e:
                    result.errors.append(SnapshotError(pupil_id=pupil.id, term_id=term.id, error=str(e)))

        logger.info(
            f"Snapshot backfill: created {result.created}, skipped {result.skipped}, errors {len(result.errors)}"
        )
        return result

    def delete_snapshots_for_current_and_upcoming_terms(
        self,
        academic_years: List[AcademicYear],
        today: Optional[date] = None
    ) -> SnapshotCleanupResult:
        """Remove snapshots stored for terms that have not ended; they froze data too early"""
        today = today or date.today()
        result = SnapshotCleanupResult()

        for year, term in _terms_with_status(academic_years, {TermStatus.CURRENT, TermStatus.FUTURE}, today):
            session: Session = self.session_factory()
            try:
                deleted = session.execute(
                    delete(PupilTermSnapshot)
                    .where(PupilTermSnapshot.term_id == term.id, PupilTermSnapshot.is_active.is_(True))
                    .execution_options(synchronize_session=False)
                ).rowcount
                session.commit()
                if deleted:
                    logger.info(f"Deleted {deleted} snapshots for open term {term.name} ({year.name})")
                result.deleted += deleted
            except Exception as e:
                session.rollback()
                logger.error(f"Failed to delete snapshots for term {term.id}: {e}")
                result.errors.append(SnapshotError(term_id=term.id, error=str(e)))
            finally:
                session.close()

        logger.info(f"Snapshot cleanup complete: {result.deleted} deleted, {len(result.errors)} errors")
        return result

    def get_snapshot_stats_by_term_status(
        self,
        academic_years: List[AcademicYear],
        today: Optional[date] = None
    ) -> SnapshotStatsByTermStatus:
        today = today or date.today()
        with self.session_factory() as session:
            counts = dict(session.execute(
                select(PupilTermSnapshot.term_id, func.count())
                .where(PupilTermSnapshot.is_active.is_(True))
                .group_by(PupilTermSnapshot.term_id)
            ).all())

        stats = SnapshotStatsByTermStatus()
        for year in academic_years:
            for term in year.terms:
                count = counts.get(term.id, 0)
                status = get_term_status(term, today)
                if status == TermStatus.PAST:
                    stats.past_terms_snapshots += count
                elif status == TermStatus.CURRENT:
                    stats.current_terms_snapshots += count
                else:
                    stats.future_terms_snapshots += count

        stats.total_snapshots = (
            stats.past_terms_snapshots + stats.current_terms_snapshots + stats.future_terms_snapshots
        )
        logger.info(f"Snapshot stats by term status: {stats.model_dump()}")
        return stats

    # ==================== DAILY MAINTENANCE ====================

    def auto_create_snapshots_for_ended_terms(
        self,
        pupils: List[Pupil],
        academic_years: List[AcademicYear],
        today: Optional[date] = None,
        window_days: Optional[int] = None
    ) -> SnapshotMaintenanceResult:
        """
        Freeze terms that ended within the last window_days.

        Live data is still accurate for a term that has only just ended,
        so these snapshots take the pupil's current attributes.
        """
        today = today or date.today()
        window_days = window_days if window_days is not None else settings.SNAPSHOT_MAINTENANCE_WINDOW_DAYS
        window_start = today - timedelta(days=window_days)
        result = SnapshotMaintenanceResult()

        for year in academic_years:
            for term in year.terms:
                if not (window_start <= term.end_date < today):
                    continue

                result.terms_checked += 1
                logger.info(f"Term {term.name} ({year.name}) ended {term.end_date}, freezing pupil data")
                for pupil in pupils:
                    if not _registered_for(pupil, term):
                        continue
                    try:
                        if self.get_snapshot(pupil.id, term.id) is None:
                            self.create_snapshot(pupil, term.id, year, today=today)
                            result.snapshots_created += 1
                    except Exception as e:
                        logger.error(f"Failed to auto-create snapshot for pupil {pupil.id} term {term.id}: {e}")
                        result.errors.append(SnapshotError(pupil_id=pupil.id, term_id=term.id, error=str(e)))

        logger.info(
            f"Auto-snapshot creation complete: {result.snapshots_created} snapshots "
            f"for {result.terms_checked} recently ended terms"
        )
        return result

    def run_daily_snapshot_maintenance(
        self,
        pupils: List[Pupil],
        academic_years: List[AcademicYear],
        today: Optional[date] = None
    ) -> SnapshotMaintenanceResult:
        """Entry point for the daily scheduler"""
        result = self.auto_create_snapshots_for_ended_terms(pupils, academic_years, today)
        result.ran_at = datetime.now(timezone.utc)
        result.message = (
            f"Daily maintenance complete: {result.snapshots_created} snapshots created "
            f"for {result.terms_checked} recently ended terms"
        )
        return result


async def resolve_historical_pupil_data(
    pupil: Pupil,
    term_id: str,
    academic_year: AcademicYear,
    provider: SnapshotProvider,
    today: Optional[date] = None
) -> Optional[ResolvedPupilData]:
    """
    Pick the pupil attributes that apply to a term.

    Open terms use live data. Closed terms ask the snapshot provider and fall
    back to live data, tagged FALLBACK_LIVE, when it has nothing or fails.
    Returns None only when the term is not part of the academic year.
    """
    term = academic_year.find_term(term_id)
    if term is None:
        logger.info(f"Term {term_id} not found in academic year {academic_year.name}")
        return None

    live = HistoricalPupilData.from_pupil(pupil)
    if not is_term_ended(term, today):
        return ResolvedPupilData(**live.model_dump(), source=DataSource.LIVE)

    try:
        historical = await provider.get_historical_pupil_data(pupil, term_id, academic_year)
    except Exception:
        logger.exception(f"Snapshot lookup failed for pupil {pupil.id} term {term_id}, using current data")
        historical = None

    if historical is None:
        logger.warning(f"No historical data for pupil {pupil.id} term {term.name}, using current data as fallback")
        return ResolvedPupilData(**live.model_dump(), source=DataSource.FALLBACK_LIVE)

    return ResolvedPupilData(**historical.model_dump(), source=DataSource.SNAPSHOT)


async def get_historical_pupil_data_for_term(
    pupil: Pupil,
    term_id: str,
    academic_year: AcademicYear,
    provider: SnapshotProvider,
    today: Optional[date] = None
) -> Optional[HistoricalPupilData]:
    resolved = await resolve_historical_pupil_data(pupil, term_id, academic_year, provider, today)
    return resolved.attributes() if resolved is not None else None
