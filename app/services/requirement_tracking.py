# app/services/requirement_tracking.py - Requirement tracking records stamped with term-accurate pupil data
import logging
from datetime import date, datetime, timezone
from typing import List, Optional, Union

from app.core.exceptions import TermNotFoundError, TrackingValidationError
from app.schemas.academic import AcademicYear
from app.schemas.pupil import Pupil
from app.schemas.requirement import (
    PupilSnapshotData, RequirementItem, RequirementTracking, RequirementTrackingData
)
from app.services.pupil_snapshots import SnapshotProvider, resolve_historical_pupil_data
from app.services.temporal_validity import validate_requirement_tracking_creation

logger = logging.getLogger(__name__)


async def create_enhanced_requirement_tracking(
    pupil: Pupil,
    term_id: str,
    academic_year: AcademicYear,
    requirement: RequirementItem,
    tracking_data: RequirementTrackingData,
    provider: SnapshotProvider,
    requirement_ids: Optional[Union[str, List[str]]] = None,
    today: Optional[date] = None
) -> RequirementTracking:
    """
    Build a requirement tracking record stamped with the pupil's attributes
    as they were during the term.

    requirement_ids overrides the tracked id(s) when one record covers a
    bundle of requirements; validation always runs against `requirement`.
    """
    validation = validate_requirement_tracking_creation(pupil, term_id, academic_year, requirement)
    if not validation.is_valid:
        raise TrackingValidationError(validation.reason)

    resolved = await resolve_historical_pupil_data(pupil, term_id, academic_year, provider, today)
    if resolved is None:
        raise TermNotFoundError(term_id, academic_year.name)

    now = datetime.now(timezone.utc)
    tracking = RequirementTracking(
        **tracking_data.model_dump(),
        pupil_id=pupil.id,
        requirement_id=requirement_ids if requirement_ids is not None else requirement.id,
        academic_year_id=academic_year.id,
        term_id=term_id,
        pupil_snapshot_data=PupilSnapshotData(
            class_id=resolved.class_id,
            section=resolved.section,
            admission_number=resolved.admission_number,
            date_of_birth=resolved.date_of_birth,
            data_source=resolved.source,
        ),
        created_at=now,
        updated_at=now,
    )

    logger.info(
        f"Created requirement tracking for pupil {pupil.id} term {term_id} "
        f"(class {resolved.class_id}, section {resolved.section}, source {resolved.source.value})"
    )
    return tracking
