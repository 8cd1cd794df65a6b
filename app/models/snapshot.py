# app/models/snapshot.py - Pupil attributes frozen at the close of a term
from __future__ import annotations
import uuid
from datetime import date, datetime, timezone
from sqlalchemy import String, Boolean, Date, DateTime, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from app.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PupilTermSnapshot(Base):
    __tablename__ = "pupil_term_snapshots"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    pupil_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    term_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    academic_year_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)

    # Locked when the term ends
    class_id: Mapped[str] = mapped_column(String(64), nullable=False)
    section: Mapped[str | None] = mapped_column(String(16), nullable=True)
    admission_number: Mapped[str] = mapped_column(String(32), nullable=False)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    snapshot_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    term_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    term_end_date: Mapped[date] = mapped_column(Date, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_snapshot_pupil_term", "pupil_id", "term_id", "is_active"),
        CheckConstraint("section IN ('day','boarding')", name="ck_snapshot_section"),
    )
