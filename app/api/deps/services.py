# app/api/deps/services.py - Request-scoped access to the fee cache and snapshot store
from fastapi import Depends, Request

from app.core.db import get_session_maker
from app.services.fee_compositor import FeeCompositor
from app.services.fee_group_cache import FeeGroupCache
from app.services.pupil_snapshots import PupilSnapshotRepository, SnapshotProvider


def get_fee_cache(request: Request) -> FeeGroupCache:
    """The application-wide group fee cache created in the lifespan"""
    return request.app.state.fee_cache


def get_fee_compositor(cache: FeeGroupCache = Depends(get_fee_cache)) -> FeeCompositor:
    return FeeCompositor(cache)


def get_snapshot_repository() -> PupilSnapshotRepository:
    return PupilSnapshotRepository(get_session_maker())


def get_snapshot_provider(
    repository: PupilSnapshotRepository = Depends(get_snapshot_repository)
) -> SnapshotProvider:
    return repository
