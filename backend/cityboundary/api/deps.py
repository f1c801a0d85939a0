from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from cityboundary.db.session import get_db
from cityboundary.services.boundary.candidate_cache import CandidateCache, get_candidate_cache
from cityboundary.services.boundary.selection import SelectionManager
from cityboundary.services.osm.candidate_provider import CandidateProvider, get_candidate_provider


@lru_cache
def get_provider() -> CandidateProvider:
    """Dependency for the configured candidate provider"""
    return get_candidate_provider()


def get_cache() -> Optional[CandidateCache]:
    """Dependency for the candidate cache, None when Redis is unavailable"""
    cache = get_candidate_cache()
    return cache if cache.is_enabled() else None


def get_selection_manager(
    db: Session = Depends(get_db),
    provider: CandidateProvider = Depends(get_provider),
    cache: Optional[CandidateCache] = Depends(get_cache),
    x_user_id: Optional[str] = Header(None, description="Caller identity for log attribution"),
) -> SelectionManager:
    """Dependency for a request-scoped selection manager"""
    return SelectionManager(db=db, provider=provider, cache=cache, actor=x_user_id)
