from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from sqlalchemy import text
from cityboundary.api.deps import get_provider
from cityboundary.db.redis_client import get_redis
from cityboundary.db.session import get_db
from cityboundary.services.osm.candidate_provider import OverpassCandidateProvider

router = APIRouter(prefix="/health", tags=["Health"])


@router.get(
    "",
    summary="Service health check",
    description="Checks the database, the candidate cache and optionally the Overpass API",
    response_description="Service, database and cache status"
)
def health_check(
    check_provider: bool = Query(False, description="Also query the Overpass API status"),
    db: Session = Depends(get_db),
    redis_client=Depends(get_redis),
    provider=Depends(get_provider),
):
    """
    Health check endpoint.

    The database and Redis are pinged; the Overpass API is only contacted
    when `check_provider` is set.
    """
    try:
        # Check database connection
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception:
        db_status = "error"

    try:
        redis_client.ping()
        cache_status = "ok"
    except Exception:
        cache_status = "unavailable"

    result = {
        "status": "ok",
        "database": db_status,
        "cache": cache_status,
    }

    if check_provider:
        if isinstance(provider, OverpassCandidateProvider):
            result["provider"] = provider.client.check_api_status()
        else:
            result["provider"] = {"status": "available", "url": None}

    return result
