"""Redis cache holding the ranked candidate list of each city."""

import json
import logging
from typing import List, Optional

import redis
from cityboundary.core.config import get_settings
from cityboundary.db.redis_client import get_redis
from cityboundary.schemas.boundary import OSMBoundary

logger = logging.getLogger(__name__)

settings = get_settings()


class CandidateCache:
    """Redis cache for ranked boundary candidates, keyed by city."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, ttl_seconds: Optional[int] = None):
        """
        Initialize the candidate cache.

        Args:
            redis_client: Optional Redis client (the shared client if not provided)
            ttl_seconds: Entry lifetime (defaults to config value)
        """
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds or settings.candidate_cache_ttl_seconds
        # An explicitly provided client enables the cache
        self._cache_enabled = settings.candidate_cache_enabled or redis_client is not None

        if self.redis_client is None and self._cache_enabled:
            try:
                self.redis_client = get_redis()
                # Test connection
                self.redis_client.ping()
                logger.info("Candidate cache initialized successfully")
            except Exception as e:
                logger.warning(f"Candidate cache initialization failed: {str(e)}")
                logger.warning("Continuing without cache (graceful degradation)")
                self._cache_enabled = False
                self.redis_client = None

    @staticmethod
    def _cache_key(city_id: str) -> str:
        return f"boundary_candidates:{city_id}"

    def get_candidates(self, city_id: str) -> Optional[List[OSMBoundary]]:
        """
        Get the cached ranked candidates for a city.

        Returns:
            Ranked candidates, or None on a miss or when the cache is unavailable
        """
        if not self.is_enabled():
            return None

        try:
            cached_data = self.redis_client.get(self._cache_key(city_id))
            if not cached_data:
                logger.debug(f"Candidate cache miss for city {city_id}")
                return None
            payload = json.loads(cached_data)
            return [OSMBoundary(**item) for item in payload.get("candidates", [])]
        except Exception as e:
            logger.error(f"Error reading cached candidates for city {city_id}: {str(e)}")
            return None

    def set_candidates(self, city_id: str, candidates: List[OSMBoundary], request_id: Optional[str] = None):
        """Cache a ranked candidate list, replacing any previous one."""
        if not self.is_enabled():
            return

        try:
            payload = {
                "request_id": request_id,
                "candidates": [candidate.model_dump() for candidate in candidates],
            }
            self.redis_client.setex(
                self._cache_key(city_id),
                self.ttl_seconds,
                json.dumps(payload, default=str),
            )
            logger.debug(f"Cached {len(candidates)} candidates for city {city_id} (TTL: {self.ttl_seconds}s)")
        except Exception as e:
            logger.error(f"Error caching candidates for city {city_id}: {str(e)}")

    def invalidate(self, city_id: str):
        """Drop the cached candidates of a city."""
        if not self.is_enabled():
            return

        try:
            self.redis_client.delete(self._cache_key(city_id))
        except Exception as e:
            logger.error(f"Error invalidating candidates for city {city_id}: {str(e)}")

    def is_enabled(self) -> bool:
        """
        Check if cache is enabled and available.

        Returns:
            True if cache is enabled and available
        """
        return self._cache_enabled and self.redis_client is not None


# Singleton instance
_cache: Optional[CandidateCache] = None


def get_candidate_cache() -> CandidateCache:
    """
    Get the singleton candidate cache instance.

    Returns:
        CandidateCache instance
    """
    global _cache
    if _cache is None:
        _cache = CandidateCache()
    return _cache
