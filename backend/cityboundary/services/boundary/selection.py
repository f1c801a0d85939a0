"""Selection workflow: search, rank, select and persist a city's boundary."""

import logging
import threading
import uuid
import zlib
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cityboundary.core.config import Settings, get_settings
from cityboundary.core.exceptions import BoundaryNotFound, InvariantViolation, ProviderError
from cityboundary.models.boundary import Boundary
from cityboundary.schemas.boundary import BoundaryQuery, OSMBoundary
from cityboundary.services.boundary.candidate_cache import CandidateCache
from cityboundary.services.boundary.scorer import CandidateScorer
from cityboundary.services.boundary.store import BoundaryStore
from cityboundary.services.osm.candidate_provider import CandidateProvider

logger = logging.getLogger(__name__)

CITY_LOCK_STRIPES = 64


class ResolutionState(str, Enum):
    UNRESOLVED = "unresolved"
    CANDIDATES_LOADED = "candidates_loaded"
    SELECTED = "selected"


@dataclass
class SearchResult:
    request_id: UUID
    city_id: str
    state: ResolutionState
    candidates: List[OSMBoundary]
    suggested: Optional[OSMBoundary] = None
    selected: Optional[Boundary] = None
    error: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return self.error is not None


class SelectionManager:
    """
    Orchestrates candidate search, ranking and the per-city selection.

    At most one boundary per city is selected. Changing the selection demotes
    the previous row and promotes the new one in a single transaction,
    serialized per city.
    """

    # Fixed pool of lock stripes; cities sharing a stripe are serialized together
    _city_locks: List[threading.Lock] = [threading.Lock() for _ in range(CITY_LOCK_STRIPES)]

    def __init__(
        self,
        db: Session,
        provider: CandidateProvider,
        scorer: Optional[CandidateScorer] = None,
        cache: Optional[CandidateCache] = None,
        settings: Optional[Settings] = None,
        actor: Optional[str] = None,
    ):
        """
        Initialize selection manager.

        Args:
            db: Database session (one unit of work per operation)
            provider: Source of raw candidates
            scorer: Candidate scorer (built from settings if not provided)
            cache: Ranked candidate cache; None keeps candidates only in the search result
            settings: Application settings
            actor: Identity of the caller, used for log attribution only
        """
        self.db = db
        self.store = BoundaryStore(db)
        self.provider = provider
        self.settings = settings or get_settings()
        self.scorer = scorer or CandidateScorer.from_settings(self.settings)
        self.cache = cache
        self.actor = actor or "anonymous"

    @classmethod
    def _city_lock(cls, city_id: str) -> threading.Lock:
        return cls._city_locks[zlib.crc32(city_id.encode("utf-8")) % len(cls._city_locks)]

    def _effective_limit(self, limit: Optional[int]) -> int:
        return min(limit or self.settings.default_candidate_limit, self.settings.max_candidate_limit)

    # Queries

    def get_selected(self, city_id: str) -> Optional[Boundary]:
        return self.store.get_selected(city_id)

    def list_boundaries(self, city_id: str) -> List[Boundary]:
        return self.store.list_by_city(city_id)

    def get_cached_candidates(self, city_id: str) -> List[OSMBoundary]:
        if self.cache is None:
            return []
        return self.cache.get_candidates(city_id) or []

    def get_state(self, city_id: str) -> ResolutionState:
        """Derive the resolution state of a city from storage and the candidate cache."""
        if self.store.get_selected(city_id) is not None:
            return ResolutionState.SELECTED
        if self.get_cached_candidates(city_id) or self.store.list_by_city(city_id):
            return ResolutionState.CANDIDATES_LOADED
        return ResolutionState.UNRESOLVED

    # Search

    def search(
        self,
        city_id: str,
        query: BoundaryQuery,
        timeout: Optional[float] = None,
        persist: bool = False,
    ) -> SearchResult:
        """
        Fetch, score and rank candidates for a city.

        Never changes the selection. A provider failure or an empty response
        yields an empty candidate list; failures also set `error`.

        Args:
            city_id: City the search is for
            query: City name, country, optional country code and limit
            timeout: Provider timeout in seconds (defaults to config value)
            persist: Also store the ranked candidates (unselected)

        Returns:
            SearchResult with a fresh request_id for stale-result detection
        """
        request_id = uuid.uuid4()
        limit = self._effective_limit(query.limit)
        provider_timeout = timeout or self.settings.overpass_timeout_seconds

        logger.info(f"[{request_id}] {self.actor} searching boundaries for city {city_id}: {query.city_name}, {query.country}")

        try:
            raw_candidates = self.provider.search(query, timeout=provider_timeout)
        except ProviderError as e:
            logger.warning(f"[{request_id}] Candidate search failed for city {city_id}: {str(e)}")
            return SearchResult(
                request_id=request_id,
                city_id=city_id,
                state=self.get_state(city_id),
                candidates=[],
                selected=self.store.get_selected(city_id),
                error=str(e),
            )

        ranked = self.scorer.rank(raw_candidates, query)[:limit]
        suggested = self.scorer.suggest(ranked)
        logger.info(f"[{request_id}] Ranked {len(ranked)} of {len(raw_candidates)} candidates: "
                    f"{[f'{c.name} ({c.score})' for c in ranked]}")

        if self.cache is not None:
            if ranked:
                self.cache.set_candidates(city_id, ranked, request_id=str(request_id))
            else:
                self.cache.invalidate(city_id)

        if persist and ranked:
            self.store_candidates(city_id, ranked)

        state = self.get_state(city_id)
        if state == ResolutionState.UNRESOLVED and ranked:
            # Uncached, unpersisted results are still loaded for this caller
            state = ResolutionState.CANDIDATES_LOADED

        return SearchResult(
            request_id=request_id,
            city_id=city_id,
            state=state,
            candidates=ranked,
            suggested=suggested,
            selected=self.store.get_selected(city_id),
        )

    # Writes

    def store_candidates(self, city_id: str, candidates: Iterable[OSMBoundary]) -> List[Boundary]:
        """Persist candidates as unselected rows, skipping ones already stored."""
        with self._city_lock(city_id):
            try:
                rows = [self.store.add_if_absent(city_id, candidate) for candidate in candidates]
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                raise InvariantViolation(f"Conflicting candidate rows for city {city_id}") from e
            except Exception:
                self.db.rollback()
                raise

        logger.info(f"Stored {len(rows)} candidates for city {city_id}")
        return rows

    def select_candidate(self, city_id: str, candidate: OSMBoundary) -> Boundary:
        """Select a candidate, promoting it to a stored row if it is not stored yet."""
        return self._select(city_id, candidate=candidate)

    def select_boundary(self, city_id: str, boundary_id: UUID) -> Boundary:
        """Select an already stored boundary of the city."""
        return self._select(city_id, boundary_id=boundary_id)

    def select_cached(self, city_id: str, osm_type: str, osm_id: str) -> Boundary:
        """
        Select by OSM identity, from stored rows first, then the cached ranked list.

        Raises:
            BoundaryNotFound: If the candidate is neither stored nor cached
        """
        existing = self.store.find_by_osm(city_id, osm_type, osm_id)
        if existing is not None:
            return self._select(city_id, boundary_id=existing.id)

        for candidate in self.get_cached_candidates(city_id):
            if candidate.osm_type == osm_type and candidate.osm_id == osm_id:
                return self._select(city_id, candidate=candidate)

        raise BoundaryNotFound(f"Candidate {osm_id} is not loaded for city {city_id}")

    def _select(
        self,
        city_id: str,
        candidate: Optional[OSMBoundary] = None,
        boundary_id: Optional[UUID] = None,
    ) -> Boundary:
        """
        Demote the current selection and select the target in one transaction.

        On any failure the transaction is rolled back and the previous
        selection stays in place.
        """
        with self._city_lock(city_id):
            try:
                self.store.lock_city(city_id)
                previous = self.store.get_selected(city_id)

                if boundary_id is not None:
                    target = self.store.get_for_city(city_id, boundary_id)
                else:
                    target = self.store.find_by_osm(city_id, candidate.osm_type, candidate.osm_id)

                self.store.demote_all(city_id)

                if target is not None:
                    self.store.mark_selected(city_id, target.id)
                else:
                    target = self.store.add(self.store.promote(city_id, candidate, is_selected=True))

                self._verify_single_selection(city_id, target.id)
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                logger.error(f"Concurrent selection conflict for city {city_id}: {str(e)}")
                raise InvariantViolation(f"Concurrent selection conflict for city {city_id}") from e
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(target)
        logger.info(
            f"{self.actor} selected boundary {target.osm_id} for city {city_id}"
            + (f" (replacing {previous.osm_id})" if previous is not None and previous.id != target.id else "")
        )
        return target

    def _verify_single_selection(self, city_id: str, target_id: UUID):
        selected = self.store.get_selected(city_id)
        if selected is None or selected.id != target_id:
            raise InvariantViolation(f"Selection of {target_id} for city {city_id} did not apply")

    def delete_boundary(self, city_id: str, boundary_id: UUID) -> str:
        """Delete one stored boundary and return its OSM id; deleting the selection leaves the city unselected."""
        with self._city_lock(city_id):
            try:
                boundary = self.store.delete(city_id, boundary_id)
                osm_id = boundary.osm_id
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info(f"{self.actor} deleted boundary {osm_id} of city {city_id}")
        return osm_id

    def clear_city(self, city_id: str) -> int:
        """Delete every stored boundary of a city and drop its cached candidates."""
        with self._city_lock(city_id):
            try:
                deleted = self.store.delete_by_city(city_id)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        if self.cache is not None:
            self.cache.invalidate(city_id)

        logger.info(f"{self.actor} cleared {deleted} boundaries of city {city_id}")
        return deleted
