"""Relevance scoring and ranking of OSM boundary candidates."""

import logging
import re
import unicodedata
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Iterable, List, Optional

from cityboundary.core.config import Settings, get_settings
from cityboundary.schemas.boundary import BoundaryQuery, OSMBoundary
from cityboundary.services.geometry import geometry_validity

logger = logging.getLogger(__name__)

ALT_NAME_TAGS = ("name:en", "official_name", "short_name", "alt_name")

# City/municipality level is the most plausible answer to a city query
ADMIN_LEVEL_PLAUSIBILITY = {
    8: 1.0,
    7: 0.9,
    9: 0.8,
    6: 0.7,
    10: 0.6,
    5: 0.4,
    4: 0.2,
    3: 0.1,
    2: 0.0,
}
PLACE_PLAUSIBILITY = {
    "city": 1.0,
    "municipality": 0.9,
    "town": 0.85,
    "village": 0.6,
    "borough": 0.5,
    "suburb": 0.4,
}
UNKNOWN_LEVEL_PLAUSIBILITY = 0.3

RECOGNISED_BOUNDARY_TYPES = ("administrative", "political")
COUNTRY_TAGS = ("ISO3166-1:alpha2", "addr:country")


@dataclass(frozen=True)
class ScoringWeights:
    name: float = 0.5
    admin_level: float = 0.3
    tags: float = 0.2
    country_mismatch_penalty: float = 0.5
    alt_name_discount: float = 0.9

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScoringWeights":
        return cls(
            name=settings.score_weight_name,
            admin_level=settings.score_weight_admin_level,
            tags=settings.score_weight_tags,
            country_mismatch_penalty=settings.score_country_mismatch_penalty,
            alt_name_discount=settings.score_alt_name_discount,
        )


def normalize_name(value: Optional[str]) -> str:
    """Casefold and strip diacritics so "São Paulo" matches "sao paulo"."""
    if not value:
        return ""
    text = unicodedata.normalize("NFKD", str(value))
    text = "".join(char for char in text if not unicodedata.combining(char))
    return " ".join(re.findall(r"\w+", text.casefold()))


def name_similarity(name: Optional[str], target: Optional[str]) -> float:
    """Similarity in [0, 1]: token overlap or edit-distance ratio, whichever is higher."""
    a = normalize_name(name)
    b = normalize_name(target)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0

    tokens_a = set(a.split())
    tokens_b = set(b.split())
    jaccard = len(tokens_a & tokens_b) / len(tokens_a | tokens_b)
    ratio = SequenceMatcher(None, a, b).ratio()
    return max(jaccard, ratio)


def _parse_admin_level(value) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


class CandidateScorer:
    """
    Deterministic scorer for boundary candidates.

    The score is a weighted blend of name similarity, admin-level plausibility
    and tag completeness, scaled by geometry validity and by a penalty when the
    candidate's country tags contradict the query.
    """

    def __init__(
        self,
        weights: Optional[ScoringWeights] = None,
        tie_tolerance: float = 0.02,
        acceptance_threshold: float = 0.6,
    ):
        """
        Initialize candidate scorer.

        Args:
            weights: Signal weights and penalty factors
            tie_tolerance: Scores within this distance of a group leader rank as tied
            acceptance_threshold: Minimum score (exclusive) for a suggested default
        """
        self.weights = weights or ScoringWeights()
        self.tie_tolerance = tie_tolerance
        self.acceptance_threshold = acceptance_threshold

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CandidateScorer":
        settings = settings or get_settings()
        return cls(
            weights=ScoringWeights.from_settings(settings),
            tie_tolerance=settings.score_tie_tolerance,
            acceptance_threshold=settings.score_acceptance_threshold,
        )

    def name_score(self, candidate: OSMBoundary, city_name: str) -> float:
        tags = candidate.tags or {}
        best = max(name_similarity(candidate.name, city_name), name_similarity(tags.get("name"), city_name))

        for tag in ALT_NAME_TAGS:
            value = tags.get(tag)
            if not isinstance(value, str):
                continue
            for alt in value.split(";"):
                best = max(best, name_similarity(alt, city_name) * self.weights.alt_name_discount)

        return best

    def admin_level_score(self, candidate: OSMBoundary) -> float:
        tags = candidate.tags or {}
        level = _parse_admin_level(candidate.admin_level or tags.get("admin_level"))
        place = str(tags.get("place", "")).lower()

        scores = []
        if level is not None:
            scores.append(ADMIN_LEVEL_PLAUSIBILITY.get(level, 0.0))
        if place in PLACE_PLAUSIBILITY:
            scores.append(PLACE_PLAUSIBILITY[place])

        return max(scores) if scores else UNKNOWN_LEVEL_PLAUSIBILITY

    def tag_score(self, candidate: OSMBoundary) -> float:
        tags = candidate.tags or {}
        checks = [
            tags.get("boundary") in RECOGNISED_BOUNDARY_TYPES,
            _parse_admin_level(tags.get("admin_level")) is not None,
            bool(tags.get("place")),
            bool(tags.get("name")),
            bool(tags.get("population")),
            bool(tags.get("wikidata")),
        ]
        return sum(checks) / len(checks)

    def country_factor(self, candidate: OSMBoundary, country_code: Optional[str]) -> float:
        if not country_code:
            return 1.0
        tags = candidate.tags or {}
        for tag in COUNTRY_TAGS:
            value = tags.get(tag)
            if isinstance(value, str) and value and value.upper() != country_code.upper():
                return self.weights.country_mismatch_penalty
        return 1.0

    def score(self, candidate: OSMBoundary, query: BoundaryQuery) -> float:
        """
        Score a candidate against a city query.

        Args:
            candidate: Raw provider candidate (its own score field is ignored)
            query: City name, country and optional ISO country code

        Returns:
            Relevance in [0, 1], rounded to 4 decimals
        """
        validity = geometry_validity(candidate.geometry)
        if validity == 0:
            return 0.0

        w = self.weights
        total_weight = w.name + w.admin_level + w.tags
        if total_weight <= 0:
            return 0.0

        blended = (
            w.name * self.name_score(candidate, query.city_name)
            + w.admin_level * self.admin_level_score(candidate)
            + w.tags * self.tag_score(candidate)
        ) / total_weight

        value = blended * validity * self.country_factor(candidate, query.country_code)
        return round(min(max(value, 0.0), 1.0), 4)

    @staticmethod
    def _tie_break_key(candidate: OSMBoundary):
        return (
            0 if candidate.osm_type == "relation" else 1,
            -(candidate.area or 0.0),
            -candidate.score,
            candidate.osm_id,
        )

    def rank(self, candidates: Iterable[OSMBoundary], query: BoundaryQuery) -> List[OSMBoundary]:
        """
        Score, filter and order candidates.

        Candidates with empty or degenerate geometry are dropped. The rest are
        ordered by descending score; scores within tie_tolerance of a group's
        leader are tied and ordered relation-before-way, then larger area first.

        Returns:
            New OSMBoundary instances with their score filled in
        """
        scored = []
        for candidate in candidates:
            if geometry_validity(candidate.geometry) == 0:
                logger.debug(f"Dropping {candidate.osm_id}: empty or degenerate geometry")
                continue
            scored.append(candidate.model_copy(update={"score": self.score(candidate, query)}))

        scored.sort(key=lambda c: (-c.score, c.osm_id))

        ranked: List[OSMBoundary] = []
        start = 0
        while start < len(scored):
            leader = scored[start]
            end = start + 1
            while end < len(scored) and leader.score - scored[end].score <= self.tie_tolerance:
                end += 1
            ranked.extend(sorted(scored[start:end], key=self._tie_break_key))
            start = end

        return ranked

    def suggest(self, ranked: List[OSMBoundary]) -> Optional[OSMBoundary]:
        """Top-ranked candidate if it clears the acceptance threshold."""
        if ranked and ranked[0].score > self.acceptance_threshold:
            return ranked[0]
        return None
