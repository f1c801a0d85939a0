"""OSM (OpenStreetMap) boundary candidate services."""

from cityboundary.services.osm.candidate_provider import (
    CandidateProvider,
    OverpassCandidateProvider,
    SampleCandidateProvider,
    get_candidate_provider,
)

__all__ = [
    "CandidateProvider",
    "OverpassCandidateProvider",
    "SampleCandidateProvider",
    "get_candidate_provider",
]
