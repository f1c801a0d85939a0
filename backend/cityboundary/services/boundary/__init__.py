"""Boundary candidate scoring, storage, selection and export."""

from cityboundary.services.boundary.exporter import GeoJSONExport, export_geometry
from cityboundary.services.boundary.scorer import CandidateScorer, ScoringWeights
from cityboundary.services.boundary.selection import ResolutionState, SearchResult, SelectionManager
from cityboundary.services.boundary.store import BoundaryStore

__all__ = [
    "BoundaryStore",
    "CandidateScorer",
    "GeoJSONExport",
    "ResolutionState",
    "ScoringWeights",
    "SearchResult",
    "SelectionManager",
    "export_geometry",
]
