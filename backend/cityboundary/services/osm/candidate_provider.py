"""Boundary candidate providers."""

import copy
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import pycountry

from cityboundary.core.config import Settings, get_settings
from cityboundary.schemas.boundary import BoundaryQuery, OSMBoundary
from cityboundary.services.osm.osm_parser import OSMBoundaryParser
from cityboundary.services.osm.overpass_client import OverpassClient

logger = logging.getLogger(__name__)


def resolve_country_code(country: str, country_code: Optional[str] = None) -> Optional[str]:
    """
    Resolve the ISO 3166-1 alpha-2 code for a query.

    An explicit code wins. Otherwise the country name is looked up (exact
    name, code or official name first, fuzzy match second). Returns None if
    the country is unknown.
    """
    if country_code:
        return country_code.upper()
    if not country:
        return None

    try:
        return pycountry.countries.lookup(country).alpha_2
    except LookupError:
        pass

    try:
        matches = pycountry.countries.search_fuzzy(country)
    except LookupError:
        logger.warning(f"Unknown country: {country}, searching without country filter")
        return None
    return matches[0].alpha_2 if matches else None


class CandidateProvider(ABC):
    """Source of raw (unscored) boundary candidates for a city query."""

    @abstractmethod
    def search(self, query: BoundaryQuery, timeout: Optional[float] = None) -> List[OSMBoundary]:
        """
        Return raw candidates for the query, in no particular order.

        Raises:
            ProviderError: If the search fails or times out
        """


class OverpassCandidateProvider(CandidateProvider):
    """Candidate provider backed by the Overpass API."""

    def __init__(self, client: OverpassClient, parser: Optional[OSMBoundaryParser] = None):
        self.client = client
        self.parser = parser or OSMBoundaryParser()

    def search(self, query: BoundaryQuery, timeout: Optional[float] = None) -> List[OSMBoundary]:
        country_code = resolve_country_code(query.country, query.country_code)
        logger.info(f"Searching boundaries for {query.city_name}, {query.country} ({country_code or 'global'})")

        overpass_query = self.client.build_boundary_query(
            query.city_name,
            country_code=country_code,
            timeout=int(timeout) if timeout else None,
        )
        logger.debug(f"Overpass query: {overpass_query.strip()}")

        osm_data = self.client.execute_query(overpass_query, timeout=timeout)
        return self.parser.parse_candidates(osm_data)


SAMPLE_BOUNDARIES = [
    {
        "osm_id": "relation/1224652",
        "osm_type": "relation",
        "name": "Ciudad Autónoma de Buenos Aires",
        "admin_level": "4",
        "boundary_type": "administrative",
        "area": 205.63,
        "geometry": {
            "type": "Polygon",
            "coordinates": [[
                [-58.5319, -34.5268],
                [-58.3350, -34.5268],
                [-58.3350, -34.7051],
                [-58.5319, -34.7051],
                [-58.5319, -34.5268],
            ]],
        },
        "tags": {
            "name": "Ciudad Autónoma de Buenos Aires",
            "boundary": "administrative",
            "admin_level": "4",
            "place": "city",
            "population": "3075646",
        },
    },
    {
        "osm_id": "relation/2672883",
        "osm_type": "relation",
        "name": "Buenos Aires",
        "admin_level": "8",
        "boundary_type": "administrative",
        "area": 306.45,
        "geometry": {
            "type": "Polygon",
            "coordinates": [[
                [-58.5119, -34.5468],
                [-58.3550, -34.5468],
                [-58.3550, -34.6851],
                [-58.5119, -34.6851],
                [-58.5119, -34.5468],
            ]],
        },
        "tags": {
            "name": "Buenos Aires",
            "boundary": "administrative",
            "admin_level": "8",
            "place": "municipality",
        },
    },
    {
        "osm_id": "way/4095490",
        "osm_type": "way",
        "name": "Buenos Aires Centro",
        "admin_level": "10",
        "boundary_type": "administrative",
        "area": 45.23,
        "geometry": {
            "type": "Polygon",
            "coordinates": [[
                [-58.4431, -34.5708],
                [-58.3831, -34.5708],
                [-58.3831, -34.6308],
                [-58.4431, -34.6308],
                [-58.4431, -34.5708],
            ]],
        },
        "tags": {
            "name": "Buenos Aires Centro",
            "boundary": "administrative",
            "admin_level": "10",
        },
    },
]


class SampleCandidateProvider(CandidateProvider):
    """Offline provider serving bundled Buenos Aires data for development."""

    def search(self, query: BoundaryQuery, timeout: Optional[float] = None) -> List[OSMBoundary]:
        logger.info(f"Using sample boundaries for {query.city_name}, {query.country}")
        return [OSMBoundary(**copy.deepcopy(sample)) for sample in SAMPLE_BOUNDARIES]


def get_candidate_provider(settings: Optional[Settings] = None) -> CandidateProvider:
    """Build the provider configured by `candidate_provider`."""
    settings = settings or get_settings()

    if settings.candidate_provider == "sample":
        return SampleCandidateProvider()

    client = OverpassClient(
        api_url=settings.overpass_api_url,
        timeout=settings.overpass_timeout_seconds,
        max_retries=settings.overpass_max_retries,
        user_agent=settings.overpass_user_agent,
    )
    return OverpassCandidateProvider(client)
