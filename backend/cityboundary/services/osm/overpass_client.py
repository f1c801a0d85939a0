"""Overpass API client for fetching OSM boundary candidates."""

import logging
import re
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from cityboundary.core.exceptions import ProviderError

logger = logging.getLogger(__name__)

ADMIN_LEVELS = "4|5|6|7|8|9|10"
PLACE_TYPES = "city|town|municipality|village"
BOUNDARY_TYPES = "administrative|political"


def escape_overpass_regex(value: str) -> str:
    """Escape regex metacharacters and double quotes for an Overpass name filter."""
    escaped = re.sub(r"([.*+?^${}()|\[\]\\])", r"\\\1", value)
    return escaped.replace('"', '\\"')


class OverpassClient:
    """Client for interacting with Overpass API."""

    def __init__(
        self,
        api_url: str = "https://overpass-api.de/api/interpreter",
        timeout: int = 30,
        max_retries: int = 0,
        user_agent: str = "CityBoundary-Resolver/1.0",
    ):
        """
        Initialize Overpass API client.

        Args:
            api_url: Overpass API endpoint URL
            timeout: Default request timeout in seconds
            max_retries: Transport-level retries on 429/5xx (0 disables)
            user_agent: User-Agent header sent with every request
        """
        self.api_url = api_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.user_agent = user_agent

        # Configure session with retry strategy
        self.session = requests.Session()
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=2.0,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "POST"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def build_boundary_query(
        self,
        city_name: str,
        country_code: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> str:
        """
        Build Overpass QL query for boundaries named like a city.

        Args:
            city_name: City name, matched case-insensitively as a whole name
            country_code: ISO 3166-1 alpha-2 code limiting the search area
            timeout: Server-side query timeout in seconds

        Returns:
            Overpass QL query string
        """
        name = escape_overpass_regex(city_name)
        name_filter = f'["name"~"^{name}$",i]'
        server_timeout = int(timeout or self.timeout)

        if country_code:
            header = f'area["ISO3166-1:alpha2"="{country_code.upper()}"]->.country;\n'
            scope = "(area.country)"
        else:
            # Without a country, search globally (slower but works)
            header = ""
            scope = ""

        return f"""
[out:json][timeout:{server_timeout}];
{header}(
  rel{scope}["boundary"~"^({BOUNDARY_TYPES})$"]["admin_level"~"^({ADMIN_LEVELS})$"]{name_filter};
  way{scope}["boundary"~"^({BOUNDARY_TYPES})$"]["admin_level"~"^({ADMIN_LEVELS})$"]{name_filter};
  rel{scope}["place"~"^({PLACE_TYPES})$"]{name_filter};
);
out geom;
"""

    def execute_query(self, query: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        POST an Overpass QL query and decode the JSON response.

        Args:
            query: Overpass QL query ([out:json])
            timeout: Client-side timeout in seconds (defaults to self.timeout)

        Returns:
            Decoded Overpass response with an "elements" list

        Raises:
            ProviderError: On timeout, HTTP error or undecodable response
        """
        request_timeout = timeout or self.timeout

        try:
            response = self.session.post(
                self.api_url,
                data={"data": query},
                timeout=request_timeout,
                headers={"User-Agent": self.user_agent},
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.Timeout as e:
            logger.warning(f"Overpass request timed out after {request_timeout}s: {str(e)}")
            raise ProviderError(f"Overpass request timed out after {request_timeout}s") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to query Overpass API: {str(e)}")
            raise ProviderError(f"Overpass request failed: {str(e)}") from e
        except ValueError as e:
            logger.error(f"Overpass returned invalid JSON: {str(e)}")
            raise ProviderError("Overpass returned invalid JSON") from e

        if not isinstance(data, dict):
            raise ProviderError("Overpass returned an unexpected payload")

        logger.info(f"Overpass response: {len(data.get('elements') or [])} elements")
        return data

    def check_api_status(self) -> Dict[str, Any]:
        """
        Check Overpass API status.

        Returns:
            Dictionary with API status information
        """
        try:
            # Simple test query
            test_query = "[out:json][timeout:5];node(1);out;"
            response = self.session.post(
                self.api_url,
                data={"data": test_query},
                timeout=10,
                headers={"User-Agent": self.user_agent},
            )
            response.raise_for_status()
            return {
                "status": "available",
                "url": self.api_url,
                "response_time_ms": response.elapsed.total_seconds() * 1000,
            }
        except Exception as e:
            return {
                "status": "unavailable",
                "url": self.api_url,
                "error": str(e),
            }
