#!/usr/bin/env python3
"""Script to search, rank and optionally select a city's boundary from OSM."""

import sys
import os
import logging
import time

# Add backend to path when running from a checkout
backend_path = os.path.join(os.path.dirname(__file__), "..", "backend")
if os.path.exists(backend_path):
    sys.path.insert(0, backend_path)

from sqlalchemy import text
from cityboundary.db.session import SessionLocal, init_db
from cityboundary.schemas.boundary import BoundaryQuery
from cityboundary.services.boundary.candidate_cache import get_candidate_cache
from cityboundary.services.boundary.exporter import export_geometry
from cityboundary.services.boundary.selection import SelectionManager
from cityboundary.services.geometry import calculate_bounds
from cityboundary.services.osm.candidate_provider import get_candidate_provider

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def wait_for_database(max_retries: int = 30, retry_delay: int = 2) -> bool:
    """Wait for database to be available."""
    logger.info("Waiting for database to be available...")

    for i in range(max_retries):
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
            logger.info("Database is available")
            return True
        except Exception as e:
            if i < max_retries - 1:
                logger.info(f"Database not ready yet (attempt {i+1}/{max_retries}), waiting {retry_delay}s...")
                time.sleep(retry_delay)
            else:
                logger.error(f"Database not available after {max_retries} attempts: {str(e)}")
        finally:
            db.close()

    return False


def main():
    """Main function for boundary resolution."""
    import argparse

    parser = argparse.ArgumentParser(description="Search and select a city's boundary from OpenStreetMap")
    parser.add_argument("city_id", help="Identifier of the city the boundary belongs to")
    parser.add_argument("city_name", help="City name to search for")
    parser.add_argument("country", help="Country name, e.g. 'Argentina'")
    parser.add_argument("--country-code", help="ISO 3166-1 alpha-2 code (overrides country lookup)")
    parser.add_argument("--limit", type=int, default=None, help="Maximum number of candidates")
    parser.add_argument("--timeout", type=float, default=None, help="Provider timeout in seconds")
    parser.add_argument(
        "--select",
        action="store_true",
        help="Select the suggested candidate (only if it clears the acceptance threshold)",
    )
    parser.add_argument("--output", help="Write the selected geometry to this GeoJSON file")

    args = parser.parse_args()

    if not wait_for_database():
        logger.error("Failed to connect to database, exiting...")
        return 1

    init_db()

    db = SessionLocal()
    try:
        cache = get_candidate_cache()
        manager = SelectionManager(
            db=db,
            provider=get_candidate_provider(),
            cache=cache if cache.is_enabled() else None,
            actor="resolve_city_boundary",
        )

        query = BoundaryQuery(
            city_name=args.city_name,
            country=args.country,
            country_code=args.country_code,
            limit=args.limit,
        )
        result = manager.search(args.city_id, query, timeout=args.timeout)

        if result.error:
            logger.error(f"Candidate search failed: {result.error}")
            return 1

        if not result.candidates:
            logger.warning(f"No boundary candidates found for {args.city_name}, {args.country}")
            return 1

        for rank, candidate in enumerate(result.candidates, start=1):
            logger.info(
                f"{rank}. {candidate.name} [{candidate.osm_id}] "
                f"admin_level={candidate.admin_level} area={candidate.area} km² score={candidate.score}"
            )

        if not args.select:
            return 0

        if result.suggested is None:
            logger.warning("No candidate clears the acceptance threshold; select one explicitly via the API")
            return 1

        boundary = manager.select_candidate(args.city_id, result.suggested)
        logger.info(f"Selected {boundary.name} [{boundary.osm_id}], bounds={calculate_bounds(boundary.geometry)}")

        if args.output:
            export = export_geometry(boundary.geometry, os.path.basename(args.output))
            with open(args.output, "wb") as f:
                f.write(export.content)
            logger.info(f"Wrote {len(export.content)} bytes to {args.output}")

        return 0

    except Exception as e:
        logger.error(f"Unexpected error during boundary resolution: {str(e)}", exc_info=True)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    exit_code = main()
    sys.exit(exit_code)
