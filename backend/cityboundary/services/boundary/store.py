"""Boundary store: persistence of candidate sets and selections per city."""

import logging
import math
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import MultipleResultsFound
from sqlalchemy.orm import Session

from cityboundary.core.exceptions import BoundaryNotFound, InvariantViolation, MalformedGeometry
from cityboundary.models.boundary import Boundary
from cityboundary.schemas.boundary import OSMBoundary
from cityboundary.services.geometry import calculate_bounds

logger = logging.getLogger(__name__)


def format_decimal(value: Optional[float], places: int) -> Optional[str]:
    """Render a float as fixed-point text, e.g. 306.45 -> "306.450"."""
    if value is None or not math.isfinite(value):
        return None
    return str(Decimal(repr(float(value))).quantize(Decimal(1).scaleb(-places)))


class BoundaryStore:
    """
    Data access for Boundary rows.

    The store never commits; callers own the unit of work.
    """

    def __init__(self, db: Session):
        """
        Initialize boundary store.

        Args:
            db: Database session
        """
        self.db = db

    @staticmethod
    def promote(city_id: str, candidate: OSMBoundary, is_selected: bool = False) -> Boundary:
        """Turn an ephemeral candidate into a (pending) Boundary row for a city."""
        if calculate_bounds(candidate.geometry) is None:
            raise MalformedGeometry(f"Candidate {candidate.osm_id} has no usable geometry")
        return Boundary(
            osm_id=candidate.osm_id,
            osm_type=candidate.osm_type,
            city_id=city_id,
            name=candidate.name,
            admin_level=candidate.admin_level,
            boundary_type=candidate.boundary_type,
            area=format_decimal(candidate.area, 3),
            geometry=candidate.geometry,
            tags=dict(candidate.tags or {}),
            score=format_decimal(candidate.score, 4),
            is_selected=is_selected,
        )

    def list_by_city(self, city_id: str) -> List[Boundary]:
        return (
            self.db.query(Boundary)
            .filter(Boundary.city_id == city_id)
            .order_by(Boundary.is_selected.desc(), Boundary.created_at, Boundary.osm_id)
            .all()
        )

    def get(self, boundary_id: UUID) -> Optional[Boundary]:
        return self.db.query(Boundary).filter(Boundary.id == boundary_id).first()

    def get_for_city(self, city_id: str, boundary_id: UUID) -> Boundary:
        """
        Get a boundary that belongs to the given city.

        Raises:
            BoundaryNotFound: If no such boundary exists for the city
        """
        boundary = (
            self.db.query(Boundary)
            .filter(Boundary.id == boundary_id, Boundary.city_id == city_id)
            .first()
        )
        if boundary is None:
            raise BoundaryNotFound(f"Boundary {boundary_id} not found for city {city_id}")
        return boundary

    def find_by_osm(self, city_id: str, osm_type: str, osm_id: str) -> Optional[Boundary]:
        return (
            self.db.query(Boundary)
            .filter(
                Boundary.city_id == city_id,
                Boundary.osm_type == osm_type,
                Boundary.osm_id == osm_id,
            )
            .first()
        )

    def get_selected(self, city_id: str) -> Optional[Boundary]:
        """
        Get the selected boundary of a city.

        Raises:
            InvariantViolation: If more than one row is marked selected
        """
        try:
            return (
                self.db.query(Boundary)
                .filter(Boundary.city_id == city_id, Boundary.is_selected.is_(True))
                .one_or_none()
            )
        except MultipleResultsFound as e:
            raise InvariantViolation(f"City {city_id} has more than one selected boundary") from e

    def count_selected(self, city_id: str) -> int:
        return (
            self.db.query(Boundary)
            .filter(Boundary.city_id == city_id, Boundary.is_selected.is_(True))
            .count()
        )

    def lock_city(self, city_id: str):
        """Row-lock the city's boundaries for the current transaction (no-op on SQLite)."""
        self.db.execute(
            select(Boundary.id).where(Boundary.city_id == city_id).with_for_update()
        ).all()

    def add(self, boundary: Boundary) -> Boundary:
        """
        Stage a new boundary row.

        Raises:
            InvariantViolation: If the row is selected while another selection exists
        """
        if boundary.is_selected and self.get_selected(boundary.city_id) is not None:
            raise InvariantViolation(
                f"City {boundary.city_id} already has a selected boundary; demote it first"
            )
        self.db.add(boundary)
        self.db.flush()
        return boundary

    def add_if_absent(self, city_id: str, candidate: OSMBoundary) -> Boundary:
        """Return the stored row for the candidate, inserting an unselected one if needed."""
        existing = self.find_by_osm(city_id, candidate.osm_type, candidate.osm_id)
        if existing is not None:
            return existing
        return self.add(self.promote(city_id, candidate))

    def demote_all(self, city_id: str) -> int:
        result = self.db.execute(
            update(Boundary)
            .where(Boundary.city_id == city_id, Boundary.is_selected.is_(True))
            .values(is_selected=False)
            .execution_options(synchronize_session=False)
        )
        self.db.expire_all()
        return result.rowcount

    def mark_selected(self, city_id: str, boundary_id: UUID) -> int:
        result = self.db.execute(
            update(Boundary)
            .where(Boundary.id == boundary_id, Boundary.city_id == city_id)
            .values(is_selected=True)
            .execution_options(synchronize_session=False)
        )
        self.db.expire_all()
        return result.rowcount

    def delete(self, city_id: str, boundary_id: UUID) -> Boundary:
        boundary = self.get_for_city(city_id, boundary_id)
        self.db.delete(boundary)
        self.db.flush()
        return boundary

    def delete_by_city(self, city_id: str) -> int:
        result = self.db.execute(
            delete(Boundary)
            .where(Boundary.city_id == city_id)
            .execution_options(synchronize_session=False)
        )
        self.db.expire_all()
        return result.rowcount
