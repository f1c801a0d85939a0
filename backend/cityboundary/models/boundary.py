"""Boundary model for persisted OSM boundary candidates and selections."""

from sqlalchemy import Column, String, Boolean, DateTime, Index, JSON, UniqueConstraint, Uuid, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import validates
from sqlalchemy.sql import func
import uuid

from cityboundary.core.exceptions import InvariantViolation
from cityboundary.db.base import Base

JSONVariant = JSON().with_variant(JSONB(), "postgresql")


class Boundary(Base):
    """A boundary candidate stored for a city, optionally the selected one."""

    __tablename__ = "boundaries"
    __table_args__ = (
        UniqueConstraint("osm_id", "osm_type", "city_id", name="uq_boundaries_osm_city"),
        # Storage backstop for the single-selection rule
        Index(
            "uq_boundaries_city_selected",
            "city_id",
            unique=True,
            postgresql_where=text("is_selected"),
            sqlite_where=text("is_selected = 1"),
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    osm_id = Column(String(64), nullable=False)  # e.g. "relation/2672883"
    osm_type = Column(String(16), nullable=False)  # "way" or "relation"
    city_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    admin_level = Column(String(8), nullable=True)
    boundary_type = Column(String(64), nullable=True)
    area = Column(String(32), nullable=True)  # km², decimal text
    geometry = Column(JSONVariant, nullable=False)
    tags = Column(JSONVariant, nullable=False, default=dict)
    score = Column(String(32), nullable=True)  # decimal text
    is_selected = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=False), server_default=func.now(), nullable=False)

    @validates("geometry")
    def _validate_geometry(self, key, value):
        if self.id is not None and self.geometry is not None:
            raise InvariantViolation(f"Geometry of boundary {self.id} is immutable")
        return value

    def __repr__(self) -> str:
        return f"<Boundary {self.osm_id} city={self.city_id} selected={self.is_selected}>"
