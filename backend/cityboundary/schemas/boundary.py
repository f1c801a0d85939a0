from pydantic import BaseModel, Field, model_validator
from uuid import UUID
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional


OSMType = Literal["way", "relation"]


class BoundaryQuery(BaseModel):
    city_name: str = Field(..., min_length=1, max_length=255)
    country: str = Field(..., min_length=1, max_length=255)
    country_code: Optional[str] = Field(None, min_length=2, max_length=2)
    limit: Optional[int] = Field(None, ge=1)


class OSMBoundary(BaseModel):
    """Scored candidate as returned by a provider; never persisted directly."""

    osm_id: str = Field(..., min_length=1)
    osm_type: OSMType
    name: str
    admin_level: Optional[str] = None
    boundary_type: str = "administrative"
    area: Optional[float] = None
    geometry: Optional[Dict[str, Any]] = None
    tags: Dict[str, Any] = Field(default_factory=dict)
    score: float = 0.0


class BoundaryRead(BaseModel):
    id: UUID
    osm_id: str
    osm_type: OSMType
    city_id: str
    name: str
    admin_level: Optional[str] = None
    boundary_type: Optional[str] = None
    area: Optional[str] = None
    geometry: Dict[str, Any]
    tags: Dict[str, Any] = Field(default_factory=dict)
    score: Optional[str] = None
    is_selected: bool
    created_at: datetime

    class Config:
        from_attributes = True


class BoundarySearchRequest(BoundaryQuery):
    city_id: str = Field(..., min_length=1, max_length=255)
    persist: bool = False


class BoundarySearchResponse(BaseModel):
    request_id: UUID
    city_id: str
    state: str
    candidates: List[OSMBoundary]
    suggested: Optional[OSMBoundary] = None
    selected: Optional[BoundaryRead] = None
    error: Optional[str] = None
    retryable: bool = False


class CityBoundariesResponse(BaseModel):
    city_id: str
    state: str
    boundaries: List[BoundaryRead]


class BoundarySelectRequest(BaseModel):
    """Exactly one way of naming the boundary to select."""

    boundary_id: Optional[UUID] = None
    candidate: Optional[OSMBoundary] = None
    osm_type: Optional[OSMType] = None
    osm_id: Optional[str] = None

    @model_validator(mode="after")
    def check_target(self):
        given = [
            self.boundary_id is not None,
            self.candidate is not None,
            self.osm_type is not None or self.osm_id is not None,
        ]
        if sum(given) != 1:
            raise ValueError("Provide exactly one of boundary_id, candidate, or osm_type+osm_id")
        if given[2] and (self.osm_type is None or self.osm_id is None):
            raise ValueError("osm_type and osm_id must be given together")
        return self


class GeometryExportRequest(BaseModel):
    geometry: Optional[Dict[str, Any]] = None
    filename: str = Field("boundary.geojson", min_length=1, max_length=255)


class BoundsResponse(BaseModel):
    bounds: Optional[List[List[float]]] = None
