"""Boundary candidate search, selection and export endpoints."""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response, status

from cityboundary.api.deps import get_selection_manager
from cityboundary.core.exceptions import BoundaryNotFound, ExportFailure, InvariantViolation, MalformedGeometry
from cityboundary.schemas.boundary import (
    BoundaryQuery,
    BoundaryRead,
    BoundarySearchRequest,
    BoundarySearchResponse,
    BoundarySelectRequest,
    BoundsResponse,
    CityBoundariesResponse,
    GeometryExportRequest,
    OSMBoundary,
)
from cityboundary.services.boundary.exporter import export_geometry
from cityboundary.services.boundary.selection import SelectionManager
from cityboundary.services.geometry import calculate_bounds

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/boundaries", tags=["Boundaries"])


def _download(geometry: Any, filename: str) -> Response:
    export = export_geometry(geometry, filename)
    return Response(
        content=export.content,
        media_type=export.media_type,
        headers={"Content-Disposition": export.content_disposition},
    )


@router.post("/search", response_model=BoundarySearchResponse)
def search_boundaries(
    request: BoundarySearchRequest,
    timeout: Optional[float] = Query(None, gt=0, le=300, description="Provider timeout in seconds"),
    manager: SelectionManager = Depends(get_selection_manager),
):
    """
    Search OSM boundary candidates for a city and rank them.

    A failed provider call returns an empty candidate list with `error` set
    and `retryable` true. An existing selection is never changed.
    """
    try:
        query = BoundaryQuery(
            city_name=request.city_name,
            country=request.country,
            country_code=request.country_code,
            limit=request.limit,
        )
        result = manager.search(request.city_id, query, timeout=timeout, persist=request.persist)

        return BoundarySearchResponse(
            request_id=result.request_id,
            city_id=result.city_id,
            state=result.state.value,
            candidates=result.candidates,
            suggested=result.suggested,
            selected=BoundaryRead.model_validate(result.selected) if result.selected else None,
            error=result.error,
            retryable=result.retryable,
        )

    except InvariantViolation as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to search boundaries: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Boundary search failed: {str(e)}")


@router.get("/cities/{city_id}", response_model=CityBoundariesResponse)
def list_city_boundaries(city_id: str, manager: SelectionManager = Depends(get_selection_manager)):
    """List every stored boundary of a city, selected one first."""
    try:
        boundaries = manager.list_boundaries(city_id)
        return CityBoundariesResponse(
            city_id=city_id,
            state=manager.get_state(city_id).value,
            boundaries=[BoundaryRead.model_validate(b) for b in boundaries],
        )
    except InvariantViolation as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to list boundaries for city {city_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to list boundaries: {str(e)}")


@router.get("/cities/{city_id}/selected", response_model=BoundaryRead)
def get_selected_boundary(city_id: str, manager: SelectionManager = Depends(get_selection_manager)):
    """Get the selected boundary of a city."""
    try:
        selected = manager.get_selected(city_id)
    except InvariantViolation as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    if selected is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"City {city_id} has no selected boundary",
        )
    return BoundaryRead.model_validate(selected)


@router.get("/cities/{city_id}/candidates", response_model=List[OSMBoundary])
def get_cached_candidates(city_id: str, manager: SelectionManager = Depends(get_selection_manager)):
    """Ranked candidates of the latest search for a city (empty if none are cached)."""
    return manager.get_cached_candidates(city_id)


@router.post("/cities/{city_id}/select", response_model=BoundaryRead)
def select_boundary(
    city_id: str,
    request: BoundarySelectRequest,
    manager: SelectionManager = Depends(get_selection_manager),
):
    """
    Select the boundary of a city.

    The previous selection is demoted in the same transaction. On failure the
    previous selection stays unchanged.
    """
    try:
        if request.boundary_id is not None:
            boundary = manager.select_boundary(city_id, request.boundary_id)
        elif request.candidate is not None:
            boundary = manager.select_candidate(city_id, request.candidate)
        else:
            boundary = manager.select_cached(city_id, request.osm_type, request.osm_id)

        return BoundaryRead.model_validate(boundary)

    except BoundaryNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvariantViolation as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except MalformedGeometry as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to select boundary for city {city_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to select boundary: {str(e)}")


@router.delete("/cities/{city_id}")
def clear_city_boundaries(city_id: str, manager: SelectionManager = Depends(get_selection_manager)):
    """Delete all stored boundaries of a city."""
    try:
        deleted = manager.clear_city(city_id)
        return {"success": True, "city_id": city_id, "deleted_boundaries": deleted}
    except Exception as e:
        logger.error(f"Failed to clear boundaries for city {city_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to clear boundaries: {str(e)}")


@router.delete("/cities/{city_id}/boundaries/{boundary_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_boundary(
    city_id: str,
    boundary_id: UUID,
    manager: SelectionManager = Depends(get_selection_manager),
):
    """Delete one stored boundary. Deleting the selected one leaves the city unselected."""
    try:
        manager.delete_boundary(city_id, boundary_id)
    except BoundaryNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to delete boundary {boundary_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to delete boundary: {str(e)}")

    return None


@router.post("/bounds", response_model=BoundsResponse)
def geometry_bounds(geometry: Optional[Dict[str, Any]] = Body(None, embed=True)):
    """Map bounds [[min_lat, min_lng], [max_lat, max_lng]] of a GeoJSON geometry."""
    return BoundsResponse(bounds=calculate_bounds(geometry))


@router.post("/export")
def export_candidate_geometry(request: GeometryExportRequest):
    """Download a (candidate) geometry as a GeoJSON file."""
    try:
        return _download(request.geometry, request.filename)
    except ExportFailure as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


@router.get("/{boundary_id}/bounds", response_model=BoundsResponse)
def stored_boundary_bounds(boundary_id: UUID, manager: SelectionManager = Depends(get_selection_manager)):
    """Map bounds of a stored boundary."""
    boundary = manager.store.get(boundary_id)
    if boundary is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Boundary with id {boundary_id} not found",
        )
    return BoundsResponse(bounds=calculate_bounds(boundary.geometry))


@router.get("/{boundary_id}/export")
def export_stored_boundary(
    boundary_id: UUID,
    filename: Optional[str] = Query(None, min_length=1, max_length=255),
    manager: SelectionManager = Depends(get_selection_manager),
):
    """Download the geometry of a stored boundary as a GeoJSON file."""
    boundary = manager.store.get(boundary_id)
    if boundary is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Boundary with id {boundary_id} not found",
        )

    try:
        return _download(boundary.geometry, filename or f"{boundary.osm_id.replace('/', '-')}.geojson")
    except ExportFailure as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
