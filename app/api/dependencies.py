"""
Dependency injection for FastAPI.
"""
from typing import Annotated, Optional
from fastapi import Depends, Query

from app.domain.models import ViewportBounds
from app.infrastructure.data_source import get_data_source_client
from app.services.application.map_service import MapService


# Singleton instance, loaded during application start-up
_map_service: Optional[MapService] = None


def get_map_service() -> MapService:
    """
    Dependency factory for MapService.

    Returns:
        The process-wide MapService instance
    """
    global _map_service
    if _map_service is None:
        _map_service = MapService(data_source=get_data_source_client())
    return _map_service


def get_viewport_bounds(
    south: Annotated[Optional[float], Query(ge=-90, le=90, description="Southern edge latitude")] = None,
    west: Annotated[Optional[float], Query(ge=-180, le=180, description="Western edge longitude")] = None,
    north: Annotated[Optional[float], Query(ge=-90, le=90, description="Northern edge latitude")] = None,
    east: Annotated[Optional[float], Query(ge=-180, le=180, description="Eastern edge longitude")] = None,
) -> Optional[ViewportBounds]:
    """
    Dependency that reads optional viewport bounds from the query string.

    Returns:
        ViewportBounds when all four edges are given, None when none are

    Raises:
        ValueError: If only some of the edges are given
    """
    edges = (south, west, north, east)
    if all(edge is None for edge in edges):
        return None
    if any(edge is None for edge in edges):
        raise ValueError("Viewport bounds need all of south, west, north and east")
    return ViewportBounds(south=south, west=west, north=north, east=east)


# Type aliases for cleaner route signatures
MapServiceDep = Annotated[MapService, Depends(get_map_service)]
ViewportDep = Annotated[Optional[ViewportBounds], Depends(get_viewport_bounds)]
