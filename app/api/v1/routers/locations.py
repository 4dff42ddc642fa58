"""
API router for sampling locations, layout and ingestion status.
"""
from fastapi import APIRouter, HTTPException, Path, Query
from typing import Annotated

from app.api.dependencies import MapServiceDep, ViewportDep
from app.api.v1.models.responses import (
    DatasetsResponse,
    LayoutResponse,
    LocationsResponse,
)
from app.domain.models import MarkerDescriptor
from app.services.domain.declutter import zoom_scale


router = APIRouter(
    tags=["locations"],
)


@router.get(
    "/datasets",
    response_model=DatasetsResponse,
    summary="Get ingestion status",
    description="""
    Report which data sources were ingested at start-up.

    A source that could not be read is listed with `loaded: false` and a
    "Data unavailable" message; the other sources are still served.
    """,
)
async def get_datasets(map_service: MapServiceDep) -> DatasetsResponse:
    return DatasetsResponse(
        location_count=len(map_service.locations),
        sources=map_service.statuses,
    )


@router.get(
    "/locations",
    response_model=LocationsResponse,
    summary="List sampling locations",
    description="""
    Return one marker descriptor per sampling location.

    Each descriptor carries the merged species list (summed over all
    sampling dates), the per-date records, environmental averages,
    dominant taxon and a text summary.
    """,
)
async def list_locations(map_service: MapServiceDep) -> LocationsResponse:
    descriptors = map_service.marker_descriptors()
    return LocationsResponse(count=len(descriptors), locations=descriptors)


@router.get(
    "/locations/{index}",
    response_model=MarkerDescriptor,
    summary="Get one sampling location",
    responses={
        404: {
            "description": "Location not found",
        },
    },
)
async def get_location(
    index: Annotated[int, Path(ge=0, description="Location index")],
    map_service: MapServiceDep,
) -> MarkerDescriptor:
    try:
        return map_service.marker_descriptor(index)
    except IndexError:
        raise HTTPException(
            status_code=404,
            detail=f"Location with index {index} not found"
        )


@router.get(
    "/layout",
    response_model=LayoutResponse,
    summary="Get the declutter layout",
    description="""
    Compute display positions for all markers at a zoom level.

    Locations closer than about 11 m are spread on a circle around the
    first of them, with a radius that grows as the map zooms out.
    When viewport bounds are given, only markers inside them are returned.
    """,
    responses={
        400: {
            "description": "Invalid viewport bounds",
        },
    },
)
async def get_layout(
    map_service: MapServiceDep,
    bounds: ViewportDep,
    zoom: Annotated[float, Query(ge=0, le=22, description="Map zoom level")] = 13,
) -> LayoutResponse:
    return LayoutResponse(
        zoom=zoom,
        zoom_scale=zoom_scale(zoom),
        markers=map_service.layout(zoom, bounds),
    )
