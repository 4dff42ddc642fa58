"""
API response models using Pydantic.
"""
from typing import List
from pydantic import BaseModel, Field

from app.domain.models import (
    DatasetStatus,
    DisplayMarker,
    MarkerDescriptor,
    RenderMarker,
)
from app.services.domain.selection import SelectionView


class DatasetsResponse(BaseModel):
    """Response model for the ingestion status endpoint."""
    location_count: int = Field(
        description="Number of sampling locations built from all sources"
    )
    sources: List[DatasetStatus] = Field(
        description="Outcome per configured data source"
    )


class LocationsResponse(BaseModel):
    """Response model for the locations endpoint."""
    count: int = Field(
        description="Number of sampling locations"
    )
    locations: List[MarkerDescriptor] = Field(
        description="Marker descriptors in location index order"
    )


class LayoutResponse(BaseModel):
    """Response model for the declutter layout endpoint."""
    zoom: float = Field(
        description="Zoom level the layout was computed for"
    )
    zoom_scale: float = Field(
        description="Radius multiplier applied to coincident markers"
    )
    markers: List[DisplayMarker] = Field(
        description="Display position and size per visible location"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "zoom": 13,
                "zoom_scale": 0.758,
                "markers": [
                    {
                        "index": 0,
                        "position": {"lat": 37.000205, "lon": 127.0},
                        "true_position": {"lat": 37.0, "lon": 127.0},
                        "size": 30,
                        "cluster_id": 0,
                        "cluster_size": 3,
                    },
                ]
            }
        }


class SessionResponse(BaseModel):
    """Response model for view session endpoints."""
    session_id: str = Field(
        description="Identifier of the view session"
    )
    view: SelectionView = Field(
        description="Selection state and the data derived from it"
    )


class SessionMarkersResponse(BaseModel):
    """Response model for the per-session marker rendering endpoint."""
    session_id: str
    zoom: float
    markers: List[RenderMarker] = Field(
        description="Markers to draw, with icon and opacity"
    )
