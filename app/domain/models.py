"""
Domain models for e-DNA sampling data.

These models represent the core domain entities and should be independent
of any infrastructure concerns (file loaders, HTTP clients, etc.).
Optional values are always explicit ``None`` so they serialize as ``null``.
"""
from typing import List, Optional, Set
from pydantic import BaseModel, Field


class Coordinates(BaseModel):
    """Geographic position in decimal degrees."""
    lat: float
    lon: float


class Observation(BaseModel):
    """Read count for one species from one sampling event."""
    scientific_name: str
    common_name: str
    reads_count: int = Field(ge=0, description="Sequencing reads assigned to the species")
    taxon: Optional[str] = None

    class Config:
        frozen = True

    @property
    def species_key(self) -> tuple[str, str]:
        return (self.scientific_name, self.common_name)


class EnvironmentReading(BaseModel):
    """Field measurements and notes recorded with a sampling event."""
    dissolved_oxygen: Optional[float] = Field(default=None, description="DO in mg/L")
    specific_conductance: Optional[float] = Field(default=None, description="SPC in uS/cm")
    ph: Optional[float] = None
    purpose: Optional[str] = None
    manager: Optional[str] = None
    primer: Optional[str] = None
    marker_label: Optional[str] = None


class DateRecord(BaseModel):
    """One sampling event at one location on one date."""
    date: int = Field(description="Sampling date encoded as YYYYMMDD")
    sampling_id: int
    observations: List[Observation] = Field(default_factory=list)
    environment: EnvironmentReading = Field(default_factory=EnvironmentReading)


class EnvironmentAverages(BaseModel):
    """Mean environmental parameters over the dates that recorded them."""
    dissolved_oxygen: Optional[float] = None
    specific_conductance: Optional[float] = None
    ph: Optional[float] = None


class LocationMetadata(BaseModel):
    """Static description of a sampling point, taken from its first row."""
    location: Coordinates
    taxon: str
    marker_label: Optional[str] = None
    manager: Optional[str] = None
    primer: Optional[str] = None
    purpose: Optional[str] = None
    title: Optional[str] = None


class LocationRecord(BaseModel):
    """All sampling data collected at one physical point."""
    coordinates: Coordinates
    dominant_taxon_label: str
    date_records: List[DateRecord] = Field(default_factory=list)
    merged_observations: List[Observation] = Field(default_factory=list)
    environment_averages: EnvironmentAverages = Field(default_factory=EnvironmentAverages)
    metadata: LocationMetadata


class SelectionState(BaseModel):
    """Which locations are selected and which date tab is active."""
    selected_location_indices: Set[int] = Field(default_factory=set)
    active_date_index: int = Field(
        default=-1,
        description="-1 aggregates all dates, otherwise an index into date records"
    )


class ChartSlice(BaseModel):
    """One labeled proportion for the chart renderer."""
    label: str
    value: int
    secondary_label: str = ""
    percentage: float


class MarkerDescriptor(BaseModel):
    """Everything the presentation layer needs to show one location."""
    index: int
    position: Coordinates
    title: str
    summary: str
    fish_data: List[Observation]
    taxon: str
    date_data: List[DateRecord]
    avg_metadata: EnvironmentAverages
    metadata: LocationMetadata


class DisplayMarker(BaseModel):
    """Where and how large a location's marker is drawn."""
    index: int
    position: Coordinates = Field(description="Display coordinate, possibly offset")
    true_position: Coordinates
    size: int
    cluster_id: int
    cluster_size: int


class ViewportBounds(BaseModel):
    """Visible map area as reported by the map renderer."""
    south: float = Field(ge=-90, le=90)
    west: float = Field(ge=-180, le=180)
    north: float = Field(ge=-90, le=90)
    east: float = Field(ge=-180, le=180)


class IconAsset(BaseModel):
    """Marker icon payload handed to the map renderer."""
    key: str
    content_type: str
    data: str = Field(description="Icon payload, base64 for binary images")
    is_fallback: bool = False


class RenderMarker(BaseModel):
    """One marker as drawn by the map renderer for a view session."""
    index: int
    position: Coordinates
    size: int
    title: str
    opacity: float = Field(ge=0, le=1)
    selected: bool
    cluster_size: int
    icon: IconAsset


class DatasetStatus(BaseModel):
    """Outcome of ingesting one data source."""
    kind: str
    source: str
    loaded: bool
    row_count: int = 0
    message: Optional[str] = None
