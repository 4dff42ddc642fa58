"""
Application service: Orchestration layer for the sampling map.

Loads and groups the data sources once, then serves marker descriptors,
declutter layouts and per-session selection views.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import logging
import uuid

from pydantic import ValidationError

from app.config import Settings, settings as default_settings
from app.domain.models import (
    Coordinates,
    DatasetStatus,
    DisplayMarker,
    EnvironmentReading,
    LocationRecord,
    MarkerDescriptor,
    RenderMarker,
    ViewportBounds,
)
from app.infrastructure.data_source import DataSourceClient, DataSourceError
from app.infrastructure.icon_cache import IconCache, IconSpec, color_for_taxon
from app.services.domain.aggregation import summarize_observations
from app.services.domain.declutter import (
    LayoutConfig,
    MarkerLayoutEngine,
    filter_visible,
)
from app.services.domain.grouping import group_observations
from app.services.domain.ingestion import (
    IngestionError,
    IngestionProfile,
    InvalidReadsPolicy,
    RawObservation,
    parse_csv_text,
    parse_spreadsheet_rows,
    read_spreadsheet,
    to_date_key,
    to_float,
    to_text,
)
from app.services.domain.selection import (
    SelectionController,
    SelectionEvent,
    SelectionView,
)

logger = logging.getLogger(__name__)


DATA_UNAVAILABLE_MESSAGE = "Data unavailable"


class SessionNotFoundError(Exception):
    """Raised when a view session id is unknown or already closed."""
    pass


@dataclass
class ViewSession:
    """Selection state and icon cache of one map view."""
    id: str
    controller: SelectionController
    icon_cache: IconCache
    last_used: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def touch(self) -> None:
        self.last_used = datetime.now(timezone.utc)

    def idle_seconds(self, now: datetime) -> float:
        return (now - self.last_used).total_seconds()


class MapService:
    """
    Application service for the sampling map.

    Coordinates the data source loader, the ingestion and grouping
    pipeline, the layout engine and the view sessions. Holds no
    aggregation logic itself.
    """

    def __init__(
        self,
        data_source: DataSourceClient,
        config: Optional[Settings] = None,
    ):
        """
        Initialize the service with dependencies.

        Args:
            data_source: Loader for files and URLs
            config: Settings (defaults to the global settings)
        """
        self.data_source = data_source
        self.config = config or default_settings
        self.layout_engine = MarkerLayoutEngine(LayoutConfig(
            tolerance=self.config.marker_overlap_tolerance,
            base_radius_m=self.config.marker_base_radius_m,
            base_size=self.config.marker_base_size,
            cluster_size_ratio=self.config.marker_cluster_size_ratio,
        ))
        self.locations: list[LocationRecord] = []
        self.statuses: list[DatasetStatus] = []
        self.sessions: dict[str, ViewSession] = {}
        self._known_taxa: list[str] = []

    # ============================================================
    # Ingestion
    # ============================================================

    async def load(self) -> list[LocationRecord]:
        """
        Ingest every configured source and group the rows into locations.

        A failing source is recorded as unavailable and skipped; the
        remaining sources still load.

        Returns:
            The grouped location records
        """
        rows: list[RawObservation] = []
        self.statuses = []

        if self.config.csv_source:
            rows.extend(await self._load_source("csv", self.config.csv_source, self._read_csv_source))

        if self.config.spreadsheet_source:
            rows.extend(await self._load_source(
                "spreadsheet", self.config.spreadsheet_source, self._read_spreadsheet_source
            ))

        self.locations = group_observations(
            rows,
            tolerance=self.config.location_tolerance,
            default_taxon=self.config.default_taxon_label,
        )
        self._known_taxa = []
        for location in self.locations:
            color_for_taxon(location.dominant_taxon_label, self._known_taxa)

        logger.info(f"Loaded {len(rows)} observations at {len(self.locations)} locations")
        return self.locations

    async def _load_source(self, kind: str, source: str, reader) -> list[RawObservation]:
        try:
            rows = await reader(source)
        except (DataSourceError, IngestionError) as e:
            logger.error(f"Failed to ingest {kind} source {source}: {str(e)}")
            self.statuses.append(DatasetStatus(
                kind=kind,
                source=source,
                loaded=False,
                message=f"{DATA_UNAVAILABLE_MESSAGE}: {str(e)}",
            ))
            return []

        self.statuses.append(DatasetStatus(
            kind=kind,
            source=source,
            loaded=True,
            row_count=len(rows),
        ))
        return rows

    async def _read_csv_source(self, source: str) -> list[RawObservation]:
        metadata = await self.data_source.read_json(self.config.csv_metadata_source)
        try:
            coordinates = Coordinates(**metadata["location"])
        except (KeyError, TypeError, ValidationError) as e:
            raise IngestionError(f"Metadata has no usable location: {str(e)}")

        csv_text = await self.data_source.read_text(source)
        return parse_csv_text(
            csv_text,
            coordinates=coordinates,
            sampling_date=to_date_key(metadata.get("date") or metadata.get("sampling")) or 0,
            taxon=to_text(metadata.get("taxon") or metadata.get("taxa")),
            title=to_text(metadata.get("title")),
            environment=EnvironmentReading(
                dissolved_oxygen=to_float(metadata.get("do")),
                specific_conductance=to_float(metadata.get("spc")),
                ph=to_float(metadata.get("pH")),
                purpose=to_text(metadata.get("object")),
                manager=to_text(metadata.get("manager")),
                primer=to_text(metadata.get("primer")),
                marker_label=to_text(metadata.get("marker")),
            ),
            profile=IngestionProfile(
                invalid_reads=InvalidReadsPolicy(self.config.csv_invalid_reads_policy)
            ),
        )

    async def _read_spreadsheet_source(self, source: str) -> list[RawObservation]:
        data = await self.data_source.read_bytes(source)
        rows = read_spreadsheet(data, self.config.spreadsheet_sheet_name)
        return parse_spreadsheet_rows(
            rows,
            profile=IngestionProfile(
                invalid_reads=InvalidReadsPolicy(self.config.spreadsheet_invalid_reads_policy)
            ),
        )

    # ============================================================
    # Markers and layout
    # ============================================================

    def marker_title(self, index: int) -> str:
        metadata = self.locations[index].metadata
        return metadata.title or metadata.purpose or f"Sampling point {index + 1}"

    def marker_descriptor(self, index: int) -> MarkerDescriptor:
        """
        Describe one location for the presentation layer.

        Raises:
            IndexError: If the index does not name a location
        """
        if not 0 <= index < len(self.locations):
            raise IndexError(f"Unknown location index: {index}")

        location = self.locations[index]
        return MarkerDescriptor(
            index=index,
            position=location.coordinates,
            title=self.marker_title(index),
            summary=summarize_observations(
                location.merged_observations, taxon=location.dominant_taxon_label
            ),
            fish_data=location.merged_observations,
            taxon=location.dominant_taxon_label,
            date_data=location.date_records,
            avg_metadata=location.environment_averages,
            metadata=location.metadata,
        )

    def marker_descriptors(self) -> list[MarkerDescriptor]:
        return [self.marker_descriptor(i) for i in range(len(self.locations))]

    def layout(
        self,
        zoom: float,
        bounds: Optional[ViewportBounds] = None,
    ) -> list[DisplayMarker]:
        """
        Compute the declutter layout, optionally limited to a viewport.

        Raises:
            ValueError: If the bounds are invalid
        """
        markers = self.layout_engine.compute_layout(self.locations, zoom)
        if bounds is not None:
            markers = filter_visible(markers, bounds)
        return markers

    def icon_spec(self, index: int, size: int) -> IconSpec:
        taxon = self.locations[index].dominant_taxon_label
        return IconSpec(
            taxon=taxon,
            size=size,
            color=color_for_taxon(taxon, self._known_taxa),
        )

    # ============================================================
    # View sessions
    # ============================================================

    def create_session(self) -> ViewSession:
        self.expire_idle_sessions()
        session = ViewSession(
            id=uuid.uuid4().hex,
            controller=SelectionController(self.locations),
            icon_cache=IconCache(max_entries=self.config.icon_cache_max_entries),
        )
        self.sessions[session.id] = session
        logger.info(f"Opened view session {session.id}")
        return session

    def get_session(self, session_id: str) -> ViewSession:
        """
        Raises:
            SessionNotFoundError: If no such session is open
        """
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"View session '{session_id}' not found")
        session.touch()
        return session

    def close_session(self, session_id: str) -> None:
        session = self.get_session(session_id)
        session.icon_cache.clear()
        del self.sessions[session_id]
        logger.info(f"Closed view session {session_id}")

    def expire_idle_sessions(self, now: Optional[datetime] = None) -> int:
        """
        Close sessions left idle longer than the configured timeout.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            Number of sessions closed
        """
        timeout = self.config.session_idle_timeout_seconds
        if timeout <= 0:
            return 0

        now = now or datetime.now(timezone.utc)
        expired = [
            session for session in self.sessions.values()
            if session.idle_seconds(now) > timeout
        ]
        for session in expired:
            session.icon_cache.clear()
            del self.sessions[session.id]

        if expired:
            logger.info(f"Expired {len(expired)} idle view session(s)")
        return len(expired)

    def session_view(self, session_id: str) -> SelectionView:
        session = self.get_session(session_id)
        return session.controller.build_view(top_n=self.config.top_species_count)

    def apply_event(self, session_id: str, event: SelectionEvent) -> SelectionView:
        """
        Apply an interaction to a session and return the new view.

        Raises:
            SessionNotFoundError: If no such session is open
            ValueError: If the event is invalid for the current state
        """
        session = self.get_session(session_id)
        session.controller.apply(event)
        return session.controller.build_view(top_n=self.config.top_species_count)

    def session_markers(
        self,
        session_id: str,
        zoom: float,
        bounds: Optional[ViewportBounds] = None,
    ) -> list[RenderMarker]:
        """
        Build renderer input for a session: layout, icon, opacity, title.

        Markers outside the current selection are dimmed while any
        location is selected. Icons not loaded yet use the fallback.
        """
        session = self.get_session(session_id)
        selected = session.controller.state.selected_location_indices

        render = []
        for marker in self.layout(zoom, bounds):
            is_selected = marker.index in selected
            opacity = 1.0 if not selected or is_selected else self.config.unselected_marker_opacity
            render.append(RenderMarker(
                index=marker.index,
                position=marker.position,
                size=marker.size,
                title=self.marker_title(marker.index),
                opacity=opacity,
                selected=is_selected,
                cluster_size=marker.cluster_size,
                icon=session.icon_cache.resolve(self.icon_spec(marker.index, marker.size)),
            ))
        return render

    async def prefetch_icons(self, session_id: str) -> int:
        """
        Load per-taxon icons into a session's cache.

        Does nothing without an icon source. Missing icons fall back to
        generated ones.

        Returns:
            Number of icons processed
        """
        if not self.config.icon_base_url:
            return 0

        try:
            session = self.get_session(session_id)
        except SessionNotFoundError:
            logger.debug(f"Session {session_id} closed before icon prefetch")
            return 0

        clustered_size = int(round(
            self.config.marker_base_size * self.config.marker_cluster_size_ratio
        ))
        specs = {}
        for index in range(len(self.locations)):
            for size in (self.config.marker_base_size, clustered_size):
                spec = self.icon_spec(index, size)
                specs[spec.key] = spec

        base = self.config.icon_base_url.rstrip("/")
        for spec in specs.values():
            await session.icon_cache.fetch(
                spec, self.data_source.read_bytes, f"{base}/{spec.slug}.png"
            )

        logger.info(f"Prefetched {len(specs)} icons for session {session_id}")
        return len(specs)
