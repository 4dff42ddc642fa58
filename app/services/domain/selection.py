"""
Domain service: Selection and view-state controller.

Tracks which locations are selected and which date tab is active, and
derives the dataset currently on screen. Derived values are plain
functions of the current state, recomputed on every call.
"""
from enum import Enum
from typing import Optional, Sequence
import logging

from pydantic import BaseModel, Field

from app.domain.models import (
    ChartSlice,
    EnvironmentAverages,
    LocationRecord,
    Observation,
    SelectionState,
)
from app.services.domain.aggregation import (
    environment_averages,
    merge_observations,
    summarize_observations,
    top_species_breakdown,
    total_reads,
)

logger = logging.getLogger(__name__)


ALL_DATES = -1


class SelectionEventType(str, Enum):
    """User interactions that drive the selection state."""
    MAP_CLICK = "map_click"
    MARKER_CLICK = "marker_click"
    DATE_TAB = "date_tab"
    SWIPE_LEFT = "swipe_left"
    SWIPE_RIGHT = "swipe_right"


class SelectionEvent(BaseModel):
    """One interaction reported by the presentation layer."""
    type: SelectionEventType
    index: Optional[int] = Field(
        default=None,
        description="Location index for marker clicks, date index for date tabs"
    )


class DateTab(BaseModel):
    """A date tab and the sampling dates it covers across the selection."""
    index: int
    dates: list[int]


class SelectionView(BaseModel):
    """Dataset derived from the current selection."""
    state: SelectionState
    date_tabs: list[DateTab]
    observations: list[Observation]
    breakdown: list[ChartSlice]
    total_reads: int
    species_count: int
    summary: str
    environment: EnvironmentAverages
    dates: list[int]


class SelectionController:
    """
    State machine over (selected locations, active date index).

    Transitions:
    - map click: clear selection, back to all dates
    - marker click: toggle the location, back to all dates
    - date tab: pick a date index (ignored with no selection)
    - swipe left/right: step the date index, clamped to [-1, last]
    """

    def __init__(self, locations: Sequence[LocationRecord]):
        self.locations = locations
        self.state = SelectionState()

    # ------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------

    def reset(self) -> None:
        self.state = SelectionState()

    def click_map(self) -> SelectionState:
        """Clicking empty map area clears the selection."""
        self.reset()
        return self.state

    def click_marker(self, index: int) -> SelectionState:
        """
        Toggle a location in the selection.

        Raises:
            ValueError: If the index does not name a location
        """
        if not 0 <= index < len(self.locations):
            raise ValueError(f"Unknown location index: {index}")

        selected = set(self.state.selected_location_indices)
        if index in selected:
            selected.remove(index)
        else:
            selected.add(index)

        self.state = SelectionState(
            selected_location_indices=selected,
            active_date_index=ALL_DATES,
        )
        logger.debug(f"Selection now {sorted(selected)}")
        return self.state

    def select_date(self, index: int) -> SelectionState:
        """
        Activate a date tab, or -1 for all dates.

        Valid indices are those listed by ``date_tabs()``, up to
        ``max_date_index``. Without a selected location this is a no-op.

        Raises:
            ValueError: If the index is outside the selection's dates
        """
        if not self.state.selected_location_indices:
            return self.state

        if not ALL_DATES <= index <= self.max_date_index:
            raise ValueError(
                f"Date index {index} out of range [-1, {self.max_date_index}]"
            )

        self.state = self.state.model_copy(update={"active_date_index": index})
        return self.state

    def swipe_left(self) -> SelectionState:
        """Advance to the next date, stopping at the last one."""
        if not self.state.selected_location_indices:
            return self.state
        next_index = min(self.state.active_date_index + 1, self.max_date_index)
        self.state = self.state.model_copy(update={"active_date_index": next_index})
        return self.state

    def swipe_right(self) -> SelectionState:
        """Go back one date, stopping at the all-dates view."""
        if not self.state.selected_location_indices:
            return self.state
        previous_index = max(self.state.active_date_index - 1, ALL_DATES)
        self.state = self.state.model_copy(update={"active_date_index": previous_index})
        return self.state

    def apply(self, event: SelectionEvent) -> SelectionState:
        """
        Dispatch an interaction event.

        Raises:
            ValueError: If an indexed event carries no index
        """
        if event.type is SelectionEventType.MAP_CLICK:
            return self.click_map()
        if event.type is SelectionEventType.SWIPE_LEFT:
            return self.swipe_left()
        if event.type is SelectionEventType.SWIPE_RIGHT:
            return self.swipe_right()

        if event.index is None:
            raise ValueError(f"Event '{event.type.value}' requires an index")
        if event.type is SelectionEventType.MARKER_CLICK:
            return self.click_marker(event.index)
        return self.select_date(event.index)

    # ------------------------------------------------------------
    # Derived view
    # ------------------------------------------------------------

    def selected_locations(self) -> list[LocationRecord]:
        return [self.locations[i] for i in sorted(self.state.selected_location_indices)]

    @property
    def max_date_index(self) -> int:
        """Last valid date index across the selected locations (-1 if none)."""
        lengths = [len(location.date_records) for location in self.selected_locations()]
        return max(lengths, default=0) - 1

    def date_tabs(self) -> list[DateTab]:
        tabs = []
        for index in range(self.max_date_index + 1):
            dates = sorted({
                location.date_records[index].date
                for location in self.selected_locations()
                if index < len(location.date_records)
            })
            tabs.append(DateTab(index=index, dates=dates))
        return tabs

    def current_observations(self) -> list[Observation]:
        """
        Merge the observations shown for the current state.

        All dates: each selected location's merged observations.
        One date: each selected location's observations at that index;
        locations without that many dates are skipped.
        """
        index = self.state.active_date_index
        if index == ALL_DATES:
            return merge_observations(
                location.merged_observations for location in self.selected_locations()
            )

        return merge_observations(
            location.date_records[index].observations
            for location in self.selected_locations()
            if index < len(location.date_records)
        )

    def build_view(self, top_n: int = 5) -> SelectionView:
        """
        Derive everything the detail panel shows.

        Args:
            top_n: Species listed individually in the breakdown

        Returns:
            SelectionView for the current state
        """
        index = self.state.active_date_index
        contributing = [
            record
            for location in self.selected_locations()
            for i, record in enumerate(location.date_records)
            if index == ALL_DATES or i == index
        ]

        observations = self.current_observations()
        taxon = None
        if len(self.state.selected_location_indices) == 1:
            taxon = self.selected_locations()[0].dominant_taxon_label

        return SelectionView(
            state=self.state,
            date_tabs=self.date_tabs(),
            observations=observations,
            breakdown=top_species_breakdown(observations, top_n=top_n),
            total_reads=total_reads(observations),
            species_count=len(observations),
            summary=summarize_observations(observations, taxon=taxon),
            environment=environment_averages(r.environment for r in contributing),
            dates=sorted({r.date for r in contributing}),
        )
