"""
Domain service: Spatial grouping of observations into locations and dates.

Builds ``LocationRecord`` objects from flat ingestion output in one pass
over a two-level mapping: location key -> date -> accumulated rows.
"""
from dataclasses import dataclass, field
from typing import Iterable, Optional
import logging
import math

from app.domain.models import (
    Coordinates,
    DateRecord,
    EnvironmentReading,
    LocationMetadata,
    LocationRecord,
    Observation,
)
from app.services.domain.aggregation import (
    dominant_taxon,
    environment_averages,
    merge_observations,
)
from app.services.domain.ingestion import RawObservation

logger = logging.getLogger(__name__)


DEFAULT_LOCATION_TOLERANCE = 1e-4
LOCATION_KEY_DIGITS = 6


def location_key(coordinates: Coordinates) -> str:
    """Bucket key from coordinates rounded to 6 decimal digits (~0.11 m)."""
    return f"{coordinates.lon:.{LOCATION_KEY_DIGITS}f}_{coordinates.lat:.{LOCATION_KEY_DIGITS}f}"


def within_tolerance(a: Coordinates, b: Coordinates, tolerance: float) -> bool:
    """True if both latitude and longitude differ by strictly less than tolerance."""
    return abs(a.lat - b.lat) < tolerance and abs(a.lon - b.lon) < tolerance


@dataclass
class DateBucket:
    """Rows of one location on one date, before merging."""
    date: int
    environment: EnvironmentReading
    observations: list[Observation] = field(default_factory=list)


@dataclass
class LocationBucket:
    """Rows of one location, keyed by date."""
    anchor: RawObservation
    dates: dict[int, DateBucket] = field(default_factory=dict)


class LocationGrouper:
    """
    Accumulates raw observations into location and date buckets.

    The first row of a location fixes its coordinates and static
    metadata; the first row of a date fixes that date's environment.
    Later rows never override either.
    """

    def __init__(
        self,
        tolerance: float = DEFAULT_LOCATION_TOLERANCE,
        default_taxon: str = "Fish",
    ):
        self.tolerance = tolerance
        self.default_taxon = default_taxon
        self._buckets: dict[str, LocationBucket] = {}
        self._aliases: dict[str, str] = {}
        self._anchor_cells: dict[tuple[int, int], list[str]] = {}
        self._anchor_order: dict[str, int] = {}

    def _cell(self, coordinates: Coordinates) -> tuple[int, int]:
        return (
            math.floor(coordinates.lat / self.tolerance),
            math.floor(coordinates.lon / self.tolerance),
        )

    def _resolve_key(self, coordinates: Coordinates) -> str:
        """
        Map coordinates to the key of the location they belong to.

        Rows sharing a 6-digit key always share a location. A new key
        joins the first location whose anchor is within tolerance; with
        a tolerance of 0 only the 6-digit key is used.

        Anchors are indexed on a grid of tolerance-sized cells, so only
        the surrounding 3x3 cells are searched.
        """
        key = location_key(coordinates)
        if key in self._aliases:
            return self._aliases[key]

        self._aliases[key] = key
        if self.tolerance <= 0:
            return key

        row, col = self._cell(coordinates)
        candidates = [
            anchor_key
            for d_row in (-1, 0, 1)
            for d_col in (-1, 0, 1)
            for anchor_key in self._anchor_cells.get((row + d_row, col + d_col), ())
            if within_tolerance(self._buckets[anchor_key].anchor.coordinates, coordinates, self.tolerance)
        ]
        if candidates:
            # First-seen anchor wins
            self._aliases[key] = min(candidates, key=self._anchor_order.__getitem__)
            return self._aliases[key]

        self._anchor_order[key] = len(self._anchor_order)
        self._anchor_cells.setdefault((row, col), []).append(key)
        return key

    def add(self, raw: RawObservation) -> None:
        """Insert-or-update the buckets with one row."""
        key = self._resolve_key(raw.coordinates)

        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = LocationBucket(anchor=raw)
            self._buckets[key] = bucket

        date_bucket = bucket.dates.get(raw.date)
        if date_bucket is None:
            date_bucket = DateBucket(date=raw.date, environment=raw.environment)
            bucket.dates[raw.date] = date_bucket

        date_bucket.observations.append(raw.observation)

    def extend(self, rows: Iterable[RawObservation]) -> None:
        for raw in rows:
            self.add(raw)

    def build(self) -> list[LocationRecord]:
        """
        Produce location records in first-seen order.

        Returns:
            List of LocationRecord with merged, date-sorted data
        """
        records = [self._build_location(bucket) for bucket in self._buckets.values()]
        logger.info(f"Grouped observations into {len(records)} locations")
        return records

    def _build_location(self, bucket: LocationBucket) -> LocationRecord:
        anchor = bucket.anchor
        static_taxon = anchor.taxon or self.default_taxon

        date_records = [
            DateRecord(
                date=date_bucket.date,
                sampling_id=date_bucket.date,
                observations=merge_observations([date_bucket.observations]),
                environment=date_bucket.environment,
            )
            for date_bucket in sorted(bucket.dates.values(), key=lambda d: d.date)
        ]

        merged = merge_observations(record.observations for record in date_records)

        metadata = LocationMetadata(
            location=anchor.coordinates,
            taxon=static_taxon,
            marker_label=anchor.environment.marker_label,
            manager=anchor.environment.manager,
            primer=anchor.environment.primer,
            purpose=anchor.environment.purpose,
            title=anchor.title,
        )

        return LocationRecord(
            coordinates=anchor.coordinates,
            dominant_taxon_label=dominant_taxon(merged, fallback=static_taxon),
            date_records=date_records,
            merged_observations=merged,
            environment_averages=environment_averages(
                record.environment for record in date_records
            ),
            metadata=metadata,
        )


def group_observations(
    rows: Iterable[RawObservation],
    tolerance: float = DEFAULT_LOCATION_TOLERANCE,
    default_taxon: Optional[str] = None,
) -> list[LocationRecord]:
    """
    Group raw observations into location records.

    Args:
        rows: Flat ingestion output, in source order
        tolerance: Per-axis coordinate tolerance in degrees
        default_taxon: Taxon label for locations without taxon data

    Returns:
        List of LocationRecord in first-seen order
    """
    grouper = LocationGrouper(
        tolerance=tolerance,
        default_taxon=default_taxon or "Fish",
    )
    grouper.extend(rows)
    return grouper.build()
