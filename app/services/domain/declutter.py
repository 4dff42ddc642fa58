"""
Domain service: Marker declutter layout.

Locations whose coordinates coincide within a small tolerance would draw
on top of each other. This module:
- Clusters coincident locations (first-member comparison)
- Spreads cluster members evenly on a circle around the first member
- Scales the circle radius with map zoom so separation stays visible
- Filters the resulting layout against the current viewport
"""
from dataclasses import dataclass
from typing import Optional, Sequence
import logging
import math

import numpy as np
from scipy.spatial import KDTree
from shapely.geometry import Point, box

from app.domain.models import (
    Coordinates,
    DisplayMarker,
    LocationRecord,
    ViewportBounds,
)

logger = logging.getLogger(__name__)


METERS_PER_DEGREE = 111000.0
REFERENCE_ZOOM = 12.0
ZOOM_STEP = 2.5
MIN_ZOOM_SCALE = 0.5
MAX_ZOOM_SCALE = 8.0


@dataclass
class LayoutConfig:
    """Configuration for the declutter layout."""

    tolerance: float = 1e-4
    """Per-axis coordinate difference (degrees) below which markers coincide"""

    base_radius_m: float = 30.0
    """Circle radius in meters at the reference zoom"""

    base_size: int = 40
    """Display size of a standalone marker"""

    cluster_size_ratio: float = 0.75
    """Display size of clustered markers relative to base_size"""


def zoom_scale(zoom: float) -> float:
    """
    Radius multiplier for a zoom level.

    Lower zoom yields a larger offset in meters so that members of a
    cluster stay visually apart. Clamped to [0.5, 8.0].
    """
    scale = 2 ** ((REFERENCE_ZOOM - zoom) / ZOOM_STEP)
    return float(np.clip(scale, MIN_ZOOM_SCALE, MAX_ZOOM_SCALE))


def cluster_locations(
    coordinates: Sequence[Coordinates],
    tolerance: float = 1e-4,
) -> list[list[int]]:
    """
    Group coincident locations.

    In index order, each unassigned location opens a cluster and claims
    every later unassigned location whose latitude and longitude both
    differ from it by strictly less than ``tolerance``. Membership is
    tested against the first member only, so a chain of neighbours may
    split into several clusters.

    Args:
        coordinates: Location coordinates in index order
        tolerance: Per-axis tolerance in degrees

    Returns:
        Clusters as lists of location indices, first member first
    """
    if not coordinates:
        return []

    points = np.array([(c.lat, c.lon) for c in coordinates])
    kdtree = KDTree(points)
    assigned = np.zeros(len(points), dtype=bool)
    clusters = []

    for i in range(len(points)):
        if assigned[i]:
            continue
        assigned[i] = True
        members = [i]

        # Chebyshev ball is inclusive; the strict test is applied below
        nearby = kdtree.query_ball_point(points[i], r=tolerance, p=np.inf)
        for j in sorted(nearby):
            if assigned[j]:
                continue
            if np.all(np.abs(points[j] - points[i]) < tolerance):
                assigned[j] = True
                members.append(j)

        clusters.append(members)

    logger.debug(f"Clustered {len(points)} locations into {len(clusters)} marker groups")
    return clusters


def offset_coordinates(
    center: Coordinates,
    offset_m: float,
    angle: float,
) -> Coordinates:
    """
    Move a coordinate by a distance in meters along a bearing.

    Angle 0 points north, pi/2 points east.
    """
    delta_lat = offset_m * math.cos(angle) / METERS_PER_DEGREE
    delta_lon = offset_m * math.sin(angle) / (
        METERS_PER_DEGREE * math.cos(center.lat * math.pi / 180)
    )
    return Coordinates(lat=center.lat + delta_lat, lon=center.lon + delta_lon)


class MarkerLayoutEngine:
    """
    Computes display positions and sizes for location markers.

    The layout is a pure function of the locations and the zoom level,
    recomputed on every viewport change.
    """

    def __init__(self, config: Optional[LayoutConfig] = None):
        self.config = config or LayoutConfig()

    def compute_layout(
        self,
        locations: Sequence[LocationRecord],
        zoom: float,
    ) -> list[DisplayMarker]:
        """
        Lay out markers for all locations.

        Args:
            locations: Location records in index order
            zoom: Current map zoom level

        Returns:
            One DisplayMarker per location, in index order
        """
        coordinates = [location.coordinates for location in locations]
        clusters = cluster_locations(coordinates, self.config.tolerance)
        radius = self.config.base_radius_m * zoom_scale(zoom)
        clustered_size = int(round(self.config.base_size * self.config.cluster_size_ratio))

        markers: list[Optional[DisplayMarker]] = [None] * len(coordinates)

        for cluster_id, members in enumerate(clusters):
            if len(members) == 1:
                index = members[0]
                markers[index] = DisplayMarker(
                    index=index,
                    position=coordinates[index],
                    true_position=coordinates[index],
                    size=self.config.base_size,
                    cluster_id=cluster_id,
                    cluster_size=1,
                )
                continue

            center = coordinates[members[0]]
            step = 2 * math.pi / len(members)
            for k, index in enumerate(members):
                markers[index] = DisplayMarker(
                    index=index,
                    position=offset_coordinates(center, radius, k * step),
                    true_position=coordinates[index],
                    size=clustered_size,
                    cluster_id=cluster_id,
                    cluster_size=len(members),
                )

        return [marker for marker in markers if marker is not None]


def filter_visible(
    markers: Sequence[DisplayMarker],
    bounds: ViewportBounds,
) -> list[DisplayMarker]:
    """
    Keep the markers whose display position lies inside the viewport.

    Bounds with west > east cross the antimeridian and are split in two.

    Raises:
        ValueError: If north is below south
    """
    if bounds.north < bounds.south:
        raise ValueError(
            f"Invalid viewport: north ({bounds.north}) is below south ({bounds.south})"
        )

    if bounds.west <= bounds.east:
        regions = [box(bounds.west, bounds.south, bounds.east, bounds.north)]
    else:
        regions = [
            box(bounds.west, bounds.south, 180.0, bounds.north),
            box(-180.0, bounds.south, bounds.east, bounds.north),
        ]

    visible = []
    for marker in markers:
        point = Point(marker.position.lon, marker.position.lat)
        if any(region.covers(point) for region in regions):
            visible.append(marker)

    return visible
