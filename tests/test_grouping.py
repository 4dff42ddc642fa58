"""
Unit tests for spatial grouping.

Tests cover:
- Coordinate tolerance for shared locations
- Per-date merging and ordering
- First-row metadata
- Environment averages per location
"""
import pytest

from app.domain.models import Coordinates, EnvironmentReading, Observation
from app.services.domain.aggregation import total_reads
from app.services.domain.grouping import (
    LocationGrouper,
    group_observations,
    location_key,
    within_tolerance,
)
from app.services.domain.ingestion import RawObservation


def raw(lat, lon, date, common_name="Common carp", reads=10, **kwargs) -> RawObservation:
    return RawObservation(
        coordinates=Coordinates(lat=lat, lon=lon),
        date=date,
        observation=Observation(
            scientific_name=f"{common_name} sp.",
            common_name=common_name,
            reads_count=reads,
            taxon=kwargs.pop("taxon", None),
        ),
        **kwargs,
    )


# ============================================================
# Key and Tolerance Tests
# ============================================================

class TestLocationKey:
    """Tests for location keys and tolerance checks."""

    def test_key_rounds_to_six_digits(self):
        a = Coordinates(lat=37.5000001, lon=127.0000001)
        b = Coordinates(lat=37.5, lon=127.0)

        assert location_key(a) == location_key(b) == "127.000000_37.500000"

    def test_tolerance_is_strict_per_axis(self):
        origin = Coordinates(lat=37.5, lon=127.0)

        assert within_tolerance(origin, Coordinates(lat=37.50005, lon=127.00005), 1e-4)
        assert not within_tolerance(origin, Coordinates(lat=37.5, lon=127.0002), 1e-4)
        assert not within_tolerance(origin, Coordinates(lat=37.5002, lon=127.0), 1e-4)


# ============================================================
# Grouping Tests
# ============================================================

class TestGroupObservations:
    """Tests for building location records."""

    def test_sample_locations(self, sample_locations):
        """The sample spreadsheet should yield locations A and B."""
        assert len(sample_locations) == 2
        assert sample_locations[0].coordinates == Coordinates(lat=37.5, lon=127.0)
        assert sample_locations[1].coordinates == Coordinates(lat=37.6, lon=127.1)

    def test_nearby_rows_share_a_location(self):
        """Rows within 1e-4 degrees on both axes should be one location."""
        locations = group_observations([
            raw(37.5, 127.0, 20240301),
            raw(37.50005, 127.00005, 20240301),
            raw(37.5, 127.0003, 20240301),
        ])

        assert len(locations) == 2
        assert total_reads(locations[0].merged_observations) == 20

    def test_first_anchor_wins_between_two_candidates(self):
        """A row near two anchors should join the one seen first."""
        locations = group_observations([
            raw(37.5, 127.00015, 20240301, common_name="Pale chub"),
            raw(37.5, 127.0, 20240301),
            raw(37.5, 127.00008, 20240301, reads=5),
        ])

        assert len(locations) == 2
        assert [(o.common_name, o.reads_count) for o in locations[0].merged_observations] == [
            ("Pale chub", 10),
            ("Common carp", 5),
        ]

    def test_match_across_cell_boundary(self):
        """Anchors on either side of a grid line at zero should still match."""
        locations = group_observations([
            raw(-0.00001, -0.00001, 20240301),
            raw(0.00005, 0.00005, 20240301),
        ])

        assert len(locations) == 1

    def test_many_locations(self):
        rows = []
        for i in range(50):
            for j in range(50):
                rows.append(raw(30.0 + i * 0.001, 120.0 + j * 0.001, 20240301))
                rows.append(raw(30.0 + i * 0.001 + 0.00003, 120.0 + j * 0.001 - 0.00003, 20240301))

        locations = group_observations(rows)

        assert len(locations) == 2500
        assert all(total_reads(l.merged_observations) == 20 for l in locations)

    def test_zero_tolerance_uses_rounded_key_only(self):
        locations = group_observations(
            [raw(37.5, 127.0, 20240301), raw(37.50005, 127.00005, 20240301)],
            tolerance=0,
        )

        assert len(locations) == 2

    def test_dates_are_sorted_ascending(self):
        locations = group_observations([
            raw(37.5, 127.0, 20240415),
            raw(37.5, 127.0, 20240301),
            raw(37.5, 127.0, 20240520),
        ])

        assert [r.date for r in locations[0].date_records] == [20240301, 20240415, 20240520]
        assert [r.sampling_id for r in locations[0].date_records] == [20240301, 20240415, 20240520]

    def test_each_date_holds_unique_species(self):
        locations = group_observations([
            raw(37.5, 127.0, 20240301, "Common carp", 10),
            raw(37.5, 127.0, 20240301, "Common carp", 5),
            raw(37.5, 127.0, 20240301, "Pale chub", 1),
        ])

        record = locations[0].date_records[0]
        assert [(o.common_name, o.reads_count) for o in record.observations] == [
            ("Common carp", 15),
            ("Pale chub", 1),
        ]

    def test_merged_reads_equal_sum_of_date_records(self, sample_locations):
        """A location's merged reads should equal the reads of all its dates."""
        for location in sample_locations:
            per_date = sum(total_reads(r.observations) for r in location.date_records)
            assert total_reads(location.merged_observations) == per_date

    def test_location_a_contents(self, sample_locations):
        location = sample_locations[0]

        assert [r.date for r in location.date_records] == [20240301, 20240415]
        assert [(o.common_name, o.reads_count) for o in location.merged_observations] == [
            ("Common carp", 130),
            ("Amur catfish", 50),
            ("Pale chub", 20),
        ]
        assert location.dominant_taxon_label == "Actinopterygii"

    def test_location_environment_averages(self, sample_locations):
        """Averages should be taken over the date records that define a value."""
        averages = sample_locations[0].environment_averages

        assert averages.dissolved_oxygen == pytest.approx(9.0)
        assert averages.ph == pytest.approx(7.2)
        assert averages.specific_conductance == pytest.approx(200.0)

    def test_first_row_fixes_metadata(self, sample_locations):
        """Later rows should not override the location's static metadata."""
        metadata = sample_locations[0].metadata

        assert metadata.manager == "Kim"
        assert metadata.purpose == "River survey"
        assert metadata.marker_label == "A-1"
        assert metadata.primer == "MiFish"
        assert metadata.taxon == "Actinopterygii"

    def test_first_row_of_date_fixes_environment(self):
        locations = group_observations([
            raw(37.5, 127.0, 20240301, environment=EnvironmentReading(ph=7.0)),
            raw(37.5, 127.0, 20240301, "Pale chub", environment=EnvironmentReading(ph=9.0)),
        ])

        assert locations[0].date_records[0].environment.ph == 7.0

    def test_default_taxon(self):
        """Locations without any taxon should use the default label."""
        locations = group_observations([raw(37.5, 127.0, 20240301)], default_taxon="Fish")

        assert locations[0].dominant_taxon_label == "Fish"
        assert locations[0].metadata.taxon == "Fish"

    def test_first_seen_order(self):
        locations = group_observations([
            raw(10.0, 10.0, 1),
            raw(-5.0, 3.0, 1),
            raw(10.0, 10.0, 2),
        ])

        assert [l.coordinates.lat for l in locations] == [10.0, -5.0]

    def test_incremental_grouper(self):
        grouper = LocationGrouper()
        grouper.add(raw(37.5, 127.0, 20240301))
        grouper.extend([raw(37.5, 127.0, 20240415)])

        locations = grouper.build()

        assert len(locations) == 1
        assert len(locations[0].date_records) == 2

    def test_empty_input(self):
        assert group_observations([]) == []
