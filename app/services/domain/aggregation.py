"""
Domain service: Aggregation of species observations.

Provides:
- Species merging (summing reads per species key)
- Top-N chart breakdown with an "Others" remainder
- Dominant taxon determination
- Environmental parameter averages
- Human-readable summaries
"""
from typing import Iterable, Optional, Sequence
import logging

import numpy as np

from app.domain.models import (
    ChartSlice,
    EnvironmentAverages,
    EnvironmentReading,
    Observation,
)

logger = logging.getLogger(__name__)


OTHERS_LABEL = "Others"
NO_DATA_MESSAGE = "No data available."

# Common group names for taxonomic classes found in fish e-DNA panels
TAXON_COMMON_NAMES = {
    "Actinopterygii": "Ray-finned fishes",
    "Chondrichthyes": "Cartilaginous fishes",
    "Sarcopterygii": "Lobe-finned fishes",
    "Agnatha": "Jawless fishes",
}

AVERAGED_FIELDS = ("dissolved_oxygen", "specific_conductance", "ph")


def merge_observations(
    observation_lists: Iterable[Sequence[Observation]],
) -> list[Observation]:
    """
    Merge observation lists, summing reads for identical species.

    Species are identified by (scientific_name, common_name). The first
    occurrence supplies the taxon. The result is sorted by reads
    descending, ties ordered by species key, so any ordering of the
    inputs produces the same list.

    Args:
        observation_lists: Any number of observation sequences

    Returns:
        Merged observations with unique species keys
    """
    totals: dict[tuple[str, str], int] = {}
    taxa: dict[tuple[str, str], Optional[str]] = {}

    for observations in observation_lists:
        for observation in observations:
            key = observation.species_key
            if key in totals:
                totals[key] += observation.reads_count
                if taxa[key] is None:
                    taxa[key] = observation.taxon
            else:
                totals[key] = observation.reads_count
                taxa[key] = observation.taxon

    merged = [
        Observation(
            scientific_name=scientific_name,
            common_name=common_name,
            reads_count=reads,
            taxon=taxa[(scientific_name, common_name)],
        )
        for (scientific_name, common_name), reads in totals.items()
    ]
    merged.sort(key=lambda o: (-o.reads_count, o.scientific_name, o.common_name))
    return merged


def total_reads(observations: Sequence[Observation]) -> int:
    return sum(o.reads_count for o in observations)


def top_species_breakdown(
    observations: Sequence[Observation],
    top_n: int = 5,
    others_label: str = OTHERS_LABEL,
) -> list[ChartSlice]:
    """
    Build the chart breakdown for a set of observations.

    The top ``top_n`` species by reads are listed individually; the rest
    are summed into a single ``others_label`` slice when that sum is
    positive. Percentages are relative to the reads of the full input.

    Args:
        observations: Observations to chart (merged or not)
        top_n: Number of individually listed species
        others_label: Label of the remainder slice

    Returns:
        List of ChartSlice, largest first, remainder last
    """
    ordered = sorted(
        observations,
        key=lambda o: (-o.reads_count, o.scientific_name, o.common_name),
    )
    total = total_reads(ordered)

    def percentage(value: int) -> float:
        return value / total * 100 if total > 0 else 0.0

    slices = [
        ChartSlice(
            label=o.common_name,
            value=o.reads_count,
            secondary_label=o.scientific_name,
            percentage=percentage(o.reads_count),
        )
        for o in ordered[:top_n]
    ]

    others_total = total_reads(ordered[top_n:])
    if others_total > 0:
        slices.append(ChartSlice(
            label=others_label,
            value=others_total,
            secondary_label="",
            percentage=percentage(others_total),
        ))

    return slices


def dominant_taxon(observations: Sequence[Observation], fallback: str) -> str:
    """
    Determine the taxon with the highest summed reads.

    Ties resolve to the taxon encountered first. Observations without a
    taxon are ignored; with no taxon at all the fallback is returned.

    Args:
        observations: Observations of one location
        fallback: Static taxon label of the location

    Returns:
        Dominant taxon label
    """
    sums: dict[str, int] = {}
    for observation in observations:
        if observation.taxon:
            sums[observation.taxon] = sums.get(observation.taxon, 0) + observation.reads_count

    best_taxon = None
    best_reads = -1
    for taxon, reads in sums.items():
        if reads > best_reads:
            best_taxon = taxon
            best_reads = reads

    return best_taxon if best_taxon is not None else fallback


def environment_averages(readings: Iterable[EnvironmentReading]) -> EnvironmentAverages:
    """
    Average numeric environment fields over the readings that define them.

    Missing values are excluded, not counted as zero. A field without
    any defined value stays None.
    """
    readings = list(readings)
    averages = {}

    for field_name in AVERAGED_FIELDS:
        values = [
            getattr(reading, field_name)
            for reading in readings
            if getattr(reading, field_name) is not None
        ]
        averages[field_name] = float(np.mean(values)) if values else None

    return EnvironmentAverages(**averages)


def describe_taxon(taxon: str) -> str:
    """Return 'Common group (Taxon)' for known classes, else the taxon itself."""
    common = TAXON_COMMON_NAMES.get(taxon)
    return f"{common} ({taxon})" if common else taxon


def summarize_observations(
    observations: Sequence[Observation],
    taxon: Optional[str] = None,
    top_n: int = 3,
) -> str:
    """
    Summarize observations as display text.

    Args:
        observations: Observations to describe
        taxon: Optional taxon line to include
        top_n: Number of leading species to list

    Returns:
        Multi-line summary, or the no-data message for empty input
    """
    if not observations:
        return NO_DATA_MESSAGE

    ordered = sorted(
        observations,
        key=lambda o: (-o.reads_count, o.scientific_name, o.common_name),
    )

    lines = []
    if taxon:
        lines.append(f"Taxon: {describe_taxon(taxon)}")
    lines.append(f"{len(ordered)} species detected.")
    lines.append(f"Total reads: {total_reads(ordered):,}")
    lines.append("")
    lines.append("Top species:")

    for index, observation in enumerate(ordered[:top_n], start=1):
        lines.append(f"{index}. {observation.common_name} ({observation.scientific_name})")
        lines.append(f"   Reads: {observation.reads_count:,}")

    return "\n".join(lines) + "\n"
