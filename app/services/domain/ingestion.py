"""
Domain service: Tabular ingestion and normalization of e-DNA results.

Turns raw CSV text or spreadsheet rows into a flat sequence of
``RawObservation`` entries. Two input shapes are supported:
- Single-site CSV files with positional ``scientific_name, common_name,
  reads_count`` columns, located by separate JSON metadata
- Consolidated workbooks where every row carries its own coordinates,
  sampling date, species and environmental measurements

Malformed rows are skipped, never raised. Output is not deduplicated.
"""
import io
import logging
import math
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException
from pydantic import BaseModel

from app.domain.models import Coordinates, EnvironmentReading, Observation

logger = logging.getLogger(__name__)


DEFAULT_SHEET_NAME = "전체 정리"

# Ordered header aliases per logical field; the first present value wins.
COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "date": ("Date", "sampling"),
    "longitude": ("X",),
    "latitude": ("Y",),
    "common_name": ("common_name", "Common name"),
    "scientific_name": ("scientific_name", "Scientific name"),
    "reads": ("read", "Reads"),
    "taxon": ("Taxa",),
    "dissolved_oxygen": ("DO(mg/L)",),
    "specific_conductance": ("SPC(uS/cm)",),
    "ph": ("pH",),
    "primer": ("primer", "Primer"),
    "manager": ("Manager", "manager"),
    "marker_label": ("Marker",),
    "purpose": ("Object",),
}


class IngestionError(Exception):
    """Raised when a whole data source cannot be read."""
    pass


class InvalidReadsPolicy(str, Enum):
    """What to do with a reads value that is missing or not a count."""
    ZERO = "zero"
    REJECT = "reject"


@dataclass(frozen=True)
class IngestionProfile:
    """Per-input-path parsing choices."""
    invalid_reads: InvalidReadsPolicy = InvalidReadsPolicy.REJECT


# Positional columns of a single-site CSV
CSV_COLUMNS = ["scientific_name", "common_name", "reads_count"]

CSV_PROFILE = IngestionProfile(invalid_reads=InvalidReadsPolicy.ZERO)
SPREADSHEET_PROFILE = IngestionProfile(invalid_reads=InvalidReadsPolicy.REJECT)


@dataclass(frozen=True)
class RawObservation:
    """One accepted source row, before grouping."""
    coordinates: Coordinates
    date: int
    observation: Observation
    environment: EnvironmentReading = field(default_factory=EnvironmentReading)
    taxon: Optional[str] = None
    title: Optional[str] = None


class WorkbookSummary(BaseModel):
    """Structure of a workbook, used to diagnose column mismatches."""
    sheet_names: list[str]
    sheet_name: str
    columns: list[str]
    row_count: int
    sample_dates: list[int]


# ============================================================
# Value coercion
# ============================================================

def is_missing(value: Any) -> bool:
    """True for None, NaN and blank strings."""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def resolve_column(row: Mapping[str, Any], field_name: str) -> Any:
    """Return the first present value among the field's header aliases."""
    for alias in COLUMN_ALIASES[field_name]:
        value = row.get(alias)
        if not is_missing(value):
            return value
    return None


def to_float(value: Any) -> Optional[float]:
    if is_missing(value) or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def to_text(value: Any) -> Optional[str]:
    if is_missing(value):
        return None
    return str(value).strip()


def to_date_key(value: Any) -> Optional[int]:
    """
    Encode a sampling date cell as an integer.

    Date cells become YYYYMMDD; numeric cells and digit strings are
    truncated to int. Anything else is treated as missing.
    """
    if is_missing(value):
        return None
    if isinstance(value, (datetime, date)):
        return value.year * 10000 + value.month * 100 + value.day
    if isinstance(value, str):
        digits = value.strip().replace("-", "").replace(".", "").replace("/", "")
        return int(digits) if digits.isdigit() else None
    number = to_float(value)
    if number is None or number <= 0:
        return None
    return int(number)


def parse_reads(value: Any, policy: InvalidReadsPolicy) -> Optional[int]:
    """
    Parse a reads value as a non-negative integer.

    Returns:
        The count, 0 for invalid values under ``ZERO``, or None when the
        row must be rejected under ``REJECT``
    """
    number = to_float(value)
    if number is not None and number >= 0:
        return int(number)
    return 0 if policy is InvalidReadsPolicy.ZERO else None


# ============================================================
# CSV ingestion
# ============================================================

def parse_csv_text(
    csv_text: str,
    coordinates: Coordinates,
    sampling_date: int = 0,
    taxon: Optional[str] = None,
    title: Optional[str] = None,
    environment: Optional[EnvironmentReading] = None,
    profile: IngestionProfile = CSV_PROFILE,
) -> list[RawObservation]:
    """
    Parse a single-site species CSV.

    The header row is skipped and columns are read by position:
    0 = scientific name, 1 = common name, 2 = reads count. Extra
    trailing fields are ignored.

    Args:
        csv_text: Raw CSV content
        coordinates: Location of the site, from its metadata
        sampling_date: Date key applied to every row
        taxon: Site taxon from metadata, applied to every observation
        title: Display title of the site
        environment: Measurements recorded for the site
        profile: Ingestion profile for invalid reads values

    Returns:
        List of accepted rows
    """
    text = csv_text.strip()
    if not text:
        return []

    try:
        frame = pd.read_csv(
            io.StringIO(text),
            header=None,
            skiprows=1,
            names=CSV_COLUMNS,
            # Fields past the third are dropped, never shifted into an index
            index_col=False,
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
            engine="python",
        )
    except pd.errors.EmptyDataError:
        return []

    environment = environment or EnvironmentReading()
    accepted = []
    skipped = 0

    for values in frame.itertuples(index=False, name=None):
        padded = list(values) + [""] * 3
        scientific_name = to_text(padded[0])
        common_name = to_text(padded[1])
        reads = parse_reads(padded[2], profile.invalid_reads)

        if not scientific_name or not common_name or reads is None:
            skipped += 1
            continue

        accepted.append(RawObservation(
            coordinates=coordinates,
            date=sampling_date,
            observation=Observation(
                scientific_name=scientific_name,
                common_name=common_name,
                reads_count=reads,
                taxon=taxon,
            ),
            environment=environment,
            taxon=taxon,
            title=title,
        ))

    logger.debug(f"CSV rows accepted: {len(accepted)}, skipped: {skipped}")
    return accepted


# ============================================================
# Spreadsheet ingestion
# ============================================================

def parse_spreadsheet_rows(
    rows: Iterable[Mapping[str, Any]],
    profile: IngestionProfile = SPREADSHEET_PROFILE,
) -> list[RawObservation]:
    """
    Normalize header-keyed workbook rows.

    A row is accepted only when it has coordinates, a date or sampling
    value, a common name and a usable reads value. The scientific name
    falls back to the common name.

    Args:
        rows: Rows as dictionaries keyed by header text
        profile: Ingestion profile for invalid reads values

    Returns:
        List of accepted rows, in source order
    """
    accepted = []
    skipped = 0

    for row in rows:
        sampling_date = to_date_key(resolve_column(row, "date"))
        longitude = to_float(resolve_column(row, "longitude"))
        latitude = to_float(resolve_column(row, "latitude"))
        common_name = to_text(resolve_column(row, "common_name"))
        raw_reads = resolve_column(row, "reads")

        if (
            sampling_date is None
            or longitude is None
            or latitude is None
            or not common_name
            or (raw_reads is None and profile.invalid_reads is InvalidReadsPolicy.REJECT)
        ):
            skipped += 1
            continue

        reads = parse_reads(raw_reads, profile.invalid_reads)
        if reads is None:
            skipped += 1
            continue

        taxon = to_text(resolve_column(row, "taxon"))
        scientific_name = to_text(resolve_column(row, "scientific_name")) or common_name

        accepted.append(RawObservation(
            coordinates=Coordinates(lat=latitude, lon=longitude),
            date=sampling_date,
            observation=Observation(
                scientific_name=scientific_name,
                common_name=common_name,
                reads_count=reads,
                taxon=taxon,
            ),
            environment=EnvironmentReading(
                dissolved_oxygen=to_float(resolve_column(row, "dissolved_oxygen")),
                specific_conductance=to_float(resolve_column(row, "specific_conductance")),
                ph=to_float(resolve_column(row, "ph")),
                purpose=to_text(resolve_column(row, "purpose")),
                manager=to_text(resolve_column(row, "manager")),
                primer=to_text(resolve_column(row, "primer")),
                marker_label=to_text(resolve_column(row, "marker_label")),
            ),
            taxon=taxon,
        ))

    logger.debug(f"Spreadsheet rows accepted: {len(accepted)}, skipped: {skipped}")
    return accepted


def _open_workbook(data: bytes) -> pd.ExcelFile:
    try:
        return pd.ExcelFile(io.BytesIO(data), engine="openpyxl")
    except (zipfile.BadZipFile, InvalidFileException, ValueError, KeyError, OSError) as e:
        raise IngestionError(f"Unreadable workbook: {str(e)}")


def read_spreadsheet(data: bytes, sheet_name: str = DEFAULT_SHEET_NAME) -> list[dict[str, Any]]:
    """
    Read one worksheet into header-keyed rows.

    Empty cells are returned as None.

    Raises:
        IngestionError: If the bytes are not a workbook or the sheet is missing
    """
    workbook = _open_workbook(data)

    if sheet_name not in workbook.sheet_names:
        raise IngestionError(
            f'Sheet "{sheet_name}" not found. Available sheets: {", ".join(workbook.sheet_names)}'
        )

    frame = workbook.parse(sheet_name)
    frame = frame.astype(object).where(pd.notna(frame), None)
    frame.columns = [str(column).strip() for column in frame.columns]
    rows = frame.to_dict("records")

    logger.info(f'Read {len(rows)} rows from sheet "{sheet_name}"')
    return rows


def inspect_workbook(data: bytes, sheet_name: Optional[str] = None) -> WorkbookSummary:
    """
    Describe the structure of a workbook sheet.

    Args:
        data: Workbook bytes
        sheet_name: Sheet to describe (default: first sheet)

    Returns:
        WorkbookSummary with columns, row count and the first sampling dates
    """
    workbook = _open_workbook(data)
    target = sheet_name or workbook.sheet_names[0]
    rows = read_spreadsheet(data, target)

    sample_dates: list[int] = []
    for row in rows:
        sampling_date = to_date_key(resolve_column(row, "date"))
        if sampling_date is not None and sampling_date not in sample_dates:
            sample_dates.append(sampling_date)
        if len(sample_dates) >= 10:
            break

    return WorkbookSummary(
        sheet_names=list(workbook.sheet_names),
        sheet_name=target,
        columns=list(rows[0].keys()) if rows else [],
        row_count=len(rows),
        sample_dates=sample_dates,
    )
