"""
Shared pytest fixtures for all tests.

This module provides common fixtures including:
- Sample observations and spreadsheet rows
- Grouped sample locations
- Workbook, CSV and metadata files on disk
- A loaded map service
- FastAPI test client
"""
import asyncio
import io
import json
from pathlib import Path
from typing import Any, Callable, Generator

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook

from app.main import app
from app.api.dependencies import get_map_service
from app.config import Settings
from app.domain.models import LocationRecord, Observation
from app.infrastructure.data_source import DataSourceClient
from app.services.application.map_service import MapService
from app.services.domain.grouping import group_observations
from app.services.domain.ingestion import RawObservation, parse_spreadsheet_rows


SHEET_NAME = "전체 정리"

SPREADSHEET_HEADERS = [
    "Date", "X", "Y", "common_name", "scientific_name", "read", "Taxa",
    "DO(mg/L)", "SPC(uS/cm)", "pH", "Manager", "Object", "Marker", "primer",
]

PILOT_CSV = """scientific_name,common_name,reads_count
Cyprinus carpio,Common carp,120
Silurus asotus,Amur catfish,abc
Zacco platypus,Pale chub,80
,Missing name,10
"""

PILOT_METADATA = {
    "location": {"lat": 35.1, "lon": 129.0},
    "taxon": "Actinopterygii",
    "title": "Pilot site 1",
    "date": 20240510,
    "do": 9.1,
    "pH": 7.8,
    "manager": "Park",
}


# ============================================================
# Sample Data Fixtures
# ============================================================

@pytest.fixture
def sample_observations() -> list[Observation]:
    """Seven species with distinct read counts (total 1000)."""
    counts = [
        ("Cyprinus carpio", "Common carp", 400),
        ("Zacco platypus", "Pale chub", 200),
        ("Silurus asotus", "Amur catfish", 150),
        ("Carassius auratus", "Crucian carp", 100),
        ("Misgurnus anguillicaudatus", "Pond loach", 80),
        ("Anguilla japonica", "Japanese eel", 50),
        ("Rhodeus uyekii", "Korean rose bitterling", 20),
    ]
    return [
        Observation(
            scientific_name=scientific_name,
            common_name=common_name,
            reads_count=reads,
            taxon="Actinopterygii",
        )
        for scientific_name, common_name, reads in counts
    ]


@pytest.fixture
def spreadsheet_rows() -> list[dict[str, Any]]:
    """
    Consolidated workbook rows for two locations.

    Location A (37.5, 127.0) is sampled on two dates; one of its rows is
    offset by 5e-5 degrees. Location B (37.6, 127.1) is sampled once.
    The last two rows are malformed and must be skipped.
    """
    return [
        {
            "Date": 20240301, "X": 127.0, "Y": 37.5,
            "common_name": "Common carp", "scientific_name": "Cyprinus carpio", "read": 100,
            "Taxa": "Actinopterygii", "DO(mg/L)": 8.0, "SPC(uS/cm)": 200.0, "pH": 7.0,
            "Manager": "Kim", "Object": "River survey", "Marker": "A-1", "primer": "MiFish",
        },
        {
            "Date": 20240301, "X": 127.0, "Y": 37.5,
            "common_name": "Amur catfish", "scientific_name": "Silurus asotus", "read": 50,
            "Taxa": "Actinopterygii", "DO(mg/L)": 8.0, "SPC(uS/cm)": 200.0, "pH": 7.0,
            "Manager": "Kim", "Object": "River survey", "Marker": "A-1", "primer": "MiFish",
        },
        {
            "Date": 20240415, "X": 127.00005, "Y": 37.50005,
            "common_name": "Common carp", "scientific_name": "Cyprinus carpio", "read": 30,
            "DO(mg/L)": 10.0, "pH": 7.4, "Manager": "Lee",
        },
        {
            "Date": 20240415, "X": 127.0, "Y": 37.5,
            "common_name": "Pale chub", "scientific_name": "Zacco platypus", "read": 20,
        },
        {
            "Date": 20240301, "X": 127.1, "Y": 37.6,
            "common_name": "Pale chub", "scientific_name": "Zacco platypus", "read": 40,
            "Taxa": "Actinopterygii", "DO(mg/L)": 9.0, "pH": 7.2, "Object": "Lake survey",
        },
        {
            "Date": 20240301, "Y": 37.6,
            "common_name": "Ghost", "scientific_name": "Nowhere", "read": 10,
        },
        {
            "Date": 20240301, "X": 127.1, "Y": 37.6,
            "common_name": "Japanese eel", "scientific_name": "Anguilla japonica", "read": "n/a",
        },
    ]


@pytest.fixture
def raw_observations(spreadsheet_rows) -> list[RawObservation]:
    """Accepted rows of the sample spreadsheet."""
    return parse_spreadsheet_rows(spreadsheet_rows)


@pytest.fixture
def sample_locations(raw_observations) -> list[LocationRecord]:
    """Locations A and B built from the sample spreadsheet."""
    return group_observations(raw_observations, default_taxon="Fish")


# ============================================================
# File Fixtures
# ============================================================

def build_workbook(
    rows: list[dict[str, Any]],
    sheet_name: str = SHEET_NAME,
    headers: list[str] = SPREADSHEET_HEADERS,
) -> bytes:
    """Write rows to an in-memory .xlsx file."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_name
    sheet.append(headers)
    for row in rows:
        sheet.append([row.get(header) for header in headers])

    notes = workbook.create_sheet("Notes")
    notes.append(["Sampling notes"])

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def make_workbook() -> Callable[..., bytes]:
    """Factory fixture for workbook bytes."""
    return build_workbook


@pytest.fixture
def workbook_bytes(spreadsheet_rows) -> bytes:
    return build_workbook(spreadsheet_rows)


@pytest.fixture
def data_dir(tmp_path, workbook_bytes) -> Path:
    """Directory holding the sample workbook, pilot CSV and its metadata."""
    (tmp_path / "results.xlsx").write_bytes(workbook_bytes)
    (tmp_path / "rows.csv").write_text(PILOT_CSV, encoding="utf-8")
    (tmp_path / "medata.json").write_text(json.dumps(PILOT_METADATA), encoding="utf-8")
    return tmp_path


@pytest.fixture
def test_settings(data_dir) -> Settings:
    """Settings pointing at the sample files, without remote icons."""
    return Settings(
        spreadsheet_source=str(data_dir / "results.xlsx"),
        spreadsheet_sheet_name=SHEET_NAME,
        csv_source=str(data_dir / "rows.csv"),
        csv_metadata_source=str(data_dir / "medata.json"),
        icon_base_url="",
    )


# ============================================================
# Service Fixtures
# ============================================================

@pytest.fixture
def map_service(data_dir, test_settings) -> MapService:
    """
    MapService loaded from the sample files.

    Location 0 is the pilot CSV site, 1 and 2 are spreadsheet
    locations A and B.
    """
    service = MapService(DataSourceClient(base_dir=data_dir), config=test_settings)
    asyncio.run(service.load())
    return service


# ============================================================
# FastAPI Test Client Fixtures
# ============================================================

@pytest.fixture
def test_client(map_service) -> Generator[TestClient, None, None]:
    """Create a synchronous test client backed by the sample map service."""
    app.dependency_overrides[get_map_service] = lambda: map_service
    yield TestClient(app)
    app.dependency_overrides.clear()
