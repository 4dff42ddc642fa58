"""
Application configuration using Pydantic settings.
"""
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Data Sources
    spreadsheet_source: str = Field(
        default="data/edna_result_demo.xlsx",
        description="Path or URL of the sampling results workbook (empty to disable)"
    )
    spreadsheet_sheet_name: str = Field(
        default="전체 정리",
        description="Worksheet holding the consolidated sampling rows"
    )
    csv_source: str = Field(
        default="public/data/pilot1/rows.csv",
        description="Path or URL of a single-site species CSV (empty to disable)"
    )
    csv_metadata_source: str = Field(
        default="data/pilot1/medata.json",
        description="Path or URL of the JSON metadata describing the CSV site"
    )

    # Ingestion Policies
    csv_invalid_reads_policy: str = Field(
        default="zero",
        description="How the CSV path treats non-numeric reads: 'zero' or 'reject'"
    )
    spreadsheet_invalid_reads_policy: str = Field(
        default="reject",
        description="How the spreadsheet path treats non-numeric reads: 'zero' or 'reject'"
    )

    # Grouping and Aggregation
    location_tolerance: float = Field(
        default=1e-4,
        description="Coordinate tolerance in degrees for treating rows as one location (0 groups by 6-digit coordinates only)"
    )
    default_taxon_label: str = Field(
        default="Fish",
        description="Taxon label used when a location has no taxon information"
    )
    top_species_count: int = Field(
        default=5,
        description="Number of species shown individually before grouping into 'Others'"
    )

    # Marker Layout
    marker_overlap_tolerance: float = Field(
        default=1e-4,
        description="Coordinate tolerance in degrees below which markers are spread apart"
    )
    marker_base_radius_m: float = Field(
        default=30.0,
        description="Circle radius in meters for coincident markers at zoom 12"
    )
    marker_base_size: int = Field(
        default=40,
        description="Display size in pixels of a standalone marker"
    )
    marker_cluster_size_ratio: float = Field(
        default=0.75,
        description="Display size of clustered markers as ratio of the base size"
    )
    unselected_marker_opacity: float = Field(
        default=0.5,
        description="Opacity of markers outside the current selection"
    )

    # Icon Assets
    icon_base_url: str = Field(
        default="",
        description="Base path or URL for per-taxon marker icons (empty for generated icons)"
    )
    icon_cache_max_entries: int = Field(
        default=128,
        description="Maximum icon assets kept per view session"
    )
    session_idle_timeout_seconds: float = Field(
        default=3600.0,
        description="Idle view sessions older than this are closed when a new session opens (0 disables)"
    )

    # Retry Configuration
    max_retry_attempts: int = Field(
        default=3,
        description="Maximum number of retry attempts for remote data sources"
    )
    retry_backoff_multiplier: int = Field(
        default=1,
        description="Multiplier for exponential backoff"
    )
    retry_min_wait: int = Field(
        default=1,
        description="Minimum wait time in seconds between retries"
    )
    retry_max_wait: int = Field(
        default=10,
        description="Maximum wait time in seconds between retries"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    # CORS Configuration
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins (use specific origins in production)"
    )

    # Rate Limiting
    rate_limit_requests: int = Field(
        default=100,
        description="Maximum requests per minute per client"
    )

    # Application Settings
    app_name: str = Field(
        default="e-DNA Citizen Science Map",
        description="Application name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    debug: bool = Field(
        default=False,
        description="Debug mode"
    )

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
