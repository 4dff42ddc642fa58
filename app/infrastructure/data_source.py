"""
Infrastructure layer: Data source loader with retry logic.

Reads sampling files and metadata from local paths or HTTP(S) URLs.
"""
from pathlib import Path
from typing import Any, Dict, Optional
import json
import logging

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from app.config import settings

logger = logging.getLogger(__name__)


class DataSourceError(Exception):
    """Custom exception for unreadable data sources."""
    pass


def is_remote(source: str) -> bool:
    return source.startswith(("http://", "https://"))


class DataSourceClient:
    """
    Loads raw bytes, text and JSON for the ingestion pipeline.
    Remote sources are fetched with retry and exponential backoff.
    """

    def __init__(self, base_dir: Optional[Path] = None):
        """
        Initialize the loader.

        Args:
            base_dir: Directory that relative local paths resolve against
        """
        self.base_dir = base_dir or Path.cwd()
        self.client = httpx.AsyncClient(
            headers={"accept": "*/*"},
            timeout=30.0,
            follow_redirects=True,
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @retry(
        stop=stop_after_attempt(settings.max_retry_attempts),
        wait=wait_exponential(
            multiplier=settings.retry_backoff_multiplier,
            min=settings.retry_min_wait,
            max=settings.retry_max_wait,
        ),
        retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.TransportError)),
        reraise=True,
    )
    async def _fetch(self, url: str) -> bytes:
        """
        Fetch a URL with retry logic.

        Raises:
            DataSourceError: On client errors (4xx), which are not retried
        """
        try:
            response = await self.client.get(url)
            response.raise_for_status()
            return response.content
        except httpx.HTTPStatusError as e:
            # Retry on server errors (5xx)
            if e.response.status_code >= 500:
                raise
            # Don't retry on client errors (4xx)
            raise DataSourceError(
                f"Request for {url} failed: {e.response.status_code} - {e.response.text}"
            )

    def _resolve_path(self, source: str) -> Path:
        path = Path(source)
        return path if path.is_absolute() else self.base_dir / path

    async def read_bytes(self, source: str) -> bytes:
        """
        Read a source as bytes.

        Args:
            source: Local path (relative to base_dir) or HTTP(S) URL

        Returns:
            Raw content

        Raises:
            DataSourceError: If the source cannot be read
        """
        if is_remote(source):
            try:
                return await self._fetch(source)
            except (httpx.HTTPStatusError, httpx.TransportError) as e:
                raise DataSourceError(f"Request for {source} failed: {str(e)}")

        path = self._resolve_path(source)
        try:
            return path.read_bytes()
        except OSError as e:
            raise DataSourceError(f"Cannot read {path}: {e.strerror or str(e)}")

    async def read_text(self, source: str, encoding: str = "utf-8") -> str:
        """Read a source as text (a UTF-8 BOM is stripped)."""
        data = await self.read_bytes(source)
        try:
            return data.decode(encoding).lstrip("\ufeff")
        except UnicodeDecodeError as e:
            raise DataSourceError(f"Cannot decode {source} as {encoding}: {str(e)}")

    async def read_json(self, source: str) -> Dict[str, Any]:
        """Read a source as a JSON object."""
        text = await self.read_text(source)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise DataSourceError(f"Invalid JSON in {source}: {str(e)}")
        if not isinstance(data, dict):
            raise DataSourceError(f"Expected a JSON object in {source}")
        return data


# Singleton instance
_data_source_client: Optional[DataSourceClient] = None


def get_data_source_client() -> DataSourceClient:
    """
    Get or create the singleton data source client.

    Returns:
        DataSourceClient instance
    """
    global _data_source_client
    if _data_source_client is None:
        _data_source_client = DataSourceClient()
    return _data_source_client
