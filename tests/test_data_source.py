"""
Unit tests for the data source loader.

Tests cover:
- Local file reads
- Remote reads
- Retry logic on 5xx errors
- No retry on 4xx errors
- Async context manager
- JSON decoding errors
"""
import json

import pytest
import httpx
import respx
from unittest.mock import AsyncMock

from app.infrastructure.data_source import (
    DataSourceClient,
    DataSourceError,
    get_data_source_client,
    is_remote,
)


BASE_URL = "https://data.example.org"


# ============================================================
# Initialization Tests
# ============================================================

class TestDataSourceInitialization:
    """Tests for loader initialization."""

    def test_client_initialization(self, tmp_path):
        client = DataSourceClient(base_dir=tmp_path)

        assert client.base_dir == tmp_path
        assert client.client is not None

    def test_singleton_pattern(self):
        """get_data_source_client should return the same instance."""
        import app.infrastructure.data_source as module
        module._data_source_client = None

        client1 = get_data_source_client()
        client2 = get_data_source_client()

        assert client1 is client2

    def test_is_remote(self):
        assert is_remote("https://example.org/rows.csv")
        assert is_remote("http://example.org/rows.csv")
        assert not is_remote("data/rows.csv")


# ============================================================
# Async Context Manager Tests
# ============================================================

class TestAsyncContextManager:
    """Tests for async context manager functionality."""

    @pytest.mark.asyncio
    async def test_context_manager_enter(self, tmp_path):
        client = DataSourceClient(base_dir=tmp_path)

        async with client as ctx_client:
            assert ctx_client is client

    @pytest.mark.asyncio
    async def test_context_manager_exit_closes_client(self, tmp_path):
        client = DataSourceClient(base_dir=tmp_path)
        client.close = AsyncMock()

        async with client:
            pass

        client.close.assert_called_once()


# ============================================================
# Local File Tests
# ============================================================

class TestLocalFiles:
    """Tests for reading local paths."""

    @pytest.mark.asyncio
    async def test_relative_path(self, tmp_path):
        (tmp_path / "rows.csv").write_text("a,b,c\n", encoding="utf-8")

        async with DataSourceClient(base_dir=tmp_path) as client:
            text = await client.read_text("rows.csv")

        assert text == "a,b,c\n"

    @pytest.mark.asyncio
    async def test_bom_is_stripped(self, tmp_path):
        (tmp_path / "rows.csv").write_bytes("\ufeffa,b,c\n".encode("utf-8"))

        async with DataSourceClient(base_dir=tmp_path) as client:
            text = await client.read_text("rows.csv")

        assert text == "a,b,c\n"

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        async with DataSourceClient(base_dir=tmp_path) as client:
            with pytest.raises(DataSourceError, match="Cannot read"):
                await client.read_bytes("missing.xlsx")

    @pytest.mark.asyncio
    async def test_read_json(self, tmp_path):
        (tmp_path / "medata.json").write_text(
            json.dumps({"location": {"lat": 35.1, "lon": 129.0}}), encoding="utf-8"
        )

        async with DataSourceClient(base_dir=tmp_path) as client:
            data = await client.read_json("medata.json")

        assert data["location"]["lat"] == 35.1

    @pytest.mark.asyncio
    async def test_invalid_json(self, tmp_path):
        (tmp_path / "medata.json").write_text("{not json", encoding="utf-8")

        async with DataSourceClient(base_dir=tmp_path) as client:
            with pytest.raises(DataSourceError, match="Invalid JSON"):
                await client.read_json("medata.json")

    @pytest.mark.asyncio
    async def test_json_must_be_object(self, tmp_path):
        (tmp_path / "medata.json").write_text("[1, 2]", encoding="utf-8")

        async with DataSourceClient(base_dir=tmp_path) as client:
            with pytest.raises(DataSourceError, match="JSON object"):
                await client.read_json("medata.json")


# ============================================================
# Remote Source Tests
# ============================================================

class TestRemoteSources:
    """Tests for HTTP sources and retry behaviour."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_successful_request(self):
        respx.get(f"{BASE_URL}/rows.csv").mock(
            return_value=httpx.Response(200, content=b"a,b,c\n")
        )

        async with DataSourceClient() as client:
            data = await client.read_bytes(f"{BASE_URL}/rows.csv")

        assert data == b"a,b,c\n"

    @pytest.mark.asyncio
    @respx.mock
    async def test_4xx_error_no_retry(self):
        """4xx errors should not trigger retry."""
        respx.get(f"{BASE_URL}/missing.csv").mock(
            return_value=httpx.Response(404, text="Not Found")
        )

        async with DataSourceClient() as client:
            with pytest.raises(DataSourceError, match="404"):
                await client.read_bytes(f"{BASE_URL}/missing.csv")

        # Should only be called once (no retry)
        assert respx.calls.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_5xx_error_triggers_retry(self):
        """5xx errors should trigger retry."""
        route = respx.get(f"{BASE_URL}/rows.csv")
        route.side_effect = [
            httpx.Response(503, text="Service Unavailable"),
            httpx.Response(200, content=b"a,b,c\n"),
        ]

        async with DataSourceClient() as client:
            data = await client.read_bytes(f"{BASE_URL}/rows.csv")

        assert data == b"a,b,c\n"
        assert respx.calls.call_count == 2  # Retried once
