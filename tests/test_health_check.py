import pytest
from httpx import AsyncClient, ASGITransport
from unittest.mock import patch, AsyncMock

from shiplog.main import app


@pytest.mark.asyncio
async def test_health_check_success(clean_db):
    """Health check reports a connected database."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert "error" not in data


@pytest.mark.asyncio
async def test_health_check_database_failure_no_error_details():
    """Health check does not expose error details when the database is unreachable."""
    with patch("shiplog.main.get_engine") as mock_get_engine:
        mock_engine = AsyncMock()
        mock_connect = AsyncMock()
        mock_connect.__aenter__.side_effect = Exception("Connection refused: database error details")
        mock_engine.connect.return_value = mock_connect
        mock_get_engine.return_value = mock_engine

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")

            assert response.status_code == 503
            data = response.json()
            assert data == {"status": "unhealthy", "database": "disconnected"}


@pytest.mark.asyncio
async def test_health_check_query_execution_failure():
    with patch("shiplog.main.get_engine") as mock_get_engine:
        mock_engine = AsyncMock()
        mock_conn = AsyncMock()
        mock_conn.execute.side_effect = Exception("SQL error: invalid query syntax")
        mock_connect = AsyncMock()
        mock_connect.__aenter__.return_value = mock_conn
        mock_engine.connect.return_value = mock_connect
        mock_get_engine.return_value = mock_engine

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")

            assert response.status_code == 503
            assert set(response.json().keys()) == {"status", "database"}
