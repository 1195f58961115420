"""Unit tests for health check endpoints.

Tests database and Redis readiness checks.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest


def _request(redis_client=None):
    """Minimal stand-in for a Starlette request with app state."""
    state = SimpleNamespace()
    if redis_client is not None:
        state.redis_client = redis_client
    return SimpleNamespace(app=SimpleNamespace(state=state))


class TestHealthEndpoint:
    """Test basic health endpoint."""

    @pytest.mark.asyncio
    async def test_health_returns_healthy(self):
        """Test that /health returns healthy status."""
        from voxledger.api.routes.health import health_check

        response = await health_check()

        assert response.status == "healthy"
        assert response.database == "not_checked"
        assert response.redis == "not_checked"

    @pytest.mark.asyncio
    async def test_health_includes_version(self):
        from voxledger import __version__
        from voxledger.api.routes.health import health_check

        response = await health_check()

        assert response.version == __version__


class TestReadinessEndpoint:
    """Test readiness check endpoint."""

    @pytest.mark.asyncio
    async def test_ready_all_services_up(self):
        """Test /ready when all services are available."""
        from voxledger.api.routes.health import readiness_check

        mock_session = AsyncMock()
        mock_session.execute = AsyncMock()

        with patch("redis.asyncio.from_url") as mock_redis_from_url:
            mock_redis = AsyncMock()
            mock_redis.ping = AsyncMock()
            mock_redis_from_url.return_value = mock_redis

            response = await readiness_check(request=_request(), session=mock_session)

        assert response.ready is True
        assert response.checks == {"database": True, "redis": True}

    @pytest.mark.asyncio
    async def test_ready_database_down(self):
        """Test /ready when database is unavailable."""
        from voxledger.api.routes.health import readiness_check

        mock_session = AsyncMock()
        mock_session.execute = AsyncMock(side_effect=Exception("Connection refused"))
        mock_redis = AsyncMock()
        mock_redis.ping = AsyncMock()

        response = await readiness_check(request=_request(mock_redis), session=mock_session)

        assert response.ready is False
        assert response.checks["database"] is False
        assert response.checks["redis"] is True

    @pytest.mark.asyncio
    async def test_ready_redis_down(self):
        """Test /ready when Redis is unavailable."""
        from voxledger.api.routes.health import readiness_check

        mock_session = AsyncMock()
        mock_session.execute = AsyncMock()
        mock_redis = AsyncMock()
        mock_redis.ping = AsyncMock(side_effect=Exception("Connection refused"))

        response = await readiness_check(request=_request(mock_redis), session=mock_session)

        assert response.ready is False
        assert response.checks["database"] is True
        assert response.checks["redis"] is False

    @pytest.mark.asyncio
    async def test_ready_reuses_app_redis_client(self):
        """A client created on first check is kept on app state."""
        from voxledger.api.routes.health import readiness_check

        mock_session = AsyncMock()
        request = _request()

        with patch("redis.asyncio.from_url") as mock_redis_from_url:
            mock_redis_from_url.return_value = AsyncMock()

            await readiness_check(request=request, session=mock_session)
            await readiness_check(request=request, session=mock_session)

        assert mock_redis_from_url.call_count == 1
        assert request.app.state.redis_client is mock_redis_from_url.return_value


class TestHealthResponseModels:
    """Test response model validation."""

    def test_ready_response_model(self):
        from voxledger.api.routes.health import ReadyResponse

        response = ReadyResponse(ready=False, checks={"database": True, "redis": False})

        assert response.ready is False
        assert response.checks["redis"] is False
