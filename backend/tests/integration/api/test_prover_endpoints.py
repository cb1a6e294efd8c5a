"""
Prover API Endpoints Tests

Exercises the HTTP surface against the in-memory cache and database:
- /validProvers and /validTestnetProvers read path
- Endpoint registration through the collection record API
- Forced refresh and health endpoints
"""

import asyncio

import pytest
import pytest_asyncio
from fastapi import status
from httpx import ASGITransport, AsyncClient

from prover_registry.core.exceptions import ProbeError
from prover_registry.main import app
from prover_registry.schemas.provers import Namespace
from prover_registry.services.prover_service import (
    get_endpoint_store,
    get_prover_service,
    get_refresh_coordinator,
)
from tests.conftest import NOW, make_snapshot, probe_results, seed_endpoints


@pytest_asyncio.fixture
async def client(service, endpoint_store, coordinator):
    """HTTP client with the services replaced by test instances"""
    app.dependency_overrides[get_prover_service] = lambda: service
    app.dependency_overrides[get_endpoint_store] = lambda: endpoint_store
    app.dependency_overrides[get_refresh_coordinator] = lambda: coordinator
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
        await coordinator.drain()


class TestValidProvers:

    @pytest.mark.asyncio
    async def test_cold_cache_without_endpoints(self, client, fake_redis):
        response = await client.get("/validProvers")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == []
        assert fake_redis.setex_calls == []

    @pytest.mark.asyncio
    async def test_cached_provers_wire_format(self, client, cache):
        await cache.set_snapshot(
            Namespace.MAINNET,
            make_snapshot(NOW - 60, ("https://p1.example", 10), ("https://p2.example", 20)),
            ttl=86400,
        )

        response = await client.get("/validProvers")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == [
            {"url": "https://p1.example", "minimumGas": 10},
            {"url": "https://p2.example", "minimumGas": 20},
        ]

    @pytest.mark.asyncio
    async def test_testnet_route_reads_testnet_namespace(self, client, cache):
        await cache.set_snapshot(
            Namespace.MAINNET, make_snapshot(NOW, ("https://main.example", 1)), ttl=86400
        )
        await cache.set_snapshot(
            Namespace.TESTNET, make_snapshot(NOW, ("https://test.example", 2)), ttl=86400
        )

        response = await client.get("/validTestnetProvers")

        assert response.json() == [{"url": "https://test.example", "minimumGas": 2}]

    @pytest.mark.asyncio
    async def test_stale_snapshot_served_while_refreshing(
        self, client, cache, coordinator, probe, session_factory
    ):
        await seed_endpoints(session_factory, Namespace.MAINNET, "https://p1.example")
        await cache.set_snapshot(
            Namespace.MAINNET, make_snapshot(NOW - 7200, ("https://p1.example", 10)), ttl=86400
        )
        gate = asyncio.Event()

        async def slow_probe(url):
            await gate.wait()
            return await probe_results({"https://p1.example": 11})(url)

        probe.probe.side_effect = slow_probe

        response = await client.get("/validProvers")

        assert response.json() == [{"url": "https://p1.example", "minimumGas": 10}]
        assert coordinator.is_refreshing(Namespace.MAINNET)

        gate.set()
        await coordinator.drain()

        response = await client.get("/validProvers")
        assert response.json() == [{"url": "https://p1.example", "minimumGas": 11}]

    @pytest.mark.asyncio
    async def test_cache_outage_still_answers(self, client, fake_redis):
        fake_redis.fail_reads = True

        response = await client.get("/validTestnetProvers")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == []


class TestEndpointRecords:

    @pytest.mark.asyncio
    async def test_register_valid_endpoint(self, client, probe, fake_redis):
        probe.probe.side_effect = probe_results({"https://p1.example": 100})

        response = await client.post(
            "/api/collections/prover_endpoints/records",
            json={"url": "https://p1.example/"},
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["url"] == "https://p1.example"
        assert data["network"] == "mainnet"
        assert data["collectionName"] == "prover_endpoints"
        assert fake_redis.ttls["prover_endpoints"] == 3600

        response = await client.get("/validProvers")
        assert response.json() == [{"url": "https://p1.example", "minimumGas": 100}]

        response = await client.get("/api/collections/prover_endpoints/records")
        assert [r["url"] for r in response.json()] == ["https://p1.example"]

    @pytest.mark.asyncio
    async def test_register_unreachable_endpoint(self, client, probe, fake_redis):
        probe.probe.side_effect = probe_results({
            "https://down.example": ProbeError("https://down.example", "error making HTTP request: refused"),
        })

        response = await client.post(
            "/api/collections/testnet_prover_endpoints/records",
            json={"url": "https://down.example"},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        body = response.json()
        assert body["error"] == "VALIDATION_ERROR"
        assert "failed to create prover https://down.example" in body["message"]
        assert fake_redis.setex_calls == []

        response = await client.get("/api/collections/testnet_prover_endpoints/records")
        assert response.json() == []

    @pytest.mark.asyncio
    async def test_register_endpoint_without_fee(self, client, probe):
        probe.probe.side_effect = probe_results({"https://nofee.example": None})

        response = await client.post(
            "/api/collections/prover_endpoints/records",
            json={"url": "https://nofee.example"},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    @pytest.mark.asyncio
    async def test_register_malformed_url(self, client, probe):
        response = await client.post(
            "/api/collections/prover_endpoints/records",
            json={"url": "not a url"},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        probe.probe.assert_not_called()

    @pytest.mark.asyncio
    async def test_register_missing_url(self, client):
        response = await client.post("/api/collections/prover_endpoints/records", json={})

        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_register_cache_unavailable(self, client, probe, fake_redis):
        probe.probe.side_effect = probe_results({"https://p1.example": 100})
        fake_redis.fail_writes = True

        response = await client.post(
            "/api/collections/prover_endpoints/records",
            json={"url": "https://p1.example"},
        )

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.json()["error"] == "CACHE_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_unknown_collection(self, client):
        response = await client.post("/api/collections/users/records", json={"url": "https://p.example"})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error"] == "HTTP_ERROR"


class TestInternalEndpoints:

    @pytest.mark.asyncio
    async def test_forced_refresh(self, client, probe, session_factory, fake_redis):
        await seed_endpoints(session_factory, Namespace.MAINNET, "https://a.example", "https://down.example")
        probe.probe.side_effect = probe_results({"https://a.example": 5})

        response = await client.post("/api-internal/v1/provers/prover_endpoints/refresh")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"namespace": "prover_endpoints", "count": 1, "timestamp": NOW}
        assert fake_redis.ttls["prover_endpoints"] == 86400

    @pytest.mark.asyncio
    async def test_forced_refresh_without_endpoints(self, client, fake_redis):
        response = await client.post("/api-internal/v1/provers/testnet_prover_endpoints/refresh")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "namespace": "testnet_prover_endpoints",
            "count": 0,
            "timestamp": None,
        }
        assert fake_redis.setex_calls == []

    @pytest.mark.asyncio
    async def test_forced_refresh_failure(self, client, probe, session_factory, fake_redis):
        await seed_endpoints(session_factory, Namespace.MAINNET, "https://a.example")
        probe.probe.side_effect = probe_results({"https://a.example": 5})
        fake_redis.fail_writes = True

        response = await client.post("/api-internal/v1/provers/prover_endpoints/refresh")

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_forced_refresh_reports_failure_of_running_refresh(
        self, client, cache, coordinator, probe, session_factory, fake_redis
    ):
        await seed_endpoints(session_factory, Namespace.MAINNET, "https://a.example")
        await cache.set_snapshot(
            Namespace.MAINNET, make_snapshot(NOW - 7200, ("https://a.example", 1)), ttl=86400
        )
        gate = asyncio.Event()

        async def slow_probe(url):
            await gate.wait()
            return await probe_results({"https://a.example": 5})(url)

        probe.probe.side_effect = slow_probe

        await client.get("/validProvers")
        assert coordinator.is_refreshing(Namespace.MAINNET)
        fake_redis.fail_writes = True

        forced = asyncio.create_task(client.post("/api-internal/v1/provers/prover_endpoints/refresh"))
        for _ in range(10):
            await asyncio.sleep(0)
        gate.set()
        response = await forced

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.json()["error"] == "HTTP_ERROR"

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "healthy"
        assert data["cache"]["status"] == "healthy"
        assert data["database"]["status"] == "healthy"
        assert data["cache"]["refreshing"] == {
            "prover_endpoints": False,
            "testnet_prover_endpoints": False,
        }
