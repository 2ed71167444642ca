"""Tests for the HTTP control surface."""

import asyncio

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from bridgerelay.api.app import create_app
from bridgerelay.errors import RegistryError
from bridgerelay.registry.service import AddressRegistry
from bridgerelay.registry.store import AddressStore


class BrokenStore(AddressStore):
    """Store whose medium is unavailable."""

    async def get_by_owner(self, owner_id):
        raise RegistryError("disk full")

    async def get_by_address(self, address):
        raise RegistryError("disk full")

    async def insert(self, record):
        raise RegistryError("disk full")

    async def list_addresses(self):
        raise RegistryError("disk full")


class CrashingStore(BrokenStore):
    """Store failing with an unexpected error."""

    async def get_by_owner(self, owner_id):
        raise RuntimeError("segment missing")


@pytest.fixture
def app(registry):
    return create_app(registry=registry)


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["service"] == "bridge-relayer"
        assert "timestamp" in body

    @pytest.mark.asyncio
    async def test_detailed_health_has_no_secrets(self, client):
        response = await client.get("/health/detailed")

        assert response.status_code == 200
        config = response.json()["config"]
        assert config["dry_run"] is True
        assert "operator_private_key" not in config
        assert "master_key" not in config
        assert response.json()["registry"] == {"reachable": True, "tracked_addresses": 0}

    @pytest.mark.asyncio
    async def test_detailed_health_degraded_store(self, database):
        app = create_app(registry=AddressRegistry(BrokenStore()))

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/health/detailed")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["registry"] == {"reachable": False}


class TestDepositAddress:
    """Tests for GET /deposit-address."""

    @pytest.mark.asyncio
    async def test_returns_address_without_key(self, client, registry):
        response = await client.get("/deposit-address", params={"owner": "0xABC"})

        assert response.status_code == 200
        body = response.json()
        assert set(body) == {
            "depositAddress",
            "network",
            "chainId",
            "supportedTokens",
            "createdAt",
        }
        assert body["network"] == "BSC Testnet"
        assert body["chainId"] == 97
        assert body["supportedTokens"] == ["Mock USDC", "Mock MOVE"]

        key = await registry.get_private_key(body["depositAddress"])
        assert key not in response.text
        assert key[2:] not in response.text

    @pytest.mark.asyncio
    async def test_idempotent(self, client):
        first = await client.get("/deposit-address", params={"owner": "0xabc"})
        second = await client.get("/deposit-address", params={"owner": "0xABC"})

        assert first.json()["depositAddress"] == second.json()["depositAddress"]

    @pytest.mark.asyncio
    async def test_user_wallet_alias(self, client):
        by_owner = await client.get("/deposit-address", params={"owner": "0xabc"})
        by_alias = await client.get("/deposit-address", params={"userWallet": "0xabc"})

        assert by_alias.status_code == 200
        assert by_alias.json()["depositAddress"] == by_owner.json()["depositAddress"]

    @pytest.mark.asyncio
    async def test_missing_owner(self, client):
        response = await client.get("/deposit-address")

        assert response.status_code == 400
        assert "error" in response.json()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("owner", ["not-an-address", "0xZZ", "0x" + "a" * 100])
    async def test_invalid_owner(self, client, registry, owner):
        response = await client.get("/deposit-address", params={"owner": owner})

        assert response.status_code == 400
        assert "error" in response.json()
        assert await registry.list_addresses() == []

    @pytest.mark.asyncio
    async def test_store_failure_is_500(self, database):
        app = create_app(registry=AddressRegistry(BrokenStore()))

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/deposit-address", params={"owner": "0xabc"})

        assert response.status_code == 500
        assert response.json() == {"error": "Address registry unavailable"}

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_json_500(self, database):
        app = create_app(registry=AddressRegistry(CrashingStore()))
        transport = ASGITransport(app=app, raise_app_exceptions=False)

        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/deposit-address", params={"owner": "0xabc"})

        assert response.status_code == 500
        assert response.json() == {"error": "Internal error"}
        assert "segment missing" not in response.text


class TestStats:
    """Tests for GET /stats."""

    @pytest.mark.asyncio
    async def test_empty(self, client):
        response = await client.get("/stats")

        assert response.status_code == 200
        assert response.json() == {"totalAddresses": 0, "trackedAddresses": []}

    @pytest.mark.asyncio
    async def test_counts_after_concurrent_requests(self, client):
        owners = [f"0x{i:x}" for i in range(1, 6)]

        responses = await asyncio.gather(
            *(client.get("/deposit-address", params={"owner": o}) for o in owners * 3)
        )
        assert all(r.status_code == 200 for r in responses)

        body = (await client.get("/stats")).json()
        assert body["totalAddresses"] == 5
        assert sorted(body["trackedAddresses"]) == sorted(
            {r.json()["depositAddress"] for r in responses}
        )
