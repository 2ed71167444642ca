"""Tests for the address registry and its stores."""

import asyncio
import json
import os
import stat
from datetime import datetime, timezone

import pytest
from eth_account import Account
from sqlalchemy import func, select

from bridgerelay.crypto import FERNET_PREFIX, KeyCipher, generate_master_key
from bridgerelay.errors import AddressNotFoundError, InvalidOwnerError, RegistryError
from bridgerelay.ledger.database import get_db
from bridgerelay.ledger.models import DepositAddress
from bridgerelay.registry import store as store_module
from bridgerelay.registry.service import AddressRegistry, normalize_owner_id
from bridgerelay.registry.store import JsonFileAddressStore, SqlAddressStore, StoredAddress

OWNER = "0x" + "ab" * 32


async def count_records(owner_id: str) -> int:
    async with get_db() as session:
        stmt = select(func.count()).select_from(DepositAddress).where(
            DepositAddress.owner_id == owner_id
        )
        return (await session.execute(stmt)).scalar_one()


class TestGetOrCreate:
    """Tests for idempotent address creation."""

    @pytest.mark.asyncio
    async def test_creates_valid_keypair(self, registry: AddressRegistry):
        """The returned key controls the returned address."""
        record = await registry.get_or_create(OWNER)

        assert record.owner_id == OWNER
        assert Account.from_key(record.custodial_key).address == record.deposit_address
        assert record.created_at is not None

    @pytest.mark.asyncio
    async def test_sequential_calls_return_same_record(self, registry: AddressRegistry):
        first = await registry.get_or_create(OWNER)
        second = await registry.get_or_create(OWNER)

        assert first.deposit_address == second.deposit_address
        assert first.custodial_key == second.custodial_key
        assert await count_records(OWNER) == 1

    @pytest.mark.asyncio
    async def test_concurrent_calls_create_one_record(self, registry: AddressRegistry):
        records = await asyncio.gather(*(registry.get_or_create(OWNER) for _ in range(20)))

        assert len({r.deposit_address for r in records}) == 1
        assert await count_records(OWNER) == 1

    @pytest.mark.asyncio
    async def test_concurrent_registries_share_one_record(self, database):
        """Two registries without shared locks still converge through the store."""
        registry_a = AddressRegistry(SqlAddressStore(), KeyCipher())
        registry_b = AddressRegistry(SqlAddressStore(), KeyCipher())

        records = await asyncio.gather(
            *(r.get_or_create(OWNER) for r in [registry_a, registry_b] * 5)
        )

        assert len({r.deposit_address for r in records}) == 1
        assert await count_records(OWNER) == 1

    @pytest.mark.asyncio
    async def test_owner_id_case_is_normalized(self, registry: AddressRegistry):
        upper = await registry.get_or_create("0xABC")
        lower = await registry.get_or_create("0xabc")

        assert upper.deposit_address == lower.deposit_address
        assert upper.owner_id == "0xabc"

    @pytest.mark.asyncio
    async def test_addresses_unique_across_owners(self, registry: AddressRegistry):
        """1000 owners get 1000 distinct addresses."""
        owners = [f"0x{i:064x}" for i in range(1, 1001)]

        addresses = []
        for owner in owners:
            record = await registry.get_or_create(owner)
            addresses.append(record.deposit_address)

        assert len(set(addresses)) == len(owners)
        assert sorted(await registry.list_addresses()) == sorted(addresses)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("owner", ["", "abc", "0x", "0xZZ", "0x" + "a" * 65])
    async def test_invalid_owner_rejected(self, registry: AddressRegistry, owner):
        with pytest.raises(InvalidOwnerError):
            await registry.get_or_create(owner)

        assert await registry.list_addresses() == []


class TestLookups:
    """Tests for reverse lookups."""

    @pytest.mark.asyncio
    async def test_get_private_key_and_owner(self, registry: AddressRegistry):
        record = await registry.get_or_create(OWNER)

        assert await registry.get_private_key(record.deposit_address) == record.custodial_key
        assert await registry.get_owner(record.deposit_address) == OWNER

    @pytest.mark.asyncio
    async def test_lookups_ignore_address_case(self, registry: AddressRegistry):
        record = await registry.get_or_create(OWNER)

        assert await registry.get_owner(record.deposit_address.lower()) == OWNER

    @pytest.mark.asyncio
    async def test_unknown_address_not_found(self, registry: AddressRegistry):
        unknown = Account.create().address

        with pytest.raises(AddressNotFoundError):
            await registry.get_private_key(unknown)
        with pytest.raises(AddressNotFoundError):
            await registry.get_owner(unknown)

    @pytest.mark.asyncio
    async def test_record_repr_hides_key(self, registry: AddressRegistry):
        record = await registry.get_or_create(OWNER)

        assert record.custodial_key not in repr(record)


class TestKeyEncryption:
    """Tests for encryption of custodial keys at rest."""

    @pytest.mark.asyncio
    async def test_keys_encrypted_in_store(self, database):
        store = SqlAddressStore()
        registry = AddressRegistry(store, KeyCipher(generate_master_key()))

        record = await registry.get_or_create(OWNER)
        stored = await store.get_by_owner(OWNER)

        assert stored.encrypted_key.startswith(FERNET_PREFIX)
        assert record.custodial_key not in stored.encrypted_key
        assert await registry.get_private_key(record.deposit_address) == record.custodial_key

    @pytest.mark.asyncio
    async def test_wrong_master_key_fails(self, database):
        store = SqlAddressStore()
        record = await AddressRegistry(store, KeyCipher(generate_master_key())).get_or_create(OWNER)

        other = AddressRegistry(store, KeyCipher(generate_master_key()))
        with pytest.raises(RegistryError):
            await other.get_private_key(record.deposit_address)

    def test_plaintext_cipher_passthrough(self):
        cipher = KeyCipher()

        assert not cipher.enabled
        assert cipher.encrypt("0x01") == "0x01"
        assert cipher.decrypt("0x01") == "0x01"

    def test_encrypted_value_without_master_key(self):
        token = KeyCipher(generate_master_key()).encrypt("0x01")

        with pytest.raises(RegistryError):
            KeyCipher().decrypt(token)


class TestJsonFileStore:
    """Tests for the JSON file backend."""

    @pytest.mark.asyncio
    async def test_records_survive_reopen(self, tmp_path):
        path = tmp_path / "db.json"
        record = await AddressRegistry(JsonFileAddressStore(path)).get_or_create(OWNER)

        reopened = AddressRegistry(JsonFileAddressStore(path))
        again = await reopened.get_or_create(OWNER)

        assert again.deposit_address == record.deposit_address
        assert await reopened.get_private_key(record.deposit_address) == record.custodial_key

    @pytest.mark.asyncio
    async def test_write_leaves_no_temp_files(self, tmp_path):
        path = tmp_path / "db.json"
        registry = AddressRegistry(JsonFileAddressStore(path))

        await asyncio.gather(*(registry.get_or_create(f"0x{i:x}") for i in range(1, 11)))

        assert [p.name for p in tmp_path.iterdir()] == ["db.json"]
        data = json.loads(path.read_text())
        assert len(data["addresses"]) == 10

    @pytest.mark.asyncio
    async def test_corrupt_file_is_an_error(self, tmp_path):
        path = tmp_path / "db.json"
        path.write_text("{not json")
        registry = AddressRegistry(JsonFileAddressStore(path))

        with pytest.raises(RegistryError):
            await registry.get_or_create(OWNER)

        # File left untouched for the operator
        assert path.read_text() == "{not json"

    @pytest.mark.asyncio
    async def test_insert_returns_existing_owner_record(self, tmp_path):
        store = JsonFileAddressStore(tmp_path / "db.json")
        # db.json keeps millisecond timestamps
        created = datetime.now(timezone.utc).replace(microsecond=0)
        first = StoredAddress(OWNER, Account.create().address, "k1", created)
        second = StoredAddress(OWNER, Account.create().address, "k2", created)

        assert await store.insert(first) == first
        assert await store.insert(second) == first
        assert await store.list_addresses() == [first.address]

    @pytest.mark.asyncio
    async def test_reads_existing_db_json(self, tmp_path):
        path = tmp_path / "db.json"
        account = Account.create()
        private_key = "0x" + bytes(account.key).hex()
        path.write_text(
            json.dumps(
                {
                    "addresses": [
                        {
                            "userId": OWNER,
                            "depositAddress": account.address.lower(),
                            "privateKey": private_key,
                            "createdAt": 1_718_000_000_123,
                        }
                    ]
                }
            )
        )
        registry = AddressRegistry(JsonFileAddressStore(path))

        record = await registry.get_or_create(OWNER)

        assert record.deposit_address == account.address
        assert record.custodial_key == private_key
        assert record.created_at == datetime.fromtimestamp(1_718_000_000.123, tz=timezone.utc)
        assert await registry.get_private_key(account.address) == private_key
        assert await registry.get_owner(account.address.lower()) == OWNER
        assert await registry.list_addresses() == [account.address]

    @pytest.mark.asyncio
    async def test_snake_case_records_kept_on_insert(self, tmp_path):
        path = tmp_path / "db.json"
        account = Account.create()
        path.write_text(
            json.dumps(
                {
                    "addresses": [
                        {
                            "owner_id": OWNER,
                            "deposit_address": account.address,
                            "encrypted_key": "k1",
                            "created_at": "2024-06-10T06:13:20+00:00",
                        }
                    ]
                }
            )
        )
        registry = AddressRegistry(JsonFileAddressStore(path))

        await registry.get_or_create("0x1")

        data = json.loads(path.read_text())
        assert [a["userId"] for a in data["addresses"]] == [OWNER, "0x1"]
        assert data["addresses"][0]["depositAddress"] == account.address
        assert data["addresses"][0]["privateKey"] == "k1"
        assert data["addresses"][0]["createdAt"] == 1_718_000_000_000

    @pytest.mark.asyncio
    async def test_write_syncs_file_and_directory(self, tmp_path, monkeypatch):
        real_fsync = os.fsync
        synced = []

        def recording_fsync(fd):
            synced.append(stat.S_ISDIR(os.fstat(fd).st_mode))
            real_fsync(fd)

        monkeypatch.setattr(store_module.os, "fsync", recording_fsync)
        registry = AddressRegistry(JsonFileAddressStore(tmp_path / "db.json"))

        await registry.get_or_create(OWNER)

        # File contents first, then the directory entry of the rename
        assert synced == [False, True]


def test_normalize_owner_id():
    assert normalize_owner_id("  0xABCdef ") == "0xabcdef"


