"""Durable stores for deposit address records.

The registry only talks to the AddressStore interface, so the backing
medium (SQL table, JSON file, or an HSM-backed service) can be swapped
without touching the registry contract. Stores only ever see the
encrypted form of a custodial key.
"""

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from eth_utils import to_checksum_address
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from bridgerelay.errors import RegistryError
from bridgerelay.ledger.database import get_db
from bridgerelay.ledger.models import DepositAddress
from bridgerelay.ledger.repository import RelayerRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredAddress:
    """A deposit address record as persisted."""

    owner_id: str
    address: str
    encrypted_key: str
    created_at: datetime


class AddressStore(ABC):
    """Abstract persistence for deposit address records.

    Implementations must make insert durable before returning and must
    keep owner_id and address unique.
    """

    @abstractmethod
    async def get_by_owner(self, owner_id: str) -> Optional[StoredAddress]:
        pass

    @abstractmethod
    async def get_by_address(self, address: str) -> Optional[StoredAddress]:
        pass

    @abstractmethod
    async def insert(self, record: StoredAddress) -> StoredAddress:
        """Persist a new record.

        If a record for the same owner already exists (inserted by another
        writer in the meantime), the existing record is returned instead.

        Returns:
            The record that is now durable for this owner
        """
        pass

    @abstractmethod
    async def list_addresses(self) -> list[str]:
        pass


def _from_row(row: DepositAddress) -> StoredAddress:
    return StoredAddress(
        owner_id=row.owner_id,
        address=row.address,
        encrypted_key=row.encrypted_key,
        created_at=row.created_at,
    )


class SqlAddressStore(AddressStore):
    """Deposit address store backed by the SQL ledger."""

    async def get_by_owner(self, owner_id: str) -> Optional[StoredAddress]:
        try:
            async with get_db() as session:
                row = await RelayerRepository(session).get_deposit_address_by_owner(owner_id)
                return _from_row(row) if row else None
        except SQLAlchemyError as e:
            raise RegistryError(f"Failed to read deposit address for {owner_id}: {e}") from e

    async def get_by_address(self, address: str) -> Optional[StoredAddress]:
        try:
            async with get_db() as session:
                row = await RelayerRepository(session).get_deposit_address_record(address)
                return _from_row(row) if row else None
        except SQLAlchemyError as e:
            raise RegistryError(f"Failed to read deposit address {address}: {e}") from e

    async def insert(self, record: StoredAddress) -> StoredAddress:
        try:
            async with get_db() as session:
                await RelayerRepository(session).create_deposit_address(
                    owner_id=record.owner_id,
                    address=record.address,
                    encrypted_key=record.encrypted_key,
                    created_at=record.created_at,
                )
            # get_db committed on exit
            return record
        except IntegrityError:
            # Another writer won the race for this owner
            existing = await self.get_by_owner(record.owner_id)
            if existing is None:
                raise RegistryError(
                    f"Deposit address {record.address} collides with an existing record"
                )
            logger.info(f"Concurrent insert for owner {record.owner_id}, using existing record")
            return existing
        except SQLAlchemyError as e:
            raise RegistryError(f"Failed to persist deposit address: {e}") from e

    async def list_addresses(self) -> list[str]:
        try:
            async with get_db() as session:
                return await RelayerRepository(session).get_all_deposit_addresses()
        except SQLAlchemyError as e:
            raise RegistryError(f"Failed to list deposit addresses: {e}") from e


def _record_from_json(item: dict) -> StoredAddress:
    if "userId" in item:
        # db.json layout; createdAt is ms since epoch
        return StoredAddress(
            owner_id=item["userId"].strip().lower(),
            address=to_checksum_address(item["depositAddress"]),
            encrypted_key=item["privateKey"],
            created_at=datetime.fromtimestamp(item["createdAt"] / 1000, tz=timezone.utc),
        )
    return StoredAddress(
        owner_id=item["owner_id"],
        address=item["deposit_address"],
        encrypted_key=item["encrypted_key"],
        created_at=datetime.fromisoformat(item["created_at"]),
    )


def _record_to_json(record: StoredAddress) -> dict:
    return {
        "userId": record.owner_id,
        "depositAddress": record.address,
        "privateKey": record.encrypted_key,
        "createdAt": int(record.created_at.timestamp() * 1000),
    }


class JsonFileAddressStore(AddressStore):
    """Deposit address store backed by a single JSON file.

    File layout is the relayer's db.json: {"addresses": [{"userId",
    "depositAddress", "privateKey", "createdAt"}, ...]}, with createdAt in
    milliseconds. "privateKey" holds the Fernet token when a master key is
    configured and the plain key otherwise. Records in the snake_case
    layout (owner_id, deposit_address, encrypted_key, ISO created_at) are
    read too and rewritten in the db.json layout on the next insert.

    Every write goes to a temp file in the same directory, is fsynced,
    atomically replaces the original, and the directory is fsynced so the
    rename itself survives a crash. A missing file is an empty store; an
    unreadable one is an error, never silently reset.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._write_lock = asyncio.Lock()

    def _read(self) -> list[StoredAddress]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return [_record_from_json(item) for item in data.get("addresses", [])]
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise RegistryError(f"Failed to read address store {self.path}: {e}") from e

    def _write(self, records: list[StoredAddress]) -> None:
        data = {"addresses": [_record_to_json(r) for r in records]}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
            self._sync_directory()
        except OSError as e:
            raise RegistryError(f"Failed to write address store {self.path}: {e}") from e

    def _sync_directory(self) -> None:
        dir_fd = os.open(self.path.parent, os.O_RDONLY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)

    async def get_by_owner(self, owner_id: str) -> Optional[StoredAddress]:
        records = await asyncio.to_thread(self._read)
        return next((r for r in records if r.owner_id == owner_id), None)

    async def get_by_address(self, address: str) -> Optional[StoredAddress]:
        records = await asyncio.to_thread(self._read)
        address = address.lower()
        return next((r for r in records if r.address.lower() == address), None)

    async def insert(self, record: StoredAddress) -> StoredAddress:
        async with self._write_lock:
            records = await asyncio.to_thread(self._read)
            for existing in records:
                if existing.owner_id == record.owner_id:
                    return existing
                if existing.address.lower() == record.address.lower():
                    raise RegistryError(
                        f"Deposit address {record.address} collides with an existing record"
                    )
            records.append(record)
            await asyncio.to_thread(self._write, records)
            return record

    async def list_addresses(self) -> list[str]:
        records = await asyncio.to_thread(self._read)
        return [r.address for r in records]
