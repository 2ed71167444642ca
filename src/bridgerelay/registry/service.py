"""Address registry: custodial deposit addresses, one per owner."""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from eth_account import Account
from eth_utils import is_hex_address, to_checksum_address

from bridgerelay.crypto import KeyCipher
from bridgerelay.errors import AddressNotFoundError, InvalidOwnerError, RegistryError
from bridgerelay.registry.store import AddressStore, StoredAddress
from bridgerelay.utils.locks import KeyedLocks

logger = logging.getLogger(__name__)

# Destination-chain addresses are up to 32 bytes of hex
OWNER_ID_PATTERN = re.compile(r"^0x[0-9a-f]{1,64}$")


@dataclass(frozen=True)
class DepositAddressRecord:
    """A user's custodial deposit address on the source chain."""

    owner_id: str
    deposit_address: str
    custodial_key: str = field(repr=False)
    created_at: datetime


def normalize_owner_id(owner_id: Optional[str]) -> str:
    """Validate and lower-case a destination-chain owner address.

    Raises:
        InvalidOwnerError: If the owner id is missing or malformed
    """
    if not owner_id:
        raise InvalidOwnerError("Owner id is required")
    normalized = owner_id.strip().lower()
    if not OWNER_ID_PATTERN.match(normalized):
        raise InvalidOwnerError(f"Invalid owner id: {owner_id!r}")
    return normalized


def normalize_deposit_address(address: str) -> str:
    """Checksum a source-chain address.

    Raises:
        AddressNotFoundError: If the value is not an address at all
    """
    if not address or not is_hex_address(address):
        raise AddressNotFoundError(f"Not a deposit address: {address!r}")
    return to_checksum_address(address)


class AddressRegistry:
    """Creates and looks up deposit address records.

    get_or_create is idempotent per owner: a per-owner lock serialises
    concurrent requests in this process, and the store's insert resolves
    races with other processes by returning the record already persisted.
    Keys are generated first and returned only after the store confirmed
    the write.
    """

    def __init__(self, store: AddressStore, cipher: Optional[KeyCipher] = None):
        self.store = store
        self.cipher = cipher or KeyCipher()
        self._owner_locks = KeyedLocks("owner")

    def _to_record(self, stored: StoredAddress) -> DepositAddressRecord:
        return DepositAddressRecord(
            owner_id=stored.owner_id,
            deposit_address=stored.address,
            custodial_key=self.cipher.decrypt(stored.encrypted_key),
            created_at=stored.created_at,
        )

    async def get_or_create(self, owner_id: str) -> DepositAddressRecord:
        """Return the owner's deposit address, creating it on first call."""
        owner_id = normalize_owner_id(owner_id)

        existing = await self.store.get_by_owner(owner_id)
        if existing is not None:
            return self._to_record(existing)

        async with self._owner_locks.hold(owner_id, operation="get_or_create"):
            existing = await self.store.get_by_owner(owner_id)
            if existing is not None:
                return self._to_record(existing)

            try:
                account = Account.create()
            except Exception as e:
                raise RegistryError(f"Key generation failed for owner {owner_id}: {e}") from e

            private_key = "0x" + bytes(account.key).hex()
            stored = await self.store.insert(
                StoredAddress(
                    owner_id=owner_id,
                    address=account.address,
                    encrypted_key=self.cipher.encrypt(private_key),
                    created_at=datetime.now(timezone.utc),
                )
            )

            if stored.address == account.address:
                logger.info(f"Created deposit address for owner {owner_id}: {stored.address}")
            return self._to_record(stored)

    async def get_private_key(self, deposit_address: str) -> str:
        """Get the custodial key of a deposit address (signing only)."""
        address = normalize_deposit_address(deposit_address)
        stored = await self.store.get_by_address(address)
        if stored is None:
            raise AddressNotFoundError(f"No private key found for {deposit_address}")
        return self.cipher.decrypt(stored.encrypted_key)

    async def get_owner(self, deposit_address: str) -> str:
        """Get the owner id of a deposit address."""
        address = normalize_deposit_address(deposit_address)
        stored = await self.store.get_by_address(address)
        if stored is None:
            raise AddressNotFoundError(f"Unknown deposit address: {deposit_address}")
        return stored.owner_id

    async def list_addresses(self) -> list[str]:
        """Get all tracked deposit addresses."""
        return await self.store.list_addresses()
