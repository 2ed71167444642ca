"""Address registry module."""

from typing import Optional

from bridgerelay.config import Settings, get_settings
from bridgerelay.crypto import KeyCipher
from bridgerelay.registry.service import (
    AddressRegistry,
    DepositAddressRecord,
    normalize_deposit_address,
    normalize_owner_id,
)
from bridgerelay.registry.store import (
    AddressStore,
    JsonFileAddressStore,
    SqlAddressStore,
    StoredAddress,
)


def get_registry(settings: Optional[Settings] = None) -> AddressRegistry:
    """Build the address registry for the configured store backend."""
    settings = settings or get_settings()

    backend = settings.record_store.lower()
    if backend == "json":
        store: AddressStore = JsonFileAddressStore(settings.json_store_path)
    elif backend == "sql":
        store = SqlAddressStore()
    else:
        raise ValueError(f"Unknown record store: {settings.record_store}")

    return AddressRegistry(store, KeyCipher(settings.master_key))


__all__ = [
    "AddressRegistry",
    "AddressStore",
    "DepositAddressRecord",
    "JsonFileAddressStore",
    "SqlAddressStore",
    "StoredAddress",
    "get_registry",
    "normalize_deposit_address",
    "normalize_owner_id",
]
