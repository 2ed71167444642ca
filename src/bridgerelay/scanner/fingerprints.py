"""Deduplication stores for observed deposit fingerprints.

A fingerprint is added at most once; add_if_absent is the only way in,
and it reports whether this caller was the one that added it.
"""

import hashlib
import logging
from abc import ABC, abstractmethod

from sqlalchemy.exc import IntegrityError

from bridgerelay.ledger.database import get_db
from bridgerelay.ledger.repository import RelayerRepository

logger = logging.getLogger(__name__)


def make_fingerprint(address: str, balance: int) -> str:
    """Fingerprint of an observed balance on an address.

    Covers the absolute balance, not the deposited delta: a balance that
    returns to a value already seen does not produce a new fingerprint.
    """
    return hashlib.sha256(f"{address.lower()}-{balance}".encode()).hexdigest()


class FingerprintStore(ABC):
    """Set of fingerprints with atomic insert-if-absent."""

    @abstractmethod
    async def add_if_absent(self, fingerprint: str, address: str, balance: int) -> bool:
        """Add a fingerprint.

        Returns:
            True if it was new, False if it was already present
        """
        pass

    @abstractmethod
    async def contains(self, fingerprint: str) -> bool:
        pass


class InMemoryFingerprintStore(FingerprintStore):
    """Fingerprints held for the lifetime of this object.

    Check and insert happen without an await in between, so concurrent
    coroutines on the same event loop cannot both win.
    """

    def __init__(self):
        self._seen: set[str] = set()

    async def add_if_absent(self, fingerprint: str, address: str, balance: int) -> bool:
        if fingerprint in self._seen:
            return False
        self._seen.add(fingerprint)
        return True

    async def contains(self, fingerprint: str) -> bool:
        return fingerprint in self._seen

    def clear(self) -> None:
        self._seen.clear()

    def __len__(self) -> int:
        return len(self._seen)


class SqlFingerprintStore(FingerprintStore):
    """Fingerprints persisted in the ledger, surviving restarts.

    The unique index on the fingerprint column makes insert-if-absent
    atomic across processes.
    """

    async def add_if_absent(self, fingerprint: str, address: str, balance: int) -> bool:
        try:
            async with get_db() as session:
                await RelayerRepository(session).add_fingerprint(fingerprint, address, balance)
            return True
        except IntegrityError:
            return False

    async def contains(self, fingerprint: str) -> bool:
        async with get_db() as session:
            return await RelayerRepository(session).has_fingerprint(fingerprint)
