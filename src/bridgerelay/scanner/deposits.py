"""Deposit scanner.

Polls the token balance of every registered deposit address and turns
each newly observed non-zero balance into exactly one DepositEvent.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from bridgerelay.chain.base import SourceChainClient
from bridgerelay.errors import AddressNotFoundError, RegistryError
from bridgerelay.registry.service import AddressRegistry
from bridgerelay.scanner.fingerprints import FingerprintStore, make_fingerprint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DepositEvent:
    """A newly observed deposit, ready to be bridged."""

    deposit_address: str
    owner_id: str
    observed_amount: int
    fingerprint: str


class DepositScanner:
    """Detects new deposits on tracked addresses.

    Balance queries run concurrently up to a bound; their results are
    sorted by address before fingerprinting so a tick's output does not
    depend on response order. Only the fingerprint store is mutated.
    """

    def __init__(
        self,
        registry: AddressRegistry,
        chain: SourceChainClient,
        token_address: str,
        fingerprints: FingerprintStore,
        concurrency: int = 5,
    ):
        """Initialize the scanner.

        Args:
            registry: Source of tracked addresses and their owners
            chain: Source-chain client used for balance queries
            token_address: Token whose balance is watched
            fingerprints: Dedup store, owned by the caller
            concurrency: Maximum concurrent balance queries
        """
        self.registry = registry
        self.chain = chain
        self.token_address = token_address
        self.fingerprints = fingerprints
        self.concurrency = max(1, concurrency)

    async def _check_balance(
        self, address: str, semaphore: asyncio.Semaphore
    ) -> Optional[tuple[str, int]]:
        async with semaphore:
            try:
                balance = await self.chain.get_token_balance(self.token_address, address)
            except Exception as e:
                logger.error(f"Error checking balance for {address}: {e}")
                return None
        return address, balance

    async def scan_address(self, address: str, balance: int) -> Optional[DepositEvent]:
        """Turn one observed balance into an event, if it is new."""
        if balance <= 0:
            return None

        fingerprint = make_fingerprint(address, balance)
        if await self.fingerprints.contains(fingerprint):
            logger.debug(f"Balance {balance} at {address} already processed")
            return None

        try:
            owner_id = await self.registry.get_owner(address)
        except AddressNotFoundError:
            logger.warning(f"Orphaned deposit address {address}: no owner found, skipping")
            return None
        except RegistryError as e:
            logger.error(f"Owner lookup failed for {address}: {e}")
            return None

        if not await self.fingerprints.add_if_absent(fingerprint, address, balance):
            return None

        logger.info(f"Detected deposit: {balance} units at {address} (owner {owner_id})")
        return DepositEvent(
            deposit_address=address,
            owner_id=owner_id,
            observed_amount=balance,
            fingerprint=fingerprint,
        )

    async def scan_once(self) -> list[DepositEvent]:
        """Run one pass over all tracked addresses.

        Returns:
            New deposit events, ordered by address
        """
        addresses = await self.registry.list_addresses()
        if not addresses:
            logger.debug("No deposit addresses to scan")
            return []

        logger.debug(f"Scanning {len(addresses)} deposit addresses...")

        semaphore = asyncio.Semaphore(self.concurrency)
        results = await asyncio.gather(
            *(self._check_balance(address, semaphore) for address in addresses)
        )
        observed = sorted((r for r in results if r is not None), key=lambda r: r[0].lower())

        events = []
        for address, balance in observed:
            try:
                event = await self.scan_address(address, balance)
            except Exception as e:
                logger.error(f"Error processing deposit at {address}: {e}")
                continue
            if event is not None:
                events.append(event)
        return events
