"""Deposit scanner module for monitoring deposit address balances."""

from bridgerelay.scanner.deposits import DepositEvent, DepositScanner
from bridgerelay.scanner.fingerprints import (
    FingerprintStore,
    InMemoryFingerprintStore,
    SqlFingerprintStore,
    make_fingerprint,
)

__all__ = [
    "DepositEvent",
    "DepositScanner",
    "FingerprintStore",
    "InMemoryFingerprintStore",
    "SqlFingerprintStore",
    "make_fingerprint",
]
