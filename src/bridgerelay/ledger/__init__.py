"""Ledger module for durable relayer state."""

from bridgerelay.ledger.database import close_db, get_db, init_db
from bridgerelay.ledger.models import BridgeAttempt, BridgeStatus, DepositAddress, SeenFingerprint
from bridgerelay.ledger.repository import RelayerRepository

__all__ = [
    "BridgeAttempt",
    "BridgeStatus",
    "DepositAddress",
    "RelayerRepository",
    "SeenFingerprint",
    "close_db",
    "get_db",
    "init_db",
]
