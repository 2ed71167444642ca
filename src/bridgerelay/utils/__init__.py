"""Utility modules for the relayer."""

from bridgerelay.utils.locks import KeyedLocks, LockTimeoutError

__all__ = ["KeyedLocks", "LockTimeoutError"]
