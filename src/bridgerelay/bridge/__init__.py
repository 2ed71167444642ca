"""Bridge execution module."""

from bridgerelay.bridge.base import BridgeResult, BridgeStep, FeeSource
from bridgerelay.bridge.executor import BridgeExecutor

__all__ = ["BridgeExecutor", "BridgeResult", "BridgeStep", "FeeSource"]
