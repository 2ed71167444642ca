"""Source-chain clients."""

from typing import Optional

from bridgerelay.chain.base import SourceChainClient, TxReceipt
from bridgerelay.chain.evm import EvmRpcClient
from bridgerelay.chain.simulated import SentTransaction, SimulatedChain
from bridgerelay.config import Settings, get_settings


def get_chain_client(settings: Optional[Settings] = None) -> SourceChainClient:
    """Get the source-chain client for the current mode."""
    settings = settings or get_settings()

    if settings.dry_run:
        return SimulatedChain()

    return EvmRpcClient(
        rpc_url=settings.source_rpc_url,
        chain_id=settings.source_chain_id,
        timeout=settings.rpc_timeout,
        poll_interval=settings.receipt_poll_interval,
    )


__all__ = [
    "EvmRpcClient",
    "SentTransaction",
    "SimulatedChain",
    "SourceChainClient",
    "TxReceipt",
    "get_chain_client",
]
