"""Base interface for source-chain clients.

Transaction flow:
1. Build transaction (nonce, gas price, gas limit)
2. Sign locally with the sender's key
3. Broadcast raw transaction
4. Wait for the receipt, bounded by an explicit timeout
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class TxReceipt:
    """Receipt of a mined transaction."""

    tx_hash: str
    status: int
    block_number: Optional[int] = None
    gas_used: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class SourceChainClient(ABC):
    """Abstract client for the EVM source chain.

    Read methods never mutate chain state. Write methods return the
    transaction hash as soon as the node accepted the transaction;
    confirmation is a separate, explicitly bounded wait.
    """

    @abstractmethod
    async def get_token_balance(self, token: str, address: str) -> int:
        """Get an ERC20 balance in base units."""
        pass

    @abstractmethod
    async def get_token_decimals(self, token: str) -> int:
        pass

    @abstractmethod
    async def get_native_balance(self, address: str) -> int:
        """Get native currency balance in wei."""
        pass

    @abstractmethod
    async def call(self, to: str, data: bytes, sender: Optional[str] = None) -> bytes:
        """Run a read-only contract call (eth_call) and return raw output."""
        pass

    @abstractmethod
    async def estimate_gas(
        self, sender: str, to: str, data: bytes = b"", value: int = 0
    ) -> int:
        pass

    @abstractmethod
    async def send_transaction(
        self,
        private_key: str,
        to: str,
        data: bytes = b"",
        value: int = 0,
        gas: Optional[int] = None,
    ) -> str:
        """Sign and broadcast a transaction.

        Returns:
            Transaction hash
        """
        pass

    async def send_native(self, private_key: str, to: str, value: int) -> str:
        """Send native currency (plain 21000-gas transfer)."""
        return await self.send_transaction(private_key, to, value=value, gas=21000)

    @abstractmethod
    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        """Wait until a transaction is mined.

        Raises:
            ConfirmationTimeoutError: If not mined within timeout seconds
            TransactionRevertedError: If mined with a failed status
        """
        pass

    async def close(self) -> None:
        """Release client resources."""
        pass
