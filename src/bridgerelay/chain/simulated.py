"""Simulated source chain (no real network access).

Used in dry-run mode and by the tests. Balances, calls and receipts are
held in memory; failures can be injected per method.
"""

import asyncio
import logging
import secrets
from dataclasses import dataclass
from typing import Callable, Optional

from eth_account import Account

from bridgerelay.chain.base import SourceChainClient, TxReceipt
from bridgerelay.errors import ConfirmationTimeoutError, TransactionRevertedError

logger = logging.getLogger(__name__)

CallHandler = Callable[[bytes, Optional[str]], bytes]


@dataclass
class SentTransaction:
    """A transaction accepted by the simulated chain."""

    tx_hash: str
    sender: str
    to: str
    data: bytes
    value: int
    gas: Optional[int]


class SimulatedChain(SourceChainClient):
    """In-memory source chain.

    Example:
        chain = SimulatedChain()
        chain.set_token_balance(token, address, 1_000_000)
        chain.fail("send_native", ChainError("node down"))
    """

    def __init__(self, token_decimals: int = 18):
        self.token_decimals = token_decimals
        self.token_balances: dict[tuple[str, str], int] = {}
        self.native_balances: dict[str, int] = {}
        self.call_handlers: dict[str, CallHandler] = {}
        self.transactions: list[SentTransaction] = []
        self.balance_queries: list[tuple[str, str]] = []
        self._failures: dict[str, Exception] = {}
        self._reverted: set[str] = set()
        self._stuck: set[str] = set()
        self._revert_next = False
        self._stick_next = False

    # Test controls
    def set_token_balance(self, token: str, address: str, amount: int) -> None:
        self.token_balances[(token.lower(), address.lower())] = amount

    def set_native_balance(self, address: str, amount: int) -> None:
        self.native_balances[address.lower()] = amount

    def register_call_handler(self, contract: str, handler: CallHandler) -> None:
        """Answer eth_call requests to a contract with a handler."""
        self.call_handlers[contract.lower()] = handler

    def fail(self, method: str, error: Exception) -> None:
        """Make every call to a method raise an error until cleared."""
        self._failures[method] = error

    def clear_failures(self) -> None:
        self._failures.clear()

    def revert_next_transaction(self) -> None:
        self._revert_next = True

    def stick_next_transaction(self) -> None:
        """The next transaction is never mined."""
        self._stick_next = True

    def _check_failure(self, method: str) -> None:
        error = self._failures.get(method)
        if error is not None:
            raise error

    # SourceChainClient
    async def get_token_balance(self, token: str, address: str) -> int:
        self._check_failure("get_token_balance")
        self.balance_queries.append((token, address))
        return self.token_balances.get((token.lower(), address.lower()), 0)

    async def get_token_decimals(self, token: str) -> int:
        self._check_failure("get_token_decimals")
        return self.token_decimals

    async def get_native_balance(self, address: str) -> int:
        self._check_failure("get_native_balance")
        return self.native_balances.get(address.lower(), 0)

    async def call(self, to: str, data: bytes, sender: Optional[str] = None) -> bytes:
        self._check_failure("call")
        handler = self.call_handlers.get(to.lower())
        if handler is None:
            return b""
        return handler(data, sender)

    async def estimate_gas(
        self, sender: str, to: str, data: bytes = b"", value: int = 0
    ) -> int:
        self._check_failure("estimate_gas")
        return 21000 if not data else 250_000

    async def send_transaction(
        self,
        private_key: str,
        to: str,
        data: bytes = b"",
        value: int = 0,
        gas: Optional[int] = None,
    ) -> str:
        self._check_failure("send_transaction")
        return self._record(private_key, to, data, value, gas)

    async def send_native(self, private_key: str, to: str, value: int) -> str:
        self._check_failure("send_native")
        return self._record(private_key, to, b"", value, 21000)

    def _record(
        self, private_key: str, to: str, data: bytes, value: int, gas: Optional[int]
    ) -> str:
        sender = Account.from_key(private_key).address
        tx_hash = "0x" + secrets.token_hex(32)

        self.native_balances[sender.lower()] = self.native_balances.get(sender.lower(), 0) - value
        self.native_balances[to.lower()] = self.native_balances.get(to.lower(), 0) + value

        self.transactions.append(
            SentTransaction(
                tx_hash=tx_hash, sender=sender, to=to, data=data, value=value, gas=gas
            )
        )

        if self._revert_next:
            self._reverted.add(tx_hash)
            self._revert_next = False
        if self._stick_next:
            self._stuck.add(tx_hash)
            self._stick_next = False

        logger.debug(f"[SIMULATED] {sender} -> {to} value={value} ({tx_hash})")
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        self._check_failure("wait_for_receipt")
        if tx_hash in self._stuck:
            await asyncio.sleep(timeout)
            raise ConfirmationTimeoutError(
                f"Transaction {tx_hash} not confirmed within {timeout}s"
            )
        if tx_hash in self._reverted:
            raise TransactionRevertedError(f"Transaction {tx_hash} reverted")
        return TxReceipt(tx_hash=tx_hash, status=1, block_number=len(self.transactions))
