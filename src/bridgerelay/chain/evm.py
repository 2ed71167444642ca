"""JSON-RPC client for EVM source chains.

Uses httpx for transport and eth_account for local signing.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx
from eth_abi import decode, encode
from eth_account import Account
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from bridgerelay.chain.base import SourceChainClient, TxReceipt
from bridgerelay.errors import (
    ChainError,
    ConfigurationError,
    ConfirmationTimeoutError,
    TransactionRevertedError,
)

logger = logging.getLogger(__name__)

BALANCE_OF_SELECTOR = function_signature_to_4byte_selector("balanceOf(address)")
DECIMALS_SELECTOR = function_signature_to_4byte_selector("decimals()")


def _hex(data: bytes) -> str:
    return "0x" + data.hex()


class EvmRpcClient(SourceChainClient):
    """Source-chain client speaking Ethereum JSON-RPC over HTTP."""

    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        timeout: float = 30.0,
        poll_interval: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            rpc_url: JSON-RPC endpoint
            chain_id: EIP-155 chain id used when signing
            timeout: Per-request HTTP timeout
            poll_interval: Seconds between receipt polls
            transport: Optional httpx transport (tests)
        """
        if not rpc_url:
            raise ConfigurationError("Source chain RPC URL is not configured")

        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.poll_interval = poll_interval
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._request_id = 0

    async def _rpc(self, method: str, params: list) -> Any:
        """Run one JSON-RPC request and return its result field."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": self._request_id,
        }

        try:
            response = await self._client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ChainError(f"RPC {method} failed: {e}") from e

        if "error" in data:
            raise ChainError(f"RPC {method} error: {data['error']}")
        return data.get("result")

    async def call(self, to: str, data: bytes, sender: Optional[str] = None) -> bytes:
        tx = {"to": to_checksum_address(to), "data": _hex(data)}
        if sender:
            tx["from"] = to_checksum_address(sender)
        result = await self._rpc("eth_call", [tx, "latest"])
        return bytes.fromhex((result or "0x")[2:])

    async def get_token_balance(self, token: str, address: str) -> int:
        data = BALANCE_OF_SELECTOR + encode(["address"], [to_checksum_address(address)])
        output = await self.call(token, data)
        (balance,) = decode(["uint256"], output)
        return balance

    async def get_token_decimals(self, token: str) -> int:
        output = await self.call(token, DECIMALS_SELECTOR)
        (decimals,) = decode(["uint8"], output)
        return decimals

    async def get_native_balance(self, address: str) -> int:
        result = await self._rpc("eth_getBalance", [to_checksum_address(address), "latest"])
        return int(result, 16)

    async def get_nonce(self, address: str) -> int:
        """Get transaction count (nonce) for address, including pending."""
        result = await self._rpc(
            "eth_getTransactionCount", [to_checksum_address(address), "pending"]
        )
        return int(result, 16)

    async def get_gas_price(self) -> int:
        result = await self._rpc("eth_gasPrice", [])
        return int(result, 16)

    async def estimate_gas(
        self, sender: str, to: str, data: bytes = b"", value: int = 0
    ) -> int:
        tx = {
            "from": to_checksum_address(sender),
            "to": to_checksum_address(to),
            "data": _hex(data),
            "value": hex(value),
        }
        result = await self._rpc("eth_estimateGas", [tx])
        return int(result, 16)

    async def send_transaction(
        self,
        private_key: str,
        to: str,
        data: bytes = b"",
        value: int = 0,
        gas: Optional[int] = None,
    ) -> str:
        account = Account.from_key(private_key)

        nonce = await self.get_nonce(account.address)
        gas_price = await self.get_gas_price()
        if gas is None:
            gas = await self.estimate_gas(account.address, to, data, value)

        tx = {
            "nonce": nonce,
            "gasPrice": gas_price,
            "gas": gas,
            "to": to_checksum_address(to),
            "value": value,
            "data": data,
            "chainId": self.chain_id,
        }

        signed_tx = account.sign_transaction(tx)
        raw_tx = _hex(bytes(signed_tx.raw_transaction))

        tx_hash = await self._rpc("eth_sendRawTransaction", [raw_tx])
        logger.debug(f"Broadcast tx {tx_hash} from {account.address} (nonce {nonce})")
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            try:
                result = await self._rpc("eth_getTransactionReceipt", [tx_hash])
            except ChainError as e:
                # Keep polling through transient RPC failures until the deadline
                logger.warning(f"Receipt poll failed for {tx_hash}: {e}")
                result = None

            if result is not None:
                receipt = TxReceipt(
                    tx_hash=tx_hash,
                    status=int(result.get("status", "0x0"), 16),
                    block_number=int(result.get("blockNumber", "0x0"), 16),
                    gas_used=int(result.get("gasUsed", "0x0"), 16),
                )
                if not receipt.succeeded:
                    raise TransactionRevertedError(f"Transaction {tx_hash} reverted")
                return receipt

            if loop.time() + self.poll_interval > deadline:
                raise ConfirmationTimeoutError(
                    f"Transaction {tx_hash} not confirmed within {timeout}s"
                )
            await asyncio.sleep(self.poll_interval)

    async def close(self) -> None:
        await self._client.aclose()
