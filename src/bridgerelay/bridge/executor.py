"""Bridge executor: moves a detected deposit to the destination chain.

Steps:
1. Fund the deposit address with native gas from the operator account
2. Quote the messaging fee (fall back to a fixed fee if quoting fails)
3. Send the tokens cross-chain, paying the fee from the deposit address

Each step waits for on-chain confirmation with an explicit timeout. A
failure at any step raises BridgeError; nothing is retried. When gas
funding succeeded but the send did not, the error carries the funding
tx hash so an operator can recover by hand.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from bridgerelay.bridge.base import BridgeResult, BridgeStep, FeeSource
from bridgerelay.chain.base import SourceChainClient
from bridgerelay.config import Settings
from bridgerelay.errors import BridgeError, ConfigurationError, LockTimeoutError
from bridgerelay.messaging.oft import OFTMessenger
from bridgerelay.registry.service import AddressRegistry
from bridgerelay.scanner.deposits import DepositEvent
from bridgerelay.utils.locks import KeyedLocks

logger = logging.getLogger(__name__)


class BridgeExecutor:
    """Executes bridge attempts for deposit events.

    Transactions of one deposit address are serialised (sequential
    nonces); different addresses run concurrently. The operator account
    funds one address at a time.
    """

    def __init__(
        self,
        registry: AddressRegistry,
        chain: SourceChainClient,
        messenger: OFTMessenger,
        operator_private_key: Optional[str],
        gas_funding_wei: int,
        fallback_fee_wei: int,
        use_fallback_fee: bool = True,
        send_gas_limit: int = 500_000,
        confirmation_timeout: float = 120.0,
        lock_timeout: Optional[float] = None,
    ):
        self.registry = registry
        self.chain = chain
        self.messenger = messenger
        self.operator_private_key = operator_private_key
        self.gas_funding_wei = gas_funding_wei
        self.fallback_fee_wei = fallback_fee_wei
        self.use_fallback_fee = use_fallback_fee
        self.send_gas_limit = send_gas_limit
        self.confirmation_timeout = confirmation_timeout
        self.lock_timeout = lock_timeout

        self._operator_lock = asyncio.Lock()
        self._address_locks = KeyedLocks("deposit address")

    @classmethod
    def from_settings(
        cls,
        registry: AddressRegistry,
        chain: SourceChainClient,
        settings: Settings,
    ) -> "BridgeExecutor":
        messenger = OFTMessenger(chain, settings.token_address, settings.destination_eid)
        return cls(
            registry=registry,
            chain=chain,
            messenger=messenger,
            operator_private_key=settings.operator_private_key,
            gas_funding_wei=settings.gas_funding_wei,
            fallback_fee_wei=settings.fallback_fee_wei,
            use_fallback_fee=settings.use_fallback_fee,
            send_gas_limit=settings.send_gas_limit,
            confirmation_timeout=settings.confirmation_timeout,
            lock_timeout=settings.lock_timeout,
        )

    def _fail(
        self,
        event: DepositEvent,
        step: BridgeStep,
        error: Exception,
        fund_tx_hash: Optional[str] = None,
    ) -> BridgeError:
        logger.error(
            f"Bridge failed at {step.value}: address={event.deposit_address} "
            f"owner={event.owner_id} amount={event.observed_amount} "
            f"fund_tx={fund_tx_hash or '-'}: {error}"
        )
        if fund_tx_hash:
            logger.error(
                f"Gas was funded for {event.deposit_address} but tokens were not sent; "
                f"manual recovery required"
            )
        return BridgeError(
            f"{step.value} failed: {error}",
            step=step.value,
            deposit_address=event.deposit_address,
            owner_id=event.owner_id,
            amount=event.observed_amount,
            fund_tx_hash=fund_tx_hash,
        )

    async def execute(
        self,
        event: DepositEvent,
        on_funded: Optional[Callable[[str], Awaitable[None]]] = None,
    ) -> BridgeResult:
        """Bridge a deposit to its owner on the destination chain.

        Args:
            event: Deposit to bridge
            on_funded: Awaited with the funding tx hash once it confirms,
                before any token movement

        Raises:
            BridgeError: If any step fails
        """
        logger.info(
            f"Starting bridge: {event.observed_amount} units from {event.deposit_address} "
            f"to {event.owner_id}"
        )

        try:
            private_key = await self.registry.get_private_key(event.deposit_address)
        except Exception as e:
            raise self._fail(event, BridgeStep.KEY_LOOKUP, e) from e

        try:
            async with self._address_locks.hold(
                event.deposit_address, timeout=self.lock_timeout, operation="bridge"
            ):
                fund_tx_hash = await self._fund_gas(event)
                if on_funded is not None:
                    await self._notify_funded(event, on_funded, fund_tx_hash)
                native_fee, fee_source = await self._quote_fee(event, fund_tx_hash)
                send_tx_hash = await self._send(event, private_key, native_fee, fund_tx_hash)
        except LockTimeoutError as e:
            # Another bridge still owns this address's nonce sequence
            raise self._fail(event, BridgeStep.GAS_FUNDING, e) from e

        logger.info(
            f"Bridge completed: {event.observed_amount} units from {event.deposit_address} "
            f"to {event.owner_id} (tx {send_tx_hash}, fee {native_fee} wei, {fee_source.value})"
        )
        return BridgeResult(
            deposit_address=event.deposit_address,
            owner_id=event.owner_id,
            amount=event.observed_amount,
            fund_tx_hash=fund_tx_hash,
            send_tx_hash=send_tx_hash,
            native_fee=native_fee,
            fee_source=fee_source,
        )

    async def _fund_gas(self, event: DepositEvent) -> str:
        """Send native gas from the operator account and wait for it."""
        if not self.operator_private_key:
            raise self._fail(
                event,
                BridgeStep.GAS_FUNDING,
                ConfigurationError("Operator funding key is not configured"),
            )

        try:
            # The operator account is a single nonce sequence
            async with self._operator_lock:
                logger.info(f"Funding {event.deposit_address} with {self.gas_funding_wei} wei")
                tx_hash = await self.chain.send_native(
                    self.operator_private_key, event.deposit_address, self.gas_funding_wei
                )
                await self.chain.wait_for_receipt(tx_hash, timeout=self.confirmation_timeout)
        except Exception as e:
            raise self._fail(event, BridgeStep.GAS_FUNDING, e) from e

        logger.info(f"Funding tx confirmed: {tx_hash}")
        return tx_hash

    async def _notify_funded(
        self,
        event: DepositEvent,
        on_funded: Callable[[str], Awaitable[None]],
        fund_tx_hash: str,
    ) -> None:
        try:
            await on_funded(fund_tx_hash)
        except Exception as e:
            logger.error(f"Funding callback failed for {event.deposit_address}: {e}")

    async def _quote_fee(
        self, event: DepositEvent, fund_tx_hash: str
    ) -> tuple[int, FeeSource]:
        try:
            fee = await self.messenger.quote_send(
                sender=event.deposit_address,
                recipient=event.owner_id,
                amount=event.observed_amount,
            )
            logger.info(f"Messaging fee for {event.deposit_address}: {fee} wei")
            return fee, FeeSource.QUOTE
        except Exception as e:
            if not self.use_fallback_fee:
                raise self._fail(event, BridgeStep.FEE_QUOTE, e, fund_tx_hash) from e
            logger.warning(
                f"Fee quote failed for {event.deposit_address}: {e}; "
                f"using fallback fee {self.fallback_fee_wei} wei"
            )
            return self.fallback_fee_wei, FeeSource.FALLBACK

    async def _send(
        self,
        event: DepositEvent,
        private_key: str,
        native_fee: int,
        fund_tx_hash: str,
    ) -> str:
        """Submit the cross-chain send and wait for source-chain confirmation."""
        data = self.messenger.encode_send(
            recipient=event.owner_id,
            amount=event.observed_amount,
            native_fee=native_fee,
            refund_address=event.deposit_address,
        )

        try:
            try:
                gas = await self.chain.estimate_gas(
                    event.deposit_address, self.messenger.token_address, data, native_fee
                )
            except Exception as e:
                logger.warning(f"Gas estimation failed for send: {e}; using {self.send_gas_limit}")
                gas = self.send_gas_limit

            tx_hash = await self.chain.send_transaction(
                private_key,
                self.messenger.token_address,
                data=data,
                value=native_fee,
                gas=gas,
            )
            logger.info(f"Send tx submitted: {tx_hash}")
            await self.chain.wait_for_receipt(tx_hash, timeout=self.confirmation_timeout)
        except Exception as e:
            raise self._fail(event, BridgeStep.CROSS_CHAIN_SEND, e, fund_tx_hash) from e

        return tx_hash
