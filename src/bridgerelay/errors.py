"""Exception hierarchy for the relayer."""

from typing import Optional


class RelayerError(Exception):
    """Base class for relayer errors."""

    pass


class ConfigurationError(RelayerError):
    """Raised when a required setting (operator key, RPC endpoint) is missing."""

    pass


class RegistryError(RelayerError):
    """Raised when the deposit address store cannot be read or written."""

    pass


class AddressNotFoundError(RegistryError):
    """Raised when a deposit address is not in the registry."""

    pass


class InvalidOwnerError(RegistryError):
    """Raised when an owner id is not a valid destination address."""

    pass


class ChainError(RelayerError):
    """Raised when a source-chain RPC call fails."""

    pass


class ConfirmationTimeoutError(ChainError):
    """Raised when a transaction is not confirmed within its timeout."""

    pass


class TransactionRevertedError(ChainError):
    """Raised when a mined transaction has a failed status."""

    pass


class BridgeError(RelayerError):
    """A failed bridge attempt.

    Carries enough context for an operator to recover funds by hand:
    the step that failed and, when gas funding already went through,
    the funding transaction hash.
    """

    def __init__(
        self,
        message: str,
        step: str,
        deposit_address: str,
        owner_id: str,
        amount: int,
        fund_tx_hash: Optional[str] = None,
    ):
        super().__init__(message)
        self.step = step
        self.deposit_address = deposit_address
        self.owner_id = owner_id
        self.amount = amount
        self.fund_tx_hash = fund_tx_hash

    @property
    def funds_in_transit(self) -> bool:
        """True when gas was sent but the cross-chain send did not complete."""
        return self.fund_tx_hash is not None


class LockTimeoutError(RelayerError):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass
