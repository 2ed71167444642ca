"""Bridge execution types."""

from dataclasses import dataclass
from enum import Enum


class BridgeStep(str, Enum):
    """Steps of a bridge attempt, in execution order."""

    KEY_LOOKUP = "key_lookup"
    GAS_FUNDING = "gas_funding"
    FEE_QUOTE = "fee_quote"
    CROSS_CHAIN_SEND = "cross_chain_send"


class FeeSource(str, Enum):
    """Where the native messaging fee came from."""

    QUOTE = "quote"
    FALLBACK = "fallback"


@dataclass
class BridgeResult:
    """Result of a successful bridge attempt.

    Attributes:
        deposit_address: Custodial address the funds left from
        owner_id: Destination-chain recipient
        amount: Token amount sent, in base units
        fund_tx_hash: Gas funding transaction
        send_tx_hash: Cross-chain send transaction (confirmed on the source chain)
        native_fee: Messaging fee paid, in wei
        fee_source: Whether the fee was quoted or the fallback
    """

    deposit_address: str
    owner_id: str
    amount: int
    fund_tx_hash: str
    send_tx_hash: str
    native_fee: int
    fee_source: FeeSource
