"""Cross-chain messaging contracts."""

from bridgerelay.messaging.oft import (
    OFTMessenger,
    SendParam,
    address_to_bytes32,
    decode_send_call,
    encode_quote_result,
    simulated_quote_handler,
)

__all__ = [
    "OFTMessenger",
    "SendParam",
    "address_to_bytes32",
    "decode_send_call",
    "encode_quote_result",
    "simulated_quote_handler",
]
