"""LayerZero OFT (Omnichain Fungible Token) messaging contract.

Only the two calls the relayer needs are covered: quoteSend (read-only
fee quote) and send (the paid cross-chain transfer). ABI encoding uses
eth_abi directly so no contract object or provider is required.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from bridgerelay.chain.base import SourceChainClient

logger = logging.getLogger(__name__)

# SendParam: (dstEid, to, amountLD, minAmountLD, extraOptions, composeMsg, oftCmd)
SEND_PARAM_TYPE = "(uint32,bytes32,uint256,uint256,bytes,bytes,bytes)"
# MessagingFee: (nativeFee, lzTokenFee)
MESSAGING_FEE_TYPE = "(uint256,uint256)"
# OFTReceipt: (amountSentLD, amountReceivedLD)
OFT_RECEIPT_TYPE = "(uint256,uint256)"

QUOTE_SEND_SELECTOR = function_signature_to_4byte_selector(
    f"quoteSend({SEND_PARAM_TYPE},bool)"
)
SEND_SELECTOR = function_signature_to_4byte_selector(
    f"send({SEND_PARAM_TYPE},{MESSAGING_FEE_TYPE},address)"
)


def address_to_bytes32(address: str) -> bytes:
    """Left-pad a hex address (20 or 32 bytes) to a bytes32 recipient."""
    hex_part = address[2:] if address.lower().startswith("0x") else address
    if len(hex_part) > 64:
        raise ValueError(f"Address too long for bytes32: {address}")
    return bytes.fromhex(hex_part.lower().rjust(64, "0"))


@dataclass(frozen=True)
class SendParam:
    """OFT SendParam struct."""

    dst_eid: int
    to: bytes
    amount_ld: int
    min_amount_ld: int
    extra_options: bytes = b""
    compose_msg: bytes = b""
    oft_cmd: bytes = b""

    def as_tuple(self) -> tuple:
        return (
            self.dst_eid,
            self.to,
            self.amount_ld,
            self.min_amount_ld,
            self.extra_options,
            self.compose_msg,
            self.oft_cmd,
        )


def encode_quote_result(
    native_fee: int,
    lz_token_fee: int = 0,
    amount_sent: int = 0,
    amount_received: int = 0,
) -> bytes:
    """ABI-encode a quoteSend return value (used by the simulated chain)."""
    return encode(
        [MESSAGING_FEE_TYPE, OFT_RECEIPT_TYPE],
        [(native_fee, lz_token_fee), (amount_sent, amount_received)],
    )


def decode_send_call(data: bytes) -> tuple[SendParam, int, str]:
    """Decode send() calldata into (send_param, native_fee, refund_address)."""
    if data[:4] != SEND_SELECTOR:
        raise ValueError("Not an OFT send() call")
    param, fee, refund = decode(
        [SEND_PARAM_TYPE, MESSAGING_FEE_TYPE, "address"], data[4:]
    )
    return SendParam(*param), fee[0], to_checksum_address(refund)


class OFTMessenger:
    """Cross-chain send through an OFT token contract.

    No slippage is allowed: minAmountLD equals amountLD, and extra
    options are left empty so the contract's enforced defaults apply.
    """

    def __init__(self, chain: SourceChainClient, token_address: str, destination_eid: int):
        self.chain = chain
        self.token_address = to_checksum_address(token_address)
        self.destination_eid = destination_eid

    def build_send_param(self, recipient: str, amount: int) -> SendParam:
        return SendParam(
            dst_eid=self.destination_eid,
            to=address_to_bytes32(recipient),
            amount_ld=amount,
            min_amount_ld=amount,
        )

    async def quote_send(self, sender: str, recipient: str, amount: int) -> int:
        """Ask the contract for the native fee of a send.

        Returns:
            Native fee in wei
        """
        param = self.build_send_param(recipient, amount)
        data = QUOTE_SEND_SELECTOR + encode([SEND_PARAM_TYPE, "bool"], [param.as_tuple(), False])

        output = await self.chain.call(self.token_address, data, sender=sender)
        messaging_fee, _receipt = decode([MESSAGING_FEE_TYPE, OFT_RECEIPT_TYPE], output)
        return messaging_fee[0]

    def encode_send(
        self,
        recipient: str,
        amount: int,
        native_fee: int,
        refund_address: str,
        send_param: Optional[SendParam] = None,
    ) -> bytes:
        """Build send() calldata paying native_fee, refunding to refund_address."""
        param = send_param or self.build_send_param(recipient, amount)
        return SEND_SELECTOR + encode(
            [SEND_PARAM_TYPE, MESSAGING_FEE_TYPE, "address"],
            [param.as_tuple(), (native_fee, 0), to_checksum_address(refund_address)],
        )


def simulated_quote_handler(native_fee: int):
    """eth_call handler for SimulatedChain answering quoteSend with a fixed fee."""

    def handler(data: bytes, sender: Optional[str]) -> bytes:
        if data[:4] != QUOTE_SEND_SELECTOR:
            return b""
        (param, _pay_in_lz) = decode([SEND_PARAM_TYPE, "bool"], data[4:])
        return encode_quote_result(native_fee, 0, param[2], param[3])

    return handler
