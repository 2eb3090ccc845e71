"""Destination chain call: ``MessageTransmitterV2.receiveMessage()``.

Redeeming the attested message mints USDC to the recipient encoded in
the burn. Anyone can relay unless the burn restricted ``destinationCaller``.
"""

from eth_abi import encode

from bridgepay.cctp.transfer import function_selector

RECEIVE_MESSAGE_SIGNATURE = "receiveMessage(bytes,bytes)"


def prepare_receive_message(message: bytes, attestation: bytes) -> bytes:
    """Calldata for ``receiveMessage(message, attestation)``.

    Send to ``chain.message_transmitter`` on the destination chain.

    :param message:
        Message bytes exactly as returned by Iris.

    :param attestation:
        Signed attestation bytes exactly as returned by Iris.
    """
    assert message, "Empty CCTP message"
    assert attestation, "Empty CCTP attestation"
    return function_selector(RECEIVE_MESSAGE_SIGNATURE) + encode(["bytes", "bytes"], [message, attestation])
