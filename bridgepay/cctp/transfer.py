"""Source chain calls: USDC allowance and ``depositForBurn()``.

Builds raw calldata for the two source chain transactions of a CCTP V2
transfer. Encoding is done with :py:mod:`eth_abi` so the result is plain
bytes that any :py:class:`~bridgepay.cctp.ledger_client.LedgerClient` can send.

Example::

    from bridgepay.cctp.config import create_route
    from bridgepay.cctp.transfer import prepare_approve_for_burn, prepare_deposit_for_burn

    route = create_route(11155111, 43113)
    approve_data = prepare_approve_for_burn(route.source, 10_000_000_000)
    burn_data = prepare_deposit_for_burn(
        route.source,
        amount=1_000_000,
        destination_domain=route.destination.domain,
        mint_recipient="0x...",
    )
"""

import re

from eth_abi import encode
from eth_typing import HexAddress
from web3 import Web3

from bridgepay.cctp.config import CCTPChain
from bridgepay.cctp.constants import (
    ANY_DESTINATION_CALLER,
    DEFAULT_MAX_FEE,
    FINALITY_THRESHOLD_FAST,
    FINALITY_THRESHOLD_STANDARD,
)

#: 20-byte hex address with ``0x`` prefix, any checksum casing
ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")

#: Accepted ``minFinalityThreshold`` values
FINALITY_THRESHOLDS = frozenset({FINALITY_THRESHOLD_FAST, FINALITY_THRESHOLD_STANDARD})

APPROVE_SIGNATURE = "approve(address,uint256)"

DEPOSIT_FOR_BURN_SIGNATURE = "depositForBurn(uint256,uint32,bytes32,address,bytes32,uint256,uint32)"


def function_selector(signature: str) -> bytes:
    """First 4 bytes of the Keccak hash of a Solidity function signature."""
    return bytes(Web3.keccak(text=signature)[:4])


def is_valid_address(address: str) -> bool:
    """Check the 20-byte hex shape of an EVM address."""
    return isinstance(address, str) and ADDRESS_PATTERN.match(address) is not None


def encode_address_to_bytes32(address: HexAddress | str) -> bytes:
    """Left-pad a 20-byte EVM address to the 32 bytes CCTP uses for recipients.

    CCTP supports non-EVM chains, so ``mintRecipient`` and
    ``destinationCaller`` are ``bytes32`` rather than ``address``.
    """
    assert is_valid_address(address), f"Not a 20-byte hex address: {address}"
    return bytes(12) + bytes.fromhex(address[2:])


def prepare_approve_for_burn(chain: CCTPChain, allowance: int) -> bytes:
    """Calldata for ``USDC.approve(TokenMessengerV2, allowance)``.

    Send to ``chain.usdc``.

    :param chain:
        Source chain.

    :param allowance:
        Raw USDC allowance. Usually a ceiling larger than the transfer itself.
    """
    assert 0 < allowance < 2**256, f"Bad allowance: {allowance}"
    args = encode(["address", "uint256"], [Web3.to_checksum_address(chain.token_messenger), allowance])
    return function_selector(APPROVE_SIGNATURE) + args


def prepare_deposit_for_burn(
    chain: CCTPChain,
    amount: int,
    destination_domain: int,
    mint_recipient: HexAddress | str,
    max_fee: int = DEFAULT_MAX_FEE,
    min_finality_threshold: int = FINALITY_THRESHOLD_FAST,
    destination_caller: bytes = ANY_DESTINATION_CALLER,
) -> bytes:
    """Calldata for ``TokenMessengerV2.depositForBurn()``.

    Send to ``chain.token_messenger``. USDC is burned from the sender and a
    message is emitted for Iris to attest.

    :param chain:
        Source chain.

    :param amount:
        Raw USDC amount to burn.

    :param destination_domain:
        CCTP domain of the destination chain.

    :param mint_recipient:
        Address that receives USDC on the destination chain.

    :param max_fee:
        Maximum relay fee in raw USDC the sender accepts, deducted from ``amount`` on mint.

    :param min_finality_threshold:
        ``1000`` for Fast Transfer, ``2000`` for Standard Transfer.

    :param destination_caller:
        32 bytes. All zeroes lets anyone call ``receiveMessage()``.
    """
    assert 0 < amount < 2**256, f"Bad amount: {amount}"
    assert 0 <= max_fee < amount, f"max_fee {max_fee} must be below amount {amount}"
    assert min_finality_threshold in FINALITY_THRESHOLDS, f"Unknown finality threshold: {min_finality_threshold}"
    assert len(destination_caller) == 32, f"destination_caller must be 32 bytes, got {len(destination_caller)}"

    args = encode(
        ["uint256", "uint32", "bytes32", "address", "bytes32", "uint256", "uint32"],
        [
            amount,
            destination_domain,
            encode_address_to_bytes32(mint_recipient),
            Web3.to_checksum_address(chain.usdc),
            destination_caller,
            max_fee,
            min_finality_threshold,
        ],
    )
    return function_selector(DEPOSIT_FOR_BURN_SIGNATURE) + args
