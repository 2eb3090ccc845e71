"""Calldata for approve, depositForBurn and receiveMessage."""

import pytest
from eth_abi import decode

from bridgepay.cctp.config import get_cctp_chain
from bridgepay.cctp.constants import ANY_DESTINATION_CALLER, FINALITY_THRESHOLD_STANDARD
from bridgepay.cctp.receive import prepare_receive_message
from bridgepay.cctp.transfer import (
    DEPOSIT_FOR_BURN_SIGNATURE,
    encode_address_to_bytes32,
    function_selector,
    is_valid_address,
    prepare_approve_for_burn,
    prepare_deposit_for_burn,
)

RECIPIENT = "0x2222222222222222222222222222222222222222"


@pytest.fixture()
def sepolia():
    return get_cctp_chain(11155111)


def test_known_selectors():
    assert function_selector("approve(address,uint256)").hex() == "095ea7b3"
    assert function_selector("receiveMessage(bytes,bytes)").hex() == "57ecfd28"


@pytest.mark.parametrize(
    "address, valid",
    [
        ("0x2222222222222222222222222222222222222222", True),
        ("0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", True),
        ("2222222222222222222222222222222222222222", False),
        ("0x222222222222222222222222222222222222222", False),
        ("0xZZ22222222222222222222222222222222222222", False),
        ("", False),
        (None, False),
    ],
)
def test_is_valid_address(address, valid):
    assert is_valid_address(address) is valid


def test_encode_address_to_bytes32():
    """EVM addresses are left-padded with 12 zero bytes."""
    encoded = encode_address_to_bytes32(RECIPIENT)
    assert len(encoded) == 32
    assert encoded[:12] == bytes(12)
    assert encoded[12:] == bytes.fromhex(RECIPIENT[2:])


def test_prepare_approve_for_burn(sepolia):
    """Allowance goes to TokenMessengerV2."""
    data = prepare_approve_for_burn(sepolia, 10_000_000_000)
    assert data[:4] == function_selector("approve(address,uint256)")
    spender, allowance = decode(["address", "uint256"], data[4:])
    assert spender.lower() == sepolia.token_messenger.lower()
    assert allowance == 10_000_000_000


def test_prepare_deposit_for_burn(sepolia):
    """All seven V2 arguments land in the right slots."""
    data = prepare_deposit_for_burn(
        sepolia,
        amount=25_500_000,
        destination_domain=1,
        mint_recipient=RECIPIENT,
        max_fee=500,
        min_finality_threshold=FINALITY_THRESHOLD_STANDARD,
    )
    assert data[:4] == function_selector(DEPOSIT_FOR_BURN_SIGNATURE)

    amount, domain, recipient, burn_token, caller, max_fee, threshold = decode(
        ["uint256", "uint32", "bytes32", "address", "bytes32", "uint256", "uint32"],
        data[4:],
    )
    assert amount == 25_500_000
    assert domain == 1
    assert recipient == encode_address_to_bytes32(RECIPIENT)
    assert burn_token.lower() == sepolia.usdc.lower()
    assert caller == ANY_DESTINATION_CALLER
    assert max_fee == 500
    assert threshold == 2000


def test_prepare_deposit_for_burn_fee_must_stay_below_amount(sepolia):
    with pytest.raises(AssertionError, match="max_fee"):
        prepare_deposit_for_burn(sepolia, amount=500, destination_domain=1, mint_recipient=RECIPIENT, max_fee=500)


def test_prepare_deposit_for_burn_unknown_threshold(sepolia):
    with pytest.raises(AssertionError, match="finality threshold"):
        prepare_deposit_for_burn(sepolia, amount=1_000_000, destination_domain=1, mint_recipient=RECIPIENT, min_finality_threshold=1500)


def test_prepare_receive_message():
    """Message and attestation are relayed byte for byte."""
    message = bytes.fromhex("0000000100000000" + "ab" * 100)
    attestation = bytes.fromhex("cd" * 130)
    data = prepare_receive_message(message, attestation)
    assert data[:4].hex() == "57ecfd28"
    assert decode(["bytes", "bytes"], data[4:]) == (message, attestation)


def test_prepare_receive_message_refuses_empty_attestation():
    with pytest.raises(AssertionError):
        prepare_receive_message(b"\x01", b"")
