"""Chain presets, routes and attestation polling configuration."""

import pytest

from bridgepay.cctp.config import AttestationConfig, create_route, get_cctp_chain
from bridgepay.cctp.constants import (
    IRIS_API_BASE_URL,
    IRIS_API_SANDBOX_URL,
    MESSAGE_TRANSMITTER_V2,
    TOKEN_MESSENGER_V2_TESTNET,
)


def test_get_cctp_chain_testnet():
    chain = get_cctp_chain(11155111)
    assert chain.domain == 0
    assert chain.testnet
    assert chain.token_messenger == TOKEN_MESSENGER_V2_TESTNET
    assert chain.name == "Ethereum Sepolia"


def test_get_cctp_chain_mainnet_with_override():
    chain = get_cctp_chain(8453, gas_limit=300_000)
    assert chain.domain == 6
    assert not chain.testnet
    assert chain.message_transmitter == MESSAGE_TRANSMITTER_V2
    assert chain.gas_limit == 300_000


def test_get_cctp_chain_unknown():
    with pytest.raises(ValueError, match="not CCTP-enabled"):
        get_cctp_chain(56)


def test_route_picks_iris_endpoint():
    assert create_route(11155111, 43113).iris_api_url == IRIS_API_SANDBOX_URL
    assert create_route(1, 42161).iris_api_url == IRIS_API_BASE_URL
    assert str(create_route(1, 42161)) == "Ethereum -> Arbitrum"


def test_route_rejects_testnet_to_mainnet():
    with pytest.raises(AssertionError, match="testnet"):
        create_route(11155111, 43114)


def test_route_rejects_same_chain():
    with pytest.raises(AssertionError):
        create_route(1, 1)


def test_attestation_config_for_route():
    route = create_route(421614, 84532)
    config = AttestationConfig.for_route(route, max_wait=60.0)
    assert config.source_domain == 3
    assert config.api_base_url == IRIS_API_SANDBOX_URL
    assert config.max_wait == 60.0
    assert config.poll_interval == 5.0
    assert config.rate_limit_cooldown == 300.0


def test_attestation_config_validation():
    with pytest.raises(AssertionError):
        AttestationConfig(source_domain=0, poll_interval=0)

    with pytest.raises(AssertionError):
        AttestationConfig(source_domain=0, poll_interval=10.0, rate_limit_cooldown=5.0)


def test_attestation_config_with_overrides():
    config = AttestationConfig.create_test_config(source_domain=6)
    slower = config.with_overrides(max_wait=5.0)
    assert slower.max_wait == 5.0
    assert slower.source_domain == 6
    assert config.max_wait == 1.0
