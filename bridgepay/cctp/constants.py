"""CCTP V2 contract addresses, domains and Iris API endpoints.

Plain data only. Nothing in the transfer code reads these directly:
build a :py:class:`~bridgepay.cctp.config.CCTPRoute` with
:py:func:`~bridgepay.cctp.config.create_route` and pass it in, so several
chain pairs or environments can live in the same process.

- `CCTP V2 contract addresses <https://developers.circle.com/cctp/evm-smart-contracts>`__
- `CCTP domains <https://developers.circle.com/cctp/cctp-supported-blockchains>`__
"""

#: Circle Iris attestation API, mainnet
IRIS_API_BASE_URL = "https://iris-api.circle.com"

#: Circle Iris attestation API, testnets
IRIS_API_SANDBOX_URL = "https://iris-api-sandbox.circle.com"

#: TokenMessengerV2 has the same CREATE2 address on all EVM mainnets
TOKEN_MESSENGER_V2 = "0x28b5a0e9C621a5BadaA536219b3a228C8168cf5d"

#: MessageTransmitterV2 has the same CREATE2 address on all EVM mainnets
MESSAGE_TRANSMITTER_V2 = "0x81D40F21F12A8F0E3252Bccb954D722d4c464B64"

#: TokenMessengerV2 on EVM testnets
TOKEN_MESSENGER_V2_TESTNET = "0x8FE6B999Dc680CcFDD5Bf7EB0974218be2542DAA"

#: MessageTransmitterV2 on EVM testnets
MESSAGE_TRANSMITTER_V2_TESTNET = "0xE737e5cEBEEBa77EFE34D4aa090756590b1CE275"

#: EVM chain id -> CCTP domain id
CHAIN_ID_TO_CCTP_DOMAIN: dict[int, int] = {
    # Mainnets
    1: 0,  # Ethereum
    43114: 1,  # Avalanche C-Chain
    10: 2,  # Optimism
    42161: 3,  # Arbitrum
    8453: 6,  # Base
    137: 7,  # Polygon PoS
    130: 10,  # Unichain
    # Testnets
    11155111: 0,  # Ethereum Sepolia
    43113: 1,  # Avalanche Fuji
    11155420: 2,  # Optimism Sepolia
    421614: 3,  # Arbitrum Sepolia
    84532: 6,  # Base Sepolia
    80002: 7,  # Polygon Amoy
}

#: CCTP domain id -> readable name, used in log messages
CCTP_DOMAIN_NAMES: dict[int, str] = {
    0: "Ethereum",
    1: "Avalanche",
    2: "Optimism",
    3: "Arbitrum",
    6: "Base",
    7: "Polygon",
    10: "Unichain",
}

#: EVM chain id -> readable chain name
CHAIN_NAMES: dict[int, str] = {
    1: "Ethereum",
    43114: "Avalanche",
    10: "Optimism",
    42161: "Arbitrum",
    8453: "Base",
    137: "Polygon",
    130: "Unichain",
    11155111: "Ethereum Sepolia",
    43113: "Avalanche Fuji",
    11155420: "Optimism Sepolia",
    421614: "Arbitrum Sepolia",
    84532: "Base Sepolia",
    80002: "Polygon Amoy",
}

#: Native Circle USDC per EVM chain id
USDC_NATIVE_TOKEN: dict[int, str] = {
    1: "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
    43114: "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E",
    10: "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85",
    42161: "0xaf88d065e77c8cC2239327C5EDb3A432268e5831",
    8453: "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    137: "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",
    130: "0x078D782b760474a361dDA0AF3839290b0EF57AD6",
    11155111: "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
    43113: "0x5425890298aed601595a70AB815c96711a31Bc65",
    11155420: "0x5fd84259d66Cd46123540766Be93DFE6D43130D7",
    421614: "0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d",
    84532: "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
    80002: "0x41E94Eb019C0762f9Bfcf9Fb1E58725BfB0e7582",
}

#: Chain ids that talk to the Iris sandbox and testnet contracts
TESTNET_CHAIN_IDS: set[int] = {11155111, 43113, 11155420, 421614, 84532, 80002}

#: ``minFinalityThreshold`` for Fast Transfer (soft finality, small fee)
FINALITY_THRESHOLD_FAST = 1000

#: ``minFinalityThreshold`` for Standard Transfer (hard finality, no fee)
FINALITY_THRESHOLD_STANDARD = 2000

#: Default ``maxFee`` in raw USDC units (0.0005 USDC)
DEFAULT_MAX_FEE = 500

#: Default allowance granted to TokenMessengerV2 in raw USDC units (10,000 USDC).
#:
#: Deliberately larger than a single bill so repeated payments from the
#: same account do not need a new approval every time.
DEFAULT_APPROVAL_ALLOWANCE = 10_000_000_000

#: Empty ``destinationCaller``: anyone may relay ``receiveMessage()``
ANY_DESTINATION_CALLER = b"\x00" * 32
