"""Chain pair and attestation polling configuration.

Everything network specific lives in these objects and is injected into
:py:class:`~bridgepay.cctp.ledger_client.Web3LedgerClient`,
:py:class:`~bridgepay.cctp.attestation.AttestationPoller` and
:py:class:`~bridgepay.cctp.orchestrator.TransferOrchestrator` constructors.

Example::

    from bridgepay.cctp.config import AttestationConfig, create_route

    # Ethereum Sepolia -> Avalanche Fuji
    route = create_route(11155111, 43113)
    attestation_config = AttestationConfig.for_route(route)
"""

from dataclasses import dataclass, replace

from eth_typing import HexAddress

from bridgepay.cctp.constants import (
    CHAIN_ID_TO_CCTP_DOMAIN,
    CHAIN_NAMES,
    IRIS_API_BASE_URL,
    IRIS_API_SANDBOX_URL,
    MESSAGE_TRANSMITTER_V2,
    MESSAGE_TRANSMITTER_V2_TESTNET,
    TESTNET_CHAIN_IDS,
    TOKEN_MESSENGER_V2,
    TOKEN_MESSENGER_V2_TESTNET,
    USDC_NATIVE_TOKEN,
)


@dataclass(slots=True, frozen=True)
class CCTPChain:
    """One CCTP-enabled EVM chain and the contracts used on it."""

    #: EVM chain id
    chain_id: int

    #: Human readable name for logs
    name: str

    #: CCTP domain id (not the same as the chain id)
    domain: int

    #: Native USDC token
    usdc: HexAddress

    #: TokenMessengerV2, receives ``approve()`` allowance and ``depositForBurn()``
    token_messenger: HexAddress

    #: MessageTransmitterV2, receives ``receiveMessage()``
    message_transmitter: HexAddress

    #: Whether this chain uses the Iris sandbox
    testnet: bool = False

    #: Fixed gas limit. ``None`` estimates gas per transaction.
    gas_limit: int | None = None

    #: Seconds to wait for a transaction receipt
    confirmation_timeout: float = 180.0


@dataclass(slots=True, frozen=True)
class CCTPRoute:
    """Source and destination chain of a transfer."""

    source: CCTPChain

    destination: CCTPChain

    def __post_init__(self):
        assert self.source.chain_id != self.destination.chain_id, f"Source and destination are the same chain: {self.source.chain_id}"
        assert self.source.domain != self.destination.domain, f"Source and destination share CCTP domain {self.source.domain}"
        assert self.source.testnet == self.destination.testnet, "Cannot bridge between a testnet and a mainnet"

    @property
    def iris_api_url(self) -> str:
        """Iris endpoint matching the source chain network."""
        return IRIS_API_SANDBOX_URL if self.source.testnet else IRIS_API_BASE_URL

    def __str__(self) -> str:
        return f"{self.source.name} -> {self.destination.name}"


@dataclass(slots=True, frozen=True)
class AttestationConfig:
    """How to poll Circle's Iris API.

    Production defaults follow Circle's guidance: poll every 5 seconds,
    and after an HTTP 429 stay away for 5 minutes because Iris blocks the
    caller for that long anyway.

    Use :py:meth:`create_test_config` in tests.
    """

    #: CCTP domain of the chain where the burn happened
    source_domain: int

    #: Iris API base URL
    api_base_url: str = IRIS_API_BASE_URL

    #: Seconds between polls for "not found" and "pending" answers, and after transport errors
    poll_interval: float = 5.0

    #: Overall polling budget in seconds, including rate limit cooldowns.
    #:
    #: Standard transfers on Ethereum take 15-19 minutes to reach hard finality.
    max_wait: float = 1800.0

    #: Seconds to back off after HTTP 429
    rate_limit_cooldown: float = 300.0

    #: HTTP request timeout in seconds
    request_timeout: float = 30.0

    def __post_init__(self):
        assert self.poll_interval > 0, f"poll_interval must be positive: {self.poll_interval}"
        assert self.max_wait > 0, f"max_wait must be positive: {self.max_wait}"
        assert self.rate_limit_cooldown >= self.poll_interval, "Rate limit cooldown shorter than the poll interval"

    @classmethod
    def for_route(cls, route: CCTPRoute, **kwargs) -> "AttestationConfig":
        """Config for burns on ``route.source``, with the matching Iris endpoint."""
        kwargs.setdefault("api_base_url", route.iris_api_url)
        return cls(source_domain=route.source.domain, **kwargs)

    @classmethod
    def create_test_config(cls, source_domain: int = 0) -> "AttestationConfig":
        """Short intervals for fast test feedback."""
        return cls(
            source_domain=source_domain,
            poll_interval=0.01,
            max_wait=1.0,
            rate_limit_cooldown=0.6,
            request_timeout=1.0,
        )

    def with_overrides(self, **kwargs) -> "AttestationConfig":
        return replace(self, **kwargs)


def get_cctp_chain(chain_id: int, **kwargs) -> CCTPChain:
    """Build :py:class:`CCTPChain` for a known chain.

    :param chain_id:
        EVM chain id, e.g. ``11155111`` for Ethereum Sepolia.

    :param kwargs:
        Overrides for :py:class:`CCTPChain` fields, e.g. ``gas_limit``.

    :raises ValueError:
        If the chain is not CCTP-enabled.
    """
    domain = CHAIN_ID_TO_CCTP_DOMAIN.get(chain_id)
    if domain is None:
        raise ValueError(f"Chain {chain_id} is not CCTP-enabled")

    testnet = chain_id in TESTNET_CHAIN_IDS
    fields = dict(
        chain_id=chain_id,
        name=CHAIN_NAMES.get(chain_id, f"chain-{chain_id}"),
        domain=domain,
        usdc=USDC_NATIVE_TOKEN[chain_id],
        token_messenger=TOKEN_MESSENGER_V2_TESTNET if testnet else TOKEN_MESSENGER_V2,
        message_transmitter=MESSAGE_TRANSMITTER_V2_TESTNET if testnet else MESSAGE_TRANSMITTER_V2,
        testnet=testnet,
    )
    fields.update(kwargs)
    return CCTPChain(**fields)


def create_route(source_chain_id: int, destination_chain_id: int) -> CCTPRoute:
    """Build a :py:class:`CCTPRoute` between two known chains."""
    return CCTPRoute(
        source=get_cctp_chain(source_chain_id),
        destination=get_cctp_chain(destination_chain_id),
    )
