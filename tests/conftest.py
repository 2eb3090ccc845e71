"""Shared fixtures.

No test talks to a chain or to Circle. Chains are replaced with
:py:class:`~tests.fakes.FakeLedgerClient`, the Iris API with
:py:class:`~tests.fakes.FakeSession` and wall clock time with
:py:class:`~tests.fakes.FakeClock`.
"""

import pytest

from bridgepay.billing.ledger import PaymentInstructionLedger
from bridgepay.cctp.attestation import AttestationPoller
from bridgepay.cctp.config import AttestationConfig, get_cctp_chain
from bridgepay.cctp.orchestrator import TransferOrchestrator
from tests.fakes import PAYER, FakeClock, FakeLedgerClient, FakeSession, iris_complete


@pytest.fixture()
def source_chain():
    """Ethereum Sepolia, CCTP domain 0."""
    return get_cctp_chain(11155111)


@pytest.fixture()
def destination_chain():
    """Avalanche Fuji, CCTP domain 1."""
    return get_cctp_chain(43113)


@pytest.fixture()
def source(source_chain) -> FakeLedgerClient:
    return FakeLedgerClient(source_chain, {"payer": PAYER})


@pytest.fixture()
def destination(destination_chain) -> FakeLedgerClient:
    return FakeLedgerClient(destination_chain, {"payer": PAYER})


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def iris_session() -> FakeSession:
    """Iris answering "complete" straight away. Replace ``responses`` to script other answers."""
    return FakeSession([iris_complete()])


@pytest.fixture()
def poller(source_chain, iris_session, fake_clock) -> AttestationPoller:
    return AttestationPoller(
        AttestationConfig.create_test_config(source_domain=source_chain.domain),
        session=iris_session,
        clock=fake_clock.clock,
        sleep=fake_clock.sleep,
    )


@pytest.fixture()
def orchestrator(source, destination, poller) -> TransferOrchestrator:
    return TransferOrchestrator(source, destination, poller)


@pytest.fixture()
def ledger() -> PaymentInstructionLedger:
    return PaymentInstructionLedger()
