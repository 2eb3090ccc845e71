"""Error taxonomy for CCTP transfers.

Exceptions are raised inside the transfer machinery and converted to a
:py:class:`TransferErrorKind` on the :py:class:`~bridgepay.cctp.orchestrator.TransferResult`
before they reach the caller. Only :py:class:`InvalidAmount` and friends escape
directly, because they are raised before any network contact.
"""

import enum


class TransferErrorKind(enum.Enum):
    """Why a transfer ended in the ``failed`` state."""

    #: Request failed validation, nothing was sent to any chain
    invalid_request = "invalid_request"

    #: USDC ``approve()`` was not confirmed on the source chain
    approval_failed = "approval_failed"

    #: ``depositForBurn()`` was not confirmed on the source chain
    burn_failed = "burn_failed"

    #: Iris did not produce a complete attestation within the polling budget.
    #:
    #: The burn is final, resume from the stored burn transaction hash.
    attestation_timeout = "attestation_timeout"

    #: ``receiveMessage()`` was not confirmed on the destination chain.
    #:
    #: Resume from the stored attestation.
    mint_failed = "mint_failed"

    #: Cancelled before any value left the source chain
    cancelled = "cancelled"

    #: Cancelled after the burn confirmed. The transfer is parked, not abandoned.
    paused = "paused"


class InvalidAmount(ValueError):
    """Amount is zero, negative, not finite or not a number at all."""


class AmountPrecisionError(ValueError):
    """Raw amount has more digits than the decimal context can represent exactly."""


class InvalidRequest(ValueError):
    """Transfer request does not satisfy its invariants."""


class TransactionReverted(Exception):
    """A transaction was mined but its receipt status is not success."""

    def __init__(self, tx_hash: str, receipt: dict | None = None):
        super().__init__(f"Transaction reverted: {tx_hash}")
        self.tx_hash = tx_hash
        self.receipt = receipt


class AttestationTimeout(TimeoutError):
    """Iris attestation was not complete before the polling deadline."""

    def __init__(self, message: str, transaction_hash: str, attempts: int):
        super().__init__(message)
        self.transaction_hash = transaction_hash
        self.attempts = attempts


class TransferCancelled(Exception):
    """The caller asked the transfer to stop while it was waiting."""


class InvalidStateTransition(Exception):
    """The transfer state machine was asked to make an illegal move."""

    def __init__(self, current_state, attempted_state):
        super().__init__(f"Invalid transfer state transition: {current_state.value} -> {attempted_state.value}")
        self.current_state = current_state
        self.attempted_state = attempted_state
