"""CCTP V2 transfer state machine.

Drives one USDC transfer from the payer's account on the source chain to a
recipient on the destination chain:

.. code-block:: text

    created -> approving -> burning -> awaiting_attestation -> minting -> completed
        \\          \\           \\               \\                \\
         +----------+-----------+---------------+----------------+--> failed

1. **approving**: ``USDC.approve(TokenMessengerV2, ceiling)`` on the source chain.
   The ceiling is larger than the transfer so later bills from the same payer
   skip this step's cost.
2. **burning**: ``depositForBurn()`` on the source chain. Once this confirms the
   value is gone from the source chain for good.
3. **awaiting_attestation**: poll Circle's Iris API for the signed message.
4. **minting**: ``receiveMessage()`` on the destination chain.

Burned but not credited
-----------------------

After the burn confirms nothing can be undone, only finished. Every failed
:py:class:`TransferResult` from that point on carries the burn transaction hash
(and the attestation once known) and :py:meth:`TransferOrchestrator.resume`
continues from there. No code path burns twice for one result.

A burn whose outcome is unknown (broadcast, not seen mined) is resumable too:
resume waits for it again. A burn that was mined but reverted moved nothing.
Its hash is moved to :py:attr:`TransferResult.reverted_burn_tx_hash` and the
transfer starts over on the next attempt.

Nothing is retried automatically. A failed approval or burn is handed back
to the caller, because sending again with a fresh nonce while the first
transaction may still land would approve or burn twice.

Cancellation
------------

Pass a :py:class:`threading.Event`. It is honoured only at suspension points,
never between signing and broadcasting. Before the burn confirms the result is
``cancelled``; afterwards it is ``paused`` and resumable.

Example::

    orchestrator = TransferOrchestrator(source_client, destination_client, poller)
    result = orchestrator.execute(
        TransferRequest(
            credential_ref="payer",
            destination_address="0x...",
            amount=25_500_000,
        )
    )
    if not result.success and result.resumable:
        result = orchestrator.resume(request, result)
"""

import datetime
import enum
import logging
import threading
from dataclasses import dataclass, field

from eth_typing import HexAddress

from bridgepay.cctp.amount import MAX_UINT256, format_usdc
from bridgepay.cctp.attestation import Attestation, AttestationPoller
from bridgepay.cctp.constants import (
    ANY_DESTINATION_CALLER,
    DEFAULT_APPROVAL_ALLOWANCE,
    DEFAULT_MAX_FEE,
    FINALITY_THRESHOLD_FAST,
)
from bridgepay.cctp.errors import (
    AttestationTimeout,
    InvalidRequest,
    InvalidStateTransition,
    TransactionReverted,
    TransferCancelled,
    TransferErrorKind,
)
from bridgepay.cctp.ledger_client import LedgerClient
from bridgepay.cctp.receive import prepare_receive_message
from bridgepay.cctp.transfer import FINALITY_THRESHOLDS, is_valid_address, prepare_approve_for_burn, prepare_deposit_for_burn

logger = logging.getLogger(__name__)


class TransferState(enum.Enum):
    """Where a transfer is in its lifecycle."""

    created = "created"
    approving = "approving"
    burning = "burning"
    awaiting_attestation = "awaiting_attestation"
    minting = "minting"

    #: Terminal success
    completed = "completed"

    #: Terminal failure, see :py:class:`~bridgepay.cctp.errors.TransferErrorKind`
    failed = "failed"


#: Legal moves. ``failed`` is reachable from every non-terminal state.
ALLOWED_TRANSITIONS: dict[TransferState, frozenset[TransferState]] = {
    TransferState.created: frozenset({TransferState.approving, TransferState.failed}),
    TransferState.approving: frozenset({TransferState.burning, TransferState.failed}),
    TransferState.burning: frozenset({TransferState.awaiting_attestation, TransferState.failed}),
    TransferState.awaiting_attestation: frozenset({TransferState.minting, TransferState.failed}),
    TransferState.minting: frozenset({TransferState.completed, TransferState.failed}),
    TransferState.completed: frozenset(),
    TransferState.failed: frozenset(),
}


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(slots=True)
class TransferRequest:
    """What to move and where."""

    #: Opaque reference to the payer's signing credential, resolved by the ledger clients
    credential_ref: str

    #: Recipient on the destination chain
    destination_address: HexAddress

    #: Raw USDC units, e.g. ``25_500_000`` for 25.50 USDC
    amount: int

    #: Maximum relay fee in raw USDC units
    max_fee: int = DEFAULT_MAX_FEE

    #: ``1000`` Fast Transfer, ``2000`` Standard Transfer
    min_finality_threshold: int = FINALITY_THRESHOLD_FAST

    #: Who may call ``receiveMessage()``. All zeroes means anyone.
    destination_caller: bytes = ANY_DESTINATION_CALLER

    def validate(self):
        """Check the request invariants.

        :raises InvalidRequest:
            On the first violated invariant.
        """
        if not self.credential_ref:
            raise InvalidRequest("Credential reference is required")

        if not is_valid_address(self.destination_address):
            raise InvalidRequest(f"Invalid destination address: {self.destination_address!r}")

        if not isinstance(self.amount, int) or isinstance(self.amount, bool):
            raise InvalidRequest(f"Amount must be an integer of raw units, got {self.amount!r}")

        if not 0 < self.amount <= MAX_UINT256:
            raise InvalidRequest(f"Amount must be between 1 and 2**256 - 1, got {self.amount}")

        if not 0 <= self.max_fee < self.amount:
            raise InvalidRequest(f"max_fee {self.max_fee} must be non-negative and below amount {self.amount}")

        if self.min_finality_threshold not in FINALITY_THRESHOLDS:
            raise InvalidRequest(f"Unknown finality threshold: {self.min_finality_threshold}")

        if len(self.destination_caller) != 32:
            raise InvalidRequest("destination_caller must be 32 bytes")


@dataclass(slots=True, frozen=True)
class TransferEvent:
    """One entry of the audit trail."""

    label: str

    timestamp: datetime.datetime

    def to_dict(self) -> dict:
        return {"label": self.label, "timestamp": self.timestamp.isoformat()}

    @classmethod
    def from_dict(cls, data: dict) -> "TransferEvent":
        return cls(label=data["label"], timestamp=datetime.datetime.fromisoformat(data["timestamp"]))


@dataclass(slots=True)
class TransferResult:
    """Outcome of a transfer run.

    Either ``success`` with :py:attr:`mint_tx_hash` set, or a failure with
    :py:attr:`error_kind` set. Never both.
    """

    success: bool

    #: Allowance transaction, if one was sent
    approval_tx_hash: str | None = None

    #: Burn transaction, once broadcast. Cleared if the burn reverted.
    burn_tx_hash: str | None = None

    #: Burn transaction that was mined but reverted, nothing was burned
    reverted_burn_tx_hash: str | None = None

    #: Whether the burn is known to be mined successfully
    burn_confirmed: bool = False

    #: Complete attestation, once received
    attestation: Attestation | None = None

    #: Mint transaction, once broadcast
    mint_tx_hash: str | None = None

    error_kind: TransferErrorKind | None = None

    #: Human readable failure cause
    error_message: str | None = None

    #: Last step that is known to have finished, e.g. ``burning`` once the burn
    #: is mined. ``created`` when nothing went through, ``completed`` on success.
    last_confirmed_state: TransferState | None = None

    #: Audit trail, oldest first
    events: list[TransferEvent] = field(default_factory=list)

    def __post_init__(self):
        if self.success:
            assert self.mint_tx_hash is not None and self.error_kind is None, "Successful transfer needs a mint and no error"
        else:
            assert self.error_kind is not None, "Failed transfer needs an error kind"

    @property
    def resumable(self) -> bool:
        """Failed with a burn that is confirmed or still unresolved.

        Finish it with :py:meth:`TransferOrchestrator.resume`, never burn again.
        A reverted burn leaves :py:attr:`burn_tx_hash` unset, so it is not resumable.
        """
        return not self.success and self.burn_tx_hash is not None

    def same_outcome(self, other: "TransferResult") -> bool:
        """Compare the on-chain facts, ignoring audit timestamps."""
        return (
            self.success == other.success
            and self.approval_tx_hash == other.approval_tx_hash
            and self.burn_tx_hash == other.burn_tx_hash
            and self.mint_tx_hash == other.mint_tx_hash
            and self.error_kind == other.error_kind
        )

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "approvalTx": self.approval_tx_hash,
            "burnTx": self.burn_tx_hash,
            "burnConfirmed": self.burn_confirmed,
            "revertedBurnTx": self.reverted_burn_tx_hash,
            "attestation": self.attestation.to_dict() if self.attestation else None,
            "mintTx": self.mint_tx_hash,
            "errorKind": self.error_kind.value if self.error_kind else None,
            "error": self.error_message,
            "lastConfirmedState": self.last_confirmed_state.value if self.last_confirmed_state else None,
            "events": [e.to_dict() for e in self.events],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TransferResult":
        return cls(
            success=data["success"],
            approval_tx_hash=data.get("approvalTx"),
            burn_tx_hash=data.get("burnTx"),
            burn_confirmed=data.get("burnConfirmed", False),
            reverted_burn_tx_hash=data.get("revertedBurnTx"),
            attestation=Attestation.from_dict(data["attestation"]) if data.get("attestation") else None,
            mint_tx_hash=data.get("mintTx"),
            error_kind=TransferErrorKind(data["errorKind"]) if data.get("errorKind") else None,
            error_message=data.get("error"),
            last_confirmed_state=TransferState(data["lastConfirmedState"]) if data.get("lastConfirmedState") else None,
            events=[TransferEvent.from_dict(e) for e in data.get("events", [])],
        )


class TransferRun:
    """Mutable state of one orchestrator run.

    Internal to :py:class:`TransferOrchestrator`; callers see the
    :py:class:`TransferResult` it produces.
    """

    def __init__(self, request: TransferRequest, previous: TransferResult | None = None):
        self.request = request
        self.state = TransferState.created
        self.approval_tx_hash: str | None = None
        self.burn_tx_hash: str | None = None
        self.burn_confirmed = False
        self.reverted_burn_tx_hash: str | None = None
        self.attestation: Attestation | None = None
        self.mint_tx_hash: str | None = None
        self.events: list[TransferEvent] = []
        self.last_confirmed = TransferState.created

        if previous is not None:
            self.approval_tx_hash = previous.approval_tx_hash
            self.burn_tx_hash = previous.burn_tx_hash
            self.burn_confirmed = previous.burn_confirmed
            self.reverted_burn_tx_hash = previous.reverted_burn_tx_hash
            self.attestation = previous.attestation if previous.attestation and previous.attestation.is_complete else None
            self.mint_tx_hash = previous.mint_tx_hash
            self.events = list(previous.events)
            if previous.last_confirmed_state is not None:
                self.last_confirmed = previous.last_confirmed_state
            self.record("resumed")

    def confirmed(self, state: TransferState):
        """The on-chain or off-chain work of ``state`` is done."""
        self.last_confirmed = state

    def burn_reverted(self):
        """Forget a burn that was mined but failed, so the transfer can start over."""
        self.reverted_burn_tx_hash = self.burn_tx_hash
        self.burn_tx_hash = None
        self.burn_confirmed = False

    def record(self, label: str):
        self.events.append(TransferEvent(label=label, timestamp=_now()))

    def transition(self, new_state: TransferState):
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidStateTransition(self.state, new_state)
        logger.info("Transfer %s -> %s", self.state.value, new_state.value)
        self.state = new_state
        self.record(new_state.value)

    def enter(self, state: TransferState):
        """Walk forward through the intermediate states to ``state``.

        Used when resuming: the audit trail still shows every step taken.
        """
        order = list(ALLOWED_TRANSITIONS)
        while self.state != state:
            self.transition(order[order.index(self.state) + 1])

    def _result(self, success: bool, error_kind=None, error_message=None) -> TransferResult:
        return TransferResult(
            success=success,
            approval_tx_hash=self.approval_tx_hash,
            burn_tx_hash=self.burn_tx_hash,
            burn_confirmed=self.burn_confirmed,
            reverted_burn_tx_hash=self.reverted_burn_tx_hash,
            attestation=self.attestation,
            mint_tx_hash=self.mint_tx_hash,
            error_kind=error_kind,
            error_message=error_message,
            last_confirmed_state=self.last_confirmed,
            events=list(self.events),
        )

    def succeed(self) -> TransferResult:
        self.transition(TransferState.completed)
        self.confirmed(TransferState.completed)
        return self._result(True)

    def fail(self, error_kind: TransferErrorKind, error_message: str) -> TransferResult:
        failed_in = self.state
        self.transition(TransferState.failed)
        logger.warning(
            "Transfer failed in %s, last confirmed %s: %s: %s",
            failed_in.value,
            self.last_confirmed.value,
            error_kind.value,
            error_message,
        )
        return self._result(False, error_kind=error_kind, error_message=error_message)


class TransferOrchestrator:
    """Runs :py:class:`TransferRequest` through approve, burn, attest and mint.

    Holds no state between runs; every collaborator is passed in, so
    one orchestrator can serve many concurrent transfers on different bills.
    """

    def __init__(
        self,
        source: LedgerClient,
        destination: LedgerClient,
        poller: AttestationPoller,
        approval_allowance: int = DEFAULT_APPROVAL_ALLOWANCE,
    ):
        """
        :param source:
            Client for the chain where USDC is burned.

        :param destination:
            Client for the chain where USDC is minted.

        :param poller:
            Attestation poller configured for the source chain domain.

        :param approval_allowance:
            Allowance ceiling granted to TokenMessengerV2. A transfer larger
            than this gets an allowance of exactly its amount.
        """
        assert source.chain.domain == poller.config.source_domain, f"Poller watches domain {poller.config.source_domain}, source chain is domain {source.chain.domain}"
        assert source.chain.chain_id != destination.chain.chain_id, "Source and destination clients point to the same chain"
        self.source = source
        self.destination = destination
        self.poller = poller
        self.approval_allowance = approval_allowance

    def __repr__(self) -> str:
        return f"<TransferOrchestrator {self.source.chain.name} -> {self.destination.chain.name}>"

    def execute(self, request: TransferRequest, cancel_event: threading.Event | None = None) -> TransferResult:
        """Run a new transfer from the beginning.

        Never raises for chain or network problems; inspect the result.

        :param request:
            Transfer to make.

        :param cancel_event:
            Set to stop at the next suspension point.
        """
        run = TransferRun(request)
        run.record(TransferState.created.value)

        try:
            request.validate()
        except InvalidRequest as e:
            return run.fail(TransferErrorKind.invalid_request, str(e))

        logger.info(
            "Starting CCTP transfer %s -> %s: %s to %s",
            self.source.chain.name,
            self.destination.chain.name,
            format_usdc(request.amount),
            request.destination_address,
        )

        if self._cancelled(cancel_event):
            return run.fail(TransferErrorKind.cancelled, "Cancelled before approval")

        run.transition(TransferState.approving)
        failed = self._approve(run)
        if failed:
            return failed

        if self._cancelled(cancel_event):
            return run.fail(TransferErrorKind.cancelled, "Cancelled after approval, nothing burned")

        run.transition(TransferState.burning)
        failed = self._burn(run)
        if failed:
            return failed

        return self._finish_after_burn(run, cancel_event)

    def resume(self, request: TransferRequest, previous: TransferResult, cancel_event: threading.Event | None = None) -> TransferResult:
        """Continue a transfer from a previous result.

        - Successful result: returned unchanged
        - No burn broadcast: same as :py:meth:`execute`
        - Burn broadcast but not known to be mined: confirm it first, never burn again.
          If it turns out to have reverted the result is no longer resumable and
          the next :py:meth:`execute` starts over.
        - Burn confirmed: poll for the attestation
        - Attestation known: go straight to minting

        :param request:
            The original request.

        :param previous:
            Result of the earlier run.
        """
        if previous.success:
            return previous

        if previous.burn_tx_hash is None:
            logger.info("Previous run never burned, starting over")
            return self.execute(request, cancel_event)

        run = TransferRun(request, previous=previous)

        try:
            request.validate()
        except InvalidRequest as e:
            return run.fail(TransferErrorKind.invalid_request, str(e))

        logger.info("Resuming CCTP transfer from burn %s", previous.burn_tx_hash)

        if not run.burn_confirmed:
            run.enter(TransferState.burning)
            try:
                self.source.wait_for_confirmation(run.burn_tx_hash)
            except TransactionReverted as e:
                logger.warning("Earlier burn %s reverted, nothing was burned", run.burn_tx_hash)
                run.burn_reverted()
                return run.fail(TransferErrorKind.burn_failed, f"Earlier burn reverted, nothing was burned: {e}")
            except Exception as e:
                logger.warning("Could not confirm earlier burn %s: %s", run.burn_tx_hash, e)
                return run.fail(TransferErrorKind.burn_failed, f"Earlier burn {run.burn_tx_hash} is not confirmed: {e}")
            run.burn_confirmed = True
            run.confirmed(TransferState.burning)
        else:
            run.enter(TransferState.burning)

        return self._finish_after_burn(run, cancel_event)

    def _finish_after_burn(self, run: TransferRun, cancel_event: threading.Event | None) -> TransferResult:
        assert run.burn_confirmed, "Attestation stage needs a confirmed burn"

        run.transition(TransferState.awaiting_attestation)

        if run.attestation is None:
            if self._cancelled(cancel_event):
                return run.fail(TransferErrorKind.paused, "Paused after burn, resume to mint")

            failed = self._await_attestation(run, cancel_event)
            if failed:
                return failed

        if self._cancelled(cancel_event):
            return run.fail(TransferErrorKind.paused, "Paused with attestation in hand, resume to mint")

        run.transition(TransferState.minting)
        failed = self._mint(run)
        if failed:
            return failed

        logger.info("CCTP transfer complete: burn %s, mint %s", run.burn_tx_hash, run.mint_tx_hash)
        return run.succeed()

    @staticmethod
    def _cancelled(cancel_event: threading.Event | None) -> bool:
        return cancel_event is not None and cancel_event.is_set()

    def _approve(self, run: TransferRun) -> TransferResult | None:
        request = run.request
        chain = self.source.chain
        allowance = max(self.approval_allowance, request.amount)
        try:
            data = prepare_approve_for_burn(chain, allowance)
            run.approval_tx_hash = self.source.send_transaction(request.credential_ref, chain.usdc, data)
            self.source.wait_for_confirmation(run.approval_tx_hash)
        except Exception as e:
            logger.exception("USDC approval failed on %s", chain.name)
            return run.fail(TransferErrorKind.approval_failed, str(e) or type(e).__name__)

        run.confirmed(TransferState.approving)
        logger.info("USDC allowance %s for TokenMessengerV2 confirmed: %s", format_usdc(allowance), run.approval_tx_hash)
        return None

    def _burn(self, run: TransferRun) -> TransferResult | None:
        request = run.request
        chain = self.source.chain
        try:
            data = prepare_deposit_for_burn(
                chain,
                amount=request.amount,
                destination_domain=self.destination.chain.domain,
                mint_recipient=request.destination_address,
                max_fee=request.max_fee,
                min_finality_threshold=request.min_finality_threshold,
                destination_caller=request.destination_caller,
            )
            run.burn_tx_hash = self.source.send_transaction(request.credential_ref, chain.token_messenger, data)
            self.source.wait_for_confirmation(run.burn_tx_hash)
        except TransactionReverted as e:
            logger.warning("CCTP burn %s reverted on %s, nothing was burned", run.burn_tx_hash, chain.name)
            run.burn_reverted()
            return run.fail(TransferErrorKind.burn_failed, str(e))
        except Exception as e:
            logger.exception("CCTP burn failed on %s", chain.name)
            return run.fail(TransferErrorKind.burn_failed, str(e) or type(e).__name__)

        run.burn_confirmed = True
        run.confirmed(TransferState.burning)
        logger.info("CCTP burn confirmed on %s: %s", chain.name, run.burn_tx_hash)
        return None

    def _await_attestation(self, run: TransferRun, cancel_event: threading.Event | None) -> TransferResult | None:
        should_stop = cancel_event.is_set if cancel_event is not None else None
        try:
            attestation = self.poller.poll(run.burn_tx_hash, should_stop=should_stop)
        except TransferCancelled as e:
            return run.fail(TransferErrorKind.paused, str(e))
        except AttestationTimeout as e:
            return run.fail(TransferErrorKind.attestation_timeout, str(e))
        except Exception as e:
            logger.exception("Attestation polling crashed for burn %s", run.burn_tx_hash)
            return run.fail(TransferErrorKind.attestation_timeout, str(e) or type(e).__name__)

        assert attestation.is_complete, f"Poller returned an incomplete attestation: {attestation.status}"
        run.attestation = attestation
        run.confirmed(TransferState.awaiting_attestation)
        return None

    def _mint(self, run: TransferRun) -> TransferResult | None:
        request = run.request
        chain = self.destination.chain

        # A mint broadcast by an earlier run may have landed after all
        if run.mint_tx_hash is not None:
            try:
                self.destination.wait_for_confirmation(run.mint_tx_hash)
            except Exception as e:
                logger.info("Earlier mint %s did not confirm (%s), sending receiveMessage again", run.mint_tx_hash, e)
            else:
                run.confirmed(TransferState.minting)
                return None

        try:
            data = prepare_receive_message(run.attestation.message, run.attestation.attestation)
            run.mint_tx_hash = self.destination.send_transaction(request.credential_ref, chain.message_transmitter, data)
            self.destination.wait_for_confirmation(run.mint_tx_hash)
        except Exception as e:
            logger.exception("CCTP receiveMessage failed on %s", chain.name)
            return run.fail(TransferErrorKind.mint_failed, str(e) or type(e).__name__)

        run.confirmed(TransferState.minting)
        logger.info("CCTP mint confirmed on %s: %s", chain.name, run.mint_tx_hash)
        return None
