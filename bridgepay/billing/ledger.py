"""Payment instruction ledger.

The ledger owns every :py:class:`~bridgepay.billing.instruction.PaymentInstruction`
and is the idempotency gate for payments:

- :py:meth:`PaymentInstructionLedger.create` returns the existing record on
  re-entry instead of raising a second bill
- :py:meth:`PaymentInstructionLedger.mark_completed` tolerates duplicate
  completion signals
- :py:meth:`PaymentInstructionLedger.claim` lets only one transfer run per bill
  proceed at a time

Records are appended and updated, never deleted. Each read-modify-write is
serialised per bill id; distinct bills do not block each other.

.. note::

    :py:meth:`~PaymentInstructionLedger.claim` is process-local. When several
    processes share a :py:class:`~bridgepay.billing.store.JSONFileInstructionStore`,
    individual writes stay atomic, but run exclusivity needs all runs for a
    bill to go through the same process.
"""

import datetime
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field

from bridgepay.billing.errors import BillInProgress, DuplicateBillId, UnknownBillId
from bridgepay.billing.instruction import InstructionStatus, PaymentInstruction
from bridgepay.billing.store import InstructionStore, MemoryInstructionStore
from bridgepay.cctp.errors import InvalidAmount, InvalidRequest
from bridgepay.cctp.orchestrator import TransferResult
from bridgepay.cctp.transfer import is_valid_address

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _BillLock:
    lock: threading.RLock = field(default_factory=threading.RLock)

    #: Threads holding or waiting for :py:attr:`lock`
    users: int = 0


class PaymentInstructionLedger:
    """Create, look up and complete payment instructions keyed by bill id."""

    def __init__(self, store: InstructionStore | None = None):
        """
        :param store:
            Where records live. Defaults to an in-memory store.
        """
        self.store = store if store is not None else MemoryInstructionStore()
        self._locks: dict[str, _BillLock] = {}
        self._locks_guard = threading.Lock()
        self._claimed: set[str] = set()

    def __repr__(self) -> str:
        return f"<PaymentInstructionLedger store={self.store!r}>"

    @contextmanager
    def _bill_lock(self, bill_id: str):
        """Serialise read-modify-write of one bill.

        The lock lives only while someone holds or waits for it.
        """
        with self._locks_guard:
            entry = self._locks.get(bill_id)
            if entry is None:
                entry = self._locks[bill_id] = _BillLock()
            entry.users += 1

        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[bill_id]

    def _save(self, instruction: PaymentInstruction):
        self.store.save(instruction.to_bill_record())

    def get(self, bill_id: str) -> PaymentInstruction | None:
        """Look up an instruction.

        :return:
            The instruction, or ``None`` for an unknown bill id.
        """
        record = self.store.load(bill_id)
        if record is None:
            return None
        return PaymentInstruction.from_bill_record(record)

    def list_instructions(self, status: InstructionStatus | None = None) -> list[PaymentInstruction]:
        """All instructions, optionally only those with ``status``."""
        instructions = [PaymentInstruction.from_bill_record(r) for r in self.store.load_all()]
        if status is not None:
            instructions = [i for i in instructions if i.status == status]
        return instructions

    def create(
        self,
        bill_id: str,
        payer_address: str,
        payee_address: str,
        amount: int,
        token_ref: str = "USDC",
    ) -> PaymentInstruction:
        """Raise a payment instruction for a bill.

        Calling again with the same arguments while the bill is pending returns
        the stored instruction.

        :param amount:
            Raw USDC units.

        :raises InvalidAmount:
            Amount is not a positive integer.

        :raises InvalidRequest:
            Bill id empty, or an address is malformed.

        :raises DuplicateBillId:
            The bill is already completed, or pending with different terms.
        """
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise InvalidAmount(f"Bill amount must be a positive number of raw units, got {amount!r}")

        if not bill_id:
            raise InvalidRequest("Bill id is required")

        for name, address in (("payer", payer_address), ("payee", payee_address)):
            if not is_valid_address(address):
                raise InvalidRequest(f"Invalid {name} address: {address!r}")

        with self._bill_lock(bill_id):
            existing = self.get(bill_id)

            if existing is not None:
                if existing.status == InstructionStatus.completed:
                    raise DuplicateBillId(f"Bill {bill_id} is already paid", bill_id)

                if not existing.matches(payer_address, payee_address, amount, token_ref):
                    raise DuplicateBillId(f"Bill {bill_id} is pending with different payer, payee or amount", bill_id)

                logger.info("Bill %s already pending, returning the existing instruction", bill_id)
                return existing

            instruction = PaymentInstruction(
                bill_id=bill_id,
                payer_address=payer_address,
                payee_address=payee_address,
                amount=amount,
                created_at=datetime.datetime.now(datetime.timezone.utc),
                token_ref=token_ref,
            )
            self._save(instruction)
            logger.info("Created payment instruction for bill %s: %d raw %s from %s to %s", bill_id, amount, token_ref, payer_address, payee_address)
            return instruction

    def record_progress(self, bill_id: str, transfer_result: TransferResult) -> PaymentInstruction:
        """Attach an unfinished transfer result to a pending instruction.

        Keeps the burn transaction hash and attestation so the transfer can
        be resumed. A completed instruction is left as it is.

        :raises UnknownBillId:
            No such bill.
        """
        with self._bill_lock(bill_id):
            instruction = self.get(bill_id)
            if instruction is None:
                raise UnknownBillId(f"Unknown bill: {bill_id}", bill_id)

            if instruction.status == InstructionStatus.completed:
                logger.info("Bill %s already completed, ignoring progress update", bill_id)
                return instruction

            previous = instruction.transfer_result
            if (
                previous is not None
                and previous.burn_tx_hash
                and transfer_result.burn_tx_hash is None
                and transfer_result.reverted_burn_tx_hash != previous.burn_tx_hash
            ):
                # Never let a later result drop a known burn, unless that burn reverted
                logger.warning("Bill %s: refusing to overwrite burn %s with a result without a burn", bill_id, previous.burn_tx_hash)
                return instruction

            instruction.transfer_result = transfer_result
            self._save(instruction)
            return instruction

    def mark_completed(self, bill_id: str, transfer_result: TransferResult) -> PaymentInstruction:
        """Mark a bill paid.

        A repeated call with the same outcome is a no-op.

        :param transfer_result:
            Successful transfer result.

        :raises UnknownBillId:
            No such bill.

        :raises DuplicateBillId:
            Already completed by a different transfer.
        """
        if not transfer_result.success:
            raise ValueError(f"Cannot complete bill {bill_id} with a failed transfer: {transfer_result.error_kind}")

        with self._bill_lock(bill_id):
            instruction = self.get(bill_id)
            if instruction is None:
                raise UnknownBillId(f"Unknown bill: {bill_id}", bill_id)

            if instruction.status == InstructionStatus.completed:
                if instruction.transfer_result is not None and instruction.transfer_result.same_outcome(transfer_result):
                    logger.info("Bill %s already completed with mint %s", bill_id, transfer_result.mint_tx_hash)
                    return instruction
                raise DuplicateBillId(f"Bill {bill_id} was completed by a different transfer", bill_id)

            instruction.status = InstructionStatus.completed
            instruction.transfer_result = transfer_result
            self._save(instruction)
            logger.info("Bill %s completed: burn %s, mint %s", bill_id, transfer_result.burn_tx_hash, transfer_result.mint_tx_hash)
            return instruction

    @contextmanager
    def claim(self, bill_id: str):
        """Hold the bill for one transfer run.

        :raises BillInProgress:
            Another run holds the bill.
        """
        with self._locks_guard:
            if bill_id in self._claimed:
                raise BillInProgress(f"Bill {bill_id} has a transfer in progress", bill_id)
            self._claimed.add(bill_id)
        try:
            yield
        finally:
            with self._locks_guard:
                self._claimed.discard(bill_id)
