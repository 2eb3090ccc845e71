"""Bills and their payment instructions.

- :class:`PaymentInstructionLedger`: idempotent create and complete, keyed by bill id
- :class:`JSONFileInstructionStore`, :class:`MemoryInstructionStore`: where bill records live
- :func:`execute_transfer`: raise a bill and pay it over CCTP
- :func:`record_pending_instruction`: raise a bill for the payer to settle later
- :func:`execute_transfers_parallel`: pay a batch of bills concurrently
"""

from bridgepay.billing.errors import BillingError, BillInProgress, DuplicateBillId, UnknownBillId
from bridgepay.billing.instruction import InstructionStatus, PaymentInstruction
from bridgepay.billing.ledger import PaymentInstructionLedger
from bridgepay.billing.payments import BillPayment, execute_transfer, execute_transfers_parallel, record_pending_instruction
from bridgepay.billing.store import InstructionStore, JSONFileInstructionStore, MemoryInstructionStore

__all__ = [
    "BillingError",
    "BillInProgress",
    "BillPayment",
    "DuplicateBillId",
    "InstructionStatus",
    "InstructionStore",
    "JSONFileInstructionStore",
    "MemoryInstructionStore",
    "PaymentInstruction",
    "PaymentInstructionLedger",
    "UnknownBillId",
    "execute_transfer",
    "execute_transfers_parallel",
    "record_pending_instruction",
]
