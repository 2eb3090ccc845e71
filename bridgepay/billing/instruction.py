"""Payment instruction and its persisted bill record.

A :py:class:`PaymentInstruction` is raised together with a bill and records
who pays whom how much. While a transfer is in flight the latest
:py:class:`~bridgepay.cctp.orchestrator.TransferResult` is attached, so a
burned but not yet minted transfer can be finished later.

The persisted form is the bill record consumed by the billing UI:

.. code-block:: json

    {
        "id": "BILL-1",
        "tokenRef": "USDC",
        "payerAddress": "0x...",
        "payeeAddress": "0x...",
        "amountDecimal": "25.500000",
        "amountSubunits": "25500000",
        "status": "completed",
        "createdAt": "2026-01-01T00:00:00+00:00",
        "paymentInstruction": {"...": "..."}
    }

Token amounts are always decimal strings. JSON numbers lose precision
above 2**53 in many readers.
"""

import datetime
import decimal
import enum
from dataclasses import dataclass

from eth_typing import HexAddress

from bridgepay.cctp.amount import to_decimal
from bridgepay.cctp.orchestrator import TransferResult


class InstructionStatus(enum.Enum):
    pending = "pending"
    completed = "completed"


@dataclass(slots=True)
class PaymentInstruction:
    """A bill's payment, tracked until USDC lands at the payee."""

    #: Caller supplied bill id, unique per payer/payee pair
    bill_id: str

    payer_address: HexAddress

    payee_address: HexAddress

    #: Raw USDC units
    amount: int

    created_at: datetime.datetime

    status: InstructionStatus = InstructionStatus.pending

    #: Latest transfer outcome. Unfinished while ``pending``, successful once ``completed``.
    transfer_result: TransferResult | None = None

    #: Which token the bill is denominated in
    token_ref: str = "USDC"

    @property
    def amount_decimal(self) -> decimal.Decimal:
        with decimal.localcontext() as ctx:
            ctx.prec = 100
            return to_decimal(self.amount)

    def matches(self, payer_address: str, payee_address: str, amount: int, token_ref: str) -> bool:
        """Same payer, payee, amount and token. Addresses compare case-insensitively."""
        return (
            self.payer_address.lower() == payer_address.lower()
            and self.payee_address.lower() == payee_address.lower()
            and self.amount == amount
            and self.token_ref == token_ref
        )

    def to_dict(self) -> dict:
        return {
            "billId": self.bill_id,
            "payerAddress": self.payer_address,
            "payeeAddress": self.payee_address,
            "amount": str(self.amount),
            "createdAt": self.created_at.isoformat(),
            "status": self.status.value,
            "transferResult": self.transfer_result.to_dict() if self.transfer_result else None,
        }

    def to_bill_record(self) -> dict:
        """Serialise as the JSON bill record."""
        return {
            "id": self.bill_id,
            "tokenRef": self.token_ref,
            "payerAddress": self.payer_address,
            "payeeAddress": self.payee_address,
            "amountDecimal": str(self.amount_decimal),
            "amountSubunits": str(self.amount),
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "paymentInstruction": self.to_dict(),
        }

    @classmethod
    def from_bill_record(cls, record: dict) -> "PaymentInstruction":
        instruction = record["paymentInstruction"]
        result = instruction.get("transferResult")
        return cls(
            bill_id=record["id"],
            payer_address=record["payerAddress"],
            payee_address=record["payeeAddress"],
            amount=int(record["amountSubunits"]),
            created_at=datetime.datetime.fromisoformat(record["createdAt"]),
            status=InstructionStatus(record["status"]),
            transfer_result=TransferResult.from_dict(result) if result else None,
            token_ref=record.get("tokenRef", "USDC"),
        )
