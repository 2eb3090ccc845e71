"""Payment instruction ledger errors."""


class BillingError(Exception):
    """Base for ledger contract violations."""

    def __init__(self, message: str, bill_id: str):
        super().__init__(message)
        self.bill_id = bill_id


class DuplicateBillId(BillingError):
    """Bill id already used for a completed, or a different, instruction."""


class UnknownBillId(BillingError):
    """No instruction with this bill id."""


class BillInProgress(BillingError):
    """Another transfer run holds this bill."""
