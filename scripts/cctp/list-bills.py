"""List bills and their payment state from a bill ledger file.

Environment variables
---------------------
- ``LEDGER_FILE``: bill ledger JSON file (default: ``~/.bridgepay/bills.json``).
- ``STATUS``: ``pending`` or ``completed`` to filter.
- ``LOG_LEVEL``: logging level (default: ``warning``).

Usage::

    STATUS=pending python scripts/cctp/list-bills.py
"""

import logging
import os
from pathlib import Path

from tabulate import tabulate

from bridgepay.billing import InstructionStatus, JSONFileInstructionStore, PaymentInstructionLedger
from bridgepay.utils import setup_console_logging

logger = logging.getLogger(__name__)


def main():
    setup_console_logging(default_log_level=os.environ.get("LOG_LEVEL", "warning"))

    ledger_file = Path(os.environ.get("LEDGER_FILE", "~/.bridgepay/bills.json")).expanduser()
    status = os.environ.get("STATUS")
    assert status in (None, "pending", "completed"), f"STATUS must be 'pending' or 'completed', got '{status}'"

    ledger = PaymentInstructionLedger(JSONFileInstructionStore(ledger_file))
    instructions = ledger.list_instructions(InstructionStatus(status) if status else None)

    print(f"Ledger: {ledger_file}")

    if not instructions:
        print("No bills")
        return

    rows = []
    for i in instructions:
        result = i.transfer_result
        rows.append(
            [
                i.bill_id,
                i.created_at.strftime("%Y-%m-%d %H:%M"),
                i.payee_address,
                f"{i.amount_decimal:,.2f}",
                i.status.value,
                result.error_kind.value if result and result.error_kind else "-",
                "yes" if result and result.resumable else "-",
                result.burn_tx_hash if result and result.burn_tx_hash else "-",
            ]
        )

    print(tabulate(rows, headers=["Bill", "Created", "Payee", "USDC", "Status", "Last error", "Resumable", "Burn tx"], tablefmt="simple"))


if __name__ == "__main__":
    main()
