"""Pay a bill with a CCTP V2 USDC transfer.

Raises the payment instruction in the bill ledger, burns USDC on the source
chain, waits for Circle's attestation and mints on the destination chain.
Running the script again for the same bill is safe: a paid bill is reported
as is and a half-finished one is resumed from its burn.

Environment variables
---------------------
- ``PRIVATE_KEY``: payer's private key (required). Pays gas on both chains.
- ``JSON_RPC_SOURCE``: RPC URL of the source chain (required).
- ``JSON_RPC_DESTINATION``: RPC URL of the destination chain (required).
- ``BILL_ID``: bill id (required).
- ``PAYEE``: recipient address on the destination chain (required).
- ``AMOUNT``: USDC amount, e.g. ``25.50`` (required).
- ``LEDGER_FILE``: bill ledger JSON file (default: ``~/.bridgepay/bills.json``).
- ``PENDING_ONLY``: ``true`` to only record the bill without paying.
- ``STANDARD_TRANSFER``: ``true`` for Standard Transfer (hard finality, no fee)
  instead of Fast Transfer.
- ``MAX_WAIT``: attestation polling budget in seconds (default: 1800).
- ``LOG_LEVEL``: logging level (default: ``info``).

Usage::

    PRIVATE_KEY=0x... \\
    JSON_RPC_SOURCE=$JSON_RPC_SEPOLIA \\
    JSON_RPC_DESTINATION=$JSON_RPC_FUJI \\
    BILL_ID=BILL-1 PAYEE=0x... AMOUNT=25.50 \\
    python scripts/cctp/pay-bill.py
"""

import logging
import os
import signal
import threading
from pathlib import Path

from eth_account import Account
from web3 import HTTPProvider, Web3

from bridgepay.billing import JSONFileInstructionStore, PaymentInstructionLedger, execute_transfer, record_pending_instruction
from bridgepay.cctp.attestation import AttestationPoller
from bridgepay.cctp.config import AttestationConfig, CCTPRoute, get_cctp_chain
from bridgepay.cctp.constants import DEFAULT_MAX_FEE, FINALITY_THRESHOLD_FAST, FINALITY_THRESHOLD_STANDARD
from bridgepay.cctp.ledger_client import LocalAccountResolver, Web3LedgerClient
from bridgepay.cctp.orchestrator import TransferOrchestrator
from bridgepay.utils import setup_console_logging

logger = logging.getLogger(__name__)


def main():
    log_level = os.environ.get("LOG_LEVEL", "info")
    setup_console_logging(default_log_level=log_level)

    private_key = os.environ.get("PRIVATE_KEY")
    assert private_key, "PRIVATE_KEY environment variable required"

    source_rpc = os.environ.get("JSON_RPC_SOURCE")
    assert source_rpc, "JSON_RPC_SOURCE environment variable required"

    destination_rpc = os.environ.get("JSON_RPC_DESTINATION")
    assert destination_rpc, "JSON_RPC_DESTINATION environment variable required"

    bill_id = os.environ.get("BILL_ID")
    assert bill_id, "BILL_ID environment variable required"

    payee = os.environ.get("PAYEE")
    assert payee, "PAYEE environment variable required"

    amount = os.environ.get("AMOUNT")
    assert amount, "AMOUNT environment variable required"

    ledger_file = Path(os.environ.get("LEDGER_FILE", "~/.bridgepay/bills.json")).expanduser()
    pending_only = os.environ.get("PENDING_ONLY", "false").lower() == "true"
    standard = os.environ.get("STANDARD_TRANSFER", "false").lower() == "true"
    max_wait = float(os.environ.get("MAX_WAIT", "1800"))

    account = Account.from_key(private_key)
    ledger = PaymentInstructionLedger(JSONFileInstructionStore(ledger_file))

    if pending_only:
        instruction = record_pending_instruction(ledger, bill_id, account.address, payee, amount)
        print(f"Bill {bill_id} recorded as {instruction.status.value}, {instruction.amount_decimal} USDC to {payee}")
        return

    source_web3 = Web3(HTTPProvider(source_rpc))
    destination_web3 = Web3(HTTPProvider(destination_rpc))
    route = CCTPRoute(
        source=get_cctp_chain(source_web3.eth.chain_id),
        destination=get_cctp_chain(destination_web3.eth.chain_id),
    )

    resolver = LocalAccountResolver({"payer": account})
    orchestrator = TransferOrchestrator(
        Web3LedgerClient(source_web3, route.source, resolver),
        Web3LedgerClient(destination_web3, route.destination, resolver),
        AttestationPoller(AttestationConfig.for_route(route, max_wait=max_wait)),
    )

    print(f"Bill: {bill_id}")
    print(f"Route: {route}")
    print(f"Payer: {account.address}")
    print(f"Payee: {payee}")
    print(f"Amount: {amount} USDC")
    print(f"Ledger: {ledger_file}")

    # Ctrl+C stops at the next safe point instead of killing a half-sent transaction
    cancel = threading.Event()
    signal.signal(signal.SIGINT, lambda signum, frame: cancel.set())

    result = execute_transfer(
        ledger,
        orchestrator,
        bill_id=bill_id,
        credential_ref="payer",
        payee_address=payee,
        amount_decimal=amount,
        max_fee=0 if standard else DEFAULT_MAX_FEE,
        min_finality_threshold=FINALITY_THRESHOLD_STANDARD if standard else FINALITY_THRESHOLD_FAST,
        cancel_event=cancel,
    )

    print(f"\nApproval tx: {result.approval_tx_hash or '-'}")
    print(f"Burn tx: {result.burn_tx_hash or '-'}")
    print(f"Mint tx: {result.mint_tx_hash or '-'}")

    if result.success:
        print(f"\nBill {bill_id} paid")
    elif result.resumable:
        print(f"\nBill {bill_id} not paid yet ({result.error_kind.value}): {result.error_message}")
        print("USDC is burned on the source chain. Run the script again to finish the transfer.")
    else:
        print(f"\nBill {bill_id} failed ({result.error_kind.value}): {result.error_message}")


if __name__ == "__main__":
    main()
