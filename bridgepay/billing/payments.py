"""Pay bills with CCTP transfers.

Two ways to raise a bill:

- :py:func:`record_pending_instruction`: write the payment instruction only.
  The payer settles it later.
- :py:func:`execute_transfer`: write the instruction and move the USDC now.

Calling :py:func:`execute_transfer` again for the same bill is safe:

- a completed bill returns its stored result, nothing is sent
- a bill whose earlier run burned but never minted is resumed from the burn
- a bill whose earlier run never burned starts over

Example::

    ledger = PaymentInstructionLedger(JSONFileInstructionStore("~/.bridgepay/bills.json"))
    result = execute_transfer(
        ledger,
        orchestrator,
        bill_id="BILL-1",
        credential_ref="payer",
        payee_address="0x...",
        amount_decimal="25.50",
    )
    assert result.success, result.error_message
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from decimal import Decimal

from eth_typing import HexAddress
from tqdm_loggable.auto import tqdm

from bridgepay.billing.instruction import InstructionStatus, PaymentInstruction
from bridgepay.billing.ledger import PaymentInstructionLedger
from bridgepay.cctp.amount import format_usdc, to_subunits
from bridgepay.cctp.constants import DEFAULT_MAX_FEE, FINALITY_THRESHOLD_FAST
from bridgepay.cctp.orchestrator import TransferOrchestrator, TransferRequest, TransferResult

logger = logging.getLogger(__name__)


def record_pending_instruction(
    ledger: PaymentInstructionLedger,
    bill_id: str,
    payer_address: HexAddress | str,
    payee_address: HexAddress | str,
    amount_decimal: Decimal | int | float | str,
) -> PaymentInstruction:
    """Raise a bill without paying it.

    :param amount_decimal:
        Human USDC amount, e.g. ``"25.50"``.

    :return:
        The pending instruction. If the same bill is already pending with the
        same terms, that instruction.

    :raises InvalidAmount:
        Amount not positive, or below one raw unit.
    """
    amount = to_subunits(amount_decimal)
    return ledger.create(bill_id, payer_address, payee_address, amount)


def execute_transfer(
    ledger: PaymentInstructionLedger,
    orchestrator: TransferOrchestrator,
    bill_id: str,
    credential_ref: str,
    payee_address: HexAddress | str,
    amount_decimal: Decimal | int | float | str,
    max_fee: int = DEFAULT_MAX_FEE,
    min_finality_threshold: int = FINALITY_THRESHOLD_FAST,
    cancel_event: threading.Event | None = None,
) -> TransferResult:
    """Raise a bill and pay it with a CCTP transfer.

    The outcome of every run is written to the ledger before returning, so a
    crash or a failed mint leaves the burn hash on record for the next call.

    :param credential_ref:
        Payer's credential, resolved by the orchestrator's ledger clients.
        The payer address on the bill is derived from it.

    :param amount_decimal:
        Human USDC amount, e.g. ``"25.50"``.

    :param cancel_event:
        Set to stop the transfer at its next suspension point.

    :return:
        Result of this run. Check ``success``; a failed result with
        ``resumable`` set is picked up by the next call for the same bill.

    :raises InvalidAmount:
        Before anything is written or sent.

    :raises DuplicateBillId:
        The bill id is taken by a different payer, payee or amount.

    :raises BillInProgress:
        Another run for this bill is going on right now.
    """
    amount = to_subunits(amount_decimal)

    with ledger.claim(bill_id):
        payer_address = orchestrator.source.derive_address(credential_ref)

        existing = ledger.get(bill_id)
        if existing is not None and existing.status == InstructionStatus.completed:
            if existing.matches(payer_address, payee_address, amount, existing.token_ref):
                logger.info("Bill %s is already paid, mint %s", bill_id, existing.transfer_result.mint_tx_hash)
                return existing.transfer_result

        instruction = ledger.create(bill_id, payer_address, payee_address, amount)

        request = TransferRequest(
            credential_ref=credential_ref,
            destination_address=payee_address,
            amount=amount,
            max_fee=max_fee,
            min_finality_threshold=min_finality_threshold,
        )

        previous = instruction.transfer_result
        if previous is not None and previous.resumable:
            logger.info("Bill %s: resuming earlier transfer, burn %s", bill_id, previous.burn_tx_hash)
            result = orchestrator.resume(request, previous, cancel_event)
        else:
            logger.info("Bill %s: paying %s to %s", bill_id, format_usdc(amount), payee_address)
            result = orchestrator.execute(request, cancel_event)

        if result.success:
            ledger.mark_completed(bill_id, result)
        else:
            ledger.record_progress(bill_id, result)
            logger.warning("Bill %s not paid: %s: %s", bill_id, result.error_kind.value, result.error_message)

        return result


@dataclass(slots=True, frozen=True)
class BillPayment:
    """One bill for :py:func:`execute_transfers_parallel`."""

    bill_id: str

    credential_ref: str

    payee_address: HexAddress

    #: Human USDC amount
    amount_decimal: Decimal | str

    max_fee: int = DEFAULT_MAX_FEE

    min_finality_threshold: int = FINALITY_THRESHOLD_FAST


def execute_transfers_parallel(
    ledger: PaymentInstructionLedger,
    orchestrator: TransferOrchestrator,
    payments: list[BillPayment],
    max_workers: int = 4,
    cancel_event: threading.Event | None = None,
    progress: bool = False,
) -> list[TransferResult]:
    """Pay several bills at once.

    Each bill runs :py:func:`execute_transfer` in its own worker thread.
    Most of a transfer's wall clock time goes to waiting for the attestation,
    so the bills overlap well.

    .. note::

        Bills paid from the same credential share one account nonce.
        :py:class:`~bridgepay.cctp.ledger_client.Web3LedgerClient` hands out
        nonces one sender at a time, so this is safe as long as all workers
        go through the same orchestrator and its ledger clients.

    :param payments:
        Bills to pay. Bill ids must be distinct.

    :param max_workers:
        Thread pool size.

    :param cancel_event:
        Shared by all transfers.

    :param progress:
        Show a ``tqdm`` progress bar.

    :return:
        Results in the order of ``payments``.

    :raises InvalidAmount:
        Raised from the worker of the offending bill after the rest finished.
    """
    bill_ids = [p.bill_id for p in payments]
    assert len(set(bill_ids)) == len(bill_ids), f"Duplicate bill ids in batch: {bill_ids}"

    if not payments:
        return []

    logger.info("Paying %d bills with %d workers", len(payments), max_workers)

    progress_bar = tqdm(
        total=len(payments),
        desc="Paying bills",
        unit="bill",
        disable=not progress,
    )
    lock = threading.Lock()
    failures = 0

    def _pay(payment: BillPayment) -> TransferResult:
        nonlocal failures
        threading.current_thread().name = f"bill-{payment.bill_id}"
        try:
            result = execute_transfer(
                ledger,
                orchestrator,
                bill_id=payment.bill_id,
                credential_ref=payment.credential_ref,
                payee_address=payment.payee_address,
                amount_decimal=payment.amount_decimal,
                max_fee=payment.max_fee,
                min_finality_threshold=payment.min_finality_threshold,
                cancel_event=cancel_event,
            )
        finally:
            with lock:
                progress_bar.update(1)
        if not result.success:
            with lock:
                failures += 1
                progress_bar.set_postfix_str(f"failed: {failures}")
        return result

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="bill") as executor:
        futures = {executor.submit(_pay, payment): idx for idx, payment in enumerate(payments)}

        indexed_results: dict[int, TransferResult] = {}
        errors: list[BaseException] = []
        for future in as_completed(futures):
            idx = futures[future]
            try:
                indexed_results[idx] = future.result()
            except Exception as e:
                logger.error("Bill %s raised: %s", payments[idx].bill_id, e)
                errors.append(e)

    progress_bar.close()

    if errors:
        raise errors[0]

    return [indexed_results[i] for i in range(len(payments))]
