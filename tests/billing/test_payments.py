"""Paying bills end to end, with fake chains and a fake Iris."""

import threading
from decimal import Decimal

import pytest

from bridgepay.billing.errors import BillInProgress, DuplicateBillId
from bridgepay.billing.instruction import InstructionStatus
from bridgepay.billing.payments import BillPayment, execute_transfer, execute_transfers_parallel, record_pending_instruction
from bridgepay.cctp.errors import InvalidAmount, TransactionReverted, TransferErrorKind
from tests.fakes import PAYEE, PAYER, iris_complete, iris_not_found, iris_pending

OTHER_PAYEE = "0x3333333333333333333333333333333333333333"


def test_pay_bill(ledger, orchestrator, source, destination, iris_session):
    """BILL-1: 25.50 USDC from the payer to the payee, attested on the second poll."""
    iris_session.responses = [iris_pending(), iris_complete()]

    result = execute_transfer(ledger, orchestrator, "BILL-1", "payer", PAYEE, Decimal("25.50"))

    assert result.success
    assert len(source.sent) == 2
    assert len(destination.sent) == 1
    assert len(iris_session.calls) == 2

    instruction = ledger.get("BILL-1")
    assert instruction.status == InstructionStatus.completed
    assert instruction.payer_address == PAYER
    assert instruction.payee_address == PAYEE
    assert instruction.amount == 25_500_000
    assert instruction.transfer_result.same_outcome(result)


def test_pay_bill_twice_sends_nothing_new(ledger, orchestrator, source, destination):
    first = execute_transfer(ledger, orchestrator, "BILL-1", "payer", PAYEE, "25.50")
    second = execute_transfer(ledger, orchestrator, "BILL-1", "payer", PAYEE, "25.50")

    assert second.same_outcome(first)
    assert len(source.sent) == 2
    assert len(destination.sent) == 1


@pytest.mark.parametrize("amount", ["0", "-5", "0.0000001", "lots"])
def test_invalid_amount_before_any_network_call(ledger, orchestrator, source, iris_session, amount):
    with pytest.raises(InvalidAmount):
        execute_transfer(ledger, orchestrator, "BILL-1", "payer", PAYEE, amount)

    assert source.sent == []
    assert iris_session.calls == []
    assert ledger.get("BILL-1") is None


def test_failed_transfer_resumes_on_retry(ledger, orchestrator, source, destination, iris_session):
    """A burned but uncredited bill is finished, not paid twice."""
    iris_session.responses = [iris_not_found()]

    first = execute_transfer(ledger, orchestrator, "BILL-1", "payer", PAYEE, "25.50")

    assert first.error_kind == TransferErrorKind.attestation_timeout
    stored = ledger.get("BILL-1")
    assert stored.status == InstructionStatus.pending
    assert stored.transfer_result.burn_tx_hash == first.burn_tx_hash

    iris_session.responses = [iris_complete()]
    second = execute_transfer(ledger, orchestrator, "BILL-1", "payer", PAYEE, "25.50")

    assert second.success
    assert second.burn_tx_hash == first.burn_tx_hash
    assert len(source.sent) == 2
    assert len(destination.sent) == 1
    assert ledger.get("BILL-1").status == InstructionStatus.completed


def test_failure_before_burn_starts_over(ledger, orchestrator, source):
    source.send_errors[source.chain.usdc.lower()] = ValueError("nonce too low")

    first = execute_transfer(ledger, orchestrator, "BILL-1", "payer", PAYEE, "25.50")
    assert first.error_kind == TransferErrorKind.approval_failed
    assert ledger.get("BILL-1").status == InstructionStatus.pending

    source.send_errors.clear()
    second = execute_transfer(ledger, orchestrator, "BILL-1", "payer", PAYEE, "25.50")

    assert second.success
    assert len(source.sent) == 2


def test_paused_transfer_resumes(ledger, orchestrator, source, destination, iris_session):
    """Cancelling after the burn parks the bill, the next call mints."""
    cancel = threading.Event()
    iris_session.responses = [iris_not_found()]

    def cancel_after_burn(tx_hash):
        if len(source.sent) == 2:
            cancel.set()

    source.on_confirm = cancel_after_burn

    paused = execute_transfer(ledger, orchestrator, "BILL-1", "payer", PAYEE, "25.50", cancel_event=cancel)
    assert paused.error_kind == TransferErrorKind.paused
    assert ledger.get("BILL-1").transfer_result.resumable

    iris_session.responses = [iris_complete()]
    resumed = execute_transfer(ledger, orchestrator, "BILL-1", "payer", PAYEE, "25.50")

    assert resumed.success
    assert len(source.sent) == 2
    assert len(destination.sent) == 1


def test_pending_bill_with_other_terms(ledger, orchestrator, source):
    record_pending_instruction(ledger, "BILL-1", PAYER, PAYEE, "25.50")

    with pytest.raises(DuplicateBillId):
        execute_transfer(ledger, orchestrator, "BILL-1", "payer", PAYEE, "30.00")

    assert source.sent == []


def test_paid_bill_with_other_terms(ledger, orchestrator, destination):
    execute_transfer(ledger, orchestrator, "BILL-1", "payer", PAYEE, "25.50")

    with pytest.raises(DuplicateBillId):
        execute_transfer(ledger, orchestrator, "BILL-1", "payer", OTHER_PAYEE, "25.50")

    assert len(destination.sent) == 1


def test_record_pending_then_pay(ledger, orchestrator, source):
    """A bill raised for later is settled by paying the same bill id."""
    instruction = record_pending_instruction(ledger, "BILL-1", PAYER, PAYEE, 25.5)

    assert instruction.status == InstructionStatus.pending
    assert instruction.amount == 25_500_000
    assert source.sent == []
    assert [i.bill_id for i in ledger.list_instructions(InstructionStatus.pending)] == ["BILL-1"]

    result = execute_transfer(ledger, orchestrator, "BILL-1", "payer", PAYEE, "25.5")

    assert result.success
    assert ledger.list_instructions(InstructionStatus.pending) == []


def test_bill_in_progress(ledger, orchestrator, source):
    with ledger.claim("BILL-1"):
        with pytest.raises(BillInProgress):
            execute_transfer(ledger, orchestrator, "BILL-1", "payer", PAYEE, "25.50")

    assert source.sent == []


def test_pay_bills_in_parallel(ledger, orchestrator, destination):
    payments = [
        BillPayment(bill_id=f"BILL-{i}", credential_ref="payer", payee_address=payee, amount_decimal=amount)
        for i, (payee, amount) in enumerate([(PAYEE, "1.00"), (OTHER_PAYEE, "2.50"), (PAYEE, "3.75")], start=1)
    ]

    results = execute_transfers_parallel(ledger, orchestrator, payments, max_workers=3)

    assert len(results) == 3
    assert all(r.success for r in results)
    assert len(destination.sent) == 3
    for payment, result in zip(payments, results):
        instruction = ledger.get(payment.bill_id)
        assert instruction.status == InstructionStatus.completed
        assert instruction.transfer_result.same_outcome(result)
    assert [ledger.get(p.bill_id).amount for p in payments] == [1_000_000, 2_500_000, 3_750_000]


def test_pay_bills_in_parallel_rejects_duplicate_ids(ledger, orchestrator):
    payment = BillPayment(bill_id="BILL-1", credential_ref="payer", payee_address=PAYEE, amount_decimal="1")
    with pytest.raises(AssertionError, match="Duplicate"):
        execute_transfers_parallel(ledger, orchestrator, [payment, payment])


def test_pay_bills_in_parallel_empty(ledger, orchestrator):
    assert execute_transfers_parallel(ledger, orchestrator, []) == []


def test_reverted_burn_is_paid_on_retry(ledger, orchestrator, source, destination):
    """BILL-1's first burn reverts. Nothing left the payer, so the next attempt burns again and pays."""
    original_send = source.send_transaction

    def revert_first_burn(credential_ref, to, data):
        tx_hash = original_send(credential_ref, to, data)
        if to == source.chain.token_messenger and len(source.sent_to(to)) == 1:
            source.confirm_errors[tx_hash] = TransactionReverted(tx_hash)
        return tx_hash

    source.send_transaction = revert_first_burn

    first = execute_transfer(ledger, orchestrator, "BILL-1", "payer", PAYEE, "25.50")

    assert first.error_kind == TransferErrorKind.burn_failed
    assert not first.resumable
    stored = ledger.get("BILL-1")
    assert stored.status == InstructionStatus.pending
    assert stored.transfer_result.reverted_burn_tx_hash == first.reverted_burn_tx_hash

    second = execute_transfer(ledger, orchestrator, "BILL-1", "payer", PAYEE, "25.50")

    assert second.success
    burns = source.sent_to(source.chain.token_messenger)
    assert len(burns) == 2
    assert second.burn_tx_hash == burns[1]["tx_hash"]
    assert len(destination.sent) == 1
    assert ledger.get("BILL-1").status == InstructionStatus.completed


def test_unconfirmed_burn_found_reverted_later(ledger, orchestrator, source, destination):
    """A stored burn that timed out and then shows up reverted no longer blocks the bill."""
    original_send = source.send_transaction

    def time_out_first_burn(credential_ref, to, data):
        tx_hash = original_send(credential_ref, to, data)
        if to == source.chain.token_messenger and len(source.sent_to(to)) == 1:
            source.confirm_errors[tx_hash] = TimeoutError("not mined in time")
        return tx_hash

    source.send_transaction = time_out_first_burn

    first = execute_transfer(ledger, orchestrator, "BILL-1", "payer", PAYEE, "25.50")
    assert first.resumable

    source.confirm_errors[first.burn_tx_hash] = TransactionReverted(first.burn_tx_hash)
    checked = execute_transfer(ledger, orchestrator, "BILL-1", "payer", PAYEE, "25.50")

    assert checked.error_kind == TransferErrorKind.burn_failed
    assert ledger.get("BILL-1").transfer_result.burn_tx_hash is None
    assert len(source.sent_to(source.chain.token_messenger)) == 1

    paid = execute_transfer(ledger, orchestrator, "BILL-1", "payer", PAYEE, "25.50")

    assert paid.success
    assert len(source.sent_to(source.chain.token_messenger)) == 2
    assert len(destination.sent) == 1
