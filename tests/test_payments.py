"""Tests for the payment order state machine against a fake bank."""

import json

import pytest

from backend.app import models
from backend.app.bank_integration.payments import PaymentOrderSubmitter

Status = models.PaymentOrderStatus


@pytest.mark.asyncio
async def test_send_submits_payload_and_marks_sent(db, company, account, make_payment_order, fake_bank):
    order = make_payment_order(account)
    fake_bank.on("POST", "/payments", json={"paymentId": "pay-77"})

    result = await PaymentOrderSubmitter(db, company.id, transport=fake_bank.transport).send(order.id)

    assert result == {"success": True, "external_id": "pay-77"}
    payload = json.loads(fake_bank.calls("/payments")[0].content)
    assert payload["documentNumber"] == "17"
    assert payload["documentDate"] == "2024-03-15"
    assert payload["amount"] == 15000.0
    assert payload["payerAccount"] == account.account_number
    assert payload["recipientKpp"] == "771201001"
    assert payload["priority"] == 5
    assert "vatType" not in payload

    db.refresh(order)
    assert order.status == Status.SENT
    assert order.external_id == "pay-77"
    assert order.sent_at is not None
    assert order.error_message is None


@pytest.mark.asyncio
async def test_send_includes_vat_when_applicable(db, company, account, make_payment_order, fake_bank):
    order = make_payment_order(account, vat_type=models.VatType.INCLUDED, vat_amount=2500)
    fake_bank.on("POST", "/payments", json={"id": "pay-78"})

    result = await PaymentOrderSubmitter(db, company.id, transport=fake_bank.transport).send(order.id)

    assert result["external_id"] == "pay-78"
    payload = json.loads(fake_bank.calls("/payments")[0].content)
    assert payload["vatType"] == "included"
    assert payload["vatAmount"] == 2500.0


@pytest.mark.asyncio
async def test_failed_send_leaves_error_without_external_id(db, company, account, make_payment_order, fake_bank):
    order = make_payment_order(account)
    fake_bank.on("POST", "/payments", status_code=500, json={"error": "internal"})

    result = await PaymentOrderSubmitter(db, company.id, transport=fake_bank.transport).send(order.id)

    assert result["success"] is False
    assert result["error_code"] == "bank_api_error"
    db.refresh(order)
    assert order.status == Status.ERROR
    assert order.error_message == "Bank error: 500"
    assert order.external_id is None


@pytest.mark.asyncio
async def test_errored_order_can_be_resent(db, company, account, make_payment_order, fake_bank):
    order = make_payment_order(account, status=Status.ERROR, error_message="Bank error: 500")
    fake_bank.on("POST", "/payments", json={"paymentId": "pay-79"})

    result = await PaymentOrderSubmitter(db, company.id, transport=fake_bank.transport).send(order.id)

    assert result["success"] is True
    db.refresh(order)
    assert order.status == Status.SENT
    assert order.error_message is None


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [Status.SENDING, Status.SENT, Status.EXECUTED, Status.CANCELLED])
async def test_send_rejects_orders_already_submitted(db, company, account, make_payment_order, fake_bank, status):
    order = make_payment_order(account, status=status)

    result = await PaymentOrderSubmitter(db, company.id, transport=fake_bank.transport).send(order.id)

    assert result["error_code"] == "validation_error"
    assert fake_bank.requests == []


@pytest.mark.asyncio
async def test_send_requires_payment_capable_bank(db, company, make_integration, make_account, make_payment_order, fake_bank):
    sber = make_integration(company, bank_code="sber")
    order = make_payment_order(make_account(company, sber))
    unlinked_order = make_payment_order(make_account(company, account_number="40702810000000000003"))
    submitter = PaymentOrderSubmitter(db, company.id, transport=fake_bank.transport)

    assert (await submitter.send(order.id))["error_code"] == "validation_error"
    assert (await submitter.send(unlinked_order.id))["error_code"] == "validation_error"
    db.refresh(order)
    assert order.status == Status.DRAFT


@pytest.mark.asyncio
async def test_token_failure_does_not_change_order(db, company, integration, account, make_payment_order, fake_bank):
    integration.status = models.IntegrationStatus.TOKEN_EXPIRED
    db.commit()
    order = make_payment_order(account)

    result = await PaymentOrderSubmitter(db, company.id, transport=fake_bank.transport).send(order.id)

    assert result["error_code"] == "refresh_failed"
    db.refresh(order)
    assert order.status == Status.DRAFT


@pytest.mark.asyncio
async def test_executed_status_is_applied(db, company, account, make_payment_order, fake_bank):
    order = make_payment_order(account, status=Status.SENT, external_id="pay-1")
    fake_bank.on("GET", "/payments/pay-1", json={"status": "EXECUTED"})

    result = await PaymentOrderSubmitter(db, company.id, transport=fake_bank.transport).check_status(order.id)

    assert result == {"success": True, "status": "executed", "bank_status": "EXECUTED"}
    db.refresh(order)
    assert order.status == Status.EXECUTED
    assert order.executed_at is not None
    assert order.bank_status == "EXECUTED"


@pytest.mark.asyncio
async def test_rejected_status_stores_reason(db, company, account, make_payment_order, fake_bank):
    order = make_payment_order(account, status=Status.ACCEPTED, external_id="pay-1")
    fake_bank.on("GET", "/payments/pay-1", json={"status": "REJECTED", "rejectReason": "Неверный БИК"})

    await PaymentOrderSubmitter(db, company.id, transport=fake_bank.transport).check_status(order.id)

    db.refresh(order)
    assert order.status == Status.REJECTED
    assert order.error_message == "Неверный БИК"


@pytest.mark.asyncio
@pytest.mark.parametrize("current, bank_status", [
    (Status.PROCESSING, "ACCEPTED"),
    (Status.PROCESSING, "CREATED"),
    (Status.PROCESSING, "ON_HOLD"),
])
async def test_status_never_moves_backwards_or_to_unknown(db, company, account, make_payment_order, fake_bank, current, bank_status):
    order = make_payment_order(account, status=current, external_id="pay-1")
    fake_bank.on("GET", "/payments/pay-1", json={"status": bank_status})

    result = await PaymentOrderSubmitter(db, company.id, transport=fake_bank.transport).check_status(order.id)

    assert result["success"] is True
    db.refresh(order)
    assert order.status == current
    assert order.bank_status == bank_status


@pytest.mark.asyncio
async def test_check_status_failure_is_recorded_on_order(db, company, account, make_payment_order, fake_bank):
    order = make_payment_order(account, status=Status.SENT, external_id="pay-1")
    fake_bank.on("GET", "/payments/pay-1", status_code=502, json={})

    result = await PaymentOrderSubmitter(db, company.id, transport=fake_bank.transport).check_status(order.id)

    assert result["success"] is False
    db.refresh(order)
    assert order.status == Status.SENT
    assert order.error_message == "Bank error: 502"


@pytest.mark.asyncio
async def test_check_status_requires_external_id(db, company, account, make_payment_order, fake_bank):
    order = make_payment_order(account)

    result = await PaymentOrderSubmitter(db, company.id, transport=fake_bank.transport).check_status(order.id)

    assert result["error_code"] == "validation_error"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [Status.DRAFT, Status.EXECUTED, Status.REJECTED, Status.CANCELLED])
async def test_cancel_rejected_outside_in_flight_states(db, company, account, make_payment_order, fake_bank, status):
    order = make_payment_order(account, status=status, external_id="pay-1")

    result = await PaymentOrderSubmitter(db, company.id, transport=fake_bank.transport).cancel(order.id)

    assert result["error_code"] == "validation_error"
    assert fake_bank.requests == []
    db.refresh(order)
    assert order.status == status


@pytest.mark.asyncio
async def test_cancel_in_flight_order(db, company, account, make_payment_order, fake_bank):
    order = make_payment_order(account, status=Status.ACCEPTED, external_id="pay-1")
    fake_bank.on("POST", "/payments/pay-1/cancel", status_code=204)

    result = await PaymentOrderSubmitter(db, company.id, transport=fake_bank.transport).cancel(order.id)

    assert result == {"success": True}
    db.refresh(order)
    assert order.status == Status.CANCELLED
    assert order.error_message == "Cancelled by user"


@pytest.mark.asyncio
async def test_cancel_refused_by_bank_keeps_status(db, company, account, make_payment_order, fake_bank):
    order = make_payment_order(account, status=Status.PROCESSING, external_id="pay-1")
    fake_bank.on("POST", "/payments/pay-1/cancel", status_code=409, json={"error": "too late"})

    result = await PaymentOrderSubmitter(db, company.id, transport=fake_bank.transport).cancel(order.id)

    assert result["success"] is False
    db.refresh(order)
    assert order.status == Status.PROCESSING


@pytest.mark.asyncio
async def test_sync_statuses_counts_finished_orders(db, company, account, make_payment_order, fake_bank):
    make_payment_order(account, status=Status.SENT, external_id="pay-1")
    make_payment_order(account, status=Status.SENT, external_id="pay-2", order_number="18")
    make_payment_order(account, status=Status.DRAFT, order_number="19")
    fake_bank.on("GET", "/payments/pay-1", json={"status": "EXECUTED"})
    fake_bank.on("GET", "/payments/pay-2", json={"status": "PROCESSING"})

    result = await PaymentOrderSubmitter(db, company.id, transport=fake_bank.transport).sync_statuses()

    assert result == {"checked": 2, "updated": 1}
