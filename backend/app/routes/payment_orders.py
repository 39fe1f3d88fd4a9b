"""
Payment Order Routes

Sending payment orders to the bank and tracking their status.
"""

from typing import Optional

import httpx
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.database import get_db
from backend.app import models, schemas
from backend.app.auth import get_current_company
from backend.app.bank_integration.service import BankIntegrationService, get_bank_transport
from .bank_errors import raise_for_failure


router = APIRouter(prefix="/accounting/payment-orders", tags=["payment-orders"])


@router.post("/sync-statuses", response_model=schemas.PaymentStatusSyncResponse)
async def sync_payment_statuses(
    db: Session = Depends(get_db),
    current_company: models.Company = Depends(get_current_company),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_bank_transport)
):
    """Re-check every in-flight payment order of the company."""
    service = BankIntegrationService(db, current_company.id, transport=transport)
    return await service.payments.sync_statuses()


@router.post("/{payment_order_id}/send", response_model=schemas.PaymentSendResponse)
async def send_payment_order(
    payment_order_id: int,
    db: Session = Depends(get_db),
    current_company: models.Company = Depends(get_current_company),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_bank_transport)
):
    """
    Submit a draft, pending or failed payment order to the bank.

    Example:
        POST /accounting/payment-orders/12/send

        Response:
        {
            "success": true,
            "external_id": "pay-8f3a..."
        }
    """
    service = BankIntegrationService(db, current_company.id, transport=transport)
    return raise_for_failure(await service.payments.send(payment_order_id))


@router.post("/{payment_order_id}/check-status", response_model=schemas.PaymentStatusResponse)
async def check_payment_status(
    payment_order_id: int,
    db: Session = Depends(get_db),
    current_company: models.Company = Depends(get_current_company),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_bank_transport)
):
    service = BankIntegrationService(db, current_company.id, transport=transport)
    return raise_for_failure(await service.payments.check_status(payment_order_id))


@router.post("/{payment_order_id}/cancel")
async def cancel_payment_order(
    payment_order_id: int,
    db: Session = Depends(get_db),
    current_company: models.Company = Depends(get_current_company),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_bank_transport)
):
    service = BankIntegrationService(db, current_company.id, transport=transport)
    raise_for_failure(await service.payments.cancel(payment_order_id))
    return {"success": True, "message": "Payment cancelled"}
