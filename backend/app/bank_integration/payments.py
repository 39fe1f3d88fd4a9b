"""
Payment Order Submitter

Drives a PaymentOrder through its lifecycle against the bank:

    draft/pending -> sending -> sent -> accepted -> processing -> executed
    sent/accepted/processing -> rejected | cancelled
    sending -> error (retry by sending again)

The `sending` status is committed before the bank is called, so a crash
mid-submission leaves a visible order without external_id.
"""

import logging
from datetime import datetime
from typing import Dict, Any, Optional

import httpx
from sqlalchemy.orm import Session

from backend.app.models import PaymentOrder, PaymentOrderStatus, VatType
from .banks import get_bank_info
from .errors import (
    BankIntegrationError, NotFound, ValidationError, BankApiError, NetworkError
)
from .providers import create_wire_client, BankWireClient
from .tokens import TokenManager

logger = logging.getLogger(__name__)

SENDABLE_STATUSES = (PaymentOrderStatus.DRAFT, PaymentOrderStatus.PENDING, PaymentOrderStatus.ERROR)
IN_FLIGHT_STATUSES = (PaymentOrderStatus.SENT, PaymentOrderStatus.ACCEPTED, PaymentOrderStatus.PROCESSING)
TERMINAL_STATUSES = (PaymentOrderStatus.EXECUTED, PaymentOrderStatus.REJECTED, PaymentOrderStatus.CANCELLED)

BANK_STATUS_MAP = {
    'CREATED': PaymentOrderStatus.SENT,
    'ACCEPTED': PaymentOrderStatus.ACCEPTED,
    'PROCESSING': PaymentOrderStatus.PROCESSING,
    'EXECUTED': PaymentOrderStatus.EXECUTED,
    'REJECTED': PaymentOrderStatus.REJECTED,
    'CANCELLED': PaymentOrderStatus.CANCELLED,
}

# Position in the bank-side lifecycle; an order never moves to a lower rank
STATUS_RANK = {
    PaymentOrderStatus.SENT: 0,
    PaymentOrderStatus.ACCEPTED: 1,
    PaymentOrderStatus.PROCESSING: 2,
    PaymentOrderStatus.EXECUTED: 3,
    PaymentOrderStatus.REJECTED: 3,
    PaymentOrderStatus.CANCELLED: 3,
}

SYNC_STATUSES_LIMIT = 50


def build_payment_payload(order: PaymentOrder) -> Dict[str, Any]:
    """Wire payload for POST /payments. VAT fields only when VAT applies."""
    payload = {
        'documentNumber': order.order_number,
        'documentDate': order.order_date.isoformat(),
        'amount': float(order.amount),
        'purpose': order.purpose,
        'payerAccount': order.bank_account.account_number,
        'recipientName': order.recipient_name,
        'recipientInn': order.recipient_inn,
        'recipientAccount': order.recipient_account,
        'recipientBankBik': order.recipient_bank_bik,
        'recipientBankName': order.recipient_bank_name,
        'recipientBankCorrAccount': order.recipient_bank_corr_account,
        'priority': order.priority or 5,
    }
    if order.recipient_kpp:
        payload['recipientKpp'] = order.recipient_kpp

    if order.vat_type and order.vat_type != VatType.NONE:
        payload['vatType'] = order.vat_type.value
        payload['vatAmount'] = float(order.vat_amount or 0)

    return payload


class PaymentOrderSubmitter:
    """Submission and status tracking of one company's payment orders."""

    def __init__(
        self,
        db: Session,
        company_id: int,
        tokens: Optional[TokenManager] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.db = db
        self.company_id = company_id
        self.transport = transport
        self.tokens = tokens or TokenManager(db, company_id, transport=transport)

    def _get_order(self, payment_order_id: int) -> PaymentOrder:
        order = self.db.query(PaymentOrder).filter(
            PaymentOrder.id == payment_order_id,
            PaymentOrder.company_id == self.company_id
        ).first()
        if not order:
            raise NotFound("Payment order not found")
        return order

    async def _client_for(self, order: PaymentOrder) -> BankWireClient:
        integration_id = order.bank_account.integration_id
        if not integration_id:
            raise ValidationError("Bank integration is not configured for this account")

        integration = self.tokens.get_integration(integration_id)
        access_token = await self.tokens.get_access_token(integration.id)
        return create_wire_client(integration, access_token, transport=self.transport)

    async def send(self, payment_order_id: int) -> Dict[str, Any]:
        """
        Submit a payment order to the bank.

        Returns:
            {'success': True, 'external_id': str} or
            {'success': False, 'error': str, 'error_code': str}
        """
        try:
            order = self._get_order(payment_order_id)

            if order.status not in SENDABLE_STATUSES:
                raise ValidationError(f"Payment order in status {order.status.value} cannot be sent")

            integration_id = order.bank_account.integration_id
            if not integration_id:
                raise ValidationError("Bank integration is not configured for this account")

            integration = self.tokens.get_integration(integration_id)
            bank = get_bank_info(integration.bank_code)
            if not bank or not bank.payments_supported:
                bank_name = bank.name if bank else integration.bank_code
                raise ValidationError(f"Sending payments is not supported for {bank_name}")

            access_token = await self.tokens.get_access_token(integration.id)
            client = create_wire_client(integration, access_token, transport=self.transport)
        except BankIntegrationError as e:
            return {'success': False, 'error': e.message, 'error_code': e.code}

        payload = build_payment_payload(order)

        order.status = PaymentOrderStatus.SENDING
        self.db.commit()

        try:
            external_id = await client.submit_payment(payload)
        except BankApiError as e:
            order.status = PaymentOrderStatus.ERROR
            order.error_message = f"Bank error: {e.status_code}" if e.status_code else e.message
            self.db.commit()
            logger.error(f"Payment order {order.id} rejected on submission: {order.error_message}")
            return {'success': False, 'error': "Failed to send payment to the bank", 'error_code': e.code}
        except NetworkError as e:
            order.status = PaymentOrderStatus.ERROR
            order.error_message = "Network error while sending"
            self.db.commit()
            logger.error(f"Payment order {order.id} not sent: network error")
            return {'success': False, 'error': "Network error", 'error_code': e.code}

        order.status = PaymentOrderStatus.SENT
        order.external_id = external_id
        order.sent_at = datetime.utcnow()
        order.error_message = None
        self.db.commit()

        logger.info(f"Payment order {order.id} sent, bank id {external_id}")
        return {'success': True, 'external_id': external_id}

    def _can_move_to(self, current: PaymentOrderStatus, new: PaymentOrderStatus) -> bool:
        if current in TERMINAL_STATUSES:
            return False
        if current not in STATUS_RANK:
            return True
        return STATUS_RANK[new] > STATUS_RANK[current]

    async def check_status(self, payment_order_id: int) -> Dict[str, Any]:
        """
        Poll the bank for an order's status and apply it if it moves forward.

        The raw bank status is always stored. Unknown bank statuses and
        backward moves leave the local status unchanged.

        Returns:
            {'success': True, 'status': str, 'bank_status': str} or a failure dict
        """
        try:
            order = self._get_order(payment_order_id)
            if not order.external_id:
                raise ValidationError("Payment has not been sent to the bank yet")
        except BankIntegrationError as e:
            return {'success': False, 'error': e.message, 'error_code': e.code}

        try:
            client = await self._client_for(order)
            bank_result = await client.get_payment_status(order.external_id)
        except BankIntegrationError as e:
            order.error_message = e.message
            self.db.commit()
            logger.error(f"Status check failed for payment order {order.id}: {e.message}")
            return {'success': False, 'error': e.message, 'error_code': e.code}

        raw_status = bank_result['status']
        order.bank_status = raw_status
        mapped = BANK_STATUS_MAP.get(raw_status)

        if mapped is None:
            logger.warning(f"Payment order {order.id}: unknown bank status {raw_status!r}, keeping {order.status.value}")
        elif self._can_move_to(order.status, mapped):
            logger.info(f"Payment order {order.id}: {order.status.value} -> {mapped.value}")
            order.status = mapped
            if mapped == PaymentOrderStatus.EXECUTED:
                order.executed_at = datetime.utcnow()
            elif mapped == PaymentOrderStatus.REJECTED:
                order.error_message = bank_result.get('reject_reason') or "Rejected by bank"

        if order.status not in (PaymentOrderStatus.REJECTED, PaymentOrderStatus.CANCELLED):
            order.error_message = None
        self.db.commit()

        return {'success': True, 'status': order.status.value, 'bank_status': raw_status}

    async def cancel(self, payment_order_id: int) -> Dict[str, Any]:
        """Cancel an in-flight payment. Only sent, accepted or processing orders qualify."""
        try:
            order = self._get_order(payment_order_id)
            if order.status not in IN_FLIGHT_STATUSES:
                raise ValidationError(f"Payment order in status {order.status.value} cannot be cancelled")
            if not order.external_id:
                raise ValidationError("Payment not found at the bank")

            client = await self._client_for(order)
            await client.cancel_payment(order.external_id)
        except BankIntegrationError as e:
            logger.warning(f"Cancel of payment order {payment_order_id} failed: {e.message}")
            return {'success': False, 'error': e.message, 'error_code': e.code}

        order.status = PaymentOrderStatus.CANCELLED
        order.error_message = "Cancelled by user"
        self.db.commit()

        logger.info(f"Payment order {order.id} cancelled")
        return {'success': True}

    async def sync_statuses(self) -> Dict[str, int]:
        """
        Re-check in-flight orders.

        Returns:
            {'checked': int, 'updated': int} where updated counts orders that
            reached a final status
        """
        orders = self.db.query(PaymentOrder).filter(
            PaymentOrder.company_id == self.company_id,
            PaymentOrder.status.in_(IN_FLIGHT_STATUSES),
            PaymentOrder.external_id.isnot(None)
        ).order_by(PaymentOrder.id).limit(SYNC_STATUSES_LIMIT).all()

        updated = 0
        for order in orders:
            result = await self.check_status(order.id)
            if result['success'] and PaymentOrderStatus(result['status']) not in IN_FLIGHT_STATUSES:
                updated += 1

        if orders:
            logger.info(f"Checked {len(orders)} payment orders for company {self.company_id}, {updated} finished")
        return {'checked': len(orders), 'updated': updated}
