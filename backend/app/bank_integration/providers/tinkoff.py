"""
Tinkoff Business Open API binding

Documentation: https://www.tinkoff.ru/business/open-api/
"""

import json
import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, Any, List, Optional

import httpx

from backend.app.models import OperationType
from ..errors import BankApiError, NetworkError
from .base import BankWireClient

logger = logging.getLogger(__name__)

# Anything else is left as None and the operation is skipped as malformed
OPERATION_TYPES = {
    'Credit': OperationType.CREDIT,
    'Debit': OperationType.DEBIT,
}


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == '':
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _to_date(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(value) if value else None
    except ValueError:
        return None


class TinkoffClient(BankWireClient):
    """
    Tinkoff Business API client.

    Statement dates come back as ISO timestamps in bank-local time; the date
    and HH:MM:SS parts are split off as-is, without timezone conversion.
    """

    def __init__(
        self,
        access_token: str,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.access_token = access_token
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        expect_json: bool = True
    ) -> Any:
        headers = {
            'Authorization': f'Bearer {self.access_token}',
            'Content-Type': 'application/json',
            'Accept': 'application/json'
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    params=params,
                    json=json_body,
                    headers=headers
                )
        except httpx.HTTPError as e:
            logger.error(f"Tinkoff API network error on {method} {path}: {e!r}")
            raise NetworkError("Network error") from e

        if not response.is_success:
            logger.error(f"Tinkoff API error - {method} {path} - Status: {response.status_code}, Body: {response.text}")
            raise BankApiError(
                f"Bank error: {response.status_code}",
                status_code=response.status_code,
                body=response.text
            )

        if not expect_json:
            return None

        try:
            return response.json()
        except json.JSONDecodeError as e:
            logger.error(f"Tinkoff API returned non-JSON body for {method} {path}: {response.text[:500]}")
            raise BankApiError("Malformed bank response", status_code=response.status_code, body=response.text) from e

    async def list_accounts(self) -> List[Dict[str, Any]]:
        data = await self._request('GET', '/bank-accounts')
        if not isinstance(data, list):
            raise BankApiError("Malformed bank response", body=str(data)[:500])

        accounts = []
        for acc in data:
            balance = acc.get('balance') or {}
            accounts.append({
                'account_number': acc.get('accountNumber'),
                'name': acc.get('name'),
                'currency': acc.get('currency'),
                'balance': _to_decimal(balance.get('otb')),
                'status': acc.get('status'),
            })
        return accounts

    async def fetch_statement(
        self,
        account_number: str,
        date_from: date,
        date_to: date
    ) -> List[Dict[str, Any]]:
        data = await self._request(
            'GET',
            '/bank-statement',
            params={
                'accountNumber': account_number,
                'from': date_from.isoformat(),
                'to': date_to.isoformat(),
            }
        )
        if not isinstance(data, dict):
            raise BankApiError("Malformed bank response", body=str(data)[:500])

        operations = data.get('operations') or []
        logger.info(f"Fetched {len(operations)} operations for account ****{account_number[-4:]}")
        return [self._normalize_operation(op) for op in operations]

    def _normalize_operation(self, op: Dict[str, Any]) -> Dict[str, Any]:
        counterparty = op.get('counterparty') or {}
        raw_date = op.get('date') or ''
        date_part, _, time_part = raw_date.partition('T')
        amount = _to_decimal(op.get('amount'))

        return {
            'external_id': op.get('id'),
            'transaction_date': _to_date(date_part),
            'transaction_time': time_part[:8] or None,
            'operation_type': OPERATION_TYPES.get(op.get('operationType')),
            'amount': abs(amount) if amount is not None else None,
            'currency': op.get('currency') or 'RUB',
            'fee': _to_decimal(op.get('fee')) or Decimal('0'),
            'balance_after': _to_decimal(op.get('balanceAfter')),
            'bank_category': op.get('category'),
            'bank_status': op.get('status'),
            'counterparty_name': counterparty.get('name'),
            'counterparty_inn': counterparty.get('inn'),
            'counterparty_kpp': counterparty.get('kpp'),
            'counterparty_account': counterparty.get('accountNumber'),
            'counterparty_bank_name': counterparty.get('bankName'),
            'counterparty_bank_bik': counterparty.get('bankBik'),
            'purpose': op.get('paymentPurpose'),
            'raw_data': op,
        }

    async def submit_payment(self, payload: Dict[str, Any]) -> str:
        data = await self._request('POST', '/payments', json_body=payload)
        payment_id = (data.get('paymentId') or data.get('id')) if isinstance(data, dict) else None
        if not payment_id:
            raise BankApiError("Bank response has no payment id", body=str(data)[:500])
        return str(payment_id)

    async def get_payment_status(self, payment_id: str) -> Dict[str, Any]:
        data = await self._request('GET', f'/payments/{payment_id}')
        if not isinstance(data, dict) or not data.get('status'):
            raise BankApiError("Malformed bank response", body=str(data)[:500])
        return {
            'status': data['status'],
            'reject_reason': data.get('rejectReason'),
        }

    async def cancel_payment(self, payment_id: str) -> None:
        await self._request('POST', f'/payments/{payment_id}/cancel', expect_json=False)
