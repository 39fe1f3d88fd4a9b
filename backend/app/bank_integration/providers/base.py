"""
Bank wire client interface

The capability set every per-bank binding implements. The synchronizer and
the payment submitter only talk to this interface, so they stay bank-agnostic.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, List
from datetime import date


class BankWireClient(ABC):
    """
    One instance per (integration, access token). Concrete bindings receive
    an already-valid token from the Token Lifecycle Manager and never refresh
    it themselves.

    All methods raise BankApiError on a non-2xx or malformed response and
    NetworkError on transport failure.
    """

    @abstractmethod
    async def list_accounts(self) -> List[Dict[str, Any]]:
        """
        Fetch accounts available under the token.

        Returns:
            List of dictionaries with keys:
            - account_number: str
            - name: str
            - currency: str
            - balance: Decimal (available balance, may be None)
            - status: str
        """

    @abstractmethod
    async def fetch_statement(
        self,
        account_number: str,
        date_from: date,
        date_to: date
    ) -> List[Dict[str, Any]]:
        """
        Fetch statement operations for an account within a date window.

        Args:
            account_number: External account number
            date_from: Start date (inclusive)
            date_to: End date (inclusive)

        Returns:
            Operations in the order the bank returned them, normalized to keys:
            - external_id, transaction_date, transaction_time, operation_type
            - amount (absolute), currency, fee, balance_after
            - bank_category, bank_status
            - counterparty_name, counterparty_inn, counterparty_kpp,
              counterparty_account, counterparty_bank_name, counterparty_bank_bik
            - purpose
            - raw_data (original operation dict)
        """

    @abstractmethod
    async def submit_payment(self, payload: Dict[str, Any]) -> str:
        """
        Submit a payment order.

        Returns:
            Bank-assigned payment id
        """

    @abstractmethod
    async def get_payment_status(self, payment_id: str) -> Dict[str, Any]:
        """
        Query payment status.

        Returns:
            {'status': str (bank vocabulary), 'reject_reason': Optional[str]}
        """

    @abstractmethod
    async def cancel_payment(self, payment_id: str) -> None:
        """Ask the bank to cancel a submitted payment."""
