"""
Transaction Synchronizer

Pulls statement operations for one account over a date window and upserts
them into bank_transactions keyed by (company_id, external_id). Every run is
recorded as a BankSyncLog row that is committed before the bank is called.
"""

import json
import logging
from datetime import datetime, date, timedelta
from typing import Dict, Any, List, Optional, Tuple

import httpx
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.app.models import (
    BankIntegration, BankAccount, BankTransaction, BankSyncLog,
    BankSyncOperation, BankSyncStatus, ProcessingStatus
)
from .errors import BankIntegrationError, NotFound, ValidationError
from .providers import create_wire_client
from .tokens import TokenManager

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_SYNC_DAYS = 30

# Fields the bank owns; category and processing_status are ours and never overwritten
BANK_OWNED_FIELDS = (
    'transaction_date', 'transaction_time', 'operation_type', 'amount', 'currency',
    'fee', 'balance_after', 'counterparty_name', 'counterparty_inn', 'counterparty_kpp',
    'counterparty_account', 'counterparty_bank_name', 'counterparty_bank_bik',
    'purpose', 'bank_category', 'bank_status',
)

# Operations lacking any of these are skipped and reported, not stored
REQUIRED_OPERATION_FIELDS = ('external_id', 'transaction_date', 'operation_type', 'amount')

INTERNAL_ERROR_MESSAGE = "Internal error during sync"


class TransactionSynchronizer:
    """Statement sync and balance refresh for one company."""

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

    def _get_account(self, bank_account_id: int) -> BankAccount:
        account = self.db.query(BankAccount).filter(
            BankAccount.id == bank_account_id,
            BankAccount.company_id == self.company_id
        ).first()
        if not account:
            raise NotFound("Bank account not found")
        return account

    def _start_log(
        self,
        integration: BankIntegration,
        operation: BankSyncOperation,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None
    ) -> BankSyncLog:
        sync_log = BankSyncLog(
            company_id=self.company_id,
            integration_id=integration.id,
            operation_type=operation,
            status=BankSyncStatus.STARTED,
            sync_from_date=date_from,
            sync_to_date=date_to,
            started_at=datetime.utcnow()
        )
        self.db.add(sync_log)
        self.db.commit()
        return sync_log

    def _fail(self, sync_log: BankSyncLog, integration: BankIntegration, message: str):
        # Drop half-applied upserts; the started log row is already committed
        self.db.rollback()
        sync_log.status = BankSyncStatus.ERROR
        sync_log.error_message = message
        sync_log.finished_at = datetime.utcnow()
        integration.last_error = message
        self.db.commit()

    def default_window(self, integration: BankIntegration) -> Tuple[date, date]:
        """
        Window used when the caller gives none: from the day before the last
        successful sync (or 30 days back on first sync) until today.
        """
        date_to = date.today()
        if integration.last_sync_at:
            date_from = integration.last_sync_at.date() - timedelta(days=1)
        else:
            date_from = date_to - timedelta(days=DEFAULT_INITIAL_SYNC_DAYS)
        return date_from, date_to

    async def sync_transactions(
        self,
        integration_id: int,
        bank_account_id: int,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None
    ) -> Dict[str, Any]:
        """
        Fetch a statement window and upsert its operations.

        Re-running over the same unchanged window is a no-op apart from the
        update counter.

        Args:
            integration_id: BankIntegration ID
            bank_account_id: Local BankAccount ID
            date_from: Start date (default: see default_window)
            date_to: End date (default: today)

        Returns:
            {
                'success': bool,
                'created': int,
                'updated': int,
                'processed': int,
                'errors': List[str],
                'error': str (only on failure)
            }
        """
        result = {'success': False, 'created': 0, 'updated': 0, 'processed': 0, 'errors': []}

        try:
            integration = self.tokens.get_integration(integration_id)
            account = self._get_account(bank_account_id)
            if account.integration_id != integration.id:
                raise ValidationError("Bank account is not linked to this integration")
        except BankIntegrationError as e:
            result.update(error=e.message, error_code=e.code)
            return result

        default_from, default_to = self.default_window(integration)
        date_from = date_from or default_from
        date_to = date_to or default_to

        sync_log = self._start_log(integration, BankSyncOperation.SYNC_TRANSACTIONS, date_from, date_to)
        logger.info(
            f"Sync started: integration={integration.id} account={account.id} "
            f"window={date_from}..{date_to}"
        )

        try:
            access_token = await self.tokens.get_access_token(integration.id)
            client = create_wire_client(integration, access_token, transport=self.transport)
            operations = await client.fetch_statement(account.account_number, date_from, date_to)

            latest_op = None
            for op in operations:
                missing = [field for field in REQUIRED_OPERATION_FIELDS if op.get(field) in (None, '')]
                if missing:
                    logger.warning(f"Skipping malformed operation {op.get('external_id')!r}: missing {', '.join(missing)}")
                    result['errors'].append(f"Operation {op.get('external_id')}: missing {', '.join(missing)}")
                    continue

                if self._upsert_operation(integration, account, op):
                    result['created'] += 1
                else:
                    result['updated'] += 1
                result['processed'] += 1

                if latest_op is None or self._op_sort_key(op) >= self._op_sort_key(latest_op):
                    latest_op = op

            if latest_op is not None and latest_op.get('balance_after') is not None:
                account.balance = latest_op['balance_after']
                account.balance_updated_at = datetime.utcnow()

            integration.last_sync_at = datetime.utcnow()
            integration.last_error = None

            sync_log.status = BankSyncStatus.SUCCESS
            sync_log.records_processed = result['processed']
            sync_log.records_created = result['created']
            sync_log.records_updated = result['updated']
            sync_log.finished_at = datetime.utcnow()
            self.db.commit()

        except BankIntegrationError as e:
            logger.error(f"Sync failed for integration {integration_id}: {e.message}")
            self._fail(sync_log, integration, e.message)
            result.update(created=0, updated=0, processed=0, error=e.message, error_code=e.code)
            return result
        except Exception as e:
            logger.exception(f"Unexpected error syncing integration {integration_id}: {e!r}")
            self._fail(sync_log, integration, INTERNAL_ERROR_MESSAGE)
            result.update(created=0, updated=0, processed=0, error=INTERNAL_ERROR_MESSAGE, error_code='internal_error')
            return result

        logger.info(
            f"Sync finished: integration={integration.id} created={result['created']} "
            f"updated={result['updated']} skipped={len(result['errors'])}"
        )
        result['success'] = True
        return result

    @staticmethod
    def _op_sort_key(op: Dict[str, Any]):
        return (op['transaction_date'], op.get('transaction_time') or '')

    def _apply_bank_fields(self, tx: BankTransaction, op: Dict[str, Any]):
        for field in BANK_OWNED_FIELDS:
            setattr(tx, field, op.get(field))
        if tx.fee is None:
            tx.fee = 0
        tx.raw_data = json.dumps(op.get('raw_data'), ensure_ascii=False, default=str)

    def _find_existing(self, external_id: str) -> Optional[BankTransaction]:
        return self.db.query(BankTransaction).filter(
            BankTransaction.company_id == self.company_id,
            BankTransaction.external_id == external_id
        ).first()

    def _upsert_operation(
        self,
        integration: BankIntegration,
        account: BankAccount,
        op: Dict[str, Any]
    ) -> bool:
        """
        Insert or update one operation.

        Returns:
            True if a new row was created
        """
        existing = self._find_existing(op['external_id'])
        if existing:
            self._apply_bank_fields(existing, op)
            self.db.flush()
            return False

        tx = BankTransaction(
            company_id=self.company_id,
            bank_account_id=account.id,
            integration_id=integration.id,
            external_id=op['external_id'],
            processing_status=ProcessingStatus.NEW
        )
        self._apply_bank_fields(tx, op)

        try:
            with self.db.begin_nested():
                self.db.add(tx)
        except IntegrityError:
            existing = self._find_existing(op['external_id'])
            if existing is None:
                # Not a duplicate key, some other constraint failed
                raise
            logger.warning(f"Operation {op['external_id']} inserted concurrently, updating instead")
            self._apply_bank_fields(existing, op)
            self.db.flush()
            return False

        return True

    async def sync_balances(self, integration_id: int) -> Dict[str, Any]:
        """
        Refresh cached balances for every local account the bank reports.

        Returns:
            {'success': bool, 'updated': int, 'error'?: str}
        """
        try:
            integration = self.tokens.get_integration(integration_id)
        except BankIntegrationError as e:
            return {'success': False, 'updated': 0, 'error': e.message, 'error_code': e.code}

        sync_log = self._start_log(integration, BankSyncOperation.SYNC_BALANCES)
        updated = 0

        try:
            access_token = await self.tokens.get_access_token(integration.id)
            client = create_wire_client(integration, access_token, transport=self.transport)
            remote_accounts = await client.list_accounts()

            for remote in remote_accounts:
                if remote.get('balance') is None or not remote.get('account_number'):
                    continue
                account = self.db.query(BankAccount).filter(
                    BankAccount.company_id == self.company_id,
                    BankAccount.account_number == remote['account_number']
                ).first()
                if not account:
                    continue
                account.balance = remote['balance']
                account.balance_updated_at = datetime.utcnow()
                updated += 1

            sync_log.status = BankSyncStatus.SUCCESS
            sync_log.records_processed = len(remote_accounts)
            sync_log.records_updated = updated
            sync_log.finished_at = datetime.utcnow()
            self.db.commit()

        except BankIntegrationError as e:
            logger.error(f"Balance sync failed for integration {integration_id}: {e.message}")
            self._fail(sync_log, integration, e.message)
            return {'success': False, 'updated': 0, 'error': e.message, 'error_code': e.code}
        except Exception as e:
            logger.exception(f"Unexpected error syncing balances for integration {integration_id}: {e!r}")
            self._fail(sync_log, integration, INTERNAL_ERROR_MESSAGE)
            return {'success': False, 'updated': 0, 'error': INTERNAL_ERROR_MESSAGE, 'error_code': 'internal_error'}

        logger.info(f"Balances synced for integration {integration.id}: {updated} accounts updated")
        return {'success': True, 'updated': updated}

    def get_sync_logs(self, integration_id: int, limit: int = 20) -> List[BankSyncLog]:
        """Most recent sync log rows for an integration, newest first."""
        self.tokens.get_integration(integration_id)
        return self.db.query(BankSyncLog).filter(
            BankSyncLog.company_id == self.company_id,
            BankSyncLog.integration_id == integration_id
        ).order_by(BankSyncLog.started_at.desc(), BankSyncLog.id.desc()).limit(limit).all()
