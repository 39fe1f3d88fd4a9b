"""
Bank Integration Service

Entry point for bank integration work within one company:
- Token lifecycle (OAuth connect, refresh)
- Statement and balance sync
- Transaction categorization
- Payment order submission and tracking

Also hosts the scheduled sync that walks every company's active integrations.
"""

import logging
from datetime import datetime, date, timedelta
from typing import Dict, Any, Optional

import httpx
from sqlalchemy.orm import Session

from backend.app.models import (
    BankIntegration, BankAccount, BankSyncLog,
    IntegrationStatus, BankSyncOperation, BankSyncStatus
)
from backend.config import get_settings
from .categorization import CategorizationEngine
from .errors import BankIntegrationError
from .payments import PaymentOrderSubmitter
from .sync import TransactionSynchronizer
from .tokens import TokenManager

logger = logging.getLogger(__name__)


def get_bank_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Dependency giving the httpx transport for bank calls. None uses the real network."""
    return None


class BankIntegrationService:
    """
    Main service for bank integration, scoped to one company.

    Example:
        >>> service = BankIntegrationService(db, company_id=1)
        >>> result = await service.synchronizer.sync_transactions(integration_id=3, bank_account_id=7)
        >>> print(f"Created {result['created']} transactions")
    """

    def __init__(
        self,
        db: Session,
        company_id: int,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Args:
            db: SQLAlchemy database session
            company_id: Company the caller acts for
            transport: Optional httpx transport for bank calls (tests inject a MockTransport)
        """
        self.db = db
        self.company_id = company_id
        self.tokens = TokenManager(db, company_id, transport=transport)
        self.synchronizer = TransactionSynchronizer(db, company_id, tokens=self.tokens, transport=transport)
        self.categorizer = CategorizationEngine(db, company_id)
        self.payments = PaymentOrderSubmitter(db, company_id, tokens=self.tokens, transport=transport)

    def disconnect(self, integration_id: int) -> Dict[str, Any]:
        """
        Disconnect an integration.

        Drops stored tokens and any pending OAuth state. Accounts and
        imported transactions are kept.
        """
        try:
            integration = self.tokens.get_integration(integration_id)
        except BankIntegrationError as e:
            return {'success': False, 'error': e.message, 'error_code': e.code}

        integration.status = IntegrationStatus.DISCONNECTED
        integration.api_access_token = None
        integration.api_refresh_token = None
        integration.api_token_expires_at = None
        integration.oauth_state = None
        self.db.commit()

        logger.info(f"Integration {integration.id} disconnected")
        return {'success': True}


async def run_scheduled_sync(
    db: Session,
    days: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> Dict[str, Any]:
    """
    Sync every active, sync-enabled integration across all companies.

    For each integration: ensure a valid token, sync each linked account for
    the last `days` days, refresh balances, sweep in-flight payment orders and
    categorize new transactions. A failing integration is recorded and
    skipped; it never stops the run.

    Args:
        db: SQLAlchemy database session
        days: Statement window length (default: settings.scheduled_sync_days)
        transport: Optional httpx transport for bank calls

    Returns:
        {
            'success': True,
            'integrations': int,
            'accounts_synced': int,
            'created': int,
            'updated': int,
            'errors': List[str]
        }
    """
    days = days or get_settings().scheduled_sync_days
    date_to = date.today()
    date_from = date_to - timedelta(days=days)

    sync_log = BankSyncLog(
        company_id=None,
        integration_id=None,
        operation_type=BankSyncOperation.CRON_SYNC,
        status=BankSyncStatus.STARTED,
        sync_from_date=date_from,
        sync_to_date=date_to,
        started_at=datetime.utcnow()
    )
    db.add(sync_log)
    db.commit()

    integrations = db.query(BankIntegration).filter(
        BankIntegration.status == IntegrationStatus.ACTIVE,
        BankIntegration.sync_enabled == True
    ).order_by(BankIntegration.id).all()

    logger.info(f"Scheduled sync started for {len(integrations)} integrations, window {date_from}..{date_to}")

    summary = {
        'success': True,
        'integrations': len(integrations),
        'accounts_synced': 0,
        'created': 0,
        'updated': 0,
        'errors': []
    }

    for integration in integrations:
        integration_id = integration.id
        service = BankIntegrationService(db, integration.company_id, transport=transport)

        token_result = await service.tokens.ensure_valid_token(integration_id)
        if not token_result['valid']:
            summary['errors'].append(f"Integration {integration_id}: {token_result['error']}")
            continue

        accounts = db.query(BankAccount).filter(
            BankAccount.company_id == integration.company_id,
            BankAccount.integration_id == integration_id
        ).order_by(BankAccount.id).all()

        for account in accounts:
            result = await service.synchronizer.sync_transactions(
                integration_id, account.id, date_from=date_from, date_to=date_to
            )
            if result['success']:
                summary['accounts_synced'] += 1
                summary['created'] += result['created']
                summary['updated'] += result['updated']
            else:
                summary['errors'].append(f"Integration {integration_id}, account {account.id}: {result['error']}")

        balance_result = await service.synchronizer.sync_balances(integration_id)
        if not balance_result['success']:
            summary['errors'].append(f"Integration {integration_id} balances: {balance_result['error']}")

        await service.payments.sync_statuses()
        service.categorizer.categorize_new_transactions()

    sync_log.status = BankSyncStatus.PARTIAL if summary['errors'] else BankSyncStatus.SUCCESS
    sync_log.records_processed = summary['accounts_synced']
    sync_log.records_created = summary['created']
    sync_log.records_updated = summary['updated']
    sync_log.error_message = "\n".join(summary['errors']) or None
    sync_log.finished_at = datetime.utcnow()
    db.commit()

    logger.info(
        f"Scheduled sync finished: {summary['accounts_synced']} accounts, "
        f"{summary['created']} created, {len(summary['errors'])} errors"
    )
    return summary
