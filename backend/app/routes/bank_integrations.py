"""
Bank Integration Routes

Company-facing endpoints for:
- Starting the OAuth flow and handling the bank's callback
- Syncing transactions and balances
- Disconnecting a bank
- Viewing sync history
"""

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import List, Optional

import httpx

from backend.database import get_db
from backend.app import models, schemas
from backend.app.auth import get_current_company
from backend.app.bank_integration.errors import NotFound
from backend.app.bank_integration.service import BankIntegrationService, get_bank_transport
from backend.app.bank_integration.tokens import find_integration_by_oauth_state
from .bank_errors import raise_for_failure


router = APIRouter(prefix="/accounting", tags=["bank-integrations"])


@router.post("/bank-integrations/{integration_id}/oauth-url", response_model=schemas.OAuthUrlResponse)
def create_oauth_url(
    integration_id: int,
    db: Session = Depends(get_db),
    current_company: models.Company = Depends(get_current_company)
):
    """
    Build the bank authorization URL the user should be redirected to.

    Example:
        POST /accounting/bank-integrations/3/oauth-url

        Response:
        {
            "url": "https://id.tinkoff.ru/auth/authorize?response_type=code&...",
            "state": "Qx3..."
        }
    """
    service = BankIntegrationService(db, current_company.id)
    return raise_for_failure(service.tokens.generate_oauth_url(integration_id))


@router.get("/bank-oauth/callback", response_model=schemas.OAuthCallbackResponse)
async def oauth_callback(
    code: str = Query(..., description="Authorization code"),
    state: str = Query(..., description="CSRF state token"),
    db: Session = Depends(get_db),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_bank_transport)
):
    """
    OAuth callback endpoint.

    The bank redirects the user here with only `code` and `state`, and
    without our bearer token, so the integration (and its bank) is located
    by its one-time state.

    Example:
        GET /accounting/bank-oauth/callback?code=c0de&state=Qx3...
    """
    integration = find_integration_by_oauth_state(db, state)
    if not integration:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid state or integration not found"
        )

    service = BankIntegrationService(db, integration.company_id, transport=transport)
    result = await service.tokens.exchange_code_for_tokens(integration.bank_code, code, state)
    return raise_for_failure(result)


@router.post("/bank-integrations/{integration_id}/sync", response_model=schemas.SyncResponse)
async def sync_transactions(
    integration_id: int,
    sync_params: schemas.SyncParams,
    db: Session = Depends(get_db),
    current_company: models.Company = Depends(get_current_company),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_bank_transport)
):
    """
    Manually trigger a statement sync for one account.

    Example:
        POST /accounting/bank-integrations/3/sync
        {
            "bank_account_id": 7,
            "date_from": "2024-01-01",
            "date_to": "2024-01-31"
        }
    """
    service = BankIntegrationService(db, current_company.id, transport=transport)
    result = await service.synchronizer.sync_transactions(
        integration_id,
        sync_params.bank_account_id,
        date_from=sync_params.date_from,
        date_to=sync_params.date_to
    )
    return raise_for_failure(result)


@router.post("/bank-integrations/{integration_id}/sync-balances", response_model=schemas.BalanceSyncResponse)
async def sync_balances(
    integration_id: int,
    db: Session = Depends(get_db),
    current_company: models.Company = Depends(get_current_company),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_bank_transport)
):
    service = BankIntegrationService(db, current_company.id, transport=transport)
    return raise_for_failure(await service.synchronizer.sync_balances(integration_id))


@router.delete("/bank-integrations/{integration_id}")
def disconnect_integration(
    integration_id: int,
    db: Session = Depends(get_db),
    current_company: models.Company = Depends(get_current_company)
):
    """
    Disconnect a bank.

    Stored tokens are dropped; accounts and imported transactions are kept.
    """
    service = BankIntegrationService(db, current_company.id)
    raise_for_failure(service.disconnect(integration_id))
    return {"success": True, "message": "Bank disconnected"}


@router.get("/bank-integrations/{integration_id}/logs", response_model=List[schemas.BankSyncLog])
def list_sync_logs(
    integration_id: int,
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_company: models.Company = Depends(get_current_company)
):
    service = BankIntegrationService(db, current_company.id)
    try:
        return service.synchronizer.get_sync_logs(integration_id, limit=limit)
    except NotFound as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=e.message
        )
