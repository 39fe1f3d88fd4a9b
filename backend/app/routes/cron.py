"""
Scheduled job endpoints

Called by an external scheduler, authenticated with the shared cron secret
rather than a user token.
"""

import hmac
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Header, status
from sqlalchemy.orm import Session

from backend.config import get_settings
from backend.database import get_db
from backend.app import schemas
from backend.app.bank_integration.service import run_scheduled_sync, get_bank_transport

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


def verify_cron_secret(authorization: Optional[str] = Header(None)):
    cron_secret = get_settings().cron_secret
    expected = f"Bearer {cron_secret}"

    # An unset secret disables the endpoint
    if not cron_secret or not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
        logger.warning("Rejected cron call with invalid credentials")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized"
        )


@router.post("/bank-sync", response_model=schemas.ScheduledSyncResponse, dependencies=[Depends(verify_cron_secret)])
async def scheduled_bank_sync(
    db: Session = Depends(get_db),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_bank_transport)
):
    """Sync all active bank integrations across companies."""
    return await run_scheduled_sync(db, transport=transport)
