from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime

from .models import BankSyncOperation, BankSyncStatus


class TokenData(BaseModel):
    company_id: Optional[int] = None


# Bank Integration Schemas

class OAuthUrlResponse(BaseModel):
    url: str
    state: str


class OAuthCallbackResponse(BaseModel):
    success: bool
    integration_id: int


class SyncParams(BaseModel):
    bank_account_id: int
    date_from: Optional[date] = None
    date_to: Optional[date] = None


class SyncResponse(BaseModel):
    success: bool
    created: int
    updated: int
    processed: int
    errors: List[str] = []
    error: Optional[str] = None


class BalanceSyncResponse(BaseModel):
    success: bool
    updated: int


class BankSyncLog(BaseModel):
    id: int
    integration_id: Optional[int] = None
    operation_type: BankSyncOperation
    status: BankSyncStatus
    sync_from_date: Optional[date] = None
    sync_to_date: Optional[date] = None
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    error_message: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Categorization Schemas

class CategorizeRequest(BaseModel):
    bank_account_id: Optional[int] = None


class CategorizeResponse(BaseModel):
    processed: int
    categorized: int
    auto_processed: int
    needs_review: int


class ApplyCategoryRequest(BaseModel):
    category_code: str = Field(..., min_length=1, max_length=100)


class CategorySuggestion(BaseModel):
    category_code: str
    category_name: str
    confidence: float = Field(..., ge=0, le=1)
    matched_signals: List[str] = []


# Payment Order Schemas

class PaymentSendResponse(BaseModel):
    success: bool
    external_id: str


class PaymentStatusResponse(BaseModel):
    success: bool
    status: str
    bank_status: Optional[str] = None


class PaymentStatusSyncResponse(BaseModel):
    checked: int
    updated: int


class ScheduledSyncResponse(BaseModel):
    success: bool
    integrations: int
    accounts_synced: int
    created: int
    updated: int
    errors: List[str] = []
