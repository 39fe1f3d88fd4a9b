"""
Bank Transaction Routes

Categorization of imported bank transactions.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional

from backend.database import get_db
from backend.app import models, schemas
from backend.app.auth import get_current_company
from backend.app.bank_integration.errors import NotFound
from backend.app.bank_integration.service import BankIntegrationService
from .bank_errors import raise_for_failure


router = APIRouter(prefix="/accounting/bank-transactions", tags=["bank-transactions"])


@router.post("/categorize", response_model=schemas.CategorizeResponse)
def categorize_transactions(
    request: Optional[schemas.CategorizeRequest] = None,
    db: Session = Depends(get_db),
    current_company: models.Company = Depends(get_current_company)
):
    """
    Auto-categorize new transactions, optionally for a single account.

    Confident matches are marked processed, weaker ones are left pending
    for review.
    """
    service = BankIntegrationService(db, current_company.id)
    bank_account_id = request.bank_account_id if request else None
    return service.categorizer.categorize_new_transactions(bank_account_id=bank_account_id)


@router.post("/{transaction_id}/category")
def apply_category(
    transaction_id: int,
    request: schemas.ApplyCategoryRequest,
    db: Session = Depends(get_db),
    current_company: models.Company = Depends(get_current_company)
):
    service = BankIntegrationService(db, current_company.id)
    return raise_for_failure(service.categorizer.apply_category(transaction_id, request.category_code))


@router.get("/{transaction_id}/suggestions", response_model=List[schemas.CategorySuggestion])
def get_suggestions(
    transaction_id: int,
    db: Session = Depends(get_db),
    current_company: models.Company = Depends(get_current_company)
):
    service = BankIntegrationService(db, current_company.id)
    try:
        suggestions = service.categorizer.get_suggested_categories(transaction_id)
    except NotFound as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=e.message
        )
    return [s.to_dict() for s in suggestions]
