"""Tests for keyword and history categorization."""

from datetime import date, timedelta

import pytest

from backend.app import models
from backend.app.bank_integration.categorization import (
    CategorizationEngine, CategoryRule, categorize_by_keywords
)

DEBIT = models.OperationType.DEBIT
CREDIT = models.OperationType.CREDIT
LANDLORD_INN = "7712345678"


def test_debit_purpose_only_matches_expense_rules():
    result = categorize_by_keywords("Оплата по договору №12 аренда офиса", DEBIT)

    assert result.category_code == "rent"
    assert result.category_name == "Аренда"
    assert result.confidence == 0.7
    assert result.matched_signals == ["аренда"]


def test_credit_purpose_only_matches_income_rules():
    result = categorize_by_keywords("Оплата по договору №12 аренда офиса", CREDIT)

    assert result.category_code == "sales"


def test_rule_matching_more_keywords_wins_regardless_of_order():
    rules = (
        CategoryRule(("alpha",), "first", "First", DEBIT),
        CategoryRule(("beta", "gamma"), "second", "Second", DEBIT),
    )

    result = categorize_by_keywords("alpha beta gamma", DEBIT, rules=rules)

    assert result.category_code == "second"
    assert result.confidence == 0.9


def test_equal_keyword_counts_keep_earlier_rule():
    rules = (
        CategoryRule(("alpha",), "first", "First", DEBIT),
        CategoryRule(("beta",), "second", "Second", DEBIT),
    )

    assert categorize_by_keywords("beta alpha", DEBIT, rules=rules).category_code == "first"


def test_confidence_is_capped_at_one():
    result = categorize_by_keywords(
        "интернет телефон связь мтс билайн", DEBIT
    )

    assert result.category_code == "telecom"
    assert result.confidence == 1.0


def test_no_purpose_or_no_match():
    assert categorize_by_keywords(None, DEBIT) is None
    assert categorize_by_keywords("перевод собственных средств", DEBIT) is None


def _history(make_transaction, account, categories, inn=LANDLORD_INN):
    for i, category in enumerate(categories):
        make_transaction(
            account,
            counterparty_inn=inn,
            transaction_date=date(2024, 1, 1) + timedelta(days=i),
            category=category,
            processing_status=models.ProcessingStatus.PROCESSED,
        )


def test_confident_history_wins_without_keyword_scoring(db, company, account, make_transaction):
    _history(make_transaction, account, ["rent"] * 8 + ["utilities"] * 2)
    tx = make_transaction(
        account,
        counterparty_inn=LANDLORD_INN,
        purpose="Оплата интернет и телефон связь",
        transaction_date=date(2024, 3, 1),
    )

    result = CategorizationEngine(db, company.id).auto_categorize(tx)

    assert result.category_code == "rent"
    assert result.category_name == "Аренда"
    assert result.confidence == 0.8


def test_history_ignores_other_direction_and_unprocessed(db, company, account, make_transaction):
    make_transaction(account, counterparty_inn=LANDLORD_INN, category="sales",
                     operation_type=CREDIT, processing_status=models.ProcessingStatus.PROCESSED)
    make_transaction(account, counterparty_inn=LANDLORD_INN, category="rent",
                     processing_status=models.ProcessingStatus.PENDING)
    tx = make_transaction(account, counterparty_inn=LANDLORD_INN)

    assert CategorizationEngine(db, company.id).categorize_by_history(tx) is None


def test_history_samples_ten_most_recent(db, company, account, make_transaction):
    # Two old utilities payments fall outside the sample of ten
    _history(make_transaction, account, ["utilities"] * 2 + ["rent"] * 10)
    tx = make_transaction(account, counterparty_inn=LANDLORD_INN, transaction_date=date(2024, 6, 1))

    result = CategorizationEngine(db, company.id).categorize_by_history(tx)

    assert result.category_code == "rent"
    assert result.confidence == 1.0


def test_weak_history_loses_to_stronger_keywords(db, company, account, make_transaction):
    _history(make_transaction, account, ["rent", "utilities"])
    tx = make_transaction(
        account,
        counterparty_inn=LANDLORD_INN,
        purpose="Электроэнергия и отопление",
        transaction_date=date(2024, 3, 1),
    )

    result = CategorizationEngine(db, company.id).auto_categorize(tx)

    assert result.category_code == "utilities"
    assert result.confidence == 0.9


def test_batch_applies_confidence_thresholds(db, company, account, make_transaction):
    confident = make_transaction(account, purpose="аренда, арендная плата за март")
    review = make_transaction(account, purpose="аренда офиса")
    unknown = make_transaction(account, purpose="перевод собственных средств")
    already = make_transaction(account, purpose="аренда", category="rent",
                               processing_status=models.ProcessingStatus.PENDING)

    stats = CategorizationEngine(db, company.id).categorize_new_transactions()

    assert stats == {"processed": 3, "categorized": 2, "auto_processed": 1, "needs_review": 1}
    for tx in (confident, review, unknown, already):
        db.refresh(tx)
    assert (confident.category, confident.processing_status) == ("rent", models.ProcessingStatus.PROCESSED)
    assert (review.category, review.processing_status) == ("rent", models.ProcessingStatus.PENDING)
    assert (unknown.category, unknown.processing_status) == (None, models.ProcessingStatus.NEW)


def test_batch_can_be_limited_to_one_account(db, company, integration, account, make_account, make_transaction):
    second = make_account(company, integration, account_number="40702810000000000002")
    make_transaction(account, purpose="аренда офиса")
    make_transaction(second, purpose="аренда склада")

    stats = CategorizationEngine(db, company.id).categorize_new_transactions(bank_account_id=second.id)

    assert stats["processed"] == 1


def test_manual_category_is_always_processed(db, company, other_company, account, make_account, make_transaction):
    tx = make_transaction(account, purpose="перевод")
    foreign = make_transaction(make_account(other_company, account_number="40702810000000000099"))
    engine = CategorizationEngine(db, company.id)

    assert engine.apply_category(tx.id, "office") == {"success": True}
    db.refresh(tx)
    assert tx.category == "office"
    assert tx.processing_status == models.ProcessingStatus.PROCESSED

    assert engine.apply_category(foreign.id, "office")["error_code"] == "not_found"


def test_suggestions_are_sorted_by_confidence(db, company, account, make_transaction):
    _history(make_transaction, account, ["rent", "utilities", "rent"])
    tx = make_transaction(
        account,
        counterparty_inn=LANDLORD_INN,
        purpose="аренда, арендная плата",
        transaction_date=date(2024, 3, 1),
    )

    suggestions = CategorizationEngine(db, company.id).get_suggested_categories(tx.id)

    assert [s.category_code for s in suggestions] == ["rent", "rent"]
    assert [s.confidence for s in suggestions] == [0.9, 0.67]
