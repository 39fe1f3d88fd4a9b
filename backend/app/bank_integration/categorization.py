"""
Categorization Engine

Assigns an accounting category to imported bank transactions from two
signals: keywords in the payment purpose and the company's own history
with the same counterparty.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List, Optional, Tuple

from sqlalchemy.orm import Session

from backend.app.models import BankTransaction, OperationType, ProcessingStatus
from .errors import BankIntegrationError, NotFound, ValidationError

logger = logging.getLogger(__name__)

HISTORY_SAMPLE_SIZE = 10
HISTORY_SHORT_CIRCUIT = 0.7
AUTO_PROCESS_THRESHOLD = 0.8
REVIEW_THRESHOLD = 0.5
BATCH_LIMIT = 100


@dataclass(frozen=True)
class CategoryRule:
    keywords: Tuple[str, ...]
    category_code: str
    category_name: str
    operation_type: OperationType


@dataclass
class CategorizationResult:
    category_code: str
    category_name: str
    confidence: float
    matched_signals: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_INCOME = OperationType.CREDIT
_EXPENSE = OperationType.DEBIT

# Order matters: on equal keyword counts the earlier rule wins
CATEGORIZATION_RULES: Tuple[CategoryRule, ...] = (
    # Income
    CategoryRule(("оплата по договору", "оплата по счету", "оплата счета"), "sales", "Продажи", _INCOME),
    CategoryRule(("возврат", "возмещение"), "refund", "Возвраты", _INCOME),
    CategoryRule(("аванс", "предоплата"), "prepayment", "Авансы полученные", _INCOME),

    # Payroll
    CategoryRule(("заработная плата", "зарплата", "аванс сотрудникам"), "salary", "Зарплата", _EXPENSE),
    CategoryRule(("ндфл", "налог на доходы"), "ndfl", "НДФЛ", _EXPENSE),
    CategoryRule(("страховые взносы", "пфр", "фсс", "ффомс"), "insurance", "Страховые взносы", _EXPENSE),

    # Taxes
    CategoryRule(("налог на прибыль",), "profit_tax", "Налог на прибыль", _EXPENSE),
    CategoryRule(("ндс", "налог на добавленную стоимость"), "vat", "НДС", _EXPENSE),
    CategoryRule(("усн", "упрощенн"), "usn", "УСН", _EXPENSE),
    CategoryRule(("налог на имущество",), "property_tax", "Налог на имущество", _EXPENSE),

    # Premises
    CategoryRule(("аренда", "арендная плата"), "rent", "Аренда", _EXPENSE),
    CategoryRule(("коммунальные", "электроэнергия", "отопление", "водоснабжение"), "utilities", "Коммунальные услуги", _EXPENSE),

    CategoryRule(("интернет", "телефон", "связь", "мтс", "билайн", "мегафон", "теле2"), "telecom", "Связь", _EXPENSE),
    CategoryRule(("комиссия банка", "банковская комиссия", "обслуживание счета"), "bank_fee", "Банковские комиссии", _EXPENSE),

    # Purchases
    CategoryRule(("закупка", "поставка товаров", "материалы"), "purchase", "Закупки", _EXPENSE),
    CategoryRule(("канцтовары", "канцелярские"), "office", "Канцтовары", _EXPENSE),

    # Services
    CategoryRule(("консультационные услуги", "юридические услуги", "бухгалтерские услуги"), "consulting", "Консалтинг", _EXPENSE),
    CategoryRule(("рекламные услуги", "маркетинг", "продвижение"), "marketing", "Маркетинг", _EXPENSE),
    CategoryRule(("транспортные услуги", "доставка", "перевозка"), "transport", "Транспорт", _EXPENSE),

    CategoryRule(("подписка", "лицензия", "программное обеспечение", "saas"), "software", "ПО и подписки", _EXPENSE),
)


def get_category_name(category_code: str) -> str:
    """Display name for a category code; unknown codes are shown as-is."""
    for rule in CATEGORIZATION_RULES:
        if rule.category_code == category_code:
            return rule.category_name
    return category_code


def categorize_by_keywords(
    purpose: Optional[str],
    operation_type: OperationType,
    rules: Tuple[CategoryRule, ...] = CATEGORIZATION_RULES
) -> Optional[CategorizationResult]:
    """
    Match the payment purpose against the rule table.

    Only rules for the transaction's direction are considered. The rule with
    the most matched keywords wins; a later rule needs strictly more matches
    to displace an earlier one.

    Args:
        purpose: Payment purpose text
        operation_type: credit (income rules) or debit (expense rules)
        rules: Rule table, in priority order

    Returns:
        CategorizationResult or None if nothing matched
    """
    if not purpose:
        return None

    purpose_lower = purpose.lower()
    best_match = None
    max_matched = 0

    for rule in rules:
        if rule.operation_type != operation_type:
            continue

        matched = [kw for kw in rule.keywords if kw.lower() in purpose_lower]
        if len(matched) > max_matched:
            max_matched = len(matched)
            best_match = CategorizationResult(
                category_code=rule.category_code,
                category_name=rule.category_name,
                confidence=round(min(0.5 + 0.2 * len(matched), 1.0), 2),
                matched_signals=matched
            )

    return best_match


class CategorizationEngine:
    """Categorization of one company's bank transactions."""

    def __init__(self, db: Session, company_id: int):
        self.db = db
        self.company_id = company_id

    def _get_transaction(self, transaction_id: int) -> BankTransaction:
        tx = self.db.query(BankTransaction).filter(
            BankTransaction.id == transaction_id,
            BankTransaction.company_id == self.company_id
        ).first()
        if not tx:
            raise NotFound("Transaction not found")
        return tx

    def categorize_by_keywords(self, transaction: BankTransaction) -> Optional[CategorizationResult]:
        return categorize_by_keywords(transaction.purpose, transaction.operation_type)

    def categorize_by_history(self, transaction: BankTransaction) -> Optional[CategorizationResult]:
        """
        Most frequent category among the latest processed transactions with
        the same counterparty INN and direction.

        Confidence is the top category's share of the sample.
        """
        if not transaction.counterparty_inn:
            return None

        query = self.db.query(BankTransaction.category).filter(
            BankTransaction.company_id == self.company_id,
            BankTransaction.counterparty_inn == transaction.counterparty_inn,
            BankTransaction.operation_type == transaction.operation_type,
            BankTransaction.processing_status == ProcessingStatus.PROCESSED,
            BankTransaction.category.isnot(None)
        )
        if transaction.id is not None:
            query = query.filter(BankTransaction.id != transaction.id)

        rows = query.order_by(
            BankTransaction.transaction_date.desc(),
            BankTransaction.id.desc()
        ).limit(HISTORY_SAMPLE_SIZE).all()

        if not rows:
            return None

        # most_common keeps first-encountered order on equal counts
        top_category, count = Counter(row.category for row in rows).most_common(1)[0]

        return CategorizationResult(
            category_code=top_category,
            category_name=get_category_name(top_category),
            confidence=round(count / len(rows), 2),
            matched_signals=[f"History: {count} of {len(rows)} payments"]
        )

    def auto_categorize(self, transaction: BankTransaction) -> Optional[CategorizationResult]:
        """
        Combine both strategies.

        A confident history match (>= 0.7) is returned without keyword
        scoring. Otherwise the higher confidence wins, keywords on a tie.
        """
        history_result = self.categorize_by_history(transaction)
        if history_result and history_result.confidence >= HISTORY_SHORT_CIRCUIT:
            return history_result

        keyword_result = self.categorize_by_keywords(transaction)

        if keyword_result and history_result:
            if keyword_result.confidence >= history_result.confidence:
                return keyword_result
            return history_result

        return keyword_result or history_result

    def categorize_new_transactions(self, bank_account_id: Optional[int] = None) -> Dict[str, int]:
        """
        Categorize a batch of new, uncategorized transactions.

        Confidence >= 0.8 marks the transaction processed, >= 0.5 leaves it
        pending for review, anything lower leaves it untouched.

        Returns:
            {'processed': int, 'categorized': int, 'auto_processed': int, 'needs_review': int}
        """
        query = self.db.query(BankTransaction).filter(
            BankTransaction.company_id == self.company_id,
            BankTransaction.processing_status == ProcessingStatus.NEW,
            BankTransaction.category.is_(None)
        )
        if bank_account_id is not None:
            query = query.filter(BankTransaction.bank_account_id == bank_account_id)

        transactions = query.order_by(BankTransaction.id).limit(BATCH_LIMIT).all()

        stats = {'processed': len(transactions), 'categorized': 0, 'auto_processed': 0, 'needs_review': 0}

        for tx in transactions:
            result = self.auto_categorize(tx)
            if not result or result.confidence < REVIEW_THRESHOLD:
                continue

            tx.category = result.category_code
            if result.confidence >= AUTO_PROCESS_THRESHOLD:
                tx.processing_status = ProcessingStatus.PROCESSED
                stats['auto_processed'] += 1
            else:
                tx.processing_status = ProcessingStatus.PENDING
                stats['needs_review'] += 1
            stats['categorized'] += 1

            # Later transactions in the batch see this one as history
            self.db.flush()

        self.db.commit()

        logger.info(
            f"Categorized {stats['categorized']} of {stats['processed']} transactions "
            f"for company {self.company_id} ({stats['auto_processed']} auto, {stats['needs_review']} for review)"
        )
        return stats

    def apply_category(self, transaction_id: int, category_code: str) -> Dict[str, Any]:
        """Manual override. Always marks the transaction processed."""
        try:
            if not category_code:
                raise ValidationError("Category code is required")
            tx = self._get_transaction(transaction_id)
        except BankIntegrationError as e:
            return {'success': False, 'error': e.message, 'error_code': e.code}

        tx.category = category_code
        tx.processing_status = ProcessingStatus.PROCESSED
        self.db.commit()

        return {'success': True}

    def get_suggested_categories(self, transaction_id: int) -> List[CategorizationResult]:
        """
        Both strategies' results for one transaction, highest confidence first.

        Raises:
            NotFound: If the transaction does not belong to the company
        """
        tx = self._get_transaction(transaction_id)

        results = []
        keyword_result = self.categorize_by_keywords(tx)
        if keyword_result:
            results.append(keyword_result)
        history_result = self.categorize_by_history(tx)
        if history_result:
            results.append(history_result)

        return sorted(results, key=lambda r: r.confidence, reverse=True)
