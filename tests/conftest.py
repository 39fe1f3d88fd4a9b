"""Shared fixtures: in-memory database, seeded company data and a fake bank."""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-bank-core")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CRON_SECRET", "cron-test-secret")

from datetime import datetime, timedelta, date
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backend.database import Base
from backend.app import models
from backend.app.bank_integration.encryption import TokenEncryption

ACCOUNT_NUMBER = "40702810000000000001"
TOKEN_URL_SUFFIX = "/auth/token"


class FakeBank:
    """
    Scriptable bank for httpx.MockTransport.

    Routes match on HTTP method and URL path suffix. Unrouted calls get a 404.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self._routes: Dict[tuple, Callable[[httpx.Request], httpx.Response]] = {}

    def on(self, method: str, path_suffix: str, status_code: int = 200, json: Any = None,
           handler: Optional[Callable[[httpx.Request], httpx.Response]] = None):
        if handler is None:
            def handler(request, status_code=status_code, json=json):
                return httpx.Response(status_code, json=json)
        self._routes[(method, path_suffix)] = handler

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for (method, suffix), handler in self._routes.items():
            if request.method == method and request.url.path.endswith(suffix):
                return handler(request)
        return httpx.Response(404, json={"error": "not mocked"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def calls(self, path_suffix: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(path_suffix)]


@pytest.fixture
def fake_bank():
    return FakeBank()


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def encryption():
    return TokenEncryption()


@pytest.fixture
def company(db):
    company = models.Company(name="ООО Ромашка", inn="7701234567")
    db.add(company)
    db.commit()
    return company


@pytest.fixture
def other_company(db):
    company = models.Company(name="ООО Лютик", inn="7709876543")
    db.add(company)
    db.commit()
    return company


@pytest.fixture
def make_integration(db, encryption):
    def _make(company, bank_code="tinkoff", **overrides):
        values = dict(
            company_id=company.id,
            bank_code=bank_code,
            bank_name="Тинькофф Бизнес" if bank_code == "tinkoff" else bank_code,
            api_client_id="client-id",
            api_client_secret=encryption.encrypt("client-secret"),
            api_access_token=encryption.encrypt("access-1"),
            api_refresh_token=encryption.encrypt("refresh-1"),
            api_token_expires_at=datetime.utcnow() + timedelta(hours=1),
            is_sandbox=True,
            status=models.IntegrationStatus.ACTIVE,
        )
        values.update(overrides)
        integration = models.BankIntegration(**values)
        db.add(integration)
        db.commit()
        return integration
    return _make


@pytest.fixture
def integration(company, make_integration):
    return make_integration(company)


@pytest.fixture
def make_account(db):
    def _make(company, integration=None, account_number=ACCOUNT_NUMBER, **overrides):
        values = dict(
            company_id=company.id,
            integration_id=integration.id if integration else None,
            name="Расчётный счёт",
            account_number=account_number,
            bank_name="Тинькофф Банк",
            bank_bik="044525974",
        )
        values.update(overrides)
        account = models.BankAccount(**values)
        db.add(account)
        db.commit()
        return account
    return _make


@pytest.fixture
def account(company, integration, make_account):
    return make_account(company, integration)


@pytest.fixture
def make_transaction(db):
    def _make(account, **overrides):
        values = dict(
            company_id=account.company_id,
            bank_account_id=account.id,
            integration_id=account.integration_id,
            transaction_date=date(2024, 3, 1),
            operation_type=models.OperationType.DEBIT,
            amount=Decimal("1000.00"),
            processing_status=models.ProcessingStatus.NEW,
        )
        values.update(overrides)
        tx = models.BankTransaction(**values)
        db.add(tx)
        db.commit()
        return tx
    return _make


@pytest.fixture
def make_payment_order(db):
    def _make(account, **overrides):
        values = dict(
            company_id=account.company_id,
            bank_account_id=account.id,
            order_number="17",
            order_date=date(2024, 3, 15),
            amount=Decimal("15000.00"),
            recipient_name="ООО Арендодатель",
            recipient_inn="7712345678",
            recipient_kpp="771201001",
            recipient_account="40702810900000000002",
            recipient_bank_name="ПАО Сбербанк",
            recipient_bank_bik="044525225",
            recipient_bank_corr_account="30101810400000000225",
            purpose="Оплата по договору №12 аренда офиса за март",
            status=models.PaymentOrderStatus.DRAFT,
        )
        values.update(overrides)
        order = models.PaymentOrder(**values)
        db.add(order)
        db.commit()
        return order
    return _make
