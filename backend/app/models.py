from sqlalchemy import Column, Integer, String, Boolean, DateTime, Date, DECIMAL, Text, ForeignKey, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from backend.database import Base


def _enum_values(enum_cls):
    # Persist the lowercase values the UI layer reads, not the member names
    return [member.value for member in enum_cls]


class IntegrationStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    TOKEN_EXPIRED = "token_expired"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class IntegrationType(str, enum.Enum):
    API = "api"
    ONE_C = "1c"
    MANUAL = "manual"


class BankAccountStatus(str, enum.Enum):
    ACTIVE = "active"
    BLOCKED = "blocked"
    CLOSED = "closed"


class OperationType(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class ProcessingStatus(str, enum.Enum):
    NEW = "new"
    PENDING = "pending"
    PROCESSED = "processed"
    IGNORED = "ignored"
    ERROR = "error"


class PaymentOrderStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    ACCEPTED = "accepted"
    PROCESSING = "processing"
    EXECUTED = "executed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    ERROR = "error"


class VatType(str, enum.Enum):
    NONE = "none"
    INCLUDED = "included"
    EXCLUDED = "excluded"


class BankSyncOperation(str, enum.Enum):
    SYNC_TRANSACTIONS = "sync_transactions"
    SYNC_BALANCES = "sync_balances"
    CRON_SYNC = "cron_sync"


class BankSyncStatus(str, enum.Enum):
    STARTED = "started"
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class Company(Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    inn = Column(String(12), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    bank_integrations = relationship("BankIntegration", back_populates="company")
    bank_accounts = relationship("BankAccount", back_populates="company")


# Bank Integration Models

class BankIntegration(Base):
    __tablename__ = "bank_integrations"
    __table_args__ = (
        UniqueConstraint("company_id", "bank_code", name="uq_bank_integrations_company_bank"),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    bank_code = Column(String(50), nullable=False)
    bank_name = Column(String(255), nullable=False)
    integration_type = Column(SQLEnum(IntegrationType, values_callable=_enum_values), default=IntegrationType.API)

    # OAuth client credentials (secret encrypted)
    api_client_id = Column(String(255), nullable=True)
    api_client_secret = Column(Text, nullable=True)

    # OAuth tokens (encrypted)
    api_access_token = Column(Text, nullable=True)
    api_refresh_token = Column(Text, nullable=True)
    api_token_expires_at = Column(DateTime, nullable=True)
    oauth_state = Column(String(64), nullable=True, index=True)

    is_sandbox = Column(Boolean, default=True)
    api_base_url = Column(String(500), nullable=True)

    # Connection status
    status = Column(SQLEnum(IntegrationStatus, values_callable=_enum_values), default=IntegrationStatus.PENDING, nullable=False)
    last_error = Column(Text, nullable=True)

    # Sync settings
    last_sync_at = Column(DateTime, nullable=True)
    sync_enabled = Column(Boolean, default=True)
    sync_interval_minutes = Column(Integer, default=120)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    company = relationship("Company", back_populates="bank_integrations")
    accounts = relationship("BankAccount", back_populates="integration")
    sync_logs = relationship("BankSyncLog", back_populates="integration")


class BankAccount(Base):
    __tablename__ = "bank_accounts"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    integration_id = Column(Integer, ForeignKey("bank_integrations.id"), nullable=True)
    name = Column(String(255), nullable=False)
    account_number = Column(String(20), nullable=False)
    currency = Column(String(3), default="RUB")
    bank_name = Column(String(255), nullable=True)
    bank_bik = Column(String(9), nullable=True)
    bank_corr_account = Column(String(20), nullable=True)

    # Read-through cache; the bank is always authoritative
    balance = Column(DECIMAL(15, 2), default=0.00)
    balance_updated_at = Column(DateTime, nullable=True)

    status = Column(SQLEnum(BankAccountStatus, values_callable=_enum_values), default=BankAccountStatus.ACTIVE)
    is_primary = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    company = relationship("Company", back_populates="bank_accounts")
    integration = relationship("BankIntegration", back_populates="accounts")
    transactions = relationship("BankTransaction", back_populates="bank_account")
    payment_orders = relationship("PaymentOrder", back_populates="bank_account")


class BankTransaction(Base):
    __tablename__ = "bank_transactions"
    __table_args__ = (
        UniqueConstraint("company_id", "external_id", name="uq_bank_transactions_company_external"),
    )

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    bank_account_id = Column(Integer, ForeignKey("bank_accounts.id"), nullable=False)
    integration_id = Column(Integer, ForeignKey("bank_integrations.id"), nullable=True)

    # Bank-assigned operation id (dedup key)
    external_id = Column(String(255), nullable=True)

    transaction_date = Column(Date, nullable=False)
    transaction_time = Column(String(8), nullable=True)
    operation_type = Column(SQLEnum(OperationType, values_callable=_enum_values), nullable=False)
    amount = Column(DECIMAL(15, 2), nullable=False)
    currency = Column(String(3), default="RUB")
    fee = Column(DECIMAL(15, 2), default=0.00)
    balance_after = Column(DECIMAL(15, 2), nullable=True)

    # Counterparty
    counterparty_name = Column(String(500), nullable=True)
    counterparty_inn = Column(String(12), nullable=True, index=True)
    counterparty_kpp = Column(String(9), nullable=True)
    counterparty_account = Column(String(20), nullable=True)
    counterparty_bank_name = Column(String(255), nullable=True)
    counterparty_bank_bik = Column(String(9), nullable=True)

    purpose = Column(Text, nullable=True)

    # Category as reported by the bank vs. our own categorization
    bank_category = Column(String(100), nullable=True)
    bank_status = Column(String(50), nullable=True)
    category = Column(String(100), nullable=True)
    processing_status = Column(SQLEnum(ProcessingStatus, values_callable=_enum_values), default=ProcessingStatus.NEW, nullable=False)

    # Raw data
    raw_data = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    bank_account = relationship("BankAccount", back_populates="transactions")


class PaymentOrder(Base):
    __tablename__ = "payment_orders"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    bank_account_id = Column(Integer, ForeignKey("bank_accounts.id"), nullable=False)

    order_number = Column(String(50), nullable=False)
    order_date = Column(Date, nullable=False)
    amount = Column(DECIMAL(15, 2), nullable=False)

    # Recipient
    recipient_name = Column(String(500), nullable=False)
    recipient_inn = Column(String(12), nullable=True)
    recipient_kpp = Column(String(9), nullable=True)
    recipient_account = Column(String(20), nullable=False)
    recipient_bank_name = Column(String(255), nullable=False)
    recipient_bank_bik = Column(String(9), nullable=False)
    recipient_bank_corr_account = Column(String(20), nullable=True)

    purpose = Column(Text, nullable=False)
    priority = Column(Integer, default=5)
    vat_type = Column(SQLEnum(VatType, values_callable=_enum_values), default=VatType.NONE)
    vat_amount = Column(DECIMAL(15, 2), default=0.00)

    # Lifecycle
    status = Column(SQLEnum(PaymentOrderStatus, values_callable=_enum_values), default=PaymentOrderStatus.DRAFT, nullable=False)
    external_id = Column(String(255), nullable=True)
    bank_status = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    executed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    bank_account = relationship("BankAccount", back_populates="payment_orders")


class BankSyncLog(Base):
    __tablename__ = "bank_sync_logs"

    id = Column(Integer, primary_key=True, index=True)
    # Both nullable: the scheduled run writes one system-wide row
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True, index=True)
    integration_id = Column(Integer, ForeignKey("bank_integrations.id"), nullable=True)

    operation_type = Column(SQLEnum(BankSyncOperation, values_callable=_enum_values), nullable=False)
    status = Column(SQLEnum(BankSyncStatus, values_callable=_enum_values), nullable=False)

    # Date range
    sync_from_date = Column(Date, nullable=True)
    sync_to_date = Column(Date, nullable=True)

    # Results
    records_processed = Column(Integer, default=0)
    records_created = Column(Integer, default=0)
    records_updated = Column(Integer, default=0)

    # Error handling
    error_message = Column(Text, nullable=True)

    # Timing
    started_at = Column(DateTime, nullable=False)
    finished_at = Column(DateTime, nullable=True)

    integration = relationship("BankIntegration", back_populates="sync_logs")
