from typing import Optional
from sqlalchemy import create_engine, event, ForeignKey, Index, UniqueConstraint, Boolean, String, DECIMAL, DateTime, Date
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Mapped, relationship, mapped_column
from datetime import datetime, date
from decimal import Decimal
import enum

from konto.config import get_settings


class NotFoundError(Exception):
    pass


class Base(DeclarativeBase):
    pass


class ConnectionStatus(enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    ERROR = "error"
    EXPIRED = "expired"


class AssetType(enum.Enum):
    REAL_ESTATE = "real_estate"
    VEHICLE = "vehicle"
    VALUABLE = "valuable"
    OTHER = "other"


class Frequency(enum.Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"
    ONE_TIME = "one_time"


class UserDB(Base):
    __tablename__ = "users"

    __table_args__ = (
        UniqueConstraint("email", name="uq_user_email"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Currency every aggregate for this user is reported in
    display_currency: Mapped[str] = mapped_column(String(3), default="EUR")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    companies = relationship("CompanyDB", back_populates="user")
    accounts = relationship("AccountDB", back_populates="user")
    assets = relationship("AssetDB", back_populates="user")
    bank_connections = relationship("BankConnectionDB", back_populates="user")


class CompanyDB(Base):
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    siren: Mapped[Optional[str]] = mapped_column(String(9))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    user = relationship("UserDB", back_populates="companies")
    accounts = relationship("AccountDB", back_populates="company")


class AccountDB(Base):
    __tablename__ = "bank_accounts"

    __table_args__ = (
        Index("idx_accounts_user", "user_id"),
        Index("idx_accounts_provider", "provider", "provider_account_id"),
    )

    # Core Account Identification
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    company_id: Mapped[Optional[int]] = mapped_column(ForeignKey("companies.id"))

    # Provider identity (null for manual and blockchain entries)
    provider: Mapped[Optional[str]] = mapped_column(String(50))
    provider_account_id: Mapped[Optional[str]] = mapped_column(String(100))

    # Account Details
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    custom_name: Mapped[Optional[str]] = mapped_column(String(255))

    # Balance Tracking
    balance: Mapped[Decimal] = mapped_column(DECIMAL(15, 2), default=Decimal("0.00"))
    currency: Mapped[str] = mapped_column(String(3), default="EUR")
    last_sync: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Classification. type is free text so unknown provider codes survive.
    type: Mapped[str] = mapped_column(String(50), default="checking")
    subtype: Mapped[Optional[str]] = mapped_column(String(20))
    usage: Mapped[str] = mapped_column(String(20), default="personal")

    # Hidden accounts are kept but excluded from every total
    hidden: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    user = relationship("UserDB", back_populates="accounts")
    company = relationship("CompanyDB", back_populates="accounts")
    transactions = relationship("TransactionDB", back_populates="account", cascade="all, delete-orphan")

    @property
    def display_name(self) -> str:
        return self.custom_name or self.name


class TransactionDB(Base):
    __tablename__ = "transactions"

    __table_args__ = (
        Index("idx_transactions_account_date", "account_id", "transaction_date"),

        # Duplicate prevention on the natural key (account, date, amount, label)
        UniqueConstraint("account_id", "transaction_hash", name="uq_account_transaction_hash"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("bank_accounts.id"))

    transaction_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(DECIMAL(15, 2), nullable=False)
    label: Mapped[Optional[str]] = mapped_column(String(500))
    category: Mapped[Optional[str]] = mapped_column(String(255))
    is_pro: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    account = relationship("AccountDB", back_populates="transactions")


class AssetDB(Base):
    __tablename__ = "assets"

    __table_args__ = (
        Index("idx_assets_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    company_id: Mapped[Optional[int]] = mapped_column(ForeignKey("companies.id"))

    type: Mapped[str] = mapped_column(String(50), default=AssetType.OTHER.value)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Valuation
    purchase_price: Mapped[Optional[Decimal]] = mapped_column(DECIMAL(15, 2))
    current_value: Mapped[Optional[Decimal]] = mapped_column(DECIMAL(15, 2))
    currency: Mapped[str] = mapped_column(String(3), default="EUR")

    usage: Mapped[str] = mapped_column(String(20), default="personal")

    # Outstanding liability tied to this asset (a loan-type account)
    linked_loan_account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("bank_accounts.id"))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    user = relationship("UserDB", back_populates="assets")
    linked_loan = relationship("AccountDB", foreign_keys=[linked_loan_account_id])
    costs = relationship("AssetCostDB", back_populates="asset", cascade="all, delete-orphan")
    revenues = relationship("AssetRevenueDB", back_populates="asset", cascade="all, delete-orphan")


class AssetCostDB(Base):
    __tablename__ = "asset_costs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id", ondelete="CASCADE"))
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(DECIMAL(15, 2), nullable=False)
    frequency: Mapped[str] = mapped_column(String(20), default=Frequency.MONTHLY.value)
    category: Mapped[Optional[str]] = mapped_column(String(100))

    asset = relationship("AssetDB", back_populates="costs")


class AssetRevenueDB(Base):
    __tablename__ = "asset_revenues"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id", ondelete="CASCADE"))
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(DECIMAL(15, 2), nullable=False)
    frequency: Mapped[str] = mapped_column(String(20), default=Frequency.MONTHLY.value)

    asset = relationship("AssetDB", back_populates="revenues")


class SnapshotDB(Base):
    """
    One point-in-time total per (date, user, category).
    category is an account/asset type or the synthetic "total".
    """
    __tablename__ = "patrimoine_snapshots"

    __table_args__ = (
        # At most one row per key; re-runs replace the value
        UniqueConstraint("snapshot_date", "user_id", "category", name="uq_snapshot_date_user_category"),

        Index("idx_snapshots_user_date", "user_id", "snapshot_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    total_value: Mapped[Decimal] = mapped_column(DECIMAL(15, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class BankConnectionDB(Base):
    __tablename__ = "bank_connections"

    __table_args__ = (
        Index("idx_connections_user_status", "user_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    provider: Mapped[str] = mapped_column(String(50), default="powens")

    # Bearer credentials issued by the provider
    access_token: Mapped[Optional[str]] = mapped_column(String(500))
    refresh_token: Mapped[Optional[str]] = mapped_column(String(500))
    provider_connection_id: Mapped[Optional[str]] = mapped_column(String(100))

    status: Mapped[str] = mapped_column(String(20), default=ConnectionStatus.PENDING.value)
    last_sync: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    user = relationship("UserDB", back_populates="bank_connections")


class ExchangeRateDB(Base):
    """Rate table: 1 unit of base_currency = rate units of quote_currency."""
    __tablename__ = "exchange_rates"

    __table_args__ = (
        UniqueConstraint("base_currency", "quote_currency", name="uq_exchange_rate_pair"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    quote_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    rate: Mapped[Decimal] = mapped_column(DECIMAL(18, 8), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


def enable_sqlite_savepoints(sqlite_engine) -> None:
    """
    Let SQLAlchemy emit BEGIN itself on pysqlite so SAVEPOINT (begin_nested)
    nests inside the outer transaction.
    """
    @event.listens_for(sqlite_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


settings = get_settings()
engine = create_engine(settings.database_url, echo=settings.sql_echo)
if engine.dialect.name == "sqlite":
    enable_sqlite_savepoints(engine)
session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# Dependency to get the database session
def get_db():
    database = session_local()
    try:
        yield database
    finally:
        database.close()
