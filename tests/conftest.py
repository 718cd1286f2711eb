"""Shared fixtures: a fresh in-memory database per test, row factories and a fake provider."""
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from konto.config import Settings
from konto.db.core import (
    Base, get_db, enable_sqlite_savepoints,
    AccountDB, AssetDB, AssetCostDB, AssetRevenueDB, BankConnectionDB,
    CompanyDB, ExchangeRateDB, TransactionDB, UserDB, ConnectionStatus
)
from konto.crud.crud_transaction import generate_transaction_hash
from konto.jobs.monitor import JobMonitor
from konto.services.provider import ProviderAccount, ProviderError, ProviderTransaction, TokenPair


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        powens_domain="bank.example.test",
        powens_client_id="client",
        powens_client_secret="secret",
        provider_timeout=5,
    )


# ===== FACTORIES =====

@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    def _make(name: str = None, display_currency: str = "EUR") -> UserDB:
        counter["n"] += 1
        user = UserDB(
            email=f"user{counter['n']}@example.com",
            name=name or f"User {counter['n']}",
            display_currency=display_currency,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture
def make_account(db_session):
    def _make(
        user: UserDB,
        name: str = "Compte courant",
        balance="0",
        type: str = "checking",
        currency: str = "EUR",
        provider: Optional[str] = None,
        provider_account_id: Optional[str] = None,
        last_sync: Optional[datetime] = None,
        hidden: bool = False,
        usage: str = "personal",
        company: Optional[CompanyDB] = None,
        created_at: Optional[datetime] = None,
    ) -> AccountDB:
        account = AccountDB(
            user_id=user.id,
            company_id=company.id if company else None,
            name=name,
            balance=Decimal(str(balance)),
            type=type,
            currency=currency,
            provider=provider,
            provider_account_id=provider_account_id,
            last_sync=last_sync,
            hidden=hidden,
            usage=usage,
        )
        if created_at:
            account.created_at = created_at
        db_session.add(account)
        db_session.commit()
        return account
    return _make


@pytest.fixture
def make_transaction(db_session):
    def _make(account: AccountDB, transaction_date: date = date(2026, 1, 5), amount="-12.50", label: str = "CB CARREFOUR"):
        amount = Decimal(amount)
        transaction = TransactionDB(
            account_id=account.id,
            transaction_hash=generate_transaction_hash(account.id, transaction_date, amount, label),
            transaction_date=transaction_date,
            amount=amount,
            label=label,
        )
        db_session.add(transaction)
        db_session.commit()
        return transaction
    return _make


@pytest.fixture
def make_asset(db_session):
    def _make(
        user: UserDB,
        type: str = "real_estate",
        name: str = "Appartement",
        purchase_price=None,
        current_value=None,
        currency: str = "EUR",
        linked_loan: Optional[AccountDB] = None,
        costs: Optional[List[Dict]] = None,
        revenues: Optional[List[Dict]] = None,
    ) -> AssetDB:
        asset = AssetDB(
            user_id=user.id,
            type=type,
            name=name,
            purchase_price=Decimal(str(purchase_price)) if purchase_price is not None else None,
            current_value=Decimal(str(current_value)) if current_value is not None else None,
            currency=currency,
            linked_loan_account_id=linked_loan.id if linked_loan else None,
            costs=[AssetCostDB(**line) for line in costs or []],
            revenues=[AssetRevenueDB(**line) for line in revenues or []],
        )
        db_session.add(asset)
        db_session.commit()
        return asset
    return _make


@pytest.fixture
def make_connection(db_session):
    def _make(
        user: UserDB,
        access_token: Optional[str] = "token",
        refresh_token: Optional[str] = None,
        status: str = ConnectionStatus.ACTIVE.value,
    ) -> BankConnectionDB:
        connection = BankConnectionDB(
            user_id=user.id,
            provider="powens",
            access_token=access_token,
            refresh_token=refresh_token,
            status=status,
        )
        db_session.add(connection)
        db_session.commit()
        return connection
    return _make


@pytest.fixture
def make_rate(db_session):
    def _make(base: str, quote: str, rate) -> ExchangeRateDB:
        row = ExchangeRateDB(base_currency=base, quote_currency=quote, rate=Decimal(str(rate)))
        db_session.add(row)
        db_session.commit()
        return row
    return _make


@pytest.fixture
def make_company(db_session):
    def _make(user: UserDB, name: str = "ACME SAS") -> CompanyDB:
        company = CompanyDB(user_id=user.id, name=name)
        db_session.add(company)
        db_session.commit()
        return company
    return _make


# ===== PROVIDER =====

class FakeProvider:
    """
    In-memory stand-in for PowensClient, keyed by bearer token.

    accounts: token -> list of account payloads, or an exception to raise
    transactions: provider account id -> list of transaction payloads, or an exception
    """

    def __init__(self):
        self.accounts: Dict[str, object] = {}
        self.transactions: Dict[str, object] = {}
        self.refreshed: Dict[str, object] = {}
        self.calls: List[tuple] = []

    def add_account(self, token: str, provider_account_id: str, balance="0", type: Optional[str] = "checking",
                    name: str = "Compte", usage: Optional[str] = None, currency: str = "EUR"):
        self.accounts.setdefault(token, []).append({
            "id": provider_account_id,
            "type": type,
            "name": name,
            "balance": balance,
            "usage": usage,
            "currency": {"id": currency},
        })

    def add_transactions(self, provider_account_id: str, count: int, start: date = date(2026, 1, 1)):
        items = self.transactions.setdefault(provider_account_id, [])
        for i in range(count):
            items.append({
                "date": start.replace(day=1 + (i % 28)).isoformat(),
                "value": f"-{10 + i}.00",
                "original_wording": f"PAIEMENT {provider_account_id} #{i}",
                "category": {"name": "Courses"},
            })

    def list_accounts(self, token: str) -> List[ProviderAccount]:
        self.calls.append(("list_accounts", token))
        payload = self.accounts.get(token)
        if isinstance(payload, Exception):
            raise payload
        if payload is None:
            raise ProviderError("GET /users/me/accounts returned 401", status_code=401)
        return [ProviderAccount.model_validate(item) for item in payload]

    def list_transactions(self, token: str, provider_account_id: str, limit: int = 100, offset: int = 0):
        self.calls.append(("list_transactions", provider_account_id, limit, offset))
        payload = self.transactions.get(provider_account_id, [])
        if isinstance(payload, Exception):
            raise payload
        return [ProviderTransaction.model_validate(item) for item in payload[offset:offset + limit]]

    def iter_transactions(self, token: str, provider_account_id: str, page_size: int = 500):
        offset = 0
        while True:
            page = self.list_transactions(token, provider_account_id, limit=page_size, offset=offset)
            yield from page
            if len(page) < page_size:
                return
            offset += page_size

    def refresh_token(self, refresh_token: str) -> TokenPair:
        self.calls.append(("refresh_token", refresh_token))
        result = self.refreshed.get(refresh_token)
        if isinstance(result, Exception) or result is None:
            raise result or ProviderError("POST /auth/token/refresh returned 400", status_code=400)
        return result


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def monitor():
    return JobMonitor()


# ===== API =====

@pytest.fixture
def client(engine, db_session, provider, monitor):
    from konto.main import create_app
    from konto.routers.bank import get_provider

    app = create_app(monitor=monitor, db_engine=engine)

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_provider] = lambda: provider
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
