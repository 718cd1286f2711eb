"""
Bank Refresh Service

Reconciles stale provider-linked accounts against the aggregation provider:
balance and classification are rewritten together, and accounts without any
local history get a first batch of transactions. Failures are scoped to the
smallest unit (one account's backfill, or one user's whole refresh) and the
run always continues.

Also hosts the manual sync triggers for a single account or connection.
"""
from sqlalchemy.orm import Session
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Tuple

from konto.config import Settings
from konto.db.core import AccountDB, BankConnectionDB, ConnectionStatus, NotFoundError
from konto.crud import crud_account, crud_transaction
from konto.services import staleness
from konto.services.classifier import classify_subtype, classify_type, classify_usage
from konto.services.provider import ProviderAccount, ProviderError, ProviderTransaction
from konto.logging_config import get_logger

logger = get_logger(__name__)

CENTS = Decimal("0.01")
JOB_NAME = "refresh-stale-connections"


class SyncError(Exception):
    """Base class for manual sync failures surfaced to the route layer"""
    reconnect_required = False


class AccountNotSyncableError(SyncError):
    """The account is not linked to the aggregation provider"""


class NoActiveConnectionError(SyncError):
    reconnect_required = True


class ReconnectRequiredError(SyncError):
    """No connection could reach the account, even after a token refresh"""
    reconnect_required = True


@dataclass
class RefreshSummary:
    stale_accounts: int = 0
    users_refreshed: int = 0
    users_failed: int = 0
    accounts_updated: int = 0
    transactions_inserted: int = 0
    failed_user_ids: List[int] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"{self.stale_accounts} stale accounts found, {self.users_refreshed} users refreshed, "
            f"{self.users_failed} errors"
        )


@dataclass
class SyncResult:
    accounts_updated: int = 0
    transactions_inserted: int = 0


class RefreshOrchestrator:
    """
    Usage::

        orchestrator = RefreshOrchestrator(db, PowensClient.from_settings(settings), settings)
        summary = orchestrator.run_once()

    ``provider`` is anything exposing ``list_accounts``, ``list_transactions``,
    ``iter_transactions`` and ``refresh_token`` with PowensClient's signatures.
    """

    def __init__(self, db: Session, provider, settings: Settings, monitor=None):
        self.db = db
        self.provider = provider
        self.settings = settings
        self.monitor = monitor

    # ------------------------------------------------------------------
    # Batch refresh
    # ------------------------------------------------------------------

    def run_once(
        self,
        now: Optional[datetime] = None,
        should_stop: Optional[Callable[[], bool]] = None
    ) -> RefreshSummary:
        if self.monitor:
            self.monitor.start_run(JOB_NAME)
        try:
            summary = self._run(now or datetime.utcnow(), should_stop)
        except Exception as e:
            if self.monitor:
                self.monitor.record_error(JOB_NAME, e)
            raise
        if self.monitor:
            self.monitor.record_success(JOB_NAME, summary.summary())
        return summary

    def _run(self, now: datetime, should_stop: Optional[Callable[[], bool]]) -> RefreshSummary:
        logger.info("Starting stale account refresh")
        stale = staleness.find_stale_accounts(
            self.db,
            provider=self.settings.provider_name,
            now=now,
            max_age_days=self.settings.stale_after_days
        )
        summary = RefreshSummary(stale_accounts=len(stale))
        if not stale:
            logger.info("No stale accounts found")
            return summary

        for user_id in staleness.stale_user_ids(stale):
            if should_stop and should_stop():
                logger.warning(f"Refresh run stopped before user {user_id}")
                break
            try:
                updated, inserted = self._refresh_user(user_id, now)
            except ProviderError as e:
                self.db.rollback()
                logger.error(f"Provider account fetch failed for user {user_id}: {e}")
                summary.users_failed += 1
                summary.failed_user_ids.append(user_id)
                continue
            except Exception as e:
                self.db.rollback()
                logger.exception(f"Auto-refresh failed for user {user_id}: {e}")
                summary.users_failed += 1
                summary.failed_user_ids.append(user_id)
                continue

            if updated is None:
                summary.users_failed += 1
                summary.failed_user_ids.append(user_id)
                continue

            summary.accounts_updated += updated
            summary.transactions_inserted += inserted
            if updated > 0:
                summary.users_refreshed += 1
                logger.info(f"Refreshed {updated} accounts ({inserted} new transactions) for user {user_id}")

        logger.info(f"Auto-refresh complete: {summary.summary()}")
        return summary

    def _refresh_user(self, user_id: int, now: datetime) -> Tuple[Optional[int], int]:
        """
        Returns (accounts_updated, transactions_inserted), or (None, 0) when the
        user has no usable token. A ProviderError from the account list
        propagates before any account is touched.
        """
        token = crud_account.read_active_token(self.db, user_id, self.settings.provider_name)
        if not token:
            logger.warning(f"No active provider connection for user {user_id}")
            return None, 0

        provider_accounts = self.provider.list_accounts(token)

        updated = 0
        inserted = 0
        for provider_account in provider_accounts:
            account = crud_account.read_provider_account(
                self.db, user_id, self.settings.provider_name, provider_account.provider_account_id
            )
            if account is None:
                continue

            try:
                self._apply_provider_account(account, provider_account, now)
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                logger.error(f"Failed to update account {account.id} for user {user_id}: {e}")
                continue
            updated += 1

            if crud_transaction.count_account_transactions(self.db, account.id) == 0:
                inserted += self._backfill(account, token)

        return updated, inserted

    def _apply_provider_account(self, account: AccountDB, provider_account: ProviderAccount, now: datetime) -> None:
        account_type = classify_type(provider_account.type, provider_account.name)
        usage = classify_usage(provider_account.usage, account.company_id)
        subtype = classify_subtype(account_type, account.provider, provider_account.name)

        crud_account.apply_sync_update(
            account,
            balance=Decimal(provider_account.balance).quantize(CENTS),
            account_type=account_type.value,
            usage=usage.value,
            subtype=subtype.value if subtype else None,
            synced_at=now,
            currency=provider_account.currency
        )

    def _backfill(self, account: AccountDB, token: str) -> int:
        try:
            transactions = self.provider.list_transactions(
                token, account.provider_account_id, limit=self.settings.backfill_limit
            )
        except ProviderError as e:
            logger.warning(f"Transaction backfill skipped for account {account.id}: {e}")
            return 0
        return self._insert_transactions(account, transactions)

    def _insert_transactions(self, account: AccountDB, transactions: Iterable[ProviderTransaction]) -> int:
        inserted = 0
        try:
            for transaction in transactions:
                created = crud_transaction.insert_if_absent(
                    self.db,
                    account_id=account.id,
                    transaction_date=transaction.date,
                    amount=transaction.amount,
                    label=transaction.label,
                    category=transaction.category_name,
                    is_pro=account.usage == "professional"
                )
                if created:
                    inserted += 1
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Transaction insert failed for account {account.id}: {e}")
            return 0
        return inserted

    # ------------------------------------------------------------------
    # Manual sync
    # ------------------------------------------------------------------

    def _list_with_refresh(self, connection: BankConnectionDB) -> Tuple[str, List[ProviderAccount]]:
        """
        List the connection's accounts, refreshing the token once on 401/404.
        A failed token refresh marks the connection expired.
        """
        token = connection.access_token
        try:
            return token, self.provider.list_accounts(token)
        except ProviderError as e:
            if not e.is_auth_error:
                raise

        logger.info(f"Connection {connection.id} rejected its token, attempting refresh")
        if not connection.refresh_token:
            raise ProviderError(f"No refresh token for connection {connection.id}", status_code=401)
        try:
            pair = self.provider.refresh_token(connection.refresh_token)
        except ProviderError:
            connection.status = ConnectionStatus.EXPIRED.value
            self.db.commit()
            logger.warning(f"Token refresh failed, connection {connection.id} marked expired")
            raise

        connection.access_token = pair.access_token
        connection.refresh_token = pair.refresh_token or connection.refresh_token
        self.db.commit()
        return pair.access_token, self.provider.list_accounts(pair.access_token)

    def sync_account(self, account_id: int, user_id: int, now: Optional[datetime] = None) -> SyncResult:
        """Refresh one account and backfill every transaction page the bank provides"""
        now = now or datetime.utcnow()
        account = crud_account.read_db_account(self.db, account_id, user_id)
        if not account:
            raise NotFoundError(f"Account with id {account_id} not found")
        if not account.provider_account_id or account.provider != self.settings.provider_name:
            raise AccountNotSyncableError(f"Only {self.settings.provider_name} bank accounts can be synced")

        connections = crud_account.read_active_connections(self.db, user_id, self.settings.provider_name)
        if not connections:
            raise NoActiveConnectionError("No active bank connections found")

        for connection in connections:
            try:
                token, provider_accounts = self._list_with_refresh(connection)
            except ProviderError as e:
                logger.error(f"Connection {connection.id} failed while looking for account {account_id}: {e}")
                continue

            match = next(
                (item for item in provider_accounts if item.provider_account_id == account.provider_account_id),
                None
            )
            if match is None:
                continue

            self._apply_provider_account(account, match, now)
            connection.last_sync = now
            self.db.commit()

            inserted = self._full_backfill(account, token)
            logger.info(f"Synced account {account_id}: {inserted} new transactions")
            return SyncResult(accounts_updated=1, transactions_inserted=inserted)

        raise ReconnectRequiredError("Bank connection expired. Please reconnect your bank account.")

    def sync_connection(self, connection_id: int, user_id: int, now: Optional[datetime] = None) -> SyncResult:
        """Refresh every known account reachable through one connection"""
        now = now or datetime.utcnow()
        connection = crud_account.read_connection(self.db, connection_id, user_id)
        if not connection:
            raise NotFoundError(f"Connection with id {connection_id} not found")
        if connection.status != ConnectionStatus.ACTIVE.value or not connection.access_token:
            raise NoActiveConnectionError(f"Connection {connection_id} is not active")

        try:
            token, provider_accounts = self._list_with_refresh(connection)
        except ProviderError as e:
            raise ReconnectRequiredError(f"Connection {connection_id} could not be refreshed: {e}") from e

        result = SyncResult()
        for provider_account in provider_accounts:
            account = crud_account.read_provider_account(
                self.db, user_id, connection.provider, provider_account.provider_account_id
            )
            if account is None:
                continue
            self._apply_provider_account(account, provider_account, now)
            self.db.commit()
            result.accounts_updated += 1
            result.transactions_inserted += self._full_backfill(account, token)

        connection.last_sync = now
        self.db.commit()
        logger.info(
            f"Synced connection {connection_id}: {result.accounts_updated} accounts, "
            f"{result.transactions_inserted} new transactions"
        )
        return result

    def _full_backfill(self, account: AccountDB, token: str) -> int:
        try:
            transactions = list(self.provider.iter_transactions(
                token, account.provider_account_id, page_size=self.settings.sync_page_size
            ))
        except ProviderError as e:
            logger.warning(f"Transaction sync skipped for account {account.id}: {e}")
            return 0
        return self._insert_transactions(account, transactions)
