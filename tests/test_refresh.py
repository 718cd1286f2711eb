"""Tests for the stale account refresh and the manual sync triggers."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from konto.db.core import AccountDB, BankConnectionDB, TransactionDB
from konto.services.provider import ProviderError, TokenPair
from konto.services.refresh import (
    AccountNotSyncableError,
    NoActiveConnectionError,
    RefreshOrchestrator,
    ReconnectRequiredError,
)

NOW = datetime(2026, 3, 15, 6, 0)


@pytest.fixture
def orchestrator(db_session, provider, settings):
    return RefreshOrchestrator(db_session, provider, settings)


def _provider_account(make_account, user, provider_account_id, balance="0", **kwargs):
    return make_account(user, provider="powens", provider_account_id=provider_account_id, balance=balance, **kwargs)


class TestRunOnce:

    def test_three_users_one_refreshed_two_failed(
        self, db_session, orchestrator, provider, make_user, make_account, make_connection
    ):
        # A: no active connection
        user_a = make_user("A")
        account_a = _provider_account(make_account, user_a, "a-1", balance="111")

        # B: provider times out on the account list
        user_b = make_user("B")
        make_connection(user_b, access_token="token-b")
        account_b = _provider_account(make_account, user_b, "b-1", balance="222")
        provider.accounts["token-b"] = ProviderError("Timed out after 5s calling /users/me/accounts")

        # C: two accounts, 15 transactions available
        user_c = make_user("C")
        make_connection(user_c, access_token="token-c")
        checking = _provider_account(make_account, user_c, "c-1")
        savings = _provider_account(make_account, user_c, "c-2")
        provider.add_account("token-c", "c-1", balance="1520.35", type="checking", name="Compte chèques")
        provider.add_account("token-c", "c-2", balance="8000", type="livreta", name="Livret A")
        provider.add_transactions("c-1", 10)
        provider.add_transactions("c-2", 5)

        summary = orchestrator.run_once(now=NOW)

        assert summary.stale_accounts == 4
        assert summary.users_refreshed == 1
        assert summary.users_failed == 2
        assert summary.accounts_updated == 2
        assert summary.transactions_inserted == 15
        assert summary.failed_user_ids == [user_a.id, user_b.id]

        db_session.expire_all()
        assert db_session.get(AccountDB, account_a.id).balance == Decimal("111")
        assert db_session.get(AccountDB, account_a.id).last_sync is None
        assert db_session.get(AccountDB, account_b.id).balance == Decimal("222")
        assert db_session.get(AccountDB, account_b.id).last_sync is None

        refreshed_checking = db_session.get(AccountDB, checking.id)
        assert refreshed_checking.balance == Decimal("1520.35")
        assert refreshed_checking.last_sync == NOW
        refreshed_savings = db_session.get(AccountDB, savings.id)
        assert refreshed_savings.type == "savings"
        assert refreshed_savings.usage == "personal"
        assert refreshed_savings.subtype is None

    def test_rerun_does_not_duplicate_transactions(
        self, db_session, orchestrator, provider, make_user, make_account, make_connection
    ):
        user = make_user()
        make_connection(user, access_token="tok")
        account = _provider_account(make_account, user, "p-1")
        provider.add_account("tok", "p-1", balance="10")
        provider.add_transactions("p-1", 3)

        orchestrator.run_once(now=NOW)
        # The zero-transaction check would skip a second run, so backfill directly
        inserted_again = orchestrator._backfill(account, "tok")

        assert inserted_again == 0
        assert db_session.query(TransactionDB).filter_by(account_id=account.id).count() == 3

    def test_no_stale_accounts_is_a_no_op(self, orchestrator, provider, make_user, make_account, make_transaction):
        user = make_user()
        account = _provider_account(make_account, user, "p-1", last_sync=NOW - timedelta(hours=1))
        make_transaction(account)

        summary = orchestrator.run_once(now=NOW)

        assert summary.stale_accounts == 0
        assert provider.calls == []

    def test_accounts_with_history_are_not_backfilled(
        self, orchestrator, provider, make_user, make_account, make_connection, make_transaction
    ):
        user = make_user()
        make_connection(user, access_token="tok")
        account = _provider_account(make_account, user, "p-1", last_sync=NOW - timedelta(days=30))
        make_transaction(account)
        provider.add_account("tok", "p-1", balance="10")
        provider.add_transactions("p-1", 3)

        summary = orchestrator.run_once(now=NOW)

        assert summary.accounts_updated == 1
        assert summary.transactions_inserted == 0
        assert not any(call[0] == "list_transactions" for call in provider.calls)

    def test_backfill_failure_keeps_balance_update(
        self, db_session, orchestrator, provider, make_user, make_account, make_connection
    ):
        user = make_user()
        make_connection(user, access_token="tok")
        account = _provider_account(make_account, user, "p-1", balance="1")
        provider.add_account("tok", "p-1", balance="99")
        provider.transactions["p-1"] = ProviderError("GET transactions returned 500", status_code=500)

        summary = orchestrator.run_once(now=NOW)

        assert summary.users_refreshed == 1
        assert summary.transactions_inserted == 0
        db_session.expire_all()
        assert db_session.get(AccountDB, account.id).balance == Decimal("99")

    def test_backfill_uses_configured_limit(
        self, orchestrator, provider, settings, make_user, make_account, make_connection
    ):
        user = make_user()
        make_connection(user, access_token="tok")
        _provider_account(make_account, user, "p-1")
        provider.add_account("tok", "p-1")

        orchestrator.run_once(now=NOW)

        assert ("list_transactions", "p-1", settings.backfill_limit, 0) in provider.calls

    def test_unknown_provider_accounts_are_ignored(
        self, db_session, orchestrator, provider, make_user, make_account, make_connection
    ):
        user = make_user()
        make_connection(user, access_token="tok")
        _provider_account(make_account, user, "p-1")
        provider.add_account("tok", "p-1")
        provider.add_account("tok", "not-imported")

        summary = orchestrator.run_once(now=NOW)

        assert summary.accounts_updated == 1
        assert db_session.query(AccountDB).count() == 1

    def test_company_account_classified_professional(
        self, db_session, orchestrator, provider, make_user, make_account, make_connection, make_company
    ):
        user = make_user()
        company = make_company(user)
        make_connection(user, access_token="tok")
        account = _provider_account(make_account, user, "p-1", company=company)
        provider.add_account("tok", "p-1", type="market", name="PEA Bourse")

        orchestrator.run_once(now=NOW)

        db_session.expire_all()
        refreshed = db_session.get(AccountDB, account.id)
        assert (refreshed.type, refreshed.subtype, refreshed.usage) == ("investment", "stocks", "professional")

    def test_should_stop_between_users(self, orchestrator, provider, make_user, make_account, make_connection):
        for name in ("A", "B"):
            user = make_user(name)
            make_connection(user, access_token=f"tok-{name}")
            _provider_account(make_account, user, f"p-{name}")
            provider.add_account(f"tok-{name}", f"p-{name}")

        summary = orchestrator.run_once(now=NOW, should_stop=lambda: len(provider.calls) > 0)

        assert summary.users_refreshed == 1

    def test_reports_to_monitor(self, db_session, provider, settings, monitor):
        monitor.register("refresh-stale-connections", "every 6:00:00")

        RefreshOrchestrator(db_session, provider, settings, monitor=monitor).run_once(now=NOW)

        status = monitor.status("refresh-stale-connections")
        assert status.last_status.value == "success"
        assert status.run_count == 1


class TestManualSync:

    def test_sync_account_backfills_all_pages(
        self, db_session, orchestrator, provider, settings, make_user, make_account, make_connection
    ):
        settings.sync_page_size = 4
        user = make_user()
        make_connection(user, access_token="tok")
        account = _provider_account(make_account, user, "p-1")
        provider.add_account("tok", "p-1", balance="42")
        provider.add_transactions("p-1", 10)

        result = orchestrator.sync_account(account.id, user.id, now=NOW)

        assert result.accounts_updated == 1
        assert result.transactions_inserted == 10
        db_session.expire_all()
        assert db_session.get(AccountDB, account.id).balance == Decimal("42")

    def test_manual_account_cannot_be_synced(self, orchestrator, make_user, make_account):
        user = make_user()
        account = make_account(user)
        with pytest.raises(AccountNotSyncableError):
            orchestrator.sync_account(account.id, user.id)

    def test_no_active_connection(self, orchestrator, make_user, make_account):
        user = make_user()
        account = _provider_account(make_account, user, "p-1")
        with pytest.raises(NoActiveConnectionError):
            orchestrator.sync_account(account.id, user.id)

    def test_expired_token_is_refreshed_once(
        self, db_session, orchestrator, provider, make_user, make_account, make_connection
    ):
        user = make_user()
        connection = make_connection(user, access_token="expired", refresh_token="refresh-1")
        account = _provider_account(make_account, user, "p-1")
        provider.refreshed["refresh-1"] = TokenPair(access_token="new-token", refresh_token="refresh-2")
        provider.add_account("new-token", "p-1", balance="7")

        orchestrator.sync_account(account.id, user.id, now=NOW)

        db_session.expire_all()
        connection = db_session.get(BankConnectionDB, connection.id)
        assert connection.access_token == "new-token"
        assert connection.refresh_token == "refresh-2"
        assert connection.last_sync == NOW

    def test_failed_token_refresh_expires_connection(
        self, db_session, orchestrator, provider, make_user, make_account, make_connection
    ):
        user = make_user()
        connection = make_connection(user, access_token="expired", refresh_token="bad")
        account = _provider_account(make_account, user, "p-1")

        with pytest.raises(ReconnectRequiredError):
            orchestrator.sync_account(account.id, user.id)

        db_session.expire_all()
        assert db_session.get(BankConnectionDB, connection.id).status == "expired"

    def test_sync_connection_updates_known_accounts(
        self, db_session, orchestrator, provider, make_user, make_account, make_connection
    ):
        user = make_user()
        connection = make_connection(user, access_token="tok")
        _provider_account(make_account, user, "p-1")
        _provider_account(make_account, user, "p-2")
        provider.add_account("tok", "p-1", balance="1")
        provider.add_account("tok", "p-2", balance="2")
        provider.add_transactions("p-2", 2)

        result = orchestrator.sync_connection(connection.id, user.id, now=NOW)

        assert result.accounts_updated == 2
        assert result.transactions_inserted == 2
