"""
Risk Guard Repository Tests.

============================================================
PURPOSE
============================================================
Tests for the account directory, the daily risk state store
and the kill event ledger against an in-memory database.

============================================================
"""

from datetime import date, datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from core.exceptions import DatabaseError
from database.engine import create_session_factory
from risk_guard.repository import AccountDirectory, DailyRiskStateRepository, KillEventLedger
from risk_guard.types import RiskSnapshot, RiskVerdict

from tests.risk_guard.fakes import add_account, create_test_database


TODAY = date(2024, 1, 16)


def snapshot(mtm: float, balance: float = 100000.0) -> RiskSnapshot:
    loss = abs(mtm) / balance * 100 if mtm < 0 else 0.0
    verdict = RiskVerdict.TRIGGER if loss >= 2.0 else RiskVerdict.SAFE
    return RiskSnapshot(mtm=mtm, starting_balance=balance, loss_percent=loss, verdict=verdict)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine, factory = await create_test_database(tmp_path)
    yield factory
    await engine.dispose()


# ============================================================
# ACCOUNT DIRECTORY TESTS
# ============================================================

class TestAccountDirectory:
    """Listing monitorable accounts."""

    @pytest.mark.asyncio
    async def test_lists_only_monitorable(self, session_factory):
        await add_account(session_factory, "acct-b")
        await add_account(session_factory, "acct-a")
        await add_account(session_factory, "disabled", kill_switch_enabled=False)
        await add_account(session_factory, "no-token", access_token_encrypted=None)
        await add_account(session_factory, "empty-token", access_token_encrypted="")
        await add_account(session_factory, "no-client", broker_client_id=None)

        accounts = await AccountDirectory(session_factory).list_monitorable_accounts()

        assert accounts == ["acct-a", "acct-b"]

    @pytest.mark.asyncio
    async def test_get_account(self, session_factory):
        await add_account(session_factory, "acct-1", risk_threshold=3.5)

        account = await AccountDirectory(session_factory).get_account("acct-1")

        assert account.broker_client_id == "1100000001"
        assert account.risk_threshold == 3.5
        assert account.is_monitorable

    @pytest.mark.asyncio
    async def test_get_missing_account(self, session_factory):
        assert await AccountDirectory(session_factory).get_account("ghost") is None

    @pytest.mark.asyncio
    async def test_driver_error_becomes_database_error(self):
        engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
        directory = AccountDirectory(create_session_factory(engine))

        try:
            with pytest.raises(DatabaseError) as exc_info:
                await directory.list_monitorable_accounts()
        finally:
            await engine.dispose()

        assert exc_info.value.context["operation"] == "list_accounts"


# ============================================================
# DAILY RISK STATE TESTS
# ============================================================

class TestDailyRiskStateRepository:
    """Upsert semantics on (account_id, trading_date)."""

    @pytest.mark.asyncio
    async def test_first_sample_inserts(self, session_factory):
        repo = DailyRiskStateRepository(session_factory)

        state = await repo.upsert_sample("acct-1", TODAY, snapshot(-500.0))

        assert state.mtm == -500.0
        assert state.invested == 100000.0
        assert state.loss_percent == pytest.approx(0.5)
        assert state.kill_status is False
        assert state.updated_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_later_sample_overwrites(self, session_factory):
        repo = DailyRiskStateRepository(session_factory)
        await repo.upsert_sample("acct-1", TODAY, snapshot(-500.0))

        await repo.upsert_sample("acct-1", TODAY, snapshot(-900.0))

        state = await repo.get("acct-1", TODAY)
        assert state.mtm == -900.0
        assert len(await repo.history("acct-1", TODAY)) == 1

    @pytest.mark.asyncio
    async def test_sample_never_clears_kill_status(self, session_factory):
        repo = DailyRiskStateRepository(session_factory)
        await repo.mark_killed("acct-1", TODAY, snapshot(-2500.0))

        state = await repo.upsert_sample("acct-1", TODAY, snapshot(0.0))

        assert state.kill_status is True
        assert state.mtm == 0.0

    @pytest.mark.asyncio
    async def test_mark_killed_without_prior_sample(self, session_factory):
        repo = DailyRiskStateRepository(session_factory)

        state = await repo.mark_killed("acct-1", TODAY, snapshot(-3000.0))

        assert state.kill_status is True
        assert state.mtm == -3000.0

    @pytest.mark.asyncio
    async def test_reset_clears_figures_and_flag(self, session_factory):
        repo = DailyRiskStateRepository(session_factory)
        await repo.mark_killed("acct-1", TODAY, snapshot(-3000.0))

        state = await repo.reset("acct-1", TODAY)

        assert state.kill_status is False
        assert state.mtm == 0.0
        assert state.invested == 0.0
        assert state.loss_percent == 0.0

    @pytest.mark.asyncio
    async def test_days_and_accounts_are_separate(self, session_factory):
        repo = DailyRiskStateRepository(session_factory)
        await repo.mark_killed("acct-1", TODAY - timedelta(days=1), snapshot(-3000.0))
        await repo.upsert_sample("acct-2", TODAY, snapshot(-100.0))

        state = await repo.upsert_sample("acct-1", TODAY, snapshot(-100.0))

        assert state.kill_status is False
        assert await repo.get("acct-2", TODAY - timedelta(days=1)) is None

    @pytest.mark.asyncio
    async def test_history_oldest_first(self, session_factory):
        repo = DailyRiskStateRepository(session_factory)
        for offset in (0, 2, 1, 10):
            await repo.upsert_sample("acct-1", TODAY - timedelta(days=offset), snapshot(-offset))

        states = await repo.history("acct-1", TODAY - timedelta(days=2))

        assert [s.trading_date for s in states] == [
            TODAY - timedelta(days=2),
            TODAY - timedelta(days=1),
            TODAY,
        ]


# ============================================================
# KILL EVENT LEDGER TESTS
# ============================================================

class TestKillEventLedger:
    """Append-only ledger."""

    @pytest.mark.asyncio
    async def test_append(self, session_factory):
        ledger = KillEventLedger(session_factory)

        event = await ledger.append("acct-1", -2500.0, 2.5)

        assert event.id
        assert event.trigger_mtm == -2500.0
        assert event.trigger_loss_percent == 2.5
        assert event.execution_time.tzinfo is not None
        assert await ledger.count("acct-1") == 1

    @pytest.mark.asyncio
    async def test_every_append_is_a_new_row(self, session_factory):
        ledger = KillEventLedger(session_factory)

        first = await ledger.append("acct-1", -2500.0, 2.5)
        second = await ledger.append("acct-1", -2500.0, 2.5)

        assert first.id != second.id
        assert await ledger.count("acct-1") == 2

    @pytest.mark.asyncio
    async def test_count_since(self, session_factory):
        ledger = KillEventLedger(session_factory)
        base = datetime(2024, 1, 16, 5, 0, tzinfo=timezone.utc)
        await ledger.append("acct-1", -1.0, 2.0, execution_time=base - timedelta(days=1))
        await ledger.append("acct-1", -1.0, 2.0, execution_time=base)

        assert await ledger.count("acct-1", since=base - timedelta(hours=1)) == 1

    @pytest.mark.asyncio
    async def test_pages_newest_first(self, session_factory):
        ledger = KillEventLedger(session_factory)
        base = datetime(2024, 1, 16, 5, 0, tzinfo=timezone.utc)
        for i in range(5):
            await ledger.append("acct-1", float(-i), 2.0, execution_time=base + timedelta(minutes=i))
        await ledger.append("acct-2", -1.0, 2.0, execution_time=base)

        first = await ledger.list_page("acct-1", limit=2, page=1)
        last = await ledger.list_page("acct-1", limit=2, page=3)

        assert [e.trigger_mtm for e in first.events] == [-4.0, -3.0]
        assert first.total == 5
        assert first.total_pages == 3
        assert first.has_next_page and not first.has_previous_page
        assert [e.trigger_mtm for e in last.events] == [0.0]
        assert last.has_previous_page and not last.has_next_page

    @pytest.mark.asyncio
    async def test_page_past_end_is_empty(self, session_factory):
        ledger = KillEventLedger(session_factory)
        await ledger.append("acct-1", -1.0, 2.0)

        page = await ledger.list_page("acct-1", limit=10, page=5)

        assert page.events == []
        assert page.total == 1
