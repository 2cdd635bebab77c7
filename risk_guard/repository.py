"""
Risk Guard - Repository.

============================================================
PURPOSE
============================================================
Database operations for the account directory, the daily risk
state store and the kill event ledger.

- Daily risk state: upsert by (account_id, trading_date)
- Kill events: append-only insert, paginated reads
- Accounts: read-only

A scheduler sample never clears kill_status. Only mark_killed
sets it and only reset clears it.

EVERY KILL SWITCH EXECUTION MUST BE RECORDED.

============================================================
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import AsyncIterator, List, Optional

from sqlalchemy import and_, desc, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import DatabaseError
from database.models import AccountModel, DailyRiskStateModel, KillEventModel

from .types import Account, DailyRiskState, KillEvent, KillEventPage, RiskSnapshot


logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes. Stored values are UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================================
# BASE
# ============================================================

class _SessionRepository:
    """Session handling shared by the repositories."""

    def __init__(self, session_factory: async_sessionmaker):
        """
        Initialize repository.

        Args:
            session_factory: Async session factory
        """
        self._session_factory = session_factory

    @asynccontextmanager
    async def _get_session(
        self,
        session: Optional[AsyncSession] = None,
        operation: Optional[str] = None,
    ) -> AsyncIterator[AsyncSession]:
        """Get or create a session. Driver errors surface as DatabaseError."""
        try:
            if session is not None:
                yield session
            else:
                async with self._session_factory() as sess:
                    yield sess
        except SQLAlchemyError as e:
            logger.error(f"Database operation failed: operation={operation} error={e}")
            raise DatabaseError(
                f"Database operation failed: {e}",
                operation=operation,
                cause=e,
            ) from e


# ============================================================
# ACCOUNT DIRECTORY
# ============================================================

class AccountDirectory(_SessionRepository):
    """Read-only view of supervised accounts."""

    async def list_monitorable_accounts(
        self,
        session: Optional[AsyncSession] = None,
    ) -> List[str]:
        """Ids of accounts with monitoring enabled and a stored credential."""
        async with self._get_session(session, "list_accounts") as sess:
            stmt = (
                select(AccountModel.account_id)
                .where(
                    and_(
                        AccountModel.kill_switch_enabled.is_(True),
                        AccountModel.access_token_encrypted.isnot(None),
                        AccountModel.access_token_encrypted != "",
                        AccountModel.broker_client_id.isnot(None),
                        AccountModel.broker_client_id != "",
                    )
                )
                .order_by(AccountModel.account_id)
            )
            result = await sess.execute(stmt)
            return list(result.scalars().all())

    async def get_account(
        self,
        account_id: str,
        session: Optional[AsyncSession] = None,
    ) -> Optional[Account]:
        async with self._get_session(session, "get_account") as sess:
            model = await sess.get(AccountModel, account_id)
            if model is None:
                return None
            return Account(
                account_id=model.account_id,
                broker_client_id=model.broker_client_id,
                access_token_encrypted=model.access_token_encrypted,
                risk_threshold=model.risk_threshold,
                kill_switch_enabled=model.kill_switch_enabled,
            )


# ============================================================
# DAILY RISK STATE STORE
# ============================================================

class DailyRiskStateRepository(_SessionRepository):
    """
    One row per (account, trading day) holding the latest sample.
    """

    @staticmethod
    def _to_state(model: DailyRiskStateModel) -> DailyRiskState:
        return DailyRiskState(
            account_id=model.account_id,
            trading_date=model.trading_date,
            mtm=model.mtm,
            invested=model.invested,
            loss_percent=model.loss_percent,
            kill_status=model.kill_status,
            updated_at=_aware(model.updated_at),
        )

    @staticmethod
    def _insert(sess: AsyncSession):
        dialect = sess.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(DailyRiskStateModel)
        if dialect == "sqlite":
            return sqlite_insert(DailyRiskStateModel)
        raise DatabaseError(
            f"Upsert not supported for dialect: {dialect}",
            operation="upsert",
            table=DailyRiskStateModel.__tablename__,
        )

    async def _upsert(
        self,
        sess: AsyncSession,
        account_id: str,
        trading_date: date,
        mtm: float,
        invested: float,
        loss_percent: float,
        kill_status: Optional[bool],
    ) -> DailyRiskState:
        """
        INSERT ... ON CONFLICT DO UPDATE on (account_id, trading_date).

        kill_status None leaves an existing flag untouched.
        """
        now = datetime.now(timezone.utc)

        stmt = self._insert(sess).values(
            id=str(uuid.uuid4()),
            account_id=account_id,
            trading_date=trading_date,
            mtm=mtm,
            invested=invested,
            loss_percent=loss_percent,
            kill_status=bool(kill_status),
            created_at=now,
            updated_at=now,
        )

        update_values = {
            "mtm": stmt.excluded.mtm,
            "invested": stmt.excluded.invested,
            "loss_percent": stmt.excluded.loss_percent,
            "updated_at": stmt.excluded.updated_at,
        }
        if kill_status is not None:
            update_values["kill_status"] = stmt.excluded.kill_status

        stmt = stmt.on_conflict_do_update(
            index_elements=["account_id", "trading_date"],
            set_=update_values,
        )
        await sess.execute(stmt)
        await sess.commit()

        row = await sess.execute(
            select(DailyRiskStateModel)
            .where(
                and_(
                    DailyRiskStateModel.account_id == account_id,
                    DailyRiskStateModel.trading_date == trading_date,
                )
            )
            .execution_options(populate_existing=True)
        )
        return self._to_state(row.scalar_one())

    async def upsert_sample(
        self,
        account_id: str,
        trading_date: date,
        snapshot: RiskSnapshot,
        session: Optional[AsyncSession] = None,
    ) -> DailyRiskState:
        """
        Record the latest monitoring sample.

        Returns the stored row, including any kill_status already set.
        """
        async with self._get_session(session, "upsert_sample") as sess:
            return await self._upsert(
                sess,
                account_id,
                trading_date,
                mtm=snapshot.mtm,
                invested=snapshot.starting_balance,
                loss_percent=snapshot.loss_percent,
                kill_status=None,
            )

    async def mark_killed(
        self,
        account_id: str,
        trading_date: date,
        snapshot: RiskSnapshot,
        session: Optional[AsyncSession] = None,
    ) -> DailyRiskState:
        """Record final kill figures and set kill_status."""
        async with self._get_session(session, "mark_killed") as sess:
            state = await self._upsert(
                sess,
                account_id,
                trading_date,
                mtm=snapshot.mtm,
                invested=snapshot.starting_balance,
                loss_percent=snapshot.loss_percent,
                kill_status=True,
            )
            logger.info(f"Daily risk state marked killed: account={account_id} date={trading_date}")
            return state

    async def reset(
        self,
        account_id: str,
        trading_date: date,
        session: Optional[AsyncSession] = None,
    ) -> DailyRiskState:
        """Zero the day's figures and clear kill_status."""
        async with self._get_session(session, "reset") as sess:
            state = await self._upsert(
                sess,
                account_id,
                trading_date,
                mtm=0.0,
                invested=0.0,
                loss_percent=0.0,
                kill_status=False,
            )
            logger.warning(f"Daily risk state reset: account={account_id} date={trading_date}")
            return state

    async def get(
        self,
        account_id: str,
        trading_date: date,
        session: Optional[AsyncSession] = None,
    ) -> Optional[DailyRiskState]:
        async with self._get_session(session, "get_state") as sess:
            result = await sess.execute(
                select(DailyRiskStateModel).where(
                    and_(
                        DailyRiskStateModel.account_id == account_id,
                        DailyRiskStateModel.trading_date == trading_date,
                    )
                )
            )
            model = result.scalar_one_or_none()
            return self._to_state(model) if model is not None else None

    async def history(
        self,
        account_id: str,
        since: date,
        session: Optional[AsyncSession] = None,
    ) -> List[DailyRiskState]:
        """States on or after a date, oldest first."""
        async with self._get_session(session, "history") as sess:
            result = await sess.execute(
                select(DailyRiskStateModel)
                .where(
                    and_(
                        DailyRiskStateModel.account_id == account_id,
                        DailyRiskStateModel.trading_date >= since,
                    )
                )
                .order_by(DailyRiskStateModel.trading_date)
            )
            return [self._to_state(m) for m in result.scalars().all()]


# ============================================================
# KILL EVENT LEDGER
# ============================================================

class KillEventLedger(_SessionRepository):
    """
    Append-only record of kill switch executions.
    """

    @staticmethod
    def _to_event(model: KillEventModel) -> KillEvent:
        return KillEvent(
            id=model.id,
            account_id=model.account_id,
            trigger_mtm=model.trigger_mtm,
            trigger_loss_percent=model.trigger_loss_percent,
            execution_time=_aware(model.execution_time),
        )

    async def append(
        self,
        account_id: str,
        trigger_mtm: float,
        trigger_loss_percent: float,
        execution_time: Optional[datetime] = None,
        session: Optional[AsyncSession] = None,
    ) -> KillEvent:
        """
        Insert a kill event.

        Returns:
            The stored event
        """
        async with self._get_session(session, "append_kill_event") as sess:
            model = KillEventModel(
                id=str(uuid.uuid4()),
                account_id=account_id,
                trigger_mtm=trigger_mtm,
                trigger_loss_percent=trigger_loss_percent,
                execution_time=execution_time or datetime.now(timezone.utc),
            )
            sess.add(model)
            await sess.commit()

            logger.info(f"Saved kill event: {model.id} account={account_id}")
            return self._to_event(model)

    async def count(
        self,
        account_id: str,
        since: Optional[datetime] = None,
        session: Optional[AsyncSession] = None,
    ) -> int:
        async with self._get_session(session, "count_kill_events") as sess:
            stmt = select(func.count()).select_from(KillEventModel).where(
                KillEventModel.account_id == account_id
            )
            if since is not None:
                stmt = stmt.where(KillEventModel.execution_time >= since)
            result = await sess.execute(stmt)
            return int(result.scalar_one())

    async def list_page(
        self,
        account_id: str,
        limit: int,
        page: int,
        session: Optional[AsyncSession] = None,
    ) -> KillEventPage:
        """One page of events, newest first. Page numbers start at 1."""
        async with self._get_session(session, "list_kill_events") as sess:
            total = await self.count(account_id, session=sess)
            result = await sess.execute(
                select(KillEventModel)
                .where(KillEventModel.account_id == account_id)
                .order_by(desc(KillEventModel.execution_time))
                .offset((page - 1) * limit)
                .limit(limit)
            )
            events = [self._to_event(m) for m in result.scalars().all()]
            return KillEventPage(events=events, total=total, page=page, limit=limit)


__all__ = [
    "AccountDirectory",
    "DailyRiskStateRepository",
    "KillEventLedger",
]
