"""
Database Persistence Layer - ORM Models.

============================================================
PURPOSE
============================================================
SQLAlchemy ORM models for persisting:
- Accounts (owned by the settings layer, read-only here)
- Daily risk state (one row per account per trading day)
- Kill events (append-only audit ledger)

EVERY KILL SWITCH EXECUTION MUST BE RECORDED.

============================================================
"""

from datetime import date, datetime, timezone
from typing import Optional
import uuid

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from core.constants import DEFAULT_RISK_THRESHOLD


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for all risk guard tables."""


# ============================================================
# ACCOUNT MODEL
# ============================================================

class AccountModel(Base):
    """
    Monitored trading account.

    Written by the account-settings layer.
    """

    __tablename__ = "accounts"

    account_id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )

    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    access_token_encrypted: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    """Broker access token, AES-256-GCM encrypted and base64 encoded."""

    broker_client_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        index=True,
    )
    """Account id at the broker."""

    risk_threshold: Mapped[float] = mapped_column(
        Float,
        default=DEFAULT_RISK_THRESHOLD,
        nullable=False,
    )
    """Loss threshold in percent of starting balance."""

    kill_switch_enabled: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    """Whether the monitor supervises this account."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )


# ============================================================
# DAILY RISK STATE MODEL
# ============================================================

class DailyRiskStateModel(Base):
    """
    Latest risk sample for an account on a trading day.

    Upserted by every monitoring cycle and by the kill switch.
    """

    __tablename__ = "daily_risk_state"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )

    account_id: Mapped[str] = mapped_column(String(36), nullable=False)

    trading_date: Mapped[date] = mapped_column(Date, nullable=False)

    mtm: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    invested: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    """Starting balance the loss percent was computed against."""

    loss_percent: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    kill_status: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    """Sticky for the day. Cleared only by an explicit reset."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("account_id", "trading_date", name="uq_daily_risk_state_account_date"),
        Index("ix_daily_risk_state_account_date", "account_id", "trading_date"),
    )


# ============================================================
# KILL EVENT MODEL
# ============================================================

class KillEventModel(Base):
    """
    Immutable record of a kill switch execution.

    Never updated or deleted.
    """

    __tablename__ = "kill_events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )

    account_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    trigger_mtm: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    trigger_loss_percent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    execution_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_kill_events_account_time", "account_id", "execution_time"),
    )


__all__ = [
    "Base",
    "AccountModel",
    "DailyRiskStateModel",
    "KillEventModel",
]
