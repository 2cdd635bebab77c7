"""
Database Package Initialization.

============================================================
DATABASE PERSISTENCE LAYER
============================================================

Async SQLAlchemy persistence for the risk guard: accounts,
daily risk state and the kill event ledger.

REQUIRED:
- Every failure raises hard exceptions
- All transactions are explicit with commit/rollback

============================================================
"""

from .engine import (
    get_database_url,
    normalize_database_url,
    create_database_engine,
    create_session_factory,
    verify_database_connection,
    create_all_tables,
    initialize_database,
)
from .models import (
    Base,
    AccountModel,
    DailyRiskStateModel,
    KillEventModel,
)


__all__ = [
    "get_database_url",
    "normalize_database_url",
    "create_database_engine",
    "create_session_factory",
    "verify_database_connection",
    "create_all_tables",
    "initialize_database",
    "Base",
    "AccountModel",
    "DailyRiskStateModel",
    "KillEventModel",
]
