"""
Core Module - Constants.

============================================================
RESPONSIBILITY
============================================================
Defines all system-wide constants.

- Provides single source of truth for magic values
- Documents the meaning of each constant
- No business logic here

============================================================
"""

from datetime import time, timedelta, timezone


# ============================================================
# SYSTEM CONSTANTS
# ============================================================

SYSTEM_NAME = "killswitch-guard"
SYSTEM_VERSION = "0.1.0"

SECONDS_PER_HOUR = 3600


# ============================================================
# MARKET CALENDAR
# ============================================================

MARKET_TIMEZONE = timezone(timedelta(hours=5, minutes=30), name="IST")
"""Fixed offset of the exchange the accounts trade on."""

MARKET_OPEN_TIME = time(hour=9, minute=15)
"""Wall-clock session open in MARKET_TIMEZONE."""

MIN_BALANCE_CACHE_TTL_SECONDS = SECONDS_PER_HOUR
"""Floor applied to the seconds-until-open TTL."""


# ============================================================
# POSITION CATEGORIES
# ============================================================

CARRY_FORWARD_PRODUCT_TYPES = frozenset({"CNC"})
"""Delivery holdings. Never counted toward intraday MTM, never liquidated."""

EMPTY_EXPIRY_DATE = "0001-01-01"
"""Broker sentinel for "no expiry" on non-derivative positions."""

EMPTY_OPTION_TYPE = "NA"
"""Broker sentinel for "not an option"."""


# ============================================================
# RISK DEFAULTS
# ============================================================

DEFAULT_RISK_THRESHOLD = 2.0
"""Default loss threshold in percent of starting balance."""

KILL_LOCK_TTL_SECONDS = 30
KILL_LOCK_SUFFIX = "kill_lock"
BALANCE_CACHE_PREFIX = "sod_balance:"
