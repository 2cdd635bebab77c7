"""
Clock and Market Calendar Tests.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from core.clock import (
    MockClock,
    next_market_open,
    seconds_until_next_market_open,
    trading_date_for,
)
from core.constants import MARKET_TIMEZONE


UTC = timezone.utc


# ============================================================
# TRADING DATE TESTS
# ============================================================

class TestTradingDate:
    """Market-local trading date."""

    def test_same_day_during_session(self):
        # 10:30 IST
        assert trading_date_for(datetime(2024, 1, 16, 5, 0, tzinfo=UTC)) == date(2024, 1, 16)

    def test_utc_evening_is_next_market_day(self):
        # 20:00 UTC is 01:30 IST the following day
        assert trading_date_for(datetime(2024, 1, 15, 20, 0, tzinfo=UTC)) == date(2024, 1, 16)

    def test_naive_datetime_treated_as_utc(self):
        assert trading_date_for(datetime(2024, 1, 15, 20, 0)) == date(2024, 1, 16)

    def test_clock_trading_date(self):
        clock = MockClock(datetime(2024, 1, 15, 18, 29, tzinfo=UTC))
        assert clock.trading_date() == date(2024, 1, 15)

        clock.advance(minutes=1)
        assert clock.trading_date() == date(2024, 1, 16)


# ============================================================
# MARKET OPEN TESTS
# ============================================================

class TestNextMarketOpen:
    """Next 09:15 IST session open."""

    def test_before_open_is_same_day(self):
        # 08:30 IST
        moment = datetime(2024, 1, 16, 3, 0, tzinfo=UTC)

        result = next_market_open(moment)

        assert result == datetime(2024, 1, 16, 9, 15, tzinfo=MARKET_TIMEZONE)
        assert result.astimezone(UTC) == datetime(2024, 1, 16, 3, 45, tzinfo=UTC)

    def test_after_open_is_next_day(self):
        # 09:30 IST
        moment = datetime(2024, 1, 16, 4, 0, tzinfo=UTC)

        assert next_market_open(moment) == datetime(2024, 1, 17, 9, 15, tzinfo=MARKET_TIMEZONE)

    def test_exactly_at_open_is_next_day(self):
        moment = datetime(2024, 1, 16, 3, 45, tzinfo=UTC)

        assert next_market_open(moment) == datetime(2024, 1, 17, 9, 15, tzinfo=MARKET_TIMEZONE)

    def test_seconds_until_open(self):
        # 09:30 IST, next open 23h45m away
        moment = datetime(2024, 1, 16, 4, 0, tzinfo=UTC)

        assert seconds_until_next_market_open(moment) == 23 * 3600 + 45 * 60

    def test_seconds_until_open_has_floor(self):
        # 08:30 IST, 45 minutes to open
        moment = datetime(2024, 1, 16, 3, 0, tzinfo=UTC)

        assert seconds_until_next_market_open(moment) == 3600

    def test_custom_floor(self):
        moment = datetime(2024, 1, 16, 3, 0, tzinfo=UTC)

        assert seconds_until_next_market_open(moment, minimum_seconds=60) == 45 * 60


# ============================================================
# MOCK CLOCK TESTS
# ============================================================

class TestMockClock:
    """Deterministic clock."""

    def test_advance_moves_wall_and_monotonic(self):
        start = datetime(2024, 1, 16, 5, 0, tzinfo=UTC)
        clock = MockClock(start)

        clock.advance(seconds=90)

        assert clock.now() == start + timedelta(seconds=90)
        assert clock.monotonic() == pytest.approx(90.0)

    def test_set_time_never_rewinds_monotonic(self):
        clock = MockClock(datetime(2024, 1, 16, 5, 0, tzinfo=UTC))
        clock.advance(seconds=10)

        clock.set_time(datetime(2024, 1, 16, 4, 0, tzinfo=UTC))

        assert clock.monotonic() == pytest.approx(10.0)

    def test_freeze_restores(self):
        start = datetime(2024, 1, 16, 5, 0, tzinfo=UTC)
        clock = MockClock(start)

        with clock.freeze(datetime(2030, 1, 1, tzinfo=UTC)):
            assert clock.now().year == 2030

        assert clock.now() == start
