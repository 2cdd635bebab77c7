"""
Risk Evaluator Tests.

============================================================
PURPOSE
============================================================
Tests for MTM, loss percent and verdict computation.

TEST CATEGORIES:
- Position filtering (carry-forward, uncategorized)
- Loss percent guards
- Verdict boundaries
- Reference scenarios

============================================================
"""

import pytest

from risk_guard.evaluator import (
    calculate_loss_percent,
    calculate_mtm,
    closeable_positions,
    evaluate,
    is_day_tradeable,
)
from risk_guard.types import Position, RiskVerdict

from tests.risk_guard.fakes import intraday


# ============================================================
# FILTERING TESTS
# ============================================================

class TestPositionFiltering:
    """Which positions count toward MTM."""

    def test_intraday_counts(self):
        assert is_day_tradeable(intraday(product_type="INTRADAY"))
        assert is_day_tradeable(intraday(product_type="MARGIN"))

    def test_carry_forward_excluded_case_insensitive(self):
        assert not is_day_tradeable(intraday(product_type="CNC"))
        assert not is_day_tradeable(intraday(product_type="cnc"))

    def test_uncategorized_excluded(self):
        assert not is_day_tradeable(intraday(product_type=""))
        assert not is_day_tradeable(Position(product_type=None))

    def test_mtm_ignores_excluded_positions(self):
        positions = [
            intraday("1", unrealized_profit=-100.0),
            intraday("2", unrealized_profit=-5000.0, product_type="CNC"),
            intraday("3", unrealized_profit=-7000.0, product_type=""),
            intraday("4", unrealized_profit=40.0, product_type="MARGIN"),
        ]

        assert calculate_mtm(positions) == pytest.approx(-60.0)

    def test_mtm_ignores_realized_profit(self):
        positions = [intraday(unrealized_profit=-10.0, realized_profit=-900.0)]

        assert calculate_mtm(positions) == pytest.approx(-10.0)

    def test_missing_numeric_fields_default_to_zero(self):
        positions = [
            intraday("1", unrealized_profit=None),
            intraday("2", unrealized_profit=float("nan")),
            intraday("3", unrealized_profit=-25.0),
        ]

        assert calculate_mtm(positions) == pytest.approx(-25.0)

    def test_empty_positions(self):
        assert calculate_mtm([]) == 0.0

    def test_closeable_excludes_flat_and_carry_forward(self):
        positions = [
            intraday("1", net_qty=10),
            intraday("2", net_qty=0),
            intraday("3", net_qty=-5),
            intraday("4", net_qty=50, product_type="CNC"),
        ]

        closeable = closeable_positions(positions)

        assert [p.security_id for p in closeable] == ["1", "3"]


# ============================================================
# LOSS PERCENT TESTS
# ============================================================

class TestLossPercent:
    """Loss percent computation."""

    def test_zero_when_profitable(self):
        assert calculate_loss_percent(500.0, 1000.0) == 0.0

    def test_zero_when_flat(self):
        assert calculate_loss_percent(0.0, 1000.0) == 0.0

    def test_zero_when_balance_not_positive(self):
        assert calculate_loss_percent(-500.0, 0.0) == 0.0
        assert calculate_loss_percent(-500.0, -100.0) == 0.0

    def test_absolute_percentage(self):
        assert calculate_loss_percent(-25.0, 100.0) == 25.0

    @pytest.mark.parametrize("mtm,balance", [
        (-1.0, 1.0),
        (-999.0, 10.0),
        (5.0, 0.0),
        (-3.0, -2.0),
    ])
    def test_never_negative(self, mtm, balance):
        assert calculate_loss_percent(mtm, balance) >= 0.0


# ============================================================
# VERDICT TESTS
# ============================================================

class TestVerdict:
    """SAFE / TRIGGER decisions."""

    def test_reference_trigger_scenario(self):
        positions = [intraday(net_qty=10, unrealized_profit=-3000.0)]

        snapshot = evaluate(positions, 100000.0, 2.0)

        assert snapshot.mtm == pytest.approx(-3000.0)
        assert snapshot.loss_percent == pytest.approx(3.0)
        assert snapshot.verdict == RiskVerdict.TRIGGER
        assert snapshot.is_trigger

    def test_zero_balance_is_safe(self):
        positions = [intraday(net_qty=10, unrealized_profit=-3000.0)]

        snapshot = evaluate(positions, 0.0, 2.0)

        assert snapshot.loss_percent == 0.0
        assert snapshot.verdict == RiskVerdict.SAFE

    def test_threshold_is_inclusive(self):
        positions = [intraday(unrealized_profit=-50.0)]

        snapshot = evaluate(positions, 100.0, 50.0)

        assert snapshot.loss_percent == 50.0
        assert snapshot.verdict == RiskVerdict.TRIGGER

    def test_just_below_threshold_is_safe(self):
        positions = [intraday(unrealized_profit=-49.0)]

        snapshot = evaluate(positions, 100.0, 50.0)

        assert snapshot.verdict == RiskVerdict.SAFE

    def test_profit_is_safe(self):
        snapshot = evaluate([intraday(unrealized_profit=900.0)], 1000.0, 2.0)

        assert snapshot.loss_percent == 0.0
        assert snapshot.verdict == RiskVerdict.SAFE

    def test_only_carry_forward_losses_is_safe(self):
        positions = [intraday(unrealized_profit=-90000.0, product_type="CNC")]

        snapshot = evaluate(positions, 100000.0, 2.0)

        assert snapshot.mtm == 0.0
        assert snapshot.verdict == RiskVerdict.SAFE

    def test_deterministic(self):
        positions = [
            intraday("1", unrealized_profit=-1200.0),
            intraday("2", unrealized_profit=200.0),
        ]

        first = evaluate(positions, 50000.0, 2.0)
        second = evaluate(positions, 50000.0, 2.0)

        assert first == second

    def test_snapshot_to_dict(self):
        snapshot = evaluate([intraday(unrealized_profit=-50.0)], 100.0, 50.0)

        data = snapshot.to_dict()

        assert data["verdict"] == "TRIGGER"
        assert data["starting_balance"] == 100.0
        assert data["threshold"] == 50.0
