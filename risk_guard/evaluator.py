"""
Risk Guard - Risk Evaluator.

============================================================
PURPOSE
============================================================
Pure computation of mark-to-market, loss percent and the
SAFE / TRIGGER verdict for one account.

RULES:
- Only day-tradeable positions count toward MTM
  (carry-forward holdings and uncategorized positions are excluded)
- MTM is the sum of unrealized profit; realized profit is ignored
- Loss percent is 0 when MTM >= 0 or starting balance <= 0
- TRIGGER iff MTM < 0, balance > 0 and loss percent >= threshold
  (inclusive comparison)

No I/O. Safe to call repeatedly and concurrently.

============================================================
"""

import math
from typing import Iterable, List, Optional

from core.constants import CARRY_FORWARD_PRODUCT_TYPES

from .types import Position, RiskSnapshot, RiskVerdict


def _number(value: Optional[float]) -> float:
    """Broker numerics may be missing or malformed. Treat as 0."""
    if value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return number


def is_day_tradeable(position: Position) -> bool:
    """True when the position counts toward intraday MTM."""
    category = position.category
    return category != "" and category not in CARRY_FORWARD_PRODUCT_TYPES


def closeable_positions(positions: Iterable[Position]) -> List[Position]:
    """Day-tradeable positions with open quantity."""
    return [
        p for p in positions
        if is_day_tradeable(p) and int(_number(p.net_qty)) != 0
    ]


def calculate_mtm(positions: Iterable[Position]) -> float:
    """Sum of unrealized profit over day-tradeable positions."""
    return sum(
        (_number(p.unrealized_profit) for p in positions if is_day_tradeable(p)),
        0.0,
    )


def calculate_loss_percent(mtm: float, starting_balance: float) -> float:
    """Loss as percent of starting balance; never negative."""
    if mtm >= 0 or starting_balance <= 0:
        return 0.0
    return abs(mtm) / starting_balance * 100


def evaluate(
    positions: Iterable[Position],
    starting_balance: float,
    threshold_percent: float,
) -> RiskSnapshot:
    """
    Evaluate an account's open-position drawdown.

    Args:
        positions: Current open positions
        starting_balance: Start-of-day capital
        threshold_percent: Loss threshold in percent

    Returns:
        RiskSnapshot with mtm, loss_percent and verdict
    """
    balance = _number(starting_balance)
    mtm = calculate_mtm(positions)
    loss_percent = calculate_loss_percent(mtm, balance)

    if mtm < 0 and balance > 0 and loss_percent >= threshold_percent:
        verdict = RiskVerdict.TRIGGER
    else:
        verdict = RiskVerdict.SAFE

    return RiskSnapshot(
        mtm=mtm,
        starting_balance=balance,
        loss_percent=loss_percent,
        verdict=verdict,
        threshold=threshold_percent,
    )


__all__ = [
    "is_day_tradeable",
    "closeable_positions",
    "calculate_mtm",
    "calculate_loss_percent",
    "evaluate",
]
