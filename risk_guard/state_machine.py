"""
Risk Guard - Monitor State Machine.

============================================================
PURPOSE
============================================================
Lifecycle of the monitoring scheduler.

STATE TRANSITION RULES:
- IDLE → RUNNING:     start()
- RUNNING → STOPPED:  stop()
- STOPPED → RUNNING:  start() (restart)

- start() while RUNNING: no-op
- stop() while IDLE or STOPPED: no-op

All transitions are logged.

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from core.exceptions import StateTransitionError

from .types import MonitorState


logger = logging.getLogger(__name__)


# ============================================================
# STATE TRANSITION RULES
# ============================================================

ALLOWED_TRANSITIONS: Dict[MonitorState, Set[MonitorState]] = {
    MonitorState.IDLE: {MonitorState.RUNNING},
    MonitorState.RUNNING: {MonitorState.STOPPED},
    MonitorState.STOPPED: {MonitorState.RUNNING},
}


@dataclass
class MonitorTransition:
    """Record of a lifecycle change."""

    from_state: MonitorState
    to_state: MonitorState
    reason: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================================
# STATE MACHINE
# ============================================================

class MonitorStateMachine:
    """
    Scheduler lifecycle state machine.

    Tracks a generation counter that increases on every start, so
    a loop from a previous run can tell it has been superseded.
    """

    def __init__(self, max_history_size: int = 100):
        self._state = MonitorState.IDLE
        self._entered_at = datetime.now(timezone.utc)
        self._generation = 0
        self._history: List[MonitorTransition] = []
        self._max_history_size = max_history_size

    @property
    def current_state(self) -> MonitorState:
        return self._state

    @property
    def entered_at(self) -> datetime:
        return self._entered_at

    @property
    def generation(self) -> int:
        """Number of times the machine has entered RUNNING."""
        return self._generation

    @property
    def is_running(self) -> bool:
        return self._state == MonitorState.RUNNING

    @property
    def transition_history(self) -> List[MonitorTransition]:
        return list(self._history)

    def start(self, reason: str = "start requested") -> Optional[MonitorTransition]:
        """
        Enter RUNNING.

        Returns:
            Transition, or None if already running
        """
        if self._state == MonitorState.RUNNING:
            return None
        transition = self._transition_to(MonitorState.RUNNING, reason)
        self._generation += 1
        return transition

    def stop(self, reason: str = "stop requested") -> Optional[MonitorTransition]:
        """
        Enter STOPPED.

        Returns:
            Transition, or None if not running
        """
        if self._state != MonitorState.RUNNING:
            return None
        return self._transition_to(MonitorState.STOPPED, reason)

    def _transition_to(self, new_state: MonitorState, reason: str) -> MonitorTransition:
        if new_state not in ALLOWED_TRANSITIONS[self._state]:
            raise StateTransitionError(
                f"Invalid monitor transition: {self._state.value} -> {new_state.value}",
                from_state=self._state.value,
                to_state=new_state.value,
            )

        transition = MonitorTransition(
            from_state=self._state,
            to_state=new_state,
            reason=reason,
        )
        logger.info(
            f"Monitor state: {self._state.value} -> {new_state.value} ({reason})"
        )

        self._state = new_state
        self._entered_at = transition.timestamp
        self._history.append(transition)
        if len(self._history) > self._max_history_size:
            self._history = self._history[-self._max_history_size:]

        return transition


__all__ = [
    "ALLOWED_TRANSITIONS",
    "MonitorTransition",
    "MonitorStateMachine",
]
