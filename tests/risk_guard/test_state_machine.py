"""
Monitor State Machine Tests.
"""

import pytest

from core.exceptions import StateTransitionError
from risk_guard.state_machine import MonitorStateMachine
from risk_guard.types import MonitorState


class TestMonitorStateMachine:
    """Lifecycle transitions."""

    def test_starts_idle(self):
        machine = MonitorStateMachine()

        assert machine.current_state == MonitorState.IDLE
        assert machine.generation == 0
        assert machine.is_running is False

    def test_start_stop_restart(self):
        machine = MonitorStateMachine()

        machine.start()
        machine.stop()
        machine.start()

        assert machine.current_state == MonitorState.RUNNING
        assert machine.generation == 2
        assert [(t.from_state, t.to_state) for t in machine.transition_history] == [
            (MonitorState.IDLE, MonitorState.RUNNING),
            (MonitorState.RUNNING, MonitorState.STOPPED),
            (MonitorState.STOPPED, MonitorState.RUNNING),
        ]

    def test_start_while_running_is_noop(self):
        machine = MonitorStateMachine()
        machine.start()

        assert machine.start() is None
        assert machine.generation == 1

    def test_stop_while_idle_is_noop(self):
        machine = MonitorStateMachine()

        assert machine.stop() is None
        assert machine.current_state == MonitorState.IDLE

    def test_invalid_transition_rejected(self):
        machine = MonitorStateMachine()

        with pytest.raises(StateTransitionError):
            machine._transition_to(MonitorState.STOPPED, "forced")

    def test_history_bounded(self):
        machine = MonitorStateMachine(max_history_size=3)

        for _ in range(5):
            machine.start()
            machine.stop()

        assert len(machine.transition_history) == 3
