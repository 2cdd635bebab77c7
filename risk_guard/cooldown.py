"""
Risk Guard - Warning Cooldown.

Keyed last-seen timestamps used to rate limit repeated warnings
(e.g. an expired broker token seen on every cycle). One instance
per scheduler; nothing is shared at module level.
"""

import threading
from typing import Dict, Optional

from core.clock import ClockProtocol, SystemClock


class WarningCooldown:
    """At most one firing per key per cooldown window."""

    def __init__(self, cooldown_seconds: float, clock: Optional[ClockProtocol] = None):
        self._cooldown_seconds = cooldown_seconds
        self._clock = clock or SystemClock()
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    def should_fire(self, key: str) -> bool:
        """
        True when the key has not fired within the window.

        Firing records the current time for the key.
        """
        now = self._clock.monotonic()
        with self._lock:
            last = self._last_seen.get(key)
            if last is not None and now - last < self._cooldown_seconds:
                return False
            self._last_seen[key] = now
            return True

    def reset(self, key: Optional[str] = None) -> None:
        """Forget one key, or all keys."""
        with self._lock:
            if key is None:
                self._last_seen.clear()
            else:
                self._last_seen.pop(key, None)


__all__ = ["WarningCooldown"]
