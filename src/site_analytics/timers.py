
from __future__ import annotations

from typing import Callable, Optional

import simpy


class CancellableTimer:
    """
    One-shot timer on a simpy environment with explicit arm / cancel / fire.

    Re-arming supersedes the pending schedule (debounce). Superseded waits are
    left in the event queue and ignored when they wake, so no process is ever
    interrupted.
    """

    def __init__(self, env: simpy.Environment, delay_s: float, callback: Callable[[], None]):
        if delay_s < 0:
            raise ValueError("delay_s must be >= 0")
        self.env = env
        self.delay_s = float(delay_s)
        self._callback = callback
        self._generation = 0
        self._deadline: Optional[float] = None

    @property
    def armed(self) -> bool:
        return self._deadline is not None

    @property
    def deadline(self) -> Optional[float]:
        """env time at which the pending schedule fires, or None."""
        return self._deadline

    def arm(self) -> None:
        self._generation += 1
        self._deadline = self.env.now + self.delay_s
        self.env.process(self._wait(self._generation))

    def cancel(self) -> None:
        if self._deadline is not None:
            self._generation += 1
            self._deadline = None

    def fire(self) -> None:
        """Cancel any pending schedule and run the callback now."""
        self.cancel()
        self._callback()

    def _wait(self, generation: int):
        yield self.env.timeout(self.delay_s)
        if generation != self._generation:
            return
        self._deadline = None
        self._callback()
