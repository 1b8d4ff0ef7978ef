"""
Controller state shared by the controller, the supervisor and every session.

One object per process, passed by reference to each session at creation.
All fields are guarded by a single lock.
"""

import threading
import time
from enum import IntEnum
from typing import Callable, Optional


class Interrupt(IntEnum):
    """Global interrupt flag."""
    NONE = 0
    STOP = 1  # external shutdown signal, nobody dumps
    LIMIT_REACHED = 2  # a session hit the node limit, exit with success


class ControllerState:
    """
    Running-session count, last admission time, interrupt flag and session
    index counter.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._interrupted = threading.Event()
        self._interrupt = Interrupt.NONE
        self._running = 0
        self._last_admission: Optional[float] = None
        self._last_index = 0

    # =========================================================================
    # Interrupt
    # =========================================================================

    @property
    def interrupt(self) -> Interrupt:
        with self._lock:
            return self._interrupt

    @property
    def interrupted(self) -> bool:
        return self._interrupted.is_set()

    def raise_interrupt(self, value: Interrupt) -> bool:
        """
        Set the interrupt flag.

        The first raised value wins; later calls are ignored.

        Returns:
            True if this call changed the flag
        """
        if value is Interrupt.NONE:
            raise ValueError("cannot clear the interrupt flag")
        with self._lock:
            if self._interrupt is not Interrupt.NONE:
                return False
            self._interrupt = value
        self._interrupted.set()
        return True

    def wait_interrupt(self, timeout: Optional[float] = None) -> bool:
        """Sleep up to ``timeout`` seconds, waking early on interrupt."""
        return self._interrupted.wait(timeout)

    # =========================================================================
    # Sessions
    # =========================================================================

    @property
    def running(self) -> int:
        with self._lock:
            return self._running

    def next_index(self) -> int:
        with self._lock:
            self._last_index += 1
            return self._last_index

    def session_started(self) -> None:
        with self._lock:
            self._running += 1

    def session_finished(self) -> None:
        with self._lock:
            if self._running > 0:
                self._running -= 1
            if self._running == 0:
                self._idle.notify_all()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no session is running. Returns False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: self._running == 0, timeout)

    # =========================================================================
    # Admission
    # =========================================================================

    @property
    def last_admission(self) -> Optional[float]:
        with self._lock:
            return self._last_admission

    def record_admission(self) -> None:
        with self._lock:
            self._last_admission = self.clock()

    def admission_due(self, interval: float) -> bool:
        """True if at least ``interval`` seconds passed since the last admission."""
        with self._lock:
            last = self._last_admission
        return last is None or last + interval <= self.clock()
