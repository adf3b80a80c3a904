# pacer.py
import logging
import threading
import time
from typing import Callable, Optional

from .exceptions import OperationCancelled

# First backoff step when the pacer starts from a zero interval.
BACKOFF_FLOOR = 0.01


class Pacer:
    """
    Spaces out outbound requests and backs off when the remote pushes back.

    Every request reserves a dispatch slot. Slots are handed out in issue
    order, at least `sleep` seconds apart, where `sleep` starts at
    `min_sleep`, doubles on every retry (up to `max_sleep`) and decays back
    towards `min_sleep` on every success. Only the slot bookkeeping is done
    under the lock; the actual wait and the HTTP call happen outside it, so
    several requests may be in flight once their slots have passed.
    """

    def __init__(
        self,
        min_sleep: float = 0.01,
        max_sleep: float = 2.0,
        decay_constant: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ):
        if min_sleep < 0 or max_sleep < min_sleep:
            raise ValueError(
                f"Invalid pacer bounds: min_sleep={min_sleep}, max_sleep={max_sleep}"
            )
        self.min_sleep = min_sleep
        self.max_sleep = max_sleep
        self.decay_constant = decay_constant
        self._clock = clock
        self._lock = threading.Lock()
        self._sleep = min_sleep
        self._next_slot = 0.0

    @property
    def sleep_time(self) -> float:
        with self._lock:
            return self._sleep

    def _reserve(self):
        with self._lock:
            slot = max(self._clock(), self._next_slot)
            self._next_slot = slot + self._sleep
            return slot, self._next_slot

    def _release(self, slot: float, end: float):
        with self._lock:
            # Only the most recent reservation can be handed back without
            # disturbing callers queued behind it.
            if self._next_slot == end:
                self._next_slot = slot

    def begin_call(self, cancel: Optional[threading.Event] = None) -> float:
        """
        Blocks until the caller's dispatch slot arrives and returns the slot time.
        Raises OperationCancelled if `cancel` is set before the slot arrives.
        """
        if cancel is not None and cancel.is_set():
            raise OperationCancelled("Operation cancelled before dispatch")

        slot, end = self._reserve()
        delay = slot - self._clock()
        if delay > 0:
            if cancel is not None:
                if cancel.wait(delay):
                    self._release(slot, end)
                    raise OperationCancelled("Operation cancelled while waiting for the pacer")
            else:
                time.sleep(delay)
        return slot

    def end_call(self, retry: bool, retry_after: Optional[float] = None):
        """Adjusts the sleep interval after a request finished."""
        with self._lock:
            if retry:
                self._sleep = min(
                    max(self._sleep * 2, self.min_sleep, BACKOFF_FLOOR), self.max_sleep
                )
                if retry_after:
                    self._next_slot = max(self._next_slot, self._clock() + retry_after)
                logging.debug(f"Pacer backing off, sleep is now {self._sleep:.3f}s")
            else:
                denominator = 2**self.decay_constant
                self._sleep = max(
                    self._sleep * (denominator - 1) / denominator, self.min_sleep
                )
