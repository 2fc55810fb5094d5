"""
A coalescing work queue of object keys, one per managed kind. A key waiting in
the queue is never queued twice, and a key is never handed to two workers at
once: a key added while it is being processed is queued again once processing
finishes.
"""

# Standard
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Dict, Hashable, Optional, Set
import threading

# First Party
import alog

# Local
from .. import config
from .timer import TimerThread

log = alog.use_channel("WRKQ")


class WorkQueue:
    """Coalescing queue with delayed and rate-limited adds"""

    def __init__(
        self,
        name: str,
        timer: TimerThread,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
    ):
        """
        Args:
            name:  str
                Name used in logs
            timer:  TimerThread
                The shared timer running delayed adds
            base_delay:  Optional[float]
                Seconds of the first rate-limited retry
            max_delay:  Optional[float]
                Cap of the rate-limited retry delay
        """
        self.name = name
        self.timer = timer
        self.base_delay = (
            config.retry_backoff_base_seconds if base_delay is None else base_delay
        )
        self.max_delay = (
            config.retry_backoff_max_seconds if max_delay is None else max_delay
        )

        self._condition = threading.Condition()
        self._queue: Deque[Hashable] = deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._failures: Dict[Hashable, int] = {}
        self._shutting_down = False

    def __len__(self):
        with self._condition:
            return len(self._queue)

    ## Public ##################################################################

    def add(self, key: Hashable):
        """Queue the key unless it is already waiting"""
        with self._condition:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                log.debug3("[%s] %s is processing. Deferring", self.name, key)
                return
            self._queue.append(key)
            self._condition.notify()

    def add_after(self, key: Hashable, delay: float):
        """Queue the key once the delay in seconds passes"""
        if delay <= 0:
            self.add(key)
            return
        log.debug2("[%s] Requeuing %s in %ss", self.name, key, delay)
        self.timer.put_event(datetime.now() + timedelta(seconds=delay), self.add, key)

    def add_rate_limited(self, key: Hashable) -> float:
        """Queue the key after a per-key exponential backoff

        Returns:
            delay:  float
                The delay in seconds before the key is queued
        """
        with self._condition:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        delay = min(self.base_delay * (2**failures), self.max_delay)
        self.add_after(key, delay)
        return delay

    def forget(self, key: Hashable):
        """Reset the backoff of the key"""
        with self._condition:
            self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        with self._condition:
            return self._failures.get(key, 0)

    def get(self, timeout: Optional[float] = None) -> Optional[Hashable]:
        """Take the next key for processing. Every key returned must be passed
        to done.

        Returns:
            key:  Optional[Hashable]
                The key, or None on timeout or shutdown
        """
        with self._condition:
            while not self._queue and not self._shutting_down:
                if not self._condition.wait(timeout):
                    return None
            if self._shutting_down:
                return None
            key = self._queue.popleft()
            self._dirty.discard(key)
            self._processing.add(key)
            return key

    def done(self, key: Hashable):
        """Mark the key as processed, queueing it again if it was added in the
        meantime
        """
        with self._condition:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._condition.notify()

    def shut_down(self):
        """Stop handing out keys and wake all waiting workers"""
        with self._condition:
            self._shutting_down = True
            self._condition.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._condition:
            return self._shutting_down
