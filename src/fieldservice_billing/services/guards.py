"""In-flight operation tracking.

A double-click on "Send" or "Record payment" must not run the operation
twice. OperationGuard marks (operation, key) as busy until the call returns;
an identical request arriving meanwhile is rejected, not queued. Locks
expire after a timeout so a hung call never blocks a later retry. Each
acquisition gets its own token, and releasing a token whose lock was
already taken over leaves the new holder's lock in place.
"""

import itertools
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from fieldservice_billing.exceptions import OperationInProgressError
from fieldservice_billing.logging_config import get_logger

logger = get_logger(__name__)


class OperationGuard:
    def __init__(
        self,
        timeout_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._timeout = timeout_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._serials = itertools.count(1)
        self._in_flight: dict[tuple[str, str], tuple[float, int]] = {}

    def acquire(self, operation: str, key: object) -> tuple[str, str, int]:
        slot = (operation, str(key))
        now = self._clock()
        with self._lock:
            held = self._in_flight.get(slot)
            if held is not None:
                started = held[0]
                if now - started < self._timeout:
                    raise OperationInProgressError(operation, slot[1])
                logger.warning(
                    "operation_lock_expired",
                    operation=operation,
                    key=slot[1],
                    held_seconds=round(now - started, 3),
                )
            serial = next(self._serials)
            self._in_flight[slot] = (now, serial)
        return (operation, slot[1], serial)

    def release(self, token: tuple[str, str, int]) -> None:
        operation, key, serial = token
        with self._lock:
            held = self._in_flight.get((operation, key))
            if held is None:
                return
            if held[1] != serial:
                logger.warning("stale_operation_release", operation=operation, key=key)
                return
            del self._in_flight[(operation, key)]

    def is_busy(self, operation: str, key: object) -> bool:
        with self._lock:
            held = self._in_flight.get((operation, str(key)))
            return held is not None and self._clock() - held[0] < self._timeout

    @contextmanager
    def hold(self, operation: str, key: object) -> Iterator[None]:
        """Run the enclosed block as the only in-flight (operation, key)."""
        token = self.acquire(operation, key)
        try:
            yield
        finally:
            self.release(token)
