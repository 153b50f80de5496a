"""
Background tasks.

- expire_pending_holds: one expiry pass over every provider
- ExpirySweeper: runs that pass on a fixed interval in a daemon thread
"""

import logging
from threading import Event, Thread

from slotbook.scheduling.lifecycle import ReservationLifecycle

logger = logging.getLogger(__name__)


def expire_pending_holds(lifecycle: ReservationLifecycle) -> int:
    expired_count = lifecycle.sweep()
    if expired_count > 0:
        logger.info('expire_pending_holds: %d pending hold(s) expired', expired_count)
    return expired_count


class ExpirySweeper:
    def __init__(self, lifecycle: ReservationLifecycle, interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError('interval_seconds must be positive.')
        self.lifecycle = lifecycle
        self.interval_seconds = interval_seconds
        self._stop = Event()
        self._thread: Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = Thread(target=self._run, name='slotbook-expiry-sweeper', daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                expire_pending_holds(self.lifecycle)
            except Exception:
                # Keep sweeping; the next pass retries whatever this one missed.
                logger.exception('Expiry sweep failed')
