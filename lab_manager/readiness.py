"""Bounded polling of count-based readiness signals."""

import threading
import time
from collections.abc import Callable

from lab_manager.exceptions import ReadinessCancelledError, ReadinessTimeoutError
from lab_manager.logging_config import get_logger

logger = get_logger(__name__)

Probe = Callable[[], tuple[int, int]]
ProgressCallback = Callable[[int, int], None]


class ReadinessPoller:
    """Polls a probe until it reports every resource ready.

    The poller blocks its caller. Cancellation is cooperative: the event is
    checked between polls, never while a probe is running.
    """

    def __init__(
        self,
        timeout: float,
        interval: float,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the poller.

        Args:
            timeout: Seconds to wait before giving up
            interval: Seconds to sleep between polls
            sleep: Sleep function (injectable for tests)
            clock: Monotonic clock (injectable for tests)
        """
        self.timeout = timeout
        self.interval = interval
        self._sleep = sleep
        self._clock = clock

    def wait(
        self,
        probe: Probe,
        cancel: threading.Event | None = None,
        on_progress: ProgressCallback | None = None,
        description: str = "resources",
    ) -> int:
        """Poll until ``ready == total`` with ``total > 0``.

        Args:
            probe: Returns (ready, total); exceptions it raises propagate
            cancel: Optional event that aborts polling when set
            on_progress: Called with (ready, total) after every poll
            description: Used in log and error messages

        Returns:
            Number of polls made

        Raises:
            ReadinessTimeoutError: The deadline elapsed, carries the last counts
            ReadinessCancelledError: The cancel event was set
        """
        deadline = self._clock() + self.timeout
        ready, total = 0, 0
        polls = 0

        while True:
            if cancel is not None and cancel.is_set():
                raise ReadinessCancelledError(ready, total)

            ready, total = probe()
            polls += 1
            logger.debug(f"Waiting for {description}: {ready}/{total} ready (poll {polls})")
            self._report(on_progress, ready, total)

            if total > 0 and ready == total:
                logger.info(f"All {description} ready ({ready}/{total})")
                return polls

            if self._clock() >= deadline:
                raise ReadinessTimeoutError(ready, total, description)

            self._sleep(self.interval)

            if cancel is not None and cancel.is_set():
                raise ReadinessCancelledError(ready, total)

    @staticmethod
    def _report(on_progress: ProgressCallback | None, ready: int, total: int) -> None:
        if on_progress is None:
            return
        try:
            on_progress(ready, total)
        except Exception as e:
            # Progress output is cosmetic
            logger.debug(f"Progress callback failed: {e}")
