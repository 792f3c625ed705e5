"""
Idle shutdown.

The service is meant to be billed per second of uptime, so once the job
table holds nothing pending or processing the process removes its temp files
and stops itself. The check reads the database rather than the pool because a
job counts as in flight from the moment its row is written.
"""

import logging
import os
import threading
from typing import Callable, Optional

from hlsfy.cleanup import clean_temp
from hlsfy.config import Settings

logger = logging.getLogger(__name__)


def terminate_self() -> None:
    """Exit with status 0 from any thread.

    Used when the app is served without ``hlsfy.main.build_server``, which
    replaces it with a graceful stop of the uvicorn loop.
    """
    logging.shutdown()
    os._exit(0)


class IdleWatchdog:
    def __init__(self, queue, settings: Settings, terminate: Callable[[], None] = terminate_self):
        self.queue = queue
        self.settings = settings
        self.terminate = terminate

    def check(self) -> bool:
        """Return True when the process was told to exit."""
        if self.settings.ignore_check_process:
            logger.debug("IGNORE_CHECK_PROCESS is true. Ignoring exit...")
            return False

        if self.queue.has_pending():
            logger.debug("Pending process. Ignoring exit...")
            return False

        logger.info("No pending process. Exit...")
        clean_temp(self.settings.temp_dir)
        self.terminate()
        return True


class WatchdogTimer:
    """Calls ``watchdog.check()`` every ``interval`` seconds on a daemon thread."""

    def __init__(self, watchdog: IdleWatchdog, interval: float):
        self.watchdog = watchdog
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is None or not self._thread.is_alive():
            self._stop.clear()
            self._thread = threading.Thread(target=self._loop, daemon=True, name="IdleWatchdog")
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.interval + 1)

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                if self.watchdog.check():
                    return
            except Exception:
                logger.exception("Idle check failed")
