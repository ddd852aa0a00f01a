"""One-shot cancellation for a running transfer."""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CancelHook:
    """Cancel a transfer from any thread.

    Only the first call to :meth:`cancel` has an effect. When it is an abort,
    the cleaner (local artifacts) runs before the aborter (remote multipart
    upload); a plain cancel stops the transfer and keeps its checkpoint.
    A cleaner or aborter registered after an abort runs as soon as it is set.
    Each one runs at most once.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._effects_lock = threading.Lock()
        self._called = False
        self._aborted = False
        self._event = threading.Event()
        self._cleaner: Optional[Callable[[], None]] = None
        self._aborter: Optional[Callable[[], None]] = None

    def set_cleaner(self, cleaner: Optional[Callable[[], None]]) -> None:
        with self._lock:
            self._cleaner = cleaner
        self.run_abort_effects()

    def set_aborter(self, aborter: Optional[Callable[[], None]]) -> None:
        with self._lock:
            self._aborter = aborter
        self.run_abort_effects()

    @property
    def event(self) -> threading.Event:
        return self._event

    @property
    def aborted(self) -> bool:
        return self._aborted

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    def run_abort_effects(self) -> None:
        """Run the registered cleaner, then the aborter, if the hook was aborted."""
        with self._effects_lock:
            with self._lock:
                if not self._aborted:
                    return
                cleaner, self._cleaner = self._cleaner, None
                aborter, self._aborter = self._aborter, None
            if cleaner is not None:
                try:
                    cleaner()
                except Exception as e:
                    logger.warning(f"Cleanup after abort failed: {e}")
            if aborter is not None:
                try:
                    aborter()
                except Exception as e:
                    logger.warning(f"Abort of remote upload failed: {e}")

    def cancel(self, is_abort: bool) -> bool:
        """Cancel the transfer; returns True if this call took effect."""
        with self._lock:
            if self._called:
                return False
            self._called = True
            self._aborted = is_abort

        try:
            self.run_abort_effects()
        finally:
            self._event.set()
        logger.info("Transfer aborted" if is_abort else "Transfer cancelled")
        return True
