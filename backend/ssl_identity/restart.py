"""
Listener restart signal.

A one-shot notification from the SSL service to whoever owns the
listener lifecycle. Triggering while a restart is already pending is a
no-op; the owner re-arms the signal once the listener is back up.
"""
import logging
import threading
from typing import Callable, Optional


logger = logging.getLogger(__name__)


class RestartSignal:
    """One-shot, fire-and-forget restart notification."""

    def __init__(self, callback: Optional[Callable[[], None]] = None):
        """
        Args:
            callback: Optional hook run when the signal fires
        """
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callback = callback

    @property
    def is_pending(self) -> bool:
        """Check if a restart has been requested and not yet handled."""
        return self._event.is_set()

    def trigger(self) -> bool:
        """
        Request a listener restart.

        Returns:
            True if this call fired the signal, False if one was already pending
        """
        with self._lock:
            if self._event.is_set():
                logger.debug("[SSL-RESTART] Restart already pending, ignoring")
                return False
            self._event.set()

        logger.info("[SSL-RESTART] Listener restart requested")

        if self._callback:
            try:
                self._callback()
            except Exception as e:
                logger.error("[SSL-RESTART] Restart callback failed: %s", e)

        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the signal fires. Returns False on timeout."""
        return self._event.wait(timeout)

    def reset(self) -> None:
        """Re-arm the signal after the listener has restarted."""
        self._event.clear()

    # Usable directly as the service's zero-argument restart hook
    def __call__(self) -> None:
        self.trigger()
