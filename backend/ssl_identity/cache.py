"""In-memory holder for the active TLS identity."""
import logging
import ssl
import threading
from typing import Optional

from .certificates import Identity


logger = logging.getLogger(__name__)


class CertificateCache:
    """
    Holds at most one parsed identity for the TLS listener.

    Readers take a single reference, so a handshake sees either the
    previous pair or the new one, never a mix. Writers go through
    publish(), which replaces the whole identity at once.
    """

    def __init__(self):
        self._identity: Optional[Identity] = None
        self._lock = threading.Lock()

    def get(self) -> Optional[Identity]:
        """Return the current identity, or None before initialization."""
        return self._identity

    def publish(self, identity: Identity) -> None:
        """
        Replace the cached identity.

        Args:
            identity: Fully parsed identity to serve from now on
        """
        with self._lock:
            self._identity = identity
        logger.debug("[SSL-CACHE] Published certificate for '%s'", identity.info.subject)

    def clear(self) -> None:
        """Drop the cached identity."""
        with self._lock:
            self._identity = None
        logger.debug("[SSL-CACHE] Cleared cached certificate")

    def create_ssl_context(self) -> ssl.SSLContext:
        """
        Create a server context that follows the cache.

        Each handshake switches to the context of whatever identity is
        published at that moment, so a replaced certificate is served
        on the next connection without rebuilding the listener.

        Raises:
            RuntimeError: if no identity has been published yet
        """
        identity = self.get()
        if identity is None:
            raise RuntimeError("no certificate cached")

        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ctx.minimum_version = ssl.TLSVersion.TLSv1_2
        ctx.load_cert_chain(identity.cert_path, identity.key_path)
        ctx.sni_callback = self._select_context
        return ctx

    def _select_context(self, ssl_object, server_name, context) -> None:
        identity = self.get()
        if identity is not None:
            ssl_object.context = identity.ssl_context
        return None
