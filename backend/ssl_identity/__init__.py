"""
SSL identity management module.

Provides the server's TLS identity lifecycle:
- Supplied, stored or self-signed certificate selection at startup
- In-memory cache of the parsed identity for the TLS listener
- Runtime certificate replacement and HTTP fallback toggling
- Listener restart on configuration changes
"""

from .cache import CertificateCache
from .certificates import CertificateInfo, Identity
from .exceptions import (
    CertificateNotFoundError,
    ConfigurationError,
    ParseError,
    SSLError,
    StorageError,
)
from .restart import RestartSignal
from .service import SSLService
from .settings import SSLSettings, SSLSettingsStore, SSLStartupOptions, load_startup_options
from .storage import CertificateStorage

__all__ = [
    "CertificateCache",
    "CertificateInfo",
    "Identity",
    "SSLError",
    "ConfigurationError",
    "StorageError",
    "ParseError",
    "CertificateNotFoundError",
    "RestartSignal",
    "SSLService",
    "SSLSettings",
    "SSLSettingsStore",
    "SSLStartupOptions",
    "load_startup_options",
    "CertificateStorage",
]
