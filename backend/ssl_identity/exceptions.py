"""
Errors raised by the SSL identity manager.
"""


class SSLError(Exception):
    """Base error for SSL identity operations."""

    pass


class ConfigurationError(SSLError):
    """Invalid combination of supplied inputs (e.g. CA cert without a key pair)."""

    pass


class StorageError(SSLError):
    """Certificate file or settings persistence failure."""

    pass


class ParseError(SSLError):
    """Malformed PEM data or a certificate/key pair that do not match."""

    pass


class CertificateNotFoundError(SSLError):
    """A certificate or key file named by the settings does not exist."""

    pass
