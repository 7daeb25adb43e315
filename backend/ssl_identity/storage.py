"""
Certificate file storage.

Copies operator-supplied certificate files into the managed SSL
directory and stores uploaded PEM data there, returning the canonical
paths the settings record points at.
"""
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from .exceptions import StorageError
from .settings import SSL_DIR


logger = logging.getLogger(__name__)

CERT_FILENAME = "cert.pem"
KEY_FILENAME = "key.pem"
CA_CERT_FILENAME = "ca.pem"

# Uploads land here until the settings record has been saved
STAGED_SUFFIX = ".new"

CERT_MODE = 0o640
KEY_MODE = 0o600


def write_secure_file(path: Path, data: bytes, mode: int) -> None:
    """Write data to path atomically with the given permissions."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class CertificateStorage:
    """Manages certificate and key files on disk."""

    def __init__(self, ssl_dir: Optional[Path] = None):
        """Initialize storage with optional custom directory."""
        self.ssl_dir = ssl_dir or SSL_DIR
        self.cert_path = self.ssl_dir / CERT_FILENAME
        self.key_path = self.ssl_dir / KEY_FILENAME
        self.ca_cert_path = self.ssl_dir / CA_CERT_FILENAME
        self.staged_cert_path = self.ssl_dir / (CERT_FILENAME + STAGED_SUFFIX)
        self.staged_key_path = self.ssl_dir / (KEY_FILENAME + STAGED_SUFFIX)

    def ensure_directory(self) -> None:
        """Ensure the SSL directory exists with owner-only permissions."""
        try:
            self.ssl_dir.mkdir(parents=True, exist_ok=True)
            os.chmod(self.ssl_dir, 0o700)
        except OSError as e:
            logger.error("[SSL-STORAGE] Failed to create SSL directory %s: %s", self.ssl_dir, e)
            raise StorageError(f"failed creating ssl directory: {e}") from e

    def default_cert_paths(self) -> tuple[str, str]:
        """Return the default (cert, key) location for generated certificates."""
        return str(self.cert_path), str(self.key_path)

    def copy_cert_pair(self, cert_path: str, key_path: str) -> tuple[str, str]:
        """
        Copy a certificate and key into the managed directory.

        Returns:
            Tuple of canonical (cert_path, key_path)

        Raises:
            StorageError: if either file cannot be copied
        """
        self.ensure_directory()
        self._copy(Path(cert_path), self.cert_path, CERT_MODE)
        self._copy(Path(key_path), self.key_path, KEY_MODE)
        logger.info("[SSL-STORAGE] Copied certificate pair into %s", self.ssl_dir)
        return str(self.cert_path), str(self.key_path)

    def copy_ca_cert(self, ca_cert_path: str) -> str:
        """
        Copy a CA certificate bundle into the managed directory.

        Raises:
            StorageError: if the file cannot be copied
        """
        self.ensure_directory()
        self._copy(Path(ca_cert_path), self.ca_cert_path, CERT_MODE)
        logger.info("[SSL-STORAGE] Copied CA certificate to %s", self.ca_cert_path)
        return str(self.ca_cert_path)

    def store_cert_pair(self, cert_pem: bytes, key_pem: bytes) -> tuple[str, str]:
        """
        Write PEM-encoded certificate and key into the managed directory.

        Either both canonical files are replaced or neither is.

        Returns:
            Tuple of canonical (cert_path, key_path)

        Raises:
            StorageError: if either file cannot be written
        """
        self.stage_cert_pair(cert_pem, key_pem)
        try:
            return self.commit_staged_pair()
        finally:
            self.discard_staged_pair()

    def stage_cert_pair(self, cert_pem: bytes, key_pem: bytes) -> tuple[str, str]:
        """
        Write a pair next to the canonical files without touching them.

        Returns:
            Tuple of staged (cert_path, key_path)

        Raises:
            StorageError: if either file cannot be written
        """
        self.ensure_directory()
        try:
            write_secure_file(self.staged_cert_path, cert_pem, CERT_MODE)
            write_secure_file(self.staged_key_path, key_pem, KEY_MODE)
        except OSError as e:
            logger.error("[SSL-STORAGE] Failed to stage certificate pair: %s", e)
            self.discard_staged_pair()
            raise StorageError(f"failed storing certificate pair: {e}") from e

        return str(self.staged_cert_path), str(self.staged_key_path)

    def commit_staged_pair(self) -> tuple[str, str]:
        """
        Move the staged pair over the canonical files.

        If the key cannot be moved the previous certificate is put back,
        so the canonical files always hold a matching pair.

        Returns:
            Tuple of canonical (cert_path, key_path)

        Raises:
            StorageError: if the staged files cannot be moved into place
        """
        previous_cert = None
        try:
            if self.cert_path.exists():
                previous_cert = self.cert_path.read_bytes()
            os.replace(self.staged_cert_path, self.cert_path)
        except OSError as e:
            logger.error("[SSL-STORAGE] Failed to install certificate: %s", e)
            raise StorageError(f"failed storing certificate pair: {e}") from e

        try:
            os.replace(self.staged_key_path, self.key_path)
        except OSError as e:
            logger.error("[SSL-STORAGE] Failed to install key, restoring previous certificate: %s", e)
            self._restore_cert(previous_cert)
            raise StorageError(f"failed storing certificate pair: {e}") from e

        logger.info("[SSL-STORAGE] Certificate saved to %s", self.cert_path)
        return str(self.cert_path), str(self.key_path)

    def discard_staged_pair(self) -> None:
        """Remove any staged files left behind."""
        for path in (self.staged_cert_path, self.staged_key_path):
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("[SSL-STORAGE] Failed to remove staged file %s: %s", path, e)

    def _restore_cert(self, previous_cert: Optional[bytes]) -> None:
        try:
            if previous_cert is None:
                self.cert_path.unlink()
            else:
                write_secure_file(self.cert_path, previous_cert, CERT_MODE)
        except OSError as e:
            logger.error("[SSL-STORAGE] Failed to restore previous certificate: %s", e)

    def has_certificate(self) -> bool:
        """Check if a managed certificate pair exists."""
        return self.cert_path.exists() and self.key_path.exists()

    def _copy(self, source: Path, destination: Path, mode: int) -> None:
        try:
            if destination.exists() and source.resolve() == destination.resolve():
                # Already the managed file
                return
            data = source.read_bytes()
            write_secure_file(destination, data, mode)
        except OSError as e:
            logger.error("[SSL-STORAGE] Failed to copy %s to %s: %s", source, destination, e)
            raise StorageError(f"failed copying {source}: {e}") from e
