"""
SSL certificate configuration settings.

Manages the persisted SSL settings record (active certificate paths,
self-signed flag, plaintext HTTP fallback) and the environment-driven
startup options.
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError, model_validator

from .exceptions import StorageError


logger = logging.getLogger(__name__)

# Config file location
CONFIG_DIR = Path(os.environ.get("CONFIG_DIR", "/config"))
SSL_CONFIG_FILE = CONFIG_DIR / "ssl_settings.json"
SSL_DIR = CONFIG_DIR / "certs"


class SSLSettings(BaseModel):
    """Persisted description of the active certificate configuration."""

    # Managed certificate paths (empty until a certificate is configured)
    cert_path: str = ""
    key_path: str = ""
    ca_cert_path: str = ""

    # True when the active pair was generated locally
    self_signed: bool = False

    # Also accept plaintext connections alongside TLS
    http_enabled: bool = False

    @model_validator(mode="after")
    def validate_paths(self) -> "SSLSettings":
        """Cert and key are set together; a CA cert requires both."""
        if bool(self.cert_path) != bool(self.key_path):
            raise ValueError("cert_path and key_path must both be set or both be empty")
        if self.ca_cert_path and not self.cert_path:
            raise ValueError("ca_cert_path requires cert_path and key_path")
        return self

    def has_certificate(self) -> bool:
        """Check if the record names a certificate and key."""
        return bool(self.cert_path and self.key_path)


class SSLStartupOptions(BaseModel):
    """Certificate inputs handed to the service at boot."""

    host: str = "127.0.0.1"
    cert_path: str = ""
    key_path: str = ""
    ca_cert_path: str = ""
    https_port: int = 9443
    http_port: int = 9000


def load_startup_options() -> SSLStartupOptions:
    """Read startup options from the environment."""
    return SSLStartupOptions(
        host=os.environ.get("SSL_HOST", "127.0.0.1"),
        cert_path=os.environ.get("SSL_CERT", ""),
        key_path=os.environ.get("SSL_KEY", ""),
        ca_cert_path=os.environ.get("SSL_CACERT", ""),
        https_port=int(os.environ.get("HTTPS_PORT", 9443)),
        http_port=int(os.environ.get("HTTP_PORT", 9000)),
    )


class SSLSettingsStore:
    """JSON-file persistence for the SSL settings record."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = config_file or SSL_CONFIG_FILE

    def settings(self) -> SSLSettings:
        """
        Load the settings record.

        A missing file is a first run and yields the default record.
        Anything else that prevents reading it is an error.

        Raises:
            StorageError: if the file cannot be read or is invalid
        """
        if not self.config_file.exists():
            logger.debug("[SSL-SETTINGS] No settings file at %s, using defaults", self.config_file)
            return SSLSettings()

        try:
            data = json.loads(self.config_file.read_text())
            return SSLSettings(**data)
        except (OSError, ValueError, TypeError) as e:
            # ValidationError is a ValueError
            logger.error("[SSL-SETTINGS] Failed to load SSL settings: %s", e)
            raise StorageError(f"failed reading ssl settings: {e}") from e

    def update_settings(self, settings: SSLSettings) -> None:
        """
        Persist the settings record.

        Raises:
            StorageError: if the file cannot be written
        """
        try:
            # Re-validate: callers mutate fields after construction
            settings = SSLSettings.model_validate(settings.model_dump())
        except ValidationError as e:
            raise StorageError(f"refusing to persist invalid ssl settings: {e}") from e

        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.config_file.parent, prefix=".ssl_settings.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(settings.model_dump(), f, indent=2)
                # Restrictive permissions on settings file
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, self.config_file)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            logger.error("[SSL-SETTINGS] Cannot save SSL settings to %s: %s", self.config_file, e)
            raise StorageError(f"failed saving ssl settings: {e}") from e

        logger.info("[SSL-SETTINGS] SSL settings saved to %s", self.config_file)
