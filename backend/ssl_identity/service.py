"""
SSL identity service.

Decides at startup which certificate the server presents (supplied,
previously stored, or freshly generated), keeps the parsed identity
cached for the TLS listener, and applies runtime certificate and HTTP
fallback changes, signalling a listener restart after each change.

Mutations are read-modify-write on the settings record; callers must
serialize them.
"""
import dataclasses
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from .cache import CertificateCache
from .certificates import (
    SELF_SIGNED_COMMON_NAME,
    SELF_SIGNED_VALIDITY_YEARS,
    Identity,
    generate_certs_for_host,
    load_key_pair,
    validate_key_pair,
)
from .exceptions import CertificateNotFoundError, ConfigurationError, StorageError
from .settings import SSLSettings, SSLSettingsStore
from .storage import CertificateStorage


logger = logging.getLogger(__name__)


def _add_years(dt: datetime, years: int) -> datetime:
    try:
        return dt.replace(year=dt.year + years)
    except ValueError:
        # Feb 29 rolls over to Mar 1
        return dt.replace(year=dt.year + years, month=3, day=1)


class SSLService:
    """Manages the server's TLS identity."""

    def __init__(
        self,
        storage: CertificateStorage,
        settings_store: SSLSettingsStore,
        restart_trigger: Callable[[], None],
        cache: Optional[CertificateCache] = None,
    ):
        self.storage = storage
        self.settings_store = settings_store
        self.cache = cache or CertificateCache()
        self._restart_trigger = restart_trigger

    def init(
        self,
        host: str,
        cert_path: str = "",
        key_path: str = "",
        ca_cert_path: str = "",
    ) -> None:
        """
        Resolve the identity to serve. Run once, before the listener binds.

        Supplied paths always win. Otherwise a stored pair is reused, and
        a self-signed pair is generated only when none exists on disk.

        Raises:
            ConfigurationError: CA cert without a pair, or empty host when generating
            StorageError: copying files or persisting settings failed
            ParseError: the selected pair is not a usable certificate/key
        """
        if cert_path and key_path:
            new_cert_path, new_key_path = self.storage.copy_cert_pair(cert_path, key_path)

            new_ca_cert_path = ""
            if ca_cert_path:
                new_ca_cert_path = self.storage.copy_ca_cert(ca_cert_path)

            logger.info("[SSL] Using supplied certificate %s", cert_path)
            self._cache_info(new_cert_path, new_key_path, new_ca_cert_path, self_signed=False)
            return

        if ca_cert_path:
            raise ConfigurationError(
                f"supplying a CA cert path ({ca_cert_path}) requires an SSL cert and key file"
            )

        settings = self.get_settings()

        if settings.has_certificate():
            identity = self._load_existing(settings)
            if identity is not None:
                self.cache.publish(identity)
                logger.info("[SSL] Using stored certificate %s", settings.cert_path)
                return

        # Nothing supplied and nothing usable on disk
        cert_path, key_path = self.storage.default_cert_paths()
        self._generate_self_signed_certificates(host, cert_path, key_path)
        self._cache_info(cert_path, key_path, "", self_signed=True)

    def get_raw_certificate(self) -> Optional[Identity]:
        """Get the cached identity (None before init)."""
        return self.cache.get()

    def get_settings(self) -> SSLSettings:
        """Get the persisted SSL settings record."""
        return self.settings_store.settings()

    def get_ca_certificate_pem(self) -> bytes:
        """
        Get the configured CA certificate bundle.

        Returns:
            PEM bytes, or empty bytes if none is configured or readable
        """
        try:
            settings = self.get_settings()
        except StorageError as e:
            logger.warning("[SSL] Reading settings for CA cert: %s", e)
            return b""

        if not settings.ca_cert_path:
            return b""

        try:
            return Path(settings.ca_cert_path).read_bytes()
        except OSError as e:
            logger.warning("[SSL] Reading CA cert %s: %s", settings.ca_cert_path, e)
            return b""

    def set_certificates(self, cert_data: bytes, key_data: bytes) -> None:
        """
        Replace the served certificate and restart the listener.

        The pair is validated before anything is written. The configured
        CA cert path is carried over unchanged.

        Raises:
            ConfigurationError: empty certificate or key
            ParseError: the pair is not a matching certificate/key
            StorageError: storing files or settings failed
        """
        if not cert_data or not key_data:
            raise ConfigurationError("missing certificate files")

        validate_key_pair(cert_data, key_data)

        settings = self.get_settings()

        # Stage, save settings, then swap files in; any failure leaves the
        # previous files and record as they were
        staged_cert, staged_key = self.storage.stage_cert_pair(cert_data, key_data)
        try:
            identity = load_key_pair(staged_cert, staged_key)

            cert_path, key_path = self.storage.default_cert_paths()
            # TODO: revisit whether an uploaded cert should keep the old CA bundle
            updated = settings.model_copy(
                update={"cert_path": cert_path, "key_path": key_path, "self_signed": False}
            )
            self.settings_store.update_settings(updated)

            try:
                self.storage.commit_staged_pair()
            except StorageError:
                self._restore_settings(settings)
                raise
        finally:
            self.storage.discard_staged_pair()

        self.cache.publish(dataclasses.replace(identity, cert_path=cert_path, key_path=key_path))

        logger.info("[SSL] Certificate replaced, restarting listener")
        self._restart_trigger()

    def set_http_enabled(self, http_enabled: bool) -> None:
        """
        Toggle the plaintext HTTP listener. No-op if unchanged.

        Raises:
            StorageError: reading or writing settings failed
        """
        settings = self.get_settings()

        if settings.http_enabled == http_enabled:
            return

        settings.http_enabled = http_enabled
        self.settings_store.update_settings(settings)

        logger.info("[SSL] HTTP listener %s, restarting listener", "enabled" if http_enabled else "disabled")
        self._restart_trigger()

    def _load_existing(self, settings: SSLSettings) -> Optional[Identity]:
        """Load the stored pair; None only when its files are gone."""
        try:
            return load_key_pair(settings.cert_path, settings.key_path)
        except CertificateNotFoundError as e:
            logger.info("[SSL] Stored certificate missing (%s), generating a new one", e)
            return None

    def _restore_settings(self, settings: SSLSettings) -> None:
        try:
            self.settings_store.update_settings(settings)
        except StorageError as e:
            logger.error("[SSL] Failed restoring SSL settings after aborted replacement: %s", e)

    def _cache_info(self, cert_path: str, key_path: str, ca_cert_path: str, self_signed: bool) -> None:
        """Parse the pair, persist it to settings, then publish it."""
        identity = load_key_pair(cert_path, key_path)

        settings = self.get_settings()
        settings.cert_path = cert_path
        settings.key_path = key_path
        settings.ca_cert_path = ca_cert_path
        settings.self_signed = self_signed
        self.settings_store.update_settings(settings)

        self.cache.publish(identity)

    def _generate_self_signed_certificates(self, host: str, cert_path: str, key_path: str) -> None:
        if not host:
            raise ConfigurationError("host can't be empty")

        logger.info("[SSL] No cert files found, generating self signed ssl certificates")
        not_after = _add_years(datetime.now(timezone.utc), SELF_SIGNED_VALIDITY_YEARS)
        generate_certs_for_host(SELF_SIGNED_COMMON_NAME, host, cert_path, key_path, not_after)
