"""
Unit tests for the SSL settings record and its JSON store.
"""
import json
import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from ssl_identity.exceptions import StorageError
from ssl_identity.settings import SSLSettings, SSLSettingsStore, load_startup_options


class TestSSLSettings:
    """Tests for SSLSettings invariants."""

    def test_defaults_are_empty(self):
        settings = SSLSettings()
        assert settings.cert_path == ""
        assert settings.key_path == ""
        assert settings.ca_cert_path == ""
        assert settings.self_signed is False
        assert settings.http_enabled is False
        assert settings.has_certificate() is False

    def test_cert_without_key_rejected(self):
        with pytest.raises(ValidationError):
            SSLSettings(cert_path="/certs/cert.pem")

    def test_key_without_cert_rejected(self):
        with pytest.raises(ValidationError):
            SSLSettings(key_path="/certs/key.pem")

    def test_ca_without_pair_rejected(self):
        with pytest.raises(ValidationError):
            SSLSettings(ca_cert_path="/certs/ca.pem")

    def test_full_record_accepted(self):
        settings = SSLSettings(
            cert_path="/certs/cert.pem",
            key_path="/certs/key.pem",
            ca_cert_path="/certs/ca.pem",
        )
        assert settings.has_certificate() is True


class TestSSLSettingsStore:
    """Tests for SSLSettingsStore persistence."""

    def test_missing_file_returns_defaults(self, settings_store):
        """First run reads as the default record."""
        assert settings_store.settings() == SSLSettings()

    def test_update_then_read(self, settings_store):
        settings_store.update_settings(
            SSLSettings(cert_path="/c.pem", key_path="/k.pem", self_signed=True, http_enabled=True)
        )

        loaded = settings_store.settings()
        assert loaded.cert_path == "/c.pem"
        assert loaded.key_path == "/k.pem"
        assert loaded.self_signed is True
        assert loaded.http_enabled is True

    def test_file_permissions_restricted(self, settings_store):
        settings_store.update_settings(SSLSettings())
        mode = os.stat(settings_store.config_file).st_mode & 0o777
        assert mode == 0o600

    def test_no_temp_files_left_behind(self, settings_store):
        settings_store.update_settings(SSLSettings())
        leftovers = [p for p in settings_store.config_file.parent.iterdir() if p.suffix == ".tmp"]
        assert leftovers == []

    def test_corrupt_json_raises(self, settings_store):
        """An unreadable record is an error, not a silent default."""
        settings_store.config_file.parent.mkdir(parents=True)
        settings_store.config_file.write_text("{not json")

        with pytest.raises(StorageError):
            settings_store.settings()

    def test_invalid_record_raises(self, settings_store):
        settings_store.config_file.parent.mkdir(parents=True)
        settings_store.config_file.write_text(json.dumps({"cert_path": "/only-cert.pem"}))

        with pytest.raises(StorageError):
            settings_store.settings()

    def test_refuses_to_persist_mutated_invalid_record(self, settings_store):
        settings = SSLSettings()
        settings.cert_path = "/c.pem"  # no key

        with pytest.raises(StorageError):
            settings_store.update_settings(settings)

        assert not settings_store.config_file.exists()

    def test_unwritable_location_raises(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        store = SSLSettingsStore(blocker / "ssl_settings.json")

        with pytest.raises(StorageError):
            store.update_settings(SSLSettings())


class TestStartupOptions:
    """Tests for load_startup_options()."""

    def test_defaults(self):
        with patch.dict("os.environ", {}, clear=True):
            options = load_startup_options()
        assert options.host == "127.0.0.1"
        assert options.cert_path == ""
        assert options.https_port == 9443
        assert options.http_port == 9000

    def test_reads_env_vars(self):
        with patch.dict("os.environ", {
            "SSL_HOST": "10.0.0.5",
            "SSL_CERT": "/etc/ssl/server.pem",
            "SSL_KEY": "/etc/ssl/server.key",
            "SSL_CACERT": "/etc/ssl/ca.pem",
            "HTTPS_PORT": "8443",
            "HTTP_PORT": "8080",
        }):
            options = load_startup_options()
        assert options.host == "10.0.0.5"
        assert options.cert_path == "/etc/ssl/server.pem"
        assert options.key_path == "/etc/ssl/server.key"
        assert options.ca_cert_path == "/etc/ssl/ca.pem"
        assert options.https_port == 8443
        assert options.http_port == 8080
