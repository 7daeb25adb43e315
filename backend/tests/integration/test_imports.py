"""
Integration tests for import paths and circular import detection.

Tests: Verify all import paths work, no circular imports,
       key modules are importable, from main import create_app works.
"""
import importlib

import pytest


class TestMainImport:
    """Verify main.py imports correctly."""

    def test_import_main(self):
        """main module should be importable."""
        import main
        assert hasattr(main, "create_app")
        assert hasattr(main, "main")

    def test_app_is_fastapi(self):
        """create_app() should return a FastAPI instance."""
        from fastapi import FastAPI
        from main import create_app
        assert isinstance(create_app(), FastAPI)


class TestPackageImports:
    """Verify ssl_identity modules import correctly."""

    IMPORTABLE_MODULES = [
        "ssl_identity",
        "ssl_identity.cache",
        "ssl_identity.certificates",
        "ssl_identity.exceptions",
        "ssl_identity.https_server",
        "ssl_identity.restart",
        "ssl_identity.routes",
        "ssl_identity.service",
        "ssl_identity.settings",
        "ssl_identity.storage",
    ]

    @pytest.mark.parametrize("module_name", IMPORTABLE_MODULES)
    def test_module_importable(self, module_name):
        """Package modules should be importable without errors."""
        mod = importlib.import_module(module_name)
        assert mod is not None

    def test_package_exports(self):
        """Public names should be re-exported from the package root."""
        import ssl_identity
        for name in ssl_identity.__all__:
            assert hasattr(ssl_identity, name), name

    def test_exceptions_share_base(self):
        """Every domain error should derive from SSLError."""
        from ssl_identity import (
            CertificateNotFoundError,
            ConfigurationError,
            ParseError,
            SSLError,
            StorageError,
        )
        for exc in (CertificateNotFoundError, ConfigurationError, ParseError, StorageError):
            assert issubclass(exc, SSLError)


class TestRouterRegistration:
    """Verify SSL routes are mounted on the app."""

    def test_ssl_routes_registered(self):
        from main import create_app
        paths = {route.path for route in create_app().routes}
        assert "/api/ssl" in paths
        assert "/api/ssl/upload" in paths
        assert "/api/ssl/ca" in paths
        assert "/api/health" in paths
