"""
Integration tests for application lifecycle (startup/shutdown).

Tests: Verify run() resolves the identity before the listeners start,
       startup failures exit non-zero, logging is configured from env.
"""
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ssl_identity import ConfigurationError, SSLStartupOptions


class TestRun:
    """Verify run() wires the service, app and listener manager."""

    @pytest.mark.asyncio
    async def test_init_runs_before_serve(self):
        """The identity must be resolved before any listener binds."""
        calls = []
        service = MagicMock()
        service.init.side_effect = lambda *args: calls.append("init")
        manager = MagicMock()
        manager.serve = AsyncMock(side_effect=lambda signal: calls.append("serve"))
        options = SSLStartupOptions(host="10.0.0.1", cert_path="/a.pem", key_path="/a.key")

        with patch("main.load_startup_options", return_value=options), \
             patch("main.build_ssl_service", return_value=service), \
             patch("main.HTTPSServerManager", return_value=manager) as manager_cls:
            from main import run
            await run()

        service.init.assert_called_once_with("10.0.0.1", "/a.pem", "/a.key", "")
        assert calls == ["init", "serve"]
        _, kwargs = manager_cls.call_args
        assert kwargs["https_port"] == 9443
        assert kwargs["http_port"] == 9000

    @pytest.mark.asyncio
    async def test_init_failure_skips_serve(self):
        """A failed identity resolution never starts the listeners."""
        service = MagicMock()
        service.init.side_effect = ConfigurationError("host can't be empty")

        with patch("main.load_startup_options", return_value=SSLStartupOptions(host="")), \
             patch("main.build_ssl_service", return_value=service), \
             patch("main.HTTPSServerManager") as manager_cls:
            from main import run
            with pytest.raises(ConfigurationError):
                await run()

        manager_cls.assert_not_called()

    def test_service_restart_hook_is_signal(self):
        """Mutations must reach the listener owner through the restart signal."""
        from main import build_ssl_service
        from ssl_identity import RestartSignal

        signal = RestartSignal()
        service = build_ssl_service(signal)
        service._restart_trigger()

        assert signal.is_pending


class TestMain:
    """Verify main() exit behaviour."""

    def test_ssl_error_exits_nonzero(self):
        with patch("main.set_log_level"), \
             patch("main.run", new=MagicMock()), \
             patch("main.asyncio") as mock_asyncio:
            mock_asyncio.run.side_effect = ConfigurationError("bad config")
            from main import main
            with pytest.raises(SystemExit) as exc_info:
                main()

        assert exc_info.value.code == 1

    def test_keyboard_interrupt_exits_cleanly(self):
        with patch("main.set_log_level"), \
             patch("main.run", new=MagicMock()), \
             patch("main.asyncio") as mock_asyncio:
            mock_asyncio.run.side_effect = KeyboardInterrupt
            from main import main
            main()


class TestSetLogLevel:
    """Verify LOG_LEVEL handling."""

    def test_reads_env(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        with patch("main.logging.basicConfig") as basic_config:
            from main import set_log_level
            set_log_level()

        assert basic_config.call_args.kwargs["level"] == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self):
        with patch("main.logging.basicConfig") as basic_config:
            from main import set_log_level
            set_log_level("chatty")

        assert basic_config.call_args.kwargs["level"] == logging.INFO
