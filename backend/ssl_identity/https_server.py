"""
Listener lifecycle management.

Runs the HTTPS listener (and the plaintext HTTP listener when enabled)
as in-process uvicorn servers. The HTTPS listener takes its certificate
from the SSL service cache on every handshake; both are rebuilt whenever
the SSL service signals a restart.
"""
import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

import uvicorn

from .cache import CertificateCache
from .restart import RestartSignal
from .service import SSLService
from .settings import SSL_DIR, SSLSettings

logger = logging.getLogger(__name__)

HTTPS = "https"
HTTP = "http"


class CachedCertificateConfig(uvicorn.Config):
    """uvicorn config whose TLS context follows the certificate cache."""

    def __init__(self, app: Any, cache: CertificateCache, **kwargs: Any):
        super().__init__(app, **kwargs)
        self.cache = cache

    def load(self) -> None:
        super().load()
        # Swap the file-based context for one that reads the cache per handshake
        self.ssl = self.cache.create_ssl_context()


class HTTPSServerManager:
    """
    Manages the listener servers.

    The HTTPS listener always runs once a certificate is configured.
    The HTTP listener runs alongside it only while http_enabled is set.
    """

    def __init__(
        self,
        app: Any,
        ssl_service: SSLService,
        https_port: int = 9443,
        http_port: int = 9000,
        host: str = "0.0.0.0",
        ssl_dir: Optional[Path] = None,
    ):
        self.app = app
        self.ssl_service = ssl_service
        self.https_port = https_port
        self.http_port = http_port
        self.host = host
        self.ssl_dir = ssl_dir or SSL_DIR
        self._servers: dict[str, uvicorn.Server] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    def is_running(self, kind: str = HTTPS) -> bool:
        """Check if a listener is running."""
        task = self._tasks.get(kind)
        return task is not None and not task.done()

    def _get_uvicorn_config(self, port: int, settings: Optional[SSLSettings] = None) -> uvicorn.Config:
        """Build the uvicorn config for a listener.

        With settings, the listener serves TLS from the SSL service's
        certificate cache; the managed pair must resolve within the SSL
        directory.
        """
        if not isinstance(port, int) or not (1 <= port <= 65535):
            raise ValueError(f"Invalid port: {port}")

        if settings is None:
            return uvicorn.Config(self.app, host=self.host, port=port, log_config=None)

        cert_resolved = Path(settings.cert_path).resolve()
        key_resolved = Path(settings.key_path).resolve()
        ssl_dir_resolved = self.ssl_dir.resolve()
        if not cert_resolved.is_relative_to(ssl_dir_resolved):
            raise ValueError("Certificate path outside SSL directory")
        if not key_resolved.is_relative_to(ssl_dir_resolved):
            raise ValueError("Key path outside SSL directory")

        return CachedCertificateConfig(
            self.app,
            self.ssl_service.cache,
            host=self.host,
            port=port,
            log_config=None,
            ssl_certfile=str(cert_resolved),
            ssl_keyfile=str(key_resolved),
        )

    async def start(self) -> tuple[bool, Optional[str]]:
        """
        Start the listeners for the current settings.

        Returns:
            Tuple of (success, error_message)
        """
        async with self._lock:
            if self.is_running(HTTPS):
                logger.debug("[SSL-SERVER] Listeners already running")
                return True, None

            try:
                settings = self.ssl_service.get_settings()
            except Exception as e:
                logger.error("[SSL-SERVER] Cannot read SSL settings: %s", e)
                return False, str(e)

            if not settings.has_certificate():
                return False, "No certificate configured"

            try:
                configs = {HTTPS: self._get_uvicorn_config(self.https_port, settings)}
                if settings.http_enabled:
                    configs[HTTP] = self._get_uvicorn_config(self.http_port)
            except ValueError as e:
                logger.error("[SSL-SERVER] Invalid listener configuration: %s", e)
                return False, str(e)

            for kind, config in configs.items():
                logger.info("[SSL-SERVER] Starting %s listener on port %s", kind.upper(), config.port)
                server = uvicorn.Server(config)
                self._servers[kind] = server
                self._tasks[kind] = asyncio.create_task(self._run_server(kind, server))

            # Wait for the servers to bind
            for _ in range(50):
                if all(server.started for server in self._servers.values()):
                    break
                failed = [
                    kind for kind, task in self._tasks.items()
                    if task.done() and not self._servers[kind].started
                ]
                if failed:
                    # Listeners that did bind keep running
                    for kind in failed:
                        self._servers.pop(kind)
                        self._tasks.pop(kind)
                    logger.error("[SSL-SERVER] %s listener failed to start", failed[0].upper())
                    return False, f"{failed[0].upper()} listener failed to start"
                await asyncio.sleep(0.1)

            logger.info("[SSL-SERVER] Listeners started: %s", ", ".join(sorted(self._servers)))
            return True, None

    async def _run_server(self, kind: str, server: uvicorn.Server) -> None:
        try:
            await server.serve()
        except SystemExit:
            # uvicorn exits the process when it cannot bind
            logger.error("[SSL-SERVER] %s listener exited during startup", kind.upper())

    async def stop(self) -> bool:
        """
        Stop all listeners.

        Returns:
            True if anything was stopped, False if nothing was running
        """
        async with self._lock:
            if not self._tasks:
                logger.debug("[SSL-SERVER] No listeners running")
                return False

            for kind, server in self._servers.items():
                logger.info("[SSL-SERVER] Stopping %s listener", kind.upper())
                server.should_exit = True

            for kind, task in self._tasks.items():
                try:
                    await asyncio.wait_for(asyncio.shield(task), timeout=10)
                except asyncio.TimeoutError:
                    logger.warning("[SSL-SERVER] %s listener didn't stop gracefully, forcing exit", kind.upper())
                    self._servers[kind].force_exit = True
                    await task
                except Exception as e:
                    logger.error("[SSL-SERVER] Error stopping %s listener: %s", kind.upper(), e)

            self._servers.clear()
            self._tasks.clear()
            logger.info("[SSL-SERVER] Listeners stopped")
            return True

    async def restart(self) -> tuple[bool, Optional[str]]:
        """
        Restart the listeners (e.g., after a certificate change).

        Returns:
            Tuple of (success, error_message)
        """
        await self.stop()
        return await self.start()

    async def watch_restart_signal(self, restart_signal: RestartSignal, poll_interval: float = 1.0) -> None:
        """Re-arm the signal and restart the listeners each time it fires."""
        while True:
            fired = await asyncio.to_thread(restart_signal.wait, poll_interval)
            if not fired:
                continue

            logger.info("[SSL-SERVER] Restart signal received")
            # Re-arm first so a change made during the restart fires again
            restart_signal.reset()
            success, error = await self.restart()
            if not success:
                logger.warning("[SSL-SERVER] Listener restart failed: %s", error)

    async def serve(self, restart_signal: RestartSignal) -> None:
        """Start the listeners and keep them in step with the restart signal."""
        success, error = await self.start()
        if not success:
            raise RuntimeError(f"Failed to start listeners: {error}")
        try:
            await self.watch_restart_signal(restart_signal)
        finally:
            await self.stop()

    def get_status(self) -> dict:
        """Get current listener status."""
        return {
            kind: {
                "running": self.is_running(kind),
                "port": self.https_port if kind == HTTPS else self.http_port,
            }
            for kind in self._servers
        }
