"""
Application entry point.

Resolves the TLS identity before anything binds, then serves the admin
API over HTTPS (and HTTP when enabled), restarting the listeners
whenever the certificate configuration changes.

Run: cd backend && python main.py
"""
import asyncio
import logging
import os
import sys
from typing import Optional

from fastapi import FastAPI

from ssl_identity import (
    CertificateStorage,
    RestartSignal,
    SSLError,
    SSLService,
    SSLSettingsStore,
    load_startup_options,
)
from ssl_identity.https_server import HTTPSServerManager
from ssl_identity.routes import router as ssl_router


logger = logging.getLogger(__name__)


def set_log_level(level: Optional[str] = None) -> None:
    """Configure root logging from LOG_LEVEL."""
    level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(ssl_service: Optional[SSLService] = None) -> FastAPI:
    """Create the API application around an SSL service."""
    app = FastAPI(title="SSL Identity Manager")
    app.state.ssl_service = ssl_service
    app.include_router(ssl_router)

    @app.get("/api/health")
    async def health():
        return {"status": "healthy"}

    return app


def build_ssl_service(restart_signal: RestartSignal) -> SSLService:
    """Wire the SSL service to the on-disk storage and settings."""
    return SSLService(
        storage=CertificateStorage(),
        settings_store=SSLSettingsStore(),
        restart_trigger=restart_signal,
    )


async def run() -> None:
    options = load_startup_options()
    restart_signal = RestartSignal()
    ssl_service = build_ssl_service(restart_signal)

    ssl_service.init(options.host, options.cert_path, options.key_path, options.ca_cert_path)

    app = create_app(ssl_service)
    manager = HTTPSServerManager(
        app,
        ssl_service,
        https_port=options.https_port,
        http_port=options.http_port,
    )
    await manager.serve(restart_signal)


def main() -> None:
    set_log_level()
    try:
        asyncio.run(run())
    except SSLError as e:
        logger.critical("[SSL] Failed initializing SSL identity: %s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
