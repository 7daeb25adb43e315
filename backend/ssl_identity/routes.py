"""
SSL API endpoints for certificate management.

Provides REST endpoints for:
- SSL settings and active certificate status
- Certificate replacement (JSON body or file upload)
- Toggling the plaintext HTTP listener
- CA certificate download
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from .exceptions import ConfigurationError, ParseError, SSLError, StorageError
from .service import SSLService


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ssl", tags=["SSL"])

# The service's mutations are read-modify-write; run them one at a time
_mutation_lock = asyncio.Lock()


# ============================================================================
# Request/Response Models
# ============================================================================


class SSLStatusResponse(BaseModel):
    """SSL settings plus details of the certificate being served."""

    cert_path: str
    key_path: str
    ca_cert_path: str
    self_signed: bool
    http_enabled: bool
    has_certificate: bool = False
    cert_subject: Optional[str] = None
    cert_issuer: Optional[str] = None
    cert_domains: list[str] = []
    cert_expires_at: Optional[datetime] = None
    days_until_expiry: Optional[int] = None


class SSLUpdateRequest(BaseModel):
    """Request to update SSL settings. Omitted fields are left unchanged."""

    cert: Optional[str] = None  # PEM-encoded certificate
    key: Optional[str] = None  # PEM-encoded private key
    http_enabled: Optional[bool] = None


# ============================================================================
# Helpers
# ============================================================================


def get_ssl_service(request: Request) -> SSLService:
    """Get the SSL service attached to the application."""
    service = getattr(request.app.state, "ssl_service", None)
    if service is None:
        raise HTTPException(503, "SSL service not initialized")
    return service


def _http_error(e: SSLError) -> HTTPException:
    if isinstance(e, (ConfigurationError, ParseError)):
        return HTTPException(400, str(e))
    if isinstance(e, StorageError):
        logger.error("[SSL-API] Storage failure: %s", e)
    return HTTPException(500, str(e))


def _status(service: SSLService) -> SSLStatusResponse:
    try:
        settings = service.get_settings()
    except SSLError as e:
        raise _http_error(e)

    response = SSLStatusResponse(**settings.model_dump())

    identity = service.get_raw_certificate()
    if identity is not None:
        response.has_certificate = True
        response.cert_subject = identity.info.subject
        response.cert_issuer = identity.info.issuer
        response.cert_domains = identity.info.domains
        response.cert_expires_at = identity.info.not_after
        response.days_until_expiry = identity.info.days_until_expiry()

    return response


# ============================================================================
# Endpoints
# ============================================================================


@router.get("", response_model=SSLStatusResponse)
async def get_ssl_status(request: Request):
    """Get the SSL settings and the certificate currently served."""
    return _status(get_ssl_service(request))


@router.put("", response_model=SSLStatusResponse)
async def update_ssl_settings(request: Request, body: SSLUpdateRequest):
    """
    Update the SSL configuration.

    A cert/key pair replaces the served certificate; http_enabled toggles
    the plaintext listener. Either change restarts the listener.
    """
    service = get_ssl_service(request)

    async with _mutation_lock:
        try:
            if body.cert is not None or body.key is not None:
                service.set_certificates(
                    (body.cert or "").encode("utf-8"),
                    (body.key or "").encode("utf-8"),
                )
            if body.http_enabled is not None:
                service.set_http_enabled(body.http_enabled)
        except SSLError as e:
            logger.warning("[SSL-API] SSL update rejected: %s", e)
            raise _http_error(e)

    return _status(service)


@router.post("/upload", response_model=SSLStatusResponse)
async def upload_certificate(
    request: Request,
    cert_file: UploadFile = File(...),
    key_file: UploadFile = File(...),
):
    """
    Upload a certificate and private key manually.

    Upload PEM-encoded certificate and key files.
    """
    service = get_ssl_service(request)

    cert_content = await cert_file.read()
    key_content = await key_file.read()

    async with _mutation_lock:
        try:
            service.set_certificates(cert_content, key_content)
        except SSLError as e:
            logger.warning("[SSL-API] Certificate upload rejected: %s", e)
            raise _http_error(e)

    return _status(service)


@router.get("/ca")
async def get_ca_certificate(request: Request):
    """Download the configured CA certificate bundle."""
    pem_data = get_ssl_service(request).get_ca_certificate_pem()
    if not pem_data:
        raise HTTPException(404, "No CA certificate configured")
    return PlainTextResponse(pem_data, media_type="application/x-pem-file")
