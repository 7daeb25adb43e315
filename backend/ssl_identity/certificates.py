"""
Certificate parsing, validation and self-signed generation.

Turns PEM certificate/key material into a ready-to-serve ``Identity``
(parsed certificate, private key and server ``ssl.SSLContext``) and
synthesizes self-signed pairs when no certificate is available.
"""
import ipaddress
import logging
import ssl
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .exceptions import CertificateNotFoundError, ParseError, StorageError
from .storage import CERT_MODE, KEY_MODE, write_secure_file


logger = logging.getLogger(__name__)

# Validity of generated self-signed certificates
SELF_SIGNED_VALIDITY_YEARS = 5
SELF_SIGNED_COMMON_NAME = "localhost"


@dataclass
class CertificateInfo:
    """Information extracted from a certificate."""

    subject: str
    issuer: str
    serial_number: str
    not_before: datetime
    not_after: datetime
    domains: list[str] = field(default_factory=list)  # Subject CN + SANs

    def days_until_expiry(self) -> int:
        """Get days until certificate expires."""
        delta = self.not_after - datetime.now(timezone.utc)
        return max(0, delta.days)

    def is_expired(self) -> bool:
        """Check if certificate is expired."""
        return datetime.now(timezone.utc) > self.not_after

    def is_self_issued(self) -> bool:
        return self.subject == self.issuer


@dataclass(frozen=True)
class Identity:
    """A parsed certificate and private key ready for TLS handshakes."""

    certificate: x509.Certificate
    private_key: Any
    cert_path: str
    key_path: str
    info: CertificateInfo
    ssl_context: ssl.SSLContext


def parse_certificate(cert: x509.Certificate) -> CertificateInfo:
    """Extract display info from a parsed certificate."""
    subject_cn = _common_name(cert.subject)
    issuer_cn = _common_name(cert.issuer)

    domains = []
    if subject_cn:
        domains.append(subject_cn)

    try:
        san_ext = cert.extensions.get_extension_for_oid(
            x509.oid.ExtensionOID.SUBJECT_ALTERNATIVE_NAME
        )
        for name in san_ext.value:
            if isinstance(name, (x509.DNSName, x509.IPAddress)):
                value = str(name.value)
                if value not in domains:
                    domains.append(value)
    except x509.ExtensionNotFound as e:
        logger.debug("[SSL-CERTS] No SAN extension: %s", e)

    return CertificateInfo(
        subject=subject_cn,
        issuer=issuer_cn,
        serial_number=format(cert.serial_number, "x"),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        domains=domains,
    )


def _common_name(name: x509.Name) -> str:
    cn_attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not cn_attrs:
        return ""
    value = cn_attrs[0].value
    return value.decode("utf-8", "replace") if isinstance(value, bytes) else value


def validate_key_pair(cert_pem: bytes, key_pem: bytes) -> tuple[x509.Certificate, Any]:
    """
    Check that certificate and key form a matching pair.

    Args:
        cert_pem: PEM-encoded certificate (leaf first if a chain is given)
        key_pem: PEM-encoded unencrypted private key

    Returns:
        Tuple of (certificate, private_key)

    Raises:
        ParseError: if either cannot be parsed or the key does not match
    """
    try:
        cert = x509.load_pem_x509_certificate(cert_pem)
    except ValueError as e:
        raise ParseError(f"cannot load certificate: {e}") from e

    try:
        key = serialization.load_pem_private_key(key_pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ParseError(f"cannot load private key: {e}") from e

    spki = serialization.PublicFormat.SubjectPublicKeyInfo
    cert_public = cert.public_key().public_bytes(serialization.Encoding.DER, spki)
    key_public = key.public_key().public_bytes(serialization.Encoding.DER, spki)
    if cert_public != key_public:
        raise ParseError("private key does not match certificate")

    return cert, key


def create_server_context(cert_path: str, key_path: str) -> ssl.SSLContext:
    """
    Create a server-side SSL context for a certificate pair.

    Raises:
        ParseError: if OpenSSL rejects the pair
    """
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    try:
        ctx.load_cert_chain(cert_path, key_path)
    except ssl.SSLError as e:
        raise ParseError(f"cannot load certificate pair: {e}") from e
    return ctx


def load_key_pair(cert_path: str, key_path: str) -> Identity:
    """
    Read and parse a certificate pair from disk.

    Raises:
        CertificateNotFoundError: if either file does not exist
        StorageError: if either file exists but cannot be read
        ParseError: if the contents are not a usable pair
    """
    try:
        cert_pem = Path(cert_path).read_bytes()
        key_pem = Path(key_path).read_bytes()
    except FileNotFoundError as e:
        raise CertificateNotFoundError(f"certificate file not found: {e.filename}") from e
    except OSError as e:
        raise StorageError(f"cannot read certificate pair: {e}") from e

    cert, key = validate_key_pair(cert_pem, key_pem)
    ctx = create_server_context(cert_path, key_path)

    return Identity(
        certificate=cert,
        private_key=key,
        cert_path=cert_path,
        key_path=key_path,
        info=parse_certificate(cert),
        ssl_context=ctx,
    )


def generate_self_signed_cert(
    common_name: str,
    host: str,
    not_after: datetime,
    not_before: Optional[datetime] = None,
) -> tuple[bytes, bytes]:
    """
    Synthesize a self-signed certificate for a host.

    The host is embedded as an IP address SAN when it parses as one,
    otherwise as a DNS name, alongside the common name.

    Returns:
        Tuple of PEM-encoded (certificate, private_key)
    """
    key = ec.generate_private_key(ec.SECP256R1())

    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])

    alt_names: list[x509.GeneralName] = [x509.DNSName(common_name)]
    try:
        alt_names.append(x509.IPAddress(ipaddress.ip_address(host)))
    except ValueError:
        if host != common_name:
            alt_names.append(x509.DNSName(host))

    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before or datetime.now(timezone.utc))
        .not_valid_after(not_after)
        .add_extension(x509.SubjectAlternativeName(alt_names), critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )

    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return cert_pem, key_pem


def generate_certs_for_host(
    common_name: str,
    host: str,
    cert_path: str,
    key_path: str,
    not_after: datetime,
) -> None:
    """
    Generate a self-signed pair for host and write it to the given paths.

    Raises:
        StorageError: if the files cannot be written
    """
    cert_pem, key_pem = generate_self_signed_cert(common_name, host, not_after)

    try:
        Path(cert_path).parent.mkdir(parents=True, exist_ok=True)
        Path(key_path).parent.mkdir(parents=True, exist_ok=True)
        write_secure_file(Path(cert_path), cert_pem, CERT_MODE)
        write_secure_file(Path(key_path), key_pem, KEY_MODE)
    except OSError as e:
        raise StorageError(f"failed writing generated certificate: {e}") from e

    logger.info(
        "[SSL-CERTS] Generated self-signed certificate for %s (expires %s)",
        host, not_after.date().isoformat(),
    )
