"""TLS helpers - read and parse X.509 certificates."""
import socket
import ssl
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from cryptography import x509
from cryptography.x509.oid import NameOID


@dataclass
class CertificateInfo:
    """The fields of a leaf certificate the lifecycle tracker cares about.

    Validity timestamps are naive UTC.
    """
    issuer: Optional[str]
    subject: Optional[str]
    valid_from: datetime
    valid_to: datetime
    domains: List[str] = field(default_factory=list)


def _naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def _common_name(name: x509.Name) -> Optional[str]:
    attributes = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    if attributes:
        return str(attributes[0].value)
    return None


def _issuer_name(name: x509.Name) -> Optional[str]:
    """Organization of the issuer, falling back to its CN."""
    attributes = name.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)
    if attributes:
        return str(attributes[0].value)
    return _common_name(name) or name.rfc4514_string() or None


def parse_certificate(cert: x509.Certificate) -> CertificateInfo:
    """Extract issuer, subject, validity window and DNS names."""
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        domains = [d.lower() for d in san.value.get_values_for_type(x509.DNSName)]
    except x509.ExtensionNotFound:
        domains = []

    subject = _common_name(cert.subject)
    if subject and subject.lower() not in domains:
        domains.insert(0, subject.lower())

    return CertificateInfo(
        issuer=_issuer_name(cert.issuer),
        subject=subject,
        valid_from=_naive_utc(cert.not_valid_before_utc),
        valid_to=_naive_utc(cert.not_valid_after_utc),
        domains=domains,
    )


def load_pem_file(path: str) -> CertificateInfo:
    """Parse the first certificate of a PEM file (blocking)."""
    with open(path, "rb") as fh:
        cert = x509.load_pem_x509_certificate(fh.read())
    return parse_certificate(cert)


def fetch_peer_certificate(host: str, port: int = 443, timeout: float = 10) -> Optional[CertificateInfo]:
    """Handshake with host and return its leaf certificate (blocking).

    Returns None when the server presents no certificate. Connection and
    handshake failures propagate as OSError / ssl.SSLError.
    """
    # Read the certificate regardless of trust; validity is judged by dates
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE

    with socket.create_connection((host, port), timeout=timeout) as sock:
        with context.wrap_socket(sock, server_hostname=host) as ssock:
            # getpeercert() returns an empty dict under CERT_NONE, so ask for DER
            cert_der = ssock.getpeercert(binary_form=True)
            if not cert_der:
                return None
            return parse_certificate(x509.load_der_x509_certificate(cert_der))
