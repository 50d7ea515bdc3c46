"""Key generation, PEM parsing, fingerprinting and DH parameter helpers."""

import hashlib
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import dh, rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

from origin_pulls.lib.errors import MalformedCertificateError


def generate_private_key(key_size: int = 2048) -> RSAPrivateKey:
    """Generate RSA private key with specified size."""
    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )


def serialize_private_key(key: PrivateKeyTypes) -> bytes:
    """Serialize private key to PEM format (PKCS8, no encryption)."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def serialize_certificate(cert: x509.Certificate) -> bytes:
    """Serialize certificate to PEM format."""
    return cert.public_bytes(serialization.Encoding.PEM)


def serialize_csr(csr: x509.CertificateSigningRequest) -> bytes:
    """Serialize CSR to PEM format."""
    return csr.public_bytes(serialization.Encoding.PEM)


def build_csr(hostnames: Iterable[str], key: RSAPrivateKey) -> x509.CertificateSigningRequest:
    """Build a CSR with the first hostname as CN and every hostname as a DNS SAN."""
    names = list(hostnames)
    if not names:
        raise ValueError("at least one hostname is required")

    return (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(x509.NameOID.COMMON_NAME, names[0])]))
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(name) for name in names]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )


def load_certificate(pem_data: bytes, label: str = "certificate") -> x509.Certificate:
    """Parse the first certificate from PEM bytes.

    Raises:
        MalformedCertificateError: If data is empty or not a PEM certificate
    """
    return load_certificate_chain(pem_data, label)[0]


def load_certificate_chain(pem_data: bytes, label: str = "certificate") -> list[x509.Certificate]:
    """Parse every certificate in a PEM bundle.

    Raises:
        MalformedCertificateError: If data is empty or holds no PEM certificate
    """
    if not pem_data or not pem_data.strip():
        raise MalformedCertificateError(f"{label} is empty")
    try:
        certs = x509.load_pem_x509_certificates(pem_data)
    except ValueError as e:
        raise MalformedCertificateError(f"{label} is not a valid PEM certificate") from e
    if not certs:
        raise MalformedCertificateError(f"{label} contains no certificate")
    return certs


def load_private_key(pem_data: bytes, label: str = "private key") -> PrivateKeyTypes:
    """Parse an unencrypted PEM private key.

    Raises:
        MalformedCertificateError: If data is empty, encrypted or not a PEM key
    """
    if not pem_data or not pem_data.strip():
        raise MalformedCertificateError(f"{label} is empty")
    try:
        return serialization.load_pem_private_key(pem_data, password=None)
    except (ValueError, TypeError) as e:
        raise MalformedCertificateError(f"{label} is not a valid unencrypted PEM key") from e


def key_matches_certificate(key: PrivateKeyTypes, cert: x509.Certificate) -> bool:
    """Return True if the private key belongs to the certificate's public key."""
    public_format = serialization.PublicFormat.SubjectPublicKeyInfo
    key_public = key.public_key().public_bytes(serialization.Encoding.DER, public_format)
    cert_public = cert.public_key().public_bytes(serialization.Encoding.DER, public_format)
    return key_public == cert_public


def certificate_dns_names(cert: x509.Certificate) -> set[str]:
    """Return the DNS names a certificate covers, lowercased.

    SAN DNS entries when the extension is present, otherwise the subject CN.
    """
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        cns = cert.subject.get_attributes_for_oid(x509.NameOID.COMMON_NAME)
        return {str(attr.value).lower() for attr in cns}
    return {name.lower() for name in san.value.get_values_for_type(x509.DNSName)}


def remaining_validity(cert: x509.Certificate, now: datetime | None = None) -> timedelta:
    """Return time left until the certificate expires (negative once expired)."""
    current = now if now is not None else datetime.now(UTC)
    return cert.not_valid_after_utc - current


def compute_fingerprint(ca_pem: bytes, cert_pem: bytes, key_pem: bytes) -> str:
    """Hash the three PEM blobs into a single hex digest.

    Each blob is length-prefixed so that shifting bytes between blobs
    changes the digest.
    """
    digest = hashlib.sha256()
    for blob in (ca_pem, cert_pem, key_pem):
        digest.update(len(blob).to_bytes(8, "big"))
        digest.update(blob)
    return digest.hexdigest()


def generate_dh_parameters(bits: int) -> bytes:
    """Generate DH parameters (generator 2) as PKCS#3 PEM.

    Slow: a 2048-bit safe prime search takes seconds to minutes.
    """
    parameters = dh.generate_parameters(generator=2, key_size=bits)
    return parameters.parameter_bytes(
        serialization.Encoding.PEM,
        serialization.ParameterFormat.PKCS3,
    )


def dh_parameter_bits(pem_data: bytes) -> int:
    """Return the prime size of PEM DH parameters.

    Raises:
        MalformedCertificateError: If data is not PEM DH parameters
    """
    try:
        parameters = serialization.load_pem_parameters(pem_data)
    except ValueError as e:
        raise MalformedCertificateError("DH parameters are not valid PEM") from e
    if not isinstance(parameters, dh.DHParameters):
        raise MalformedCertificateError("PEM parameters are not DH parameters")
    return parameters.parameter_numbers().p.bit_length()
