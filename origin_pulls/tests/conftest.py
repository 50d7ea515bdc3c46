"""Test fixtures for origin_pulls tests."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from origin_pulls.lib.cert_utils import (
    generate_private_key,
    serialize_certificate,
    serialize_private_key,
)
from origin_pulls.lib.models import CertificateBundle, InstalledState, SourceMode

HOSTNAMES = ["example.com", "www.example.com"]

IssueCert = Callable[..., x509.Certificate]


def _name(common_name: str) -> x509.Name:
    return x509.Name(
        [
            x509.NameAttribute(x509.NameOID.ORGANIZATION_NAME, "Test Org"),
            x509.NameAttribute(x509.NameOID.COMMON_NAME, common_name),
        ]
    )


@pytest.fixture(scope="session")
def ca_key() -> RSAPrivateKey:
    """Generate RSA private key for the test origin-pull CA."""
    return generate_private_key(key_size=2048)


@pytest.fixture(scope="session")
def ca_cert(ca_key: RSAPrivateKey) -> x509.Certificate:
    """Generate self-signed test origin-pull CA certificate."""
    now = datetime.now(UTC)
    return (
        x509.CertificateBuilder()
        .subject_name(_name("Test Origin Pull CA"))
        .issuer_name(_name("Test Origin Pull CA"))
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=3650))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(ca_key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def ca_pem(ca_cert: x509.Certificate) -> bytes:
    return serialize_certificate(ca_cert)


@pytest.fixture(scope="session")
def origin_key() -> RSAPrivateKey:
    """Generate RSA private key for origin certificates."""
    return generate_private_key(key_size=2048)


@pytest.fixture(scope="session")
def other_key() -> RSAPrivateKey:
    """Generate an unrelated RSA key."""
    return generate_private_key(key_size=2048)


@pytest.fixture(scope="session")
def issue_cert(ca_key: RSAPrivateKey, ca_cert: x509.Certificate) -> IssueCert:
    """Return a factory issuing origin certificates signed by the test CA."""

    def _issue(
        key: RSAPrivateKey,
        hostnames: list[str] | None = None,
        days: int = 365,
        with_san: bool = True,
    ) -> x509.Certificate:
        names = hostnames if hostnames is not None else HOSTNAMES
        now = datetime.now(UTC)
        builder = (
            x509.CertificateBuilder()
            .subject_name(_name(names[0]))
            .issuer_name(ca_cert.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(days=1))
            .not_valid_after(now + timedelta(days=days))
        )
        if with_san:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([x509.DNSName(name) for name in names]),
                critical=False,
            )
        return builder.sign(ca_key, hashes.SHA256())

    return _issue


@pytest.fixture(scope="session")
def origin_cert(issue_cert: IssueCert, origin_key: RSAPrivateKey) -> x509.Certificate:
    """Origin certificate for example.com and www.example.com, valid one year."""
    return issue_cert(origin_key)


@pytest.fixture(scope="session")
def origin_cert_pem(origin_cert: x509.Certificate) -> bytes:
    return serialize_certificate(origin_cert)


@pytest.fixture(scope="session")
def origin_key_pem(origin_key: RSAPrivateKey) -> bytes:
    return serialize_private_key(origin_key)


@pytest.fixture
def bundle(ca_pem: bytes, origin_cert_pem: bytes, origin_key_pem: bytes) -> CertificateBundle:
    """Fetched bundle built from the test CA, origin cert and key."""
    return CertificateBundle(
        ca_certificate=ca_pem,
        origin_certificate=origin_cert_pem,
        origin_private_key=origin_key_pem,
        source_mode=SourceMode.FETCHED,
    )


@pytest.fixture
def installed_state(tmp_path: Path) -> InstalledState:
    """Return slots under a temporary root, directories not yet created."""
    return InstalledState(
        ca_cert_path=tmp_path / "cloudflare" / "origin-pull-ca.pem",
        origin_cert_path=tmp_path / "certs" / "example.com.pem",
        origin_key_path=tmp_path / "private" / "example.com.key",
        dh_params_path=tmp_path / "certs" / "dhparam.pem",
    )


def write_installed(state: InstalledState, ca: bytes, cert: bytes, key: bytes) -> None:
    """Write material into the slots without going through the installer."""
    for path, data in (
        (state.ca_cert_path, ca),
        (state.origin_cert_path, cert),
        (state.origin_key_path, key),
    ):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)


# RFC 7919 ffdhe groups, g=2. Real safe primes that load instantly.
FFDHE_PEMS = {
    2048: (
        b"-----BEGIN DH PARAMETERS-----\n"
        b"MIIBCAKCAQEA//////////+t+FRYortKmq/cViAnPTzx2LnFg84tNpWp4TZBFGQz\n"
        b"+8yTnc4kmz75fS/jY2MMddj2gbICrsRhetPfHtXV/WVhJDP1H18GbtCFY2VVPe0a\n"
        b"87VXE15/V8k1mE8McODmi3fipona8+/och3xWKE2rec1MKzKT0g6eXq8CrGCsyT7\n"
        b"YdEIqUuyyOP7uWrat2DX9GgdT0Kj3jlN9K5W7edjcrsZCwenyO4KbXCeAvzhzffi\n"
        b"7MA0BM0oNC9hkXL+nOmFg/+OTxIy7vKBg8P+OxtMb61zO7X8vC7CIAXFjvGDfRaD\n"
        b"ssbzSibBsu/6iGtCOGEoXJf//////////wIBAg==\n"
        b"-----END DH PARAMETERS-----\n"
    ),
    3072: (
        b"-----BEGIN DH PARAMETERS-----\n"
        b"MIIBiAKCAYEA//////////+t+FRYortKmq/cViAnPTzx2LnFg84tNpWp4TZBFGQz\n"
        b"+8yTnc4kmz75fS/jY2MMddj2gbICrsRhetPfHtXV/WVhJDP1H18GbtCFY2VVPe0a\n"
        b"87VXE15/V8k1mE8McODmi3fipona8+/och3xWKE2rec1MKzKT0g6eXq8CrGCsyT7\n"
        b"YdEIqUuyyOP7uWrat2DX9GgdT0Kj3jlN9K5W7edjcrsZCwenyO4KbXCeAvzhzffi\n"
        b"7MA0BM0oNC9hkXL+nOmFg/+OTxIy7vKBg8P+OxtMb61zO7X8vC7CIAXFjvGDfRaD\n"
        b"ssbzSibBsu/6iGtCOGEfz9zeNVs7ZRkDW7w09N75nAI4YbRvydbmyQd62R0mkff3\n"
        b"7lmMsPrBhtkcrv4TCYUTknC0EwyTvEN5RPT9RFLi103TZPLiHnH1S/9croKrnJ32\n"
        b"nuhtK8UiNjoNq8Uhl5sN6todv5pC1cRITgq80Gv6U93vPBsg7j/VnXwl5B0rZsYu\n"
        b"N///////////AgEC\n"
        b"-----END DH PARAMETERS-----\n"
    ),
    4096: (
        b"-----BEGIN DH PARAMETERS-----\n"
        b"MIICCAKCAgEA//////////+t+FRYortKmq/cViAnPTzx2LnFg84tNpWp4TZBFGQz\n"
        b"+8yTnc4kmz75fS/jY2MMddj2gbICrsRhetPfHtXV/WVhJDP1H18GbtCFY2VVPe0a\n"
        b"87VXE15/V8k1mE8McODmi3fipona8+/och3xWKE2rec1MKzKT0g6eXq8CrGCsyT7\n"
        b"YdEIqUuyyOP7uWrat2DX9GgdT0Kj3jlN9K5W7edjcrsZCwenyO4KbXCeAvzhzffi\n"
        b"7MA0BM0oNC9hkXL+nOmFg/+OTxIy7vKBg8P+OxtMb61zO7X8vC7CIAXFjvGDfRaD\n"
        b"ssbzSibBsu/6iGtCOGEfz9zeNVs7ZRkDW7w09N75nAI4YbRvydbmyQd62R0mkff3\n"
        b"7lmMsPrBhtkcrv4TCYUTknC0EwyTvEN5RPT9RFLi103TZPLiHnH1S/9croKrnJ32\n"
        b"nuhtK8UiNjoNq8Uhl5sN6todv5pC1cRITgq80Gv6U93vPBsg7j/VnXwl5B0rZp4e\n"
        b"8W5vUsMWTfT7eTDp5OWIV7asfV9C1p9tGHdjzx1VA0AEh/VbpX4xzHpxNciG77Qx\n"
        b"iu1qHgEtnmgyqQdgCpGBMMRtx3j5ca0AOAkpmaMzy4t6Gh25PXFAADwqTs6p+Y0K\n"
        b"zAqCkc3OyX3Pjsm1Wn+IpGtNtahR9EGC4caKAH5eZV9q//////////8CAQI=\n"
        b"-----END DH PARAMETERS-----\n"
    ),
}


def fake_dh_pem(bits: int) -> bytes:
    """Return a well-known DH group of exactly the given size."""
    return FFDHE_PEMS[bits]


class FakeDHGenerator:
    """Records requested sizes and returns fake parameters instantly."""

    def __init__(self) -> None:
        self.calls: list[int] = []

    def __call__(self, bits: int) -> bytes:
        self.calls.append(bits)
        return fake_dh_pem(bits)


@pytest.fixture
def dh_generator() -> FakeDHGenerator:
    return FakeDHGenerator()


@pytest.fixture
def write_material() -> Callable[[InstalledState, bytes, bytes, bytes], None]:
    """Return helper writing material into slots directly."""
    return write_installed
