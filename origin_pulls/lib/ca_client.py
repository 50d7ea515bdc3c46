"""Cloudflare Origin CA client for issuing origin certificates."""

import json
import logging
import urllib.error
import urllib.request
from typing import Protocol

from origin_pulls.lib.cert_utils import (
    build_csr,
    generate_private_key,
    serialize_csr,
    serialize_private_key,
)
from origin_pulls.lib.config import AOP_CA_URL, CLOUDFLARE_API_URL, ORIGIN_CA_VALIDITY_DAYS
from origin_pulls.lib.errors import CARequestError, ValidationError

logger = logging.getLogger(__name__)

ORIGIN_CA_KEY_PREFIX = "v1.0-"


class CAClient(Protocol):
    """Issue a signed certificate for a set of hostnames."""

    def issue_certificate(self, hostnames: list[str], validity_days: int) -> tuple[bytes, bytes]:
        """Return (certificate_pem, private_key_pem)."""
        ...


def _api_error_messages(payload: dict) -> str:
    errors = payload.get("errors") or []
    messages = [
        f"{err.get('code', '?')}: {err.get('message', '')}"
        for err in errors
        if isinstance(err, dict)
    ]
    return "; ".join(messages) or "unknown error"


class CloudflareOriginCAClient:
    """Requests origin certificates from the Cloudflare Origin CA API.

    The private key never leaves the host: a key and CSR are generated
    locally and only the CSR is sent.
    """

    def __init__(
        self,
        credential: str,
        api_url: str = CLOUDFLARE_API_URL,
        timeout: float = 30.0,
        key_size: int = 2048,
    ) -> None:
        """Initialize Origin CA client.

        Args:
            credential: Origin CA key (v1.0-...) or API token
            api_url: Cloudflare API base URL
            timeout: Request timeout in seconds
            key_size: RSA key size for the origin key
        """
        if not credential:
            raise ValidationError("a CA API credential is required to generate certificates")
        self.credential = credential
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.key_size = key_size

    def _auth_headers(self) -> dict[str, str]:
        if self.credential.startswith(ORIGIN_CA_KEY_PREFIX):
            return {"X-Auth-User-Service-Key": self.credential}
        return {"Authorization": f"Bearer {self.credential}"}

    def issue_certificate(self, hostnames: list[str], validity_days: int) -> tuple[bytes, bytes]:
        """Issue an origin certificate covering hostnames.

        Args:
            hostnames: DNS names, primary first
            validity_days: Requested validity, one of the periods the CA offers

        Returns:
            Tuple of (certificate_pem, private_key_pem) as bytes

        Raises:
            ValidationError: If validity_days is not offered by the CA
            CARequestError: If the API call fails or returns no certificate
        """
        if validity_days not in ORIGIN_CA_VALIDITY_DAYS:
            raise ValidationError(
                f"validity_days must be one of {ORIGIN_CA_VALIDITY_DAYS}, got {validity_days}"
            )

        key = generate_private_key(self.key_size)
        csr = build_csr(hostnames, key)

        body = json.dumps(
            {
                "hostnames": list(hostnames),
                "requested_validity": validity_days,
                "request_type": "origin-rsa",
                "csr": serialize_csr(csr).decode("ascii"),
            }
        ).encode("utf-8")
        headers = {"Content-Type": "application/json", **self._auth_headers()}

        url = f"{self.api_url}/certificates"
        logger.info("Requesting origin certificate for %s", hostnames)
        try:
            req = urllib.request.Request(url, data=body, headers=headers, method="POST")
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                payload = json.loads(response.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            try:
                detail = _api_error_messages(json.loads(e.read().decode("utf-8")))
            except (ValueError, UnicodeDecodeError):
                detail = e.reason
            raise CARequestError(f"Origin CA returned HTTP {e.code}: {detail}") from e
        except (urllib.error.URLError, TimeoutError) as e:
            raise CARequestError(f"Origin CA request failed: {e}") from e
        except json.JSONDecodeError as e:
            raise CARequestError("Origin CA returned invalid JSON") from e

        if not payload.get("success"):
            raise CARequestError(f"Origin CA rejected request: {_api_error_messages(payload)}")

        certificate = (payload.get("result") or {}).get("certificate")
        if not certificate:
            raise CARequestError("Origin CA response contained no certificate")

        return certificate.encode("utf-8"), serialize_private_key(key)


def fetch_aop_ca_certificate(url: str = AOP_CA_URL, timeout: float = 30.0) -> bytes:
    """Download the published Authenticated Origin Pulls CA certificate.

    Raises:
        CARequestError: If the download fails
    """
    try:
        with urllib.request.urlopen(url, timeout=timeout) as response:
            return response.read()
    except (urllib.error.URLError, TimeoutError) as e:
        raise CARequestError(f"failed to download AOP CA certificate from {url}: {e}") from e
