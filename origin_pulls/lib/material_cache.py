"""Decide whether installed certificate material can be reused."""

import logging
from datetime import datetime, timedelta

from origin_pulls.lib.cert_utils import (
    certificate_dns_names,
    key_matches_certificate,
    load_certificate,
    load_private_key,
    remaining_validity,
)
from origin_pulls.lib.config import RENEWAL_THRESHOLD_DAYS
from origin_pulls.lib.errors import MalformedCertificateError
from origin_pulls.lib.models import (
    CertificateBundle,
    InstalledState,
    ProvisioningMode,
    ProvisioningRequest,
    SourceMode,
)

logger = logging.getLogger(__name__)


def needs_refresh(
    existing: InstalledState,
    request: ProvisioningRequest,
    now: datetime | None = None,
    threshold_days: int = RENEWAL_THRESHOLD_DAYS,
) -> bool:
    """Return True if new material must be obtained for this request.

    Material fetched from the secret store is authoritative on every run, so
    DEPLOY_FROM_STORE always refreshes. For GENERATE_VIA_API the installed
    certificate is reused unless a slot is missing or unparsable, its DNS
    names differ from the request, its key does not match, or it expires
    within threshold_days.

    Args:
        existing: Installed slots to inspect
        request: Validated provisioning request
        now: Reference time (defaults to current UTC time)
        threshold_days: Minimum remaining validity before renewal

    Returns:
        True if the CA or secret store must be called
    """
    if request.mode is ProvisioningMode.DEPLOY_FROM_STORE:
        return True

    try:
        blobs = existing.read_certificate_files()
    except OSError as e:
        logger.warning("Installed material unreadable, refreshing: %s", e)
        return True
    if blobs is None:
        logger.info("No installed certificate for %s", request.hostname)
        return True

    ca_pem, cert_pem, key_pem = blobs
    try:
        load_certificate(ca_pem, "installed CA certificate")
        cert = load_certificate(cert_pem, "installed origin certificate")
        key = load_private_key(key_pem, "installed origin private key")
    except MalformedCertificateError as e:
        logger.warning("Installed material malformed, refreshing: %s", e)
        return True

    installed_names = certificate_dns_names(cert)
    requested_names = set(request.hostnames)
    if installed_names != requested_names:
        logger.info(
            "Installed names %s differ from requested %s",
            sorted(installed_names),
            request.hostnames,
        )
        return True

    if not key_matches_certificate(key, cert):
        logger.warning("Installed key does not match installed certificate")
        return True

    left = remaining_validity(cert, now)
    if left < timedelta(days=threshold_days):
        logger.info("Installed certificate expires in %s, renewing", left)
        return True

    return False


def load_installed_bundle(
    existing: InstalledState,
    source_mode: SourceMode,
    ca_certificate: bytes | None = None,
) -> CertificateBundle | None:
    """Rebuild a bundle from installed files.

    Args:
        existing: Installed slots to read
        source_mode: Source recorded on the rebuilt bundle
        ca_certificate: CA blob to use instead of the installed one

    Returns:
        CertificateBundle, or None if material is missing or malformed
    """
    blobs = existing.read_certificate_files()
    if blobs is None:
        return None

    ca_pem, cert_pem, key_pem = blobs
    try:
        return CertificateBundle(
            ca_certificate=ca_certificate if ca_certificate is not None else ca_pem,
            origin_certificate=cert_pem,
            origin_private_key=key_pem,
            source_mode=source_mode,
        )
    except MalformedCertificateError as e:
        logger.warning("Installed bundle could not be rebuilt: %s", e)
        return None
