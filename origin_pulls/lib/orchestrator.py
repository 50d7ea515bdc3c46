"""Provisioning orchestrator: choose a source, obtain a bundle, install it, reload once."""

import logging

from origin_pulls.lib.ca_client import CAClient
from origin_pulls.lib.config import ORIGIN_CA_VALIDITY_DAYS, RENEWAL_THRESHOLD_DAYS
from origin_pulls.lib.errors import (
    CARequestError,
    MalformedCertificateError,
    SecretFetchError,
    SecretNotFoundError,
    ValidationError,
)
from origin_pulls.lib.installer import Installer
from origin_pulls.lib.material_cache import load_installed_bundle, needs_refresh
from origin_pulls.lib.models import (
    CertificateBundle,
    InstalledState,
    InstallResult,
    ProvisioningMode,
    ProvisioningOutcome,
    ProvisioningRequest,
    SourceMode,
)
from origin_pulls.lib.reload import ReloadSignal
from origin_pulls.lib.secret_store import SecretStoreClient

logger = logging.getLogger(__name__)


class Provisioner:
    """Produces certificate bundles from exactly one source per request.

    No retries are performed; a failed run is re-invoked by the caller.
    """

    def __init__(
        self,
        installed_state: InstalledState,
        ca_client: CAClient | None = None,
        secret_store: SecretStoreClient | None = None,
        aop_ca_certificate: bytes | None = None,
        renewal_threshold_days: int = RENEWAL_THRESHOLD_DAYS,
    ) -> None:
        """Initialize provisioner.

        Args:
            installed_state: Slots inspected for reuse and written on apply
            ca_client: Client used in GENERATE_VIA_API mode
            secret_store: Client used in DEPLOY_FROM_STORE mode
            aop_ca_certificate: CA blob installed alongside generated certificates
            renewal_threshold_days: Remaining validity below which certificates are reissued
        """
        self.installed_state = installed_state
        self.ca_client = ca_client
        self.secret_store = secret_store
        self.aop_ca_certificate = aop_ca_certificate
        self.renewal_threshold_days = renewal_threshold_days

    def provision(self, request: ProvisioningRequest) -> CertificateBundle:
        """Obtain the bundle for a request.

        Args:
            request: Validated provisioning request

        Returns:
            CertificateBundle tagged GENERATED or FETCHED

        Raises:
            ValidationError: If the client needed for the mode is not configured
            CARequestError: If issuance fails or returns malformed PEM
            SecretFetchError: If a secret is missing, empty or unreadable
            MalformedCertificateError: If a fetched secret is not valid PEM
        """
        if request.mode is ProvisioningMode.GENERATE_VIA_API:
            return self._generate(request)
        return self._fetch(request)

    def apply(
        self,
        request: ProvisioningRequest,
        installer: Installer,
        reloader: ReloadSignal,
    ) -> ProvisioningOutcome:
        """Provision, install, ensure DH parameters, then reload at most once.

        The reload signal is only sent once every step completed and either
        a file changed or an earlier run committed changes it never reloaded
        for. The pending marker is cleared only after the reload succeeds.
        """
        bundle = self.provision(request)
        certificates = installer.install(bundle, self.installed_state)
        dh_params = installer.ensure_dh_params(request.dh_param_bits, self.installed_state)

        changed = InstallResult.merge(certificates, dh_params) is InstallResult.CHANGED
        reloaded = changed or self.installed_state.reload_pending()
        if reloaded:
            if not changed:
                logger.info("Reload still pending from an earlier run for %s", request.hostname)
            reloader.notify_reload()
            self.installed_state.clear_reload_pending()
        else:
            logger.info("Nothing changed for %s, no reload", request.hostname)

        return ProvisioningOutcome(
            bundle=bundle,
            certificates=certificates,
            dh_params=dh_params,
            reloaded=reloaded,
        )

    def _generate(self, request: ProvisioningRequest) -> CertificateBundle:
        if self.ca_client is None:
            raise ValidationError("GENERATE_VIA_API mode requires a CA client")
        if not self.aop_ca_certificate:
            raise ValidationError("GENERATE_VIA_API mode requires the AOP CA certificate")
        if request.validity_days not in ORIGIN_CA_VALIDITY_DAYS:
            raise ValidationError(
                f"validity_days {request.validity_days} is not one of {ORIGIN_CA_VALIDITY_DAYS}"
            )

        if not needs_refresh(
            self.installed_state, request, threshold_days=self.renewal_threshold_days
        ):
            existing = load_installed_bundle(
                self.installed_state, SourceMode.GENERATED, ca_certificate=self.aop_ca_certificate
            )
            if existing is not None:
                logger.info("Reusing installed certificate for %s", request.hostname)
                return existing

        try:
            cert_pem, key_pem = self.ca_client.issue_certificate(
                request.hostnames, request.validity_days
            )
        except (CARequestError, ValidationError):
            raise
        except Exception as e:
            raise CARequestError(f"CA client failed: {e}") from e

        try:
            bundle = CertificateBundle(
                ca_certificate=self.aop_ca_certificate,
                origin_certificate=cert_pem,
                origin_private_key=key_pem,
                source_mode=SourceMode.GENERATED,
            )
        except MalformedCertificateError as e:
            raise CARequestError(f"CA returned malformed material: {e}") from e

        logger.info("Issued certificate for %s (%s)", request.hostnames, bundle.fingerprint[:16])
        return bundle

    def _fetch(self, request: ProvisioningRequest) -> CertificateBundle:
        if self.secret_store is None:
            raise ValidationError("DEPLOY_FROM_STORE mode requires a secret store")
        if request.secret_names is None:
            raise ValidationError("DEPLOY_FROM_STORE mode requires secret names")

        values: dict[str, bytes] = {}
        for label, name in request.secret_names.items():
            try:
                value = self.secret_store.get_secret(name)
            except SecretNotFoundError as e:
                raise SecretFetchError(f"secret {name} ({label}) not found") from e
            except Exception as e:
                raise SecretFetchError(f"failed to fetch secret {name} ({label}): {e}") from e
            if not value or not value.strip():
                raise SecretFetchError(f"secret {name} ({label}) is empty")
            values[label] = value

        bundle = CertificateBundle(
            ca_certificate=values["ca_certificate"],
            origin_certificate=values["origin_certificate"],
            origin_private_key=values["origin_private_key"],
            source_mode=SourceMode.FETCHED,
        )
        logger.info("Fetched certificate for %s (%s)", request.hostname, bundle.fingerprint[:16])
        return bundle
