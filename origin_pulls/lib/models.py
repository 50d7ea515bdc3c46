"""Data model for origin certificate provisioning."""

import enum
from dataclasses import dataclass, field
from pathlib import Path

from origin_pulls.lib.cert_utils import (
    compute_fingerprint,
    key_matches_certificate,
    load_certificate,
    load_certificate_chain,
    load_private_key,
)
from origin_pulls.lib.config import (
    DEFAULT_DH_PARAM_BITS,
    DEFAULT_VALIDITY_DAYS,
    MIN_DH_PARAM_BITS,
    PathLayout,
)
from origin_pulls.lib.errors import MalformedCertificateError, ValidationError


class ProvisioningMode(enum.Enum):
    """Where certificate material comes from."""

    GENERATE_VIA_API = "generate"
    DEPLOY_FROM_STORE = "deploy"

    @classmethod
    def parse(cls, value: "str | ProvisioningMode | None") -> "ProvisioningMode":
        """Accept an enum member, its value or its name (case-insensitive)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if normalized in (member.value, member.name.lower()):
                    return member
        raise ValidationError(f"unknown provisioning mode: {value!r}")


class SourceMode(enum.Enum):
    GENERATED = "generated"
    FETCHED = "fetched"


class InstallResult(enum.Enum):
    CHANGED = "changed"
    UNCHANGED = "unchanged"

    @classmethod
    def merge(cls, *results: "InstallResult") -> "InstallResult":
        """CHANGED if any result is CHANGED."""
        if any(result is cls.CHANGED for result in results):
            return cls.CHANGED
        return cls.UNCHANGED


def resolve_mode(generate_via_api: bool, deploy_from_store: bool) -> ProvisioningMode:
    """Map the two boolean switches onto exactly one mode.

    Raises:
        ValidationError: If both or neither switch is set
    """
    if generate_via_api and deploy_from_store:
        raise ValidationError("generate-via-API and deploy-from-store are mutually exclusive")
    if generate_via_api:
        return ProvisioningMode.GENERATE_VIA_API
    if deploy_from_store:
        return ProvisioningMode.DEPLOY_FROM_STORE
    raise ValidationError("one of generate-via-API or deploy-from-store is required")


@dataclass(frozen=True)
class SecretNames:
    """Secret store names for the three PEM blobs."""

    ca_certificate: str
    origin_certificate: str
    origin_private_key: str

    def __post_init__(self) -> None:
        for label, name in self.items():
            if not name or not name.strip():
                raise ValidationError(f"secret name for {label} must not be empty")

    def items(self) -> list[tuple[str, str]]:
        """Return (label, name) pairs in installation order."""
        return [
            ("ca_certificate", self.ca_certificate),
            ("origin_certificate", self.origin_certificate),
            ("origin_private_key", self.origin_private_key),
        ]


@dataclass(frozen=True)
class ProvisioningRequest:
    """Validated input for one provisioning run.

    alternative_hostnames is deduplicated on construction, keeping first-seen
    order for logging. The primary hostname is dropped from it if repeated.
    """

    hostname: str
    mode: ProvisioningMode
    alternative_hostnames: tuple[str, ...] = ()
    validity_days: int = DEFAULT_VALIDITY_DAYS
    dh_param_bits: int = DEFAULT_DH_PARAM_BITS
    secret_names: SecretNames | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.hostname, str) or not self.hostname.strip():
            raise ValidationError("hostname must be a non-empty string")
        hostname = self.hostname.strip().lower()
        object.__setattr__(self, "hostname", hostname)
        object.__setattr__(self, "mode", ProvisioningMode.parse(self.mode))

        if isinstance(self.alternative_hostnames, str):
            raise ValidationError("alternative_hostnames must be a collection, not a string")
        seen = {hostname}
        alternatives: list[str] = []
        for name in self.alternative_hostnames:
            if not isinstance(name, str) or not name.strip():
                raise ValidationError("alternative hostnames must be non-empty strings")
            normalized = name.strip().lower()
            if normalized not in seen:
                seen.add(normalized)
                alternatives.append(normalized)
        object.__setattr__(self, "alternative_hostnames", tuple(alternatives))

        # bool is an int subclass; reject it explicitly
        if isinstance(self.validity_days, bool) or not isinstance(self.validity_days, int):
            raise ValidationError("validity_days must be an integer")
        if self.validity_days <= 0:
            raise ValidationError("validity_days must be positive")
        if isinstance(self.dh_param_bits, bool) or not isinstance(self.dh_param_bits, int):
            raise ValidationError("dh_param_bits must be an integer")
        if self.dh_param_bits < MIN_DH_PARAM_BITS:
            raise ValidationError(f"dh_param_bits must be at least {MIN_DH_PARAM_BITS}")

        if self.mode is ProvisioningMode.DEPLOY_FROM_STORE and self.secret_names is None:
            raise ValidationError("secret_names are required when deploying from the secret store")
        if self.mode is ProvisioningMode.GENERATE_VIA_API and self.secret_names is not None:
            raise ValidationError(
                "secret_names are only valid when deploying from the secret store"
            )

    @property
    def hostnames(self) -> list[str]:
        """Primary hostname followed by alternatives."""
        return [self.hostname, *self.alternative_hostnames]


@dataclass(frozen=True)
class CertificateBundle:
    """Installable CA certificate, origin certificate and origin key.

    Validated and fingerprinted on construction. Never mutated; a changed
    bundle is a new instance.
    """

    ca_certificate: bytes
    origin_certificate: bytes
    origin_private_key: bytes = field(repr=False)
    source_mode: SourceMode
    fingerprint: str = field(init=False)

    def __post_init__(self) -> None:
        load_certificate_chain(self.ca_certificate, "CA certificate")
        origin_cert = load_certificate(self.origin_certificate, "origin certificate")
        key = load_private_key(self.origin_private_key, "origin private key")
        if not key_matches_certificate(key, origin_cert):
            raise MalformedCertificateError("origin private key does not match origin certificate")

        object.__setattr__(
            self,
            "fingerprint",
            compute_fingerprint(
                self.ca_certificate, self.origin_certificate, self.origin_private_key
            ),
        )


@dataclass(frozen=True)
class InstalledState:
    """On-disk slots for installed material and their permissions."""

    ca_cert_path: Path
    origin_cert_path: Path
    origin_key_path: Path
    dh_params_path: Path
    cert_mode: int = 0o644
    key_mode: int = 0o400
    dh_mode: int = 0o644
    owner: str | None = None
    group: str | None = None

    @classmethod
    def for_hostname(
        cls, hostname: str, layout: PathLayout | None = None, **kwargs
    ) -> "InstalledState":
        """Build the default layout for a hostname."""
        layout = layout or PathLayout()
        return cls(
            ca_cert_path=layout.ca_dir / layout.ca_filename,
            origin_cert_path=layout.certs_dir / f"{hostname}.pem",
            origin_key_path=layout.private_dir / f"{hostname}.key",
            dh_params_path=layout.certs_dir / layout.dh_params_filename,
            **kwargs,
        )

    def certificate_slots(self) -> list[tuple[Path, int]]:
        """Return (path, mode) for CA cert, origin cert, origin key, in install order."""
        return [
            (self.ca_cert_path, self.cert_mode),
            (self.origin_cert_path, self.cert_mode),
            (self.origin_key_path, self.key_mode),
        ]

    def read_certificate_files(self) -> tuple[bytes, bytes, bytes] | None:
        """Return the three installed blobs, or None if any slot is missing."""
        try:
            return (
                self.ca_cert_path.read_bytes(),
                self.origin_cert_path.read_bytes(),
                self.origin_key_path.read_bytes(),
            )
        except FileNotFoundError:
            return None

    def current_fingerprint(self) -> str | None:
        """Recompute the fingerprint of installed files, None if any slot is missing."""
        blobs = self.read_certificate_files()
        if blobs is None:
            return None
        return compute_fingerprint(*blobs)

    @property
    def reload_marker_path(self) -> Path:
        """Hidden file beside the key, present while a committed change awaits a reload."""
        return self.origin_key_path.with_name(f".{self.origin_key_path.name}.reload-pending")

    def reload_pending(self) -> bool:
        return self.reload_marker_path.exists()

    def clear_reload_pending(self) -> None:
        self.reload_marker_path.unlink(missing_ok=True)


@dataclass
class ProvisioningOutcome:
    """Result of a full provisioning run."""

    bundle: CertificateBundle
    certificates: InstallResult
    dh_params: InstallResult
    reloaded: bool

    @property
    def changed(self) -> bool:
        return InstallResult.merge(self.certificates, self.dh_params) is InstallResult.CHANGED
