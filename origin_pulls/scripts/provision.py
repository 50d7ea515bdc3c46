#!/usr/bin/env python3
"""Provision Authenticated Origin Pulls material on this host."""

import argparse
import os
import sys
from pathlib import Path

from origin_pulls.lib.ca_client import CloudflareOriginCAClient, fetch_aop_ca_certificate
from origin_pulls.lib.config import DEFAULT_DH_PARAM_BITS, DEFAULT_VALIDITY_DAYS, EngineConfig
from origin_pulls.lib.errors import ProvisioningError, ValidationError
from origin_pulls.lib.installer import Installer
from origin_pulls.lib.logging_config import LOGGER
from origin_pulls.lib.models import (
    InstalledState,
    ProvisioningMode,
    ProvisioningOutcome,
    ProvisioningRequest,
    SecretNames,
    resolve_mode,
)
from origin_pulls.lib.orchestrator import Provisioner
from origin_pulls.lib.reload import NullReloader, ServiceReloader
from origin_pulls.lib.secret_store import ParameterStore, SecretsManagerStore

CREDENTIAL_ENV_VAR = "CF_ORIGIN_CA_KEY"
SECRET_BACKENDS = ["secretsmanager", "ssm"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Install the AOP CA, origin certificate, origin key and DH parameters"
    )
    parser.add_argument("--hostname", required=True, help="Primary certificate hostname")
    parser.add_argument(
        "--alt-hostname",
        action="append",
        default=[],
        dest="alt_hostnames",
        help="Additional SAN hostname (repeatable)",
    )
    parser.add_argument(
        "--generate",
        action="store_true",
        help="Request a new certificate from the Origin CA API",
    )
    parser.add_argument(
        "--deploy-from-store",
        action="store_true",
        help="Deploy a previously issued certificate from the secret store",
    )
    parser.add_argument(
        "--validity-days",
        type=int,
        default=DEFAULT_VALIDITY_DAYS,
        help=f"Requested certificate validity (default: {DEFAULT_VALIDITY_DAYS})",
    )
    parser.add_argument(
        "--dh-param-bits",
        type=int,
        default=DEFAULT_DH_PARAM_BITS,
        help=f"DH parameter size (default: {DEFAULT_DH_PARAM_BITS})",
    )
    parser.add_argument("--secret-ca", help="Secret name holding the AOP CA certificate")
    parser.add_argument("--secret-cert", help="Secret name holding the origin certificate")
    parser.add_argument("--secret-key", help="Secret name holding the origin private key")
    parser.add_argument(
        "--secret-backend",
        choices=SECRET_BACKENDS,
        default="secretsmanager",
        help="Secret store backend (default: secretsmanager)",
    )
    parser.add_argument(
        "--aop-ca-file",
        type=Path,
        help="Local AOP CA certificate (default: download the published one)",
    )
    parser.add_argument("--ca-path", type=Path, help="Override AOP CA certificate path")
    parser.add_argument("--cert-path", type=Path, help="Override origin certificate path")
    parser.add_argument("--key-path", type=Path, help="Override origin private key path")
    parser.add_argument("--dh-path", type=Path, help="Override DH parameters path")
    parser.add_argument("--owner", help="Owner for installed files")
    parser.add_argument("--group", help="Group for installed files")
    parser.add_argument(
        "--region",
        default=os.environ.get("AWS_REGION", EngineConfig.region),
        help="AWS region for the secret store",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=EngineConfig.timeout,
        help="Timeout in seconds for each external call",
    )
    parser.add_argument(
        "--reload-service",
        default=EngineConfig.reload_service,
        help="Service restarted when material changes (default: nginx)",
    )
    parser.add_argument(
        "--no-reload",
        action="store_true",
        help="Do not restart the web server on change",
    )
    return parser


def build_request(args: argparse.Namespace) -> ProvisioningRequest:
    """Turn parsed arguments into a validated request.

    Raises:
        ValidationError: If the mode or options are inconsistent
    """
    mode = resolve_mode(args.generate, args.deploy_from_store)

    secret_names = None
    if mode is ProvisioningMode.DEPLOY_FROM_STORE:
        if not (args.secret_ca and args.secret_cert and args.secret_key):
            raise ValidationError("--secret-ca, --secret-cert and --secret-key are required")
        secret_names = SecretNames(
            ca_certificate=args.secret_ca,
            origin_certificate=args.secret_cert,
            origin_private_key=args.secret_key,
        )

    return ProvisioningRequest(
        hostname=args.hostname,
        alternative_hostnames=tuple(args.alt_hostnames),
        mode=mode,
        validity_days=args.validity_days,
        dh_param_bits=args.dh_param_bits,
        secret_names=secret_names,
    )


def build_installed_state(args: argparse.Namespace, config: EngineConfig) -> InstalledState:
    defaults = InstalledState.for_hostname(args.hostname.strip().lower(), config.layout)
    return InstalledState(
        ca_cert_path=args.ca_path or defaults.ca_cert_path,
        origin_cert_path=args.cert_path or defaults.origin_cert_path,
        origin_key_path=args.key_path or defaults.origin_key_path,
        dh_params_path=args.dh_path or defaults.dh_params_path,
        owner=args.owner,
        group=args.group,
    )


def build_provisioner(
    args: argparse.Namespace,
    request: ProvisioningRequest,
    state: InstalledState,
    config: EngineConfig,
) -> Provisioner:
    """Wire the one external client the request's mode needs."""
    if request.mode is ProvisioningMode.GENERATE_VIA_API:
        credential = os.environ.get(CREDENTIAL_ENV_VAR, "")
        if not credential:
            raise ValidationError(f"{CREDENTIAL_ENV_VAR} must be set to generate certificates")
        if args.aop_ca_file:
            aop_ca = args.aop_ca_file.read_bytes()
        else:
            aop_ca = fetch_aop_ca_certificate(config.aop_ca_url, timeout=args.timeout)
        return Provisioner(
            state,
            ca_client=CloudflareOriginCAClient(
                credential, api_url=config.api_url, timeout=args.timeout, key_size=config.key_size
            ),
            aop_ca_certificate=aop_ca,
            renewal_threshold_days=config.renewal_threshold_days,
        )

    if args.secret_backend == "ssm":
        store = ParameterStore(region=args.region, timeout=args.timeout)
    else:
        store = SecretsManagerStore(region=args.region, timeout=args.timeout)
    return Provisioner(state, secret_store=store)


def run(args: argparse.Namespace, config: EngineConfig | None = None) -> ProvisioningOutcome:
    config = config or EngineConfig()
    request = build_request(args)
    state = build_installed_state(args, config)
    provisioner = build_provisioner(args, request, state, config)

    if args.no_reload:
        reloader = NullReloader()
    else:
        reloader = ServiceReloader(service=args.reload_service, action=config.reload_action)

    LOGGER.info(
        "Provisioning %s (%s) via %s",
        request.hostname,
        ", ".join(request.alternative_hostnames) or "no alternative names",
        request.mode.value,
    )
    return provisioner.apply(request, Installer(), reloader)


def main(argv: list[str] | None = None) -> int:
    """Run provisioning.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.generate and args.deploy_from_store:
        parser.error("--generate and --deploy-from-store are mutually exclusive")
    if not args.generate and not args.deploy_from_store:
        parser.error("one of --generate or --deploy-from-store is required")

    try:
        outcome = run(args)
    except ProvisioningError as e:
        LOGGER.error("Provisioning failed (%s): %s", type(e).__name__, e)
        return 1
    except Exception as e:
        LOGGER.error("Provisioning failed: %s", e)
        return 1

    LOGGER.info("Provisioning complete:")
    LOGGER.info("  Source: %s", outcome.bundle.source_mode.value)
    LOGGER.info("  Certificates: %s", outcome.certificates.value)
    LOGGER.info("  DH parameters: %s", outcome.dh_params.value)
    LOGGER.info("  Reloaded: %s", outcome.reloaded)
    return 0


if __name__ == "__main__":
    sys.exit(main())
