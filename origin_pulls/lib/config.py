"""Engine configuration dataclasses."""

from dataclasses import dataclass, field
from pathlib import Path

CLOUDFLARE_API_URL = "https://api.cloudflare.com/client/v4"
AOP_CA_URL = "https://developers.cloudflare.com/ssl/static/authenticated_origin_pull_ca.pem"

# Validity periods the Origin CA accepts for requested_validity
ORIGIN_CA_VALIDITY_DAYS = (7, 30, 90, 365, 730, 1095, 5475)

DEFAULT_VALIDITY_DAYS = 5475
MIN_DH_PARAM_BITS = 2048
DEFAULT_DH_PARAM_BITS = 2048
RENEWAL_THRESHOLD_DAYS = 30


@dataclass
class PathLayout:
    """Directory layout for installed material on the target host."""

    ca_dir: Path = Path("/etc/ssl/cloudflare")
    certs_dir: Path = Path("/etc/ssl/certs")
    private_dir: Path = Path("/etc/ssl/private")
    ca_filename: str = "origin-pull-ca.pem"
    dh_params_filename: str = "dhparam.pem"


@dataclass
class EngineConfig:
    """Engine configuration with no host-specific values."""

    region: str = "eu-west-2"
    timeout: float = 30.0
    renewal_threshold_days: int = RENEWAL_THRESHOLD_DAYS
    api_url: str = CLOUDFLARE_API_URL
    aop_ca_url: str = AOP_CA_URL
    key_size: int = 2048
    reload_service: str = "nginx"
    reload_action: str = "restart"
    layout: PathLayout = field(default_factory=PathLayout)
