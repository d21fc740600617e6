"""AWS provider configuration.

Immutable configuration dataclass for the AWS backend.
"""

from __future__ import annotations

from dataclasses import dataclass

from cirrus.constants import CREDENTIAL_REFRESH_INTERVAL


@dataclass(frozen=True, slots=True)
class AWS:
    """AWS provider configuration.

    Example:
        >>> from cirrus.providers.aws import AWS
        >>> config = AWS(region="us-west-2")

    Args:
        region: AWS region for resources. Default: us-east-1
        subnet_ids: Subnets for the autoscaling groups. If empty, uses the
            default VPC's subnets.
        ingress_cidr: Source range allowed into the cluster security group.
        ingress_protocol: Protocol of the ingress rule.
        ingress_from_port: First port of the ingress rule.
        ingress_to_port: Last port of the ingress rule.
        credential_refresh_interval: Seconds between credential refreshes.
        key_material_dir: Directory where new key pairs are saved as
            ``<key>.pem``. If None, key material is not written anywhere.
        profile: Named AWS profile. If None, uses the default chain.
    """

    region: str = "us-east-1"
    subnet_ids: tuple[str, ...] = ()
    ingress_cidr: str = "0.0.0.0/0"
    ingress_protocol: str = "tcp"
    ingress_from_port: int = 0
    ingress_to_port: int = 65535
    credential_refresh_interval: float = CREDENTIAL_REFRESH_INTERVAL
    key_material_dir: str | None = None
    profile: str | None = None
