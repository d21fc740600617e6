"""AWS dependency injection.

Provides the boto3 session, the provisioning backend and the background
services the launcher runs while the cluster is up.
"""

from __future__ import annotations

import boto3
from injector import Module, provider, singleton

from cirrus.services import ServiceManager

from .backend import AWSProvisioningBackend
from .config import AWS
from .credentials import credential_refresher


class AWSModule(Module):
    """DI module that provides the AWS session and backend.

    Usage:
        >>> from injector import Injector
        >>> from cirrus.providers.aws import AWSModule, AWS
        >>>
        >>> injector = Injector([AWSModule()])
        >>> injector.binder.bind(AWS, to=AWS(region="us-east-1"))
        >>> backend = injector.get(AWSProvisioningBackend)
    """

    @singleton
    @provider
    def provide_session(self, config: AWS) -> boto3.Session:
        """Provide singleton boto3 session."""
        return boto3.Session(profile_name=config.profile, region_name=config.region)

    @singleton
    @provider
    def provide_backend(self, session: boto3.Session, config: AWS) -> AWSProvisioningBackend:
        """Provide the provisioning backend."""
        return AWSProvisioningBackend(config, session)

    @singleton
    @provider
    def provide_services(self, session: boto3.Session, config: AWS) -> ServiceManager:
        """Provide the services kept running for the cluster's lifetime."""
        return ServiceManager([credential_refresher(session, config.credential_refresh_interval)])
