"""AWS provider: boto3 backend, credential refresh and DI wiring."""

from .backend import AWSProvisioningBackend
from .clients import AWSModule
from .config import AWS
from .credentials import CredentialRefresher, credential_refresher

__all__ = [
    "AWS",
    "AWSModule",
    "AWSProvisioningBackend",
    "CredentialRefresher",
    "credential_refresher",
]
