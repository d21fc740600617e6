"""Periodic refresh of the launcher's AWS credentials."""

from __future__ import annotations

import boto3
from loguru import logger

from cirrus.constants import CREDENTIAL_REFRESH_INTERVAL
from cirrus.services import PeriodicService

log = logger.bind(component="credentials")


class CredentialRefresher:
    """Forces the session's refreshable credentials to renew before they expire."""

    def __init__(self, session: boto3.Session) -> None:
        self.session = session

    def __call__(self) -> None:
        credentials = self.session.get_credentials()
        if credentials is None:
            log.warning("No AWS credentials available to refresh")
            return
        credentials.get_frozen_credentials()
        log.debug("Refreshed AWS credentials")


def credential_refresher(
    session: boto3.Session,
    interval: float = CREDENTIAL_REFRESH_INTERVAL,
) -> PeriodicService:
    return PeriodicService(
        name="credential-refresher",
        interval=interval,
        tick=CredentialRefresher(session),
    )
