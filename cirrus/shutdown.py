"""Coordinated, best-effort cluster shutdown.

Steps run in a fixed order and each failure is recorded rather than
short-circuiting. Working directory cleanup runs in a ``finally`` block so it
is attempted whatever happened before it; a FilesystemError there is only
logged, anything else is recorded as the failed ``cleanup`` step.
"""

from __future__ import annotations

from loguru import logger

from cirrus.constants import HALT_TIMEOUT
from cirrus.exceptions import FilesystemError
from cirrus.janitor import WorkingDirectoryJanitor
from cirrus.protocols import CoordinationService
from cirrus.services import ServiceManager
from cirrus.types import ClusterIdentity, ShutdownCriteria, ShutdownReport, ShutdownSignal

log = logger.bind(component="shutdown")


class ShutdownCoordinator:
    def __init__(
        self,
        coordination: CoordinationService,
        janitor: WorkingDirectoryJanitor,
        services: ServiceManager | None = None,
        *,
        halt_timeout: float = HALT_TIMEOUT,
    ) -> None:
        self.coordination = coordination
        self.janitor = janitor
        self.services = services
        self.halt_timeout = halt_timeout

    def send_shutdown_request(self) -> int:
        """Broadcast a shutdown message to the cluster controller.

        Delivery is best-effort: zero recipients is logged, not raised.
        """
        signal = ShutdownSignal.create()
        recipients = self.coordination.send(ShutdownCriteria(), signal)
        if recipients == 0:
            log.error("Failed to send the {subtype} message to the controller", subtype=signal.subtype)
        else:
            log.info(
                "Sent {subtype} to {n} recipient(s)", subtype=signal.subtype, n=recipients
            )
        return recipients

    def shutdown(self, identity: ClusterIdentity) -> ShutdownReport:
        report = ShutdownReport()
        try:
            if identity.id is not None:
                try:
                    report.signal_recipients = self.send_shutdown_request()
                except Exception as e:
                    log.error("Shutdown request failed: {error}", error=e)
                    report.record("send_shutdown_request", e)

            if self.services is not None:
                try:
                    self.services.stop_all(self.halt_timeout)
                    report.services_stopped = True
                except Exception as e:
                    log.error("Stopping auxiliary services failed: {error}", error=e)
                    report.record("stop_services", e)
            else:
                report.services_stopped = True

            try:
                if self.coordination.is_connected():
                    self.coordination.disconnect()
                report.disconnected = True
            except Exception as e:
                log.error("Disconnecting from the coordination service failed: {error}", error=e)
                report.record("disconnect", e)
        finally:
            if identity.id is not None:
                try:
                    self.janitor.cleanup(identity.name, identity.id)
                    report.cleaned_up = True
                except FilesystemError as e:
                    log.warning("Working directory cleanup failed: {error}", error=e)
                except Exception as e:
                    log.error("Working directory cleanup raised unexpectedly: {error}", error=e)
                    report.record("cleanup", e)

        return report
