"""Custom exception hierarchy for cirrus.

All cirrus-specific exceptions inherit from CirrusError, enabling
callers to catch all cirrus exceptions with a single except clause.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cirrus.lifecycle import ClusterLifecycleState
    from cirrus.types import ShutdownReport


class CirrusError(Exception):
    """Base exception for all cirrus errors."""


class ConfigurationError(CirrusError):
    """Raised for invalid configuration or missing required settings."""


class CoordinationConnectError(CirrusError):
    """Raised when the coordination service cannot be reached at launch."""


class ProvisioningFailure(CirrusError):
    """Raised when a provisioning step fails.

    Resources created by earlier steps are left in place.
    """

    def __init__(self, step: str, cause: BaseException | None = None) -> None:
        self.step = step
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Provisioning step '{step}' failed{detail}")


class ReadinessTimeout(CirrusError):
    """Raised when a polled resource does not become ready in time."""

    def __init__(self, description: str, timeout: float) -> None:
        self.description = description
        self.timeout = timeout
        super().__init__(f"Timed out waiting for {description} after {timeout:.1f}s")


class ReadinessCancelled(CirrusError):
    """Raised when a readiness wait is interrupted through its cancel token."""

    def __init__(self, description: str) -> None:
        self.description = description
        super().__init__(f"Wait for {description} was cancelled")


class LaunchAborted(CirrusError):
    """Raised when shutdown began while the cluster was still being provisioned.

    No further resources are created once this is raised.
    """

    def __init__(self, step: str) -> None:
        self.step = step
        super().__init__(f"Launch aborted before '{step}': shutdown in progress")


class InvalidTransition(CirrusError):
    """Raised on a lifecycle transition missing from the transition table."""

    def __init__(self, current: ClusterLifecycleState, target: ClusterLifecycleState) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition from {current} to {target}")


class ShutdownPartialFailure(CirrusError):
    """Raised when one or more shutdown steps failed. Cleanup still ran."""

    def __init__(self, report: ShutdownReport) -> None:
        self.report = report
        steps = ", ".join(f.step for f in report.failures) or "none"
        super().__init__(f"Shutdown finished with failed steps: {steps}")


class ShutdownTimeout(ShutdownPartialFailure):
    """Raised when auxiliary services did not halt within the bounded wait."""


class NotificationError(CirrusError):
    """Raised when a notification cannot be delivered."""


class FilesystemError(CirrusError):
    """Raised when the cluster working directory cannot be removed."""

    def __init__(self, path: str, cause: BaseException | None = None) -> None:
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to delete {path}: {cause}")
