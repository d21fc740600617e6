"""Command-line launcher.

Usage::

    cirrus --config cirrus.toml
    python -m cirrus --log-level DEBUG

Launches (or reconnects to) the configured cluster and keeps it up until
SIGTERM or SIGINT, then shuts it down and sends the shutdown email if one
is configured.
"""

from __future__ import annotations

import argparse
import atexit
import importlib
import signal
import threading
from dataclasses import replace
from pathlib import Path
from types import FrameType

from injector import Injector
from loguru import logger

from cirrus.config import CoordinationSettings, resolve_config
from cirrus.exceptions import (
    CirrusError,
    ConfigurationError,
    LaunchAborted,
    NotificationError,
    ReadinessCancelled,
    ShutdownPartialFailure,
)
from cirrus.logging import setup_logging, teardown_logging
from cirrus.notify import EmailNotifier, shutdown_email
from cirrus.orchestrator import ClusterLifecycleOrchestrator
from cirrus.protocols import CoordinationService, NotificationService
from cirrus.providers.aws import AWS, AWSModule, AWSProvisioningBackend
from cirrus.services import ServiceManager

log = logger.bind(component="cli")


def load_coordination(settings: CoordinationSettings) -> CoordinationService:
    """Build the coordination service from its ``"module:callable"`` factory path.

    Raises:
        ConfigurationError: If the factory is missing, cannot be imported, or
            returns something that is not a coordination service.
    """
    if not settings.factory:
        raise ConfigurationError("[coordination] factory is required")

    module_name, sep, attr = settings.factory.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(
            f"[coordination] factory must look like 'module:callable', got {settings.factory!r}"
        )

    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load coordination factory {settings.factory!r}: {e}") from e

    service = factory(**settings.options)
    if not isinstance(service, CoordinationService):
        raise ConfigurationError(
            f"{settings.factory} returned {type(service).__name__}, not a coordination service"
        )
    return service


class Launcher:
    """Runs the orchestrator for the life of the process and stops it exactly once."""

    def __init__(
        self,
        orchestrator: ClusterLifecycleOrchestrator,
        notifier: NotificationService | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.notifier = notifier
        self._done = threading.Event()
        self._lock = threading.RLock()
        self._shut_down = False

    def install_handlers(self) -> None:
        atexit.register(self.shutdown)
        signal.signal(signal.SIGTERM, self._on_signal)
        signal.signal(signal.SIGINT, self._on_signal)

    def _on_signal(self, signum: int, frame: FrameType | None) -> None:
        log.info("Received signal {name}", name=signal.Signals(signum).name)
        self.shutdown()

    def run(self) -> int:
        try:
            identity = self.orchestrator.launch()
        except (ReadinessCancelled, LaunchAborted):
            log.warning("Launch interrupted by shutdown")
            return 0
        except CirrusError as e:
            log.error("Failed to launch cluster: {error}", error=e)
            return 1

        log.info("Cluster {name} running with id {id}", name=identity.name, id=identity.id)
        self._done.wait()
        return 0

    def shutdown(self) -> None:
        with self._lock:
            if self._shut_down:
                return
            self._shut_down = True

            try:
                self.orchestrator.stop()
            except ShutdownPartialFailure as e:
                log.error("{error}", error=e)
            finally:
                self._notify()
                self._done.set()

    def _notify(self) -> None:
        if self.notifier is None:
            return
        subject, body = shutdown_email(self.orchestrator.identity, self.orchestrator.report)
        try:
            self.notifier.send_email(subject, body)
        except NotificationError as e:
            log.error("Failed to send shutdown email: {error}", error=e)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cirrus", description="Launch and supervise a cirrus cluster")
    parser.add_argument(
        "--config", type=Path, default=None,
        help="Config file (default: ~/.cirrus/defaults.toml merged with ./cirrus.toml)",
    )
    parser.add_argument(
        "--log-level", type=str, default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override [logging] level",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = resolve_config(args.config)
    except ConfigurationError as e:
        parser.exit(1, f"cirrus: {e}\n")

    log_config = replace(config.logging, level=args.log_level) if args.log_level else config.logging
    handler_ids = setup_logging(log_config)
    try:
        try:
            coordination = load_coordination(config.coordination)
        except ConfigurationError as e:
            log.error("{error}", error=e)
            return 1

        injector = Injector([AWSModule()])
        injector.binder.bind(AWS, to=config.aws)

        orchestrator = ClusterLifecycleOrchestrator(
            config,
            backend=injector.get(AWSProvisioningBackend),
            coordination=coordination,
            services=injector.get(ServiceManager),
        )
        notifier = EmailNotifier(config.notifications) if config.notifications.email_on_shutdown else None

        launcher = Launcher(orchestrator, notifier)
        launcher.install_handlers()
        try:
            return launcher.run()
        finally:
            launcher.shutdown()
    finally:
        teardown_logging(handler_ids)
