"""Auxiliary in-process services started alongside the cluster.

``ServiceManager`` starts a fixed set of services and stops them with a
bounded wait, so a stuck service is reported instead of blocking shutdown.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from loguru import logger

log = logger.bind(component="services")


@runtime_checkable
class Service(Protocol):
    name: str

    def start(self) -> None: ...

    def stop(self) -> None:
        """Request stop without blocking."""
        ...

    def wait_stopped(self, timeout: float) -> bool:
        """Block up to ``timeout`` seconds; True if the service has stopped."""
        ...


@dataclass
class PeriodicService:
    """Runs ``tick`` every ``interval`` seconds on a daemon thread."""

    name: str
    interval: float
    tick: Callable[[], None]
    stop_event: threading.Event = field(default_factory=threading.Event)
    thread: threading.Thread = field(init=False)

    def __post_init__(self) -> None:
        self.thread = threading.Thread(target=self.loop, name=self.name, daemon=True)

    def start(self) -> None:
        self.thread.start()

    def loop(self) -> None:
        while not self.stop_event.wait(self.interval):
            try:
                self.tick()
            except Exception:
                log.exception("Service {name} tick failed", name=self.name)

    def stop(self) -> None:
        self.stop_event.set()

    def wait_stopped(self, timeout: float) -> bool:
        if self.thread.ident is None:
            return True
        self.thread.join(timeout)
        return not self.thread.is_alive()


class ServiceManager:
    def __init__(self, services: Iterable[Service] = ()) -> None:
        self.services: tuple[Service, ...] = tuple(services)
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def start_all(self) -> None:
        for service in self.services:
            log.debug("Starting service {name}", name=service.name)
            service.start()
        self._started = True

    def stop_all(self, timeout: float) -> None:
        """Stop every service, waiting at most ``timeout`` seconds in total.

        Raises:
            TimeoutError: If any service is still running when the wait ends.
        """
        for service in self.services:
            service.stop()

        deadline = time.monotonic() + timeout
        stuck: list[str] = []
        for service in self.services:
            remaining = max(0.0, deadline - time.monotonic())
            if not service.wait_stopped(remaining):
                stuck.append(service.name)

        if stuck:
            raise TimeoutError(
                f"Services did not stop within {timeout:.1f}s: {', '.join(stuck)}"
            )
        log.debug("All {n} service(s) stopped", n=len(self.services))
