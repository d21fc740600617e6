"""Bounded polling for resources that become ready asynchronously.

The wait between polls goes through a ``threading.Event`` so a stuck wait can
be interrupted from another thread instead of only timing out.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from loguru import logger

from cirrus.constants import READINESS_INTERVAL, READINESS_TIMEOUT
from cirrus.exceptions import ReadinessCancelled, ReadinessTimeout
from cirrus.types import InstanceDescriptor

log = logger.bind(component="wait")


def any_running(instances: Sequence[InstanceDescriptor]) -> bool:
    """Readiness predicate: at least one instance reports ``running``."""
    return any(i.is_running for i in instances)


def await_condition[T](
    query: Callable[[], T],
    predicate: Callable[[T], bool],
    *,
    timeout: float = READINESS_TIMEOUT,
    interval: float = READINESS_INTERVAL,
    cancel: threading.Event | None = None,
    description: str = "resource",
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Sleep, query, test; repeat until ``predicate`` holds or ``timeout`` passes.

    The first query happens after one ``interval``, so a condition that becomes
    true after ``k * interval`` is observed on the k-th poll. The call returns
    or fails within ``timeout + interval``.

    Args:
        query: Function returning the current resource view.
        predicate: Returns True when the view is ready.
        timeout: Maximum time to wait in seconds.
        interval: Time between polls in seconds.
        cancel: Optional token; setting it aborts the wait.
        description: Description for log and error messages.
        clock: Monotonic time source.

    Returns:
        The first query result that satisfied ``predicate``.

    Raises:
        ReadinessTimeout: If ``timeout`` is exceeded.
        ReadinessCancelled: If ``cancel`` is set while waiting.
    """
    token = cancel or threading.Event()
    start = clock()
    polls = 0

    while True:
        if token.wait(interval):
            raise ReadinessCancelled(description)

        result = query()
        polls += 1

        if predicate(result):
            log.debug(
                "{description} ready after {polls} poll(s)", description=description, polls=polls
            )
            return result

        elapsed = clock() - start
        log.debug(
            "{description} not ready (poll {polls}, {elapsed:.1f}s elapsed)",
            description=description,
            polls=polls,
            elapsed=elapsed,
        )
        if elapsed >= timeout:
            raise ReadinessTimeout(description, timeout)


@dataclass(slots=True)
class ReadinessPoller:
    """``await_condition`` with defaults and a shared cancellation token."""

    interval: float = READINESS_INTERVAL
    timeout: float = READINESS_TIMEOUT
    cancel: threading.Event = field(default_factory=threading.Event)

    def await_condition[T](
        self,
        query: Callable[[], T],
        predicate: Callable[[T], bool],
        *,
        description: str = "resource",
    ) -> T:
        return await_condition(
            query,
            predicate,
            timeout=self.timeout,
            interval=self.interval,
            cancel=self.cancel,
            description=description,
        )

    def cancel_wait(self) -> None:
        self.cancel.set()
