"""Cluster lifecycle state held behind a single lock.

Transitions are validated against an explicit table. ``STOPPED`` is
terminal and re-entering it is a no-op.
"""

from __future__ import annotations

import threading
from enum import StrEnum
from typing import Final

from loguru import logger

from cirrus.exceptions import InvalidTransition

log = logger.bind(component="lifecycle")


class ClusterLifecycleState(StrEnum):
    UNCONNECTED = "unconnected"
    RECONNECT_CHECKING = "reconnect-checking"
    PROVISIONING = "provisioning"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting-down"
    STOPPED = "stopped"


_S = ClusterLifecycleState

ALLOWED_TRANSITIONS: Final[dict[ClusterLifecycleState, frozenset[ClusterLifecycleState]]] = {
    _S.UNCONNECTED: frozenset({_S.RECONNECT_CHECKING, _S.SHUTTING_DOWN}),
    _S.RECONNECT_CHECKING: frozenset({_S.PROVISIONING, _S.RUNNING, _S.SHUTTING_DOWN}),
    _S.PROVISIONING: frozenset({_S.RUNNING, _S.SHUTTING_DOWN}),
    _S.RUNNING: frozenset({_S.SHUTTING_DOWN}),
    _S.SHUTTING_DOWN: frozenset({_S.STOPPED}),
    _S.STOPPED: frozenset(),
}


class LifecycleStateMachine:
    """Process-wide lifecycle value.

    Only the orchestrator calls ``transition``; everyone else reads ``state``.
    """

    def __init__(self, initial: ClusterLifecycleState = ClusterLifecycleState.UNCONNECTED) -> None:
        self._state = initial
        self._lock = threading.Lock()

    @property
    def state(self) -> ClusterLifecycleState:
        with self._lock:
            return self._state

    def can_transition(self, target: ClusterLifecycleState) -> bool:
        with self._lock:
            return target in ALLOWED_TRANSITIONS[self._state]

    def transition(self, target: ClusterLifecycleState) -> ClusterLifecycleState:
        """Move to ``target`` and return the previous state.

        Raises:
            InvalidTransition: If the table does not allow the move.
        """
        with self._lock:
            previous = self._state
            if previous is ClusterLifecycleState.STOPPED and target is ClusterLifecycleState.STOPPED:
                return previous
            if target not in ALLOWED_TRANSITIONS[previous]:
                raise InvalidTransition(previous, target)
            self._state = target

        log.debug("Lifecycle {previous} -> {target}", previous=previous, target=target)
        return previous
