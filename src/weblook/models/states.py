"""Automation backend lifecycle states.

A backend handle only ever moves forward through these states; there is no
path back to ``READY`` once a handle has started stopping or has failed.
"""

from enum import Enum


class BackendStatus(str, Enum):
    """Lifecycle states of one automation backend process."""

    NOT_STARTED = "not_started"
    STARTING = "starting"
    READY = "ready"
    IN_USE = "in_use"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


# States in which a browser session against the backend may be used
SESSION_USABLE_STATES = {BackendStatus.READY, BackendStatus.IN_USE}

# States from which the process may be torn down
STOPPABLE_STATES = {
    BackendStatus.STARTING,
    BackendStatus.READY,
    BackendStatus.IN_USE,
    BackendStatus.FAILED,
}

STATE_TRANSITIONS: dict[BackendStatus, list[BackendStatus]] = {
    BackendStatus.NOT_STARTED: [BackendStatus.STARTING],
    BackendStatus.STARTING: [BackendStatus.READY, BackendStatus.FAILED, BackendStatus.STOPPING],
    BackendStatus.READY: [BackendStatus.IN_USE, BackendStatus.FAILED, BackendStatus.STOPPING],
    BackendStatus.IN_USE: [BackendStatus.FAILED, BackendStatus.STOPPING],
    BackendStatus.FAILED: [BackendStatus.STOPPING],
    BackendStatus.STOPPING: [BackendStatus.STOPPED],
    BackendStatus.STOPPED: [],
}


def can_transition(current: BackendStatus, target: BackendStatus) -> bool:
    """Return True if *current* may move to *target*."""
    return target in STATE_TRANSITIONS.get(current, [])
