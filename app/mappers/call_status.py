"""Call lifecycle state machine.

No I/O, no side effects. Statuses only move forward:

    SCHEDULED --> IN_PROGRESS --> COMPLETED | FAILED
        |
        +--> COMPLETED   (timeout sweep, dial_successful=False)
        +--> FAILED      (provider rejected the call)
        +--> CANCELED    (user cancellation, no provider call placed)
"""

from app.exceptions.custom import InvalidTransitionError
from app.schemas.calls import CallStatus

TERMINAL_STATUSES: frozenset[CallStatus] = frozenset({
    CallStatus.COMPLETED,
    CallStatus.FAILED,
    CallStatus.CANCELED,
})

ALLOWED_TRANSITIONS: dict[CallStatus, frozenset[CallStatus]] = {
    CallStatus.SCHEDULED: frozenset({
        CallStatus.IN_PROGRESS,
        CallStatus.COMPLETED,
        CallStatus.FAILED,
        CallStatus.CANCELED,
    }),
    CallStatus.IN_PROGRESS: frozenset({
        CallStatus.COMPLETED,
        CallStatus.FAILED,
    }),
    CallStatus.COMPLETED: frozenset(),
    CallStatus.FAILED: frozenset(),
    CallStatus.CANCELED: frozenset(),
}


def is_terminal(status: CallStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: CallStatus, target: CallStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def validate_transition(call_id: str, current: CallStatus, target: CallStatus) -> None:
    if can_transition(current, target):
        return
    if is_terminal(current):
        message = f"Call {call_id} is already {current.value}; no further transitions allowed"
    else:
        message = f"Call {call_id} cannot move from {current.value} to {target.value}"
    raise InvalidTransitionError(message, current=current.value, target=target.value)
