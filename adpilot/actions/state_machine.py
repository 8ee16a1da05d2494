"""Action state machine — enforces valid lifecycle transitions."""

from __future__ import annotations

from adpilot.actions.model import Action
from adpilot.exceptions import ActionStateError
from adpilot.types import ActionStatus

# Valid state transitions for an action awaiting human review
VALID_TRANSITIONS: dict[ActionStatus, set[ActionStatus]] = {
    ActionStatus.PENDING: {
        ActionStatus.APPROVED,
        ActionStatus.REJECTED,
        ActionStatus.EXPIRED,
    },
    ActionStatus.APPROVED: {ActionStatus.EXECUTING},
    # Claimed by one executor; only its outcome can close it
    ActionStatus.EXECUTING: {ActionStatus.EXECUTED, ActionStatus.FAILED},
    ActionStatus.EXECUTED: set(),  # terminal
    ActionStatus.REJECTED: set(),  # terminal
    ActionStatus.FAILED: set(),  # terminal
    ActionStatus.EXPIRED: set(),  # terminal
}

# Auto actions skip the human gate and are claimed straight from pending
AUTO_TRANSITIONS: dict[ActionStatus, set[ActionStatus]] = {
    ActionStatus.PENDING: {ActionStatus.EXECUTING},
}


def allowed_targets(action: Action) -> set[ActionStatus]:
    targets = set(VALID_TRANSITIONS.get(action.status, set()))
    if action.auto:
        targets |= AUTO_TRANSITIONS.get(action.status, set())
    return targets


def can_transition(action: Action, target: ActionStatus) -> bool:
    return target in allowed_targets(action)


def validate_transition(action: Action, target: ActionStatus) -> None:
    if not can_transition(action, target):
        raise ActionStateError(
            f"Cannot transition action {action.id} "
            f"from {action.status.value} to {target.value}"
        )


def is_executable(action: Action) -> bool:
    """Approved actions, plus auto actions still pending."""
    return action.status == ActionStatus.APPROVED or (
        action.auto and action.status == ActionStatus.PENDING
    )
